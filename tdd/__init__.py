# Launchpad Test Suite
