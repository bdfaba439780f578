# Cross-cutting test utilities shared across all test types

from .mocks import MockComputeClient, MockStepRunner

__all__ = [
    "MockComputeClient",
    "MockStepRunner",
]
