# Test data factories for creating model instances

from .base import BaseFactory, days_from_now, generate_uuid
from .models import GenerationRecordFactory, MarketplaceAppFactory, OrgDeploymentFactory
from .api import (
    deploy_preview_payload,
    launch_payload,
    production_deploy_payload,
    redeploy_template_payload,
    secrets_payload,
)

__all__ = [
    # Base utilities
    "BaseFactory",
    "generate_uuid",
    "days_from_now",
    # Model factories
    "GenerationRecordFactory",
    "MarketplaceAppFactory",
    "OrgDeploymentFactory",
    # API factories
    "deploy_preview_payload",
    "redeploy_template_payload",
    "secrets_payload",
    "launch_payload",
    "production_deploy_payload",
]
