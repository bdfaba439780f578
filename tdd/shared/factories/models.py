"""
Model factories for creating test data.

These factories create SQLAlchemy model instances for use in tests.
They can be used directly in unit tests or with database sessions
in integration tests.
"""
import sys
from datetime import datetime
from pathlib import Path

import factory
from faker import Faker

# Add backend to path for imports
backend_path = Path(__file__).parent.parent.parent.parent / "backend"
sys.path.insert(0, str(backend_path))

from app.models import (
    DeploymentStatus,
    GenerationRecord,
    GenerationStatus,
    MarketplaceApp,
    OrgDeployment,
)

from .base import BaseFactory, days_from_now, generate_uuid

fake = Faker()


class GenerationRecordFactory(BaseFactory):
    """Factory for creating GenerationRecord instances."""

    class Meta:
        model = GenerationRecord

    id = factory.LazyFunction(generate_uuid)
    status = GenerationStatus.COMPLETE.value
    source_dir = None
    upload_blob_url = factory.LazyFunction(lambda: f"https://blob.example.com/{fake.uuid4()}.zip")
    preview_instance_id = None
    preview_url = None
    preview_expires_at = None
    screenshot = None
    error = None
    app_id = None
    created_at = factory.LazyFunction(datetime.utcnow)
    updated_at = factory.LazyFunction(datetime.utcnow)

    class Params:
        """Parameters for creating generations in specific states."""

        generating = factory.Trait(
            status=GenerationStatus.GENERATING.value,
        )
        failed = factory.Trait(
            status=GenerationStatus.FAILED.value,
            error="Generation failed",
        )
        no_source = factory.Trait(
            source_dir=None,
            upload_blob_url=None,
        )
        with_preview = factory.Trait(
            preview_instance_id=factory.LazyAttribute(lambda o: f"launchpad-draft-{o.id[:8]}"),
            preview_url=factory.LazyAttribute(lambda o: f"https://launchpad-draft-{o.id[:8]}.fly.dev"),
            preview_expires_at=factory.LazyFunction(lambda: days_from_now(7)),
        )
        expired = factory.Trait(
            preview_instance_id=factory.LazyAttribute(lambda o: f"launchpad-draft-{o.id[:8]}"),
            preview_url=factory.LazyAttribute(lambda o: f"https://launchpad-draft-{o.id[:8]}.fly.dev"),
            preview_expires_at=factory.LazyFunction(lambda: days_from_now(-1)),
        )


class MarketplaceAppFactory(BaseFactory):
    """Factory for creating MarketplaceApp instances."""

    class Meta:
        model = MarketplaceApp

    id = factory.LazyFunction(generate_uuid)
    title = factory.LazyFunction(lambda: fake.catch_phrase())
    is_draft = False
    preview_url = None
    screenshot = None
    created_at = factory.LazyFunction(datetime.utcnow)

    class Params:
        draft = factory.Trait(is_draft=True)


class OrgDeploymentFactory(BaseFactory):
    """Factory for creating OrgDeployment instances."""

    class Meta:
        model = OrgDeployment

    id = factory.LazyFunction(generate_uuid)
    app_id = factory.LazyFunction(generate_uuid)
    status = DeploymentStatus.PREVIEW.value
    instance_id = factory.LazyFunction(lambda: f"launchpad-draft-{fake.hexify('^^^^^^^^')}")
    url = factory.LazyAttribute(lambda o: f"https://{o.instance_id}.fly.dev")
    subdomain = None
    deployed_at = None
    created_at = factory.LazyFunction(datetime.utcnow)

    class Params:
        running = factory.Trait(
            status=DeploymentStatus.RUNNING.value,
            subdomain=factory.LazyFunction(lambda: fake.slug()),
            deployed_at=factory.LazyFunction(datetime.utcnow),
        )
