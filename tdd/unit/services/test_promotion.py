"""
Unit tests for promotion.py - preview-to-production promotion.
"""
import json
import sys
from pathlib import Path

import pytest

# Add backend to path for imports
backend_path = Path(__file__).parent.parent.parent.parent / "backend"
sys.path.insert(0, str(backend_path))

from app.models import DeploymentStatus, GenerationRecord, OrgDeployment
from app.services.compute.artifacts import TEAM_ROSTER_ENV
from app.services.promotion import PromotionController, TeamMember, build_promotion_secrets

from tdd.shared.factories import GenerationRecordFactory, MarketplaceAppFactory, OrgDeploymentFactory


@pytest.fixture
def controller(compute, session_factory):
    return PromotionController(compute=compute, session_factory=session_factory)


async def save(session_factory, *objects):
    async with session_factory() as db:
        db.add_all(objects)
        await db.commit()


async def load(session_factory, model, key):
    async with session_factory() as db:
        return await db.get(model, key)


class TestPromotionSecrets:

    def test_bundle_flips_preview_mode_unstaged(self):
        update = build_promotion_secrets([TeamMember(name="Ada", email="ada@example.com", password_hash="$2b$10$x")])

        assert update.stage is False
        assert update.set["PREVIEW_MODE"] == "false"
        assert len(update.set["AUTH_SECRET"]) == 64
        assert json.loads(update.set[TEAM_ROSTER_ENV]) == [
            {"name": "Ada", "email": "ada@example.com", "passwordHash": "$2b$10$x"},
        ]

    def test_auth_secret_is_fresh_each_time(self):
        assert build_promotion_secrets([]).set["AUTH_SECRET"] != build_promotion_secrets([]).set["AUTH_SECRET"]

    def test_no_members_no_roster(self):
        assert TEAM_ROSTER_ENV not in build_promotion_secrets([]).set

    def test_roster_uses_name_generated_apps_read(self):
        assert TEAM_ROSTER_ENV == "GO4IT_TEAM_MEMBERS"


class TestPromote:
    """Tests for PromotionController.promote."""

    async def test_success_marks_running_and_clears_expiration(self, controller, compute, session_factory):
        listing = MarketplaceAppFactory.build()
        record = GenerationRecordFactory.build(with_preview=True, app_id=listing.id)
        deployment = OrgDeploymentFactory.build(app_id=listing.id, instance_id=record.preview_instance_id)
        await save(session_factory, listing, record, deployment)

        ok = await controller.promote(
            deployment.id,
            record.preview_instance_id,
            [TeamMember(name="Ada", email="ada@example.com")],
            subdomain="acme-crm",
        )

        assert ok is True
        saved = await load(session_factory, OrgDeployment, deployment.id)
        assert saved.status == DeploymentStatus.RUNNING.value
        assert saved.instance_id == record.preview_instance_id
        assert saved.url == f"https://{record.preview_instance_id}.fly.dev"
        assert saved.subdomain == "acme-crm"
        assert saved.deployed_at is not None

        generation = await load(session_factory, GenerationRecord, record.id)
        assert generation.preview_expires_at is None
        assert generation.preview_instance_id == record.preview_instance_id

        name, update = compute.secrets_updates[0]
        assert name == record.preview_instance_id
        assert update.stage is False
        assert json.loads(update.set[TEAM_ROSTER_ENV]) == [{"name": "Ada", "email": "ada@example.com"}]

    async def test_other_previews_of_same_app_keep_expiration(self, controller, session_factory):
        listing = MarketplaceAppFactory.build()
        promoted = GenerationRecordFactory.build(with_preview=True, app_id=listing.id)
        sibling = GenerationRecordFactory.build(with_preview=True, app_id=listing.id)
        deployment = OrgDeploymentFactory.build(app_id=listing.id, instance_id=promoted.preview_instance_id)
        await save(session_factory, listing, promoted, sibling, deployment)

        await controller.promote(deployment.id, promoted.preview_instance_id, [])

        assert (await load(session_factory, GenerationRecord, promoted.id)).preview_expires_at is None
        other = await load(session_factory, GenerationRecord, sibling.id)
        assert other.preview_instance_id == sibling.preview_instance_id
        assert other.preview_expires_at is not None

    async def test_secrets_failure_marks_failed(self, controller, compute, session_factory):
        listing = MarketplaceAppFactory.build()
        deployment = OrgDeploymentFactory.build(app_id=listing.id)
        await save(session_factory, listing, deployment)
        compute.fail_secrets = True

        ok = await controller.promote(deployment.id, deployment.instance_id, [])

        assert ok is False
        saved = await load(session_factory, OrgDeployment, deployment.id)
        assert saved.status == DeploymentStatus.FAILED.value

    async def test_missing_deployment(self, controller, compute):
        assert await controller.promote("missing", "launchpad-draft-1", []) is False
        assert compute.secrets_updates == []
