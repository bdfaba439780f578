"""
Integration tests for instance control endpoints.
"""
import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add backend to path for imports
backend_path = Path(__file__).parent.parent.parent.parent / "backend"
sys.path.insert(0, str(backend_path))

from app.main import app
from app.services.compute import FlyComputeClient, InstanceInfo, ReleaseInfo, get_compute_client
from app.services.promotion import PromotionController, get_promotion_controller

from tdd.shared.assertions import (
    assert_json_contains,
    assert_json_list_length,
    assert_status_code,
    assert_validation_error,
)
from tdd.shared.factories import launch_payload, secrets_payload
from tdd.shared.mocks import MockStepRunner


@pytest.fixture
def platform(compute):
    app.dependency_overrides[get_compute_client] = lambda: compute
    yield compute
    app.dependency_overrides.pop(get_compute_client, None)


@pytest.fixture
def controller():
    mock = MagicMock(spec=PromotionController)
    mock.promote = AsyncMock(return_value=True)
    app.dependency_overrides[get_promotion_controller] = lambda: mock
    yield mock
    app.dependency_overrides.pop(get_promotion_controller, None)


class TestListMachines:
    """Tests for GET /machines."""

    async def test_lists_inventory(self, client, platform):
        platform.instances["launchpad-draft-1"] = InstanceInfo(
            name="launchpad-draft-1",
            status="deployed",
            hostname="launchpad-draft-1.fly.dev",
            current_release=ReleaseInfo(version=2, created_at="2026-10-01T00:00:00Z"),
        )
        platform.instances["launchpad-store-2"] = InstanceInfo(name="launchpad-store-2", status="suspended")

        response = await client.get("/machines")

        assert_status_code(response, 200)
        assert_json_list_length(response, 2)
        first = response.json()[0]
        assert first["name"] == "launchpad-draft-1"
        assert first["currentRelease"] == {"version": 2, "createdAt": "2026-10-01T00:00:00Z"}

    async def test_empty_inventory(self, client, platform):
        response = await client.get("/machines")

        assert_status_code(response, 200)
        assert response.json() == []


class TestDestroyMachine:
    """Tests for DELETE /machines/{instance_name}."""

    async def test_destroys_managed_instance(self, client, platform):
        response = await client.delete("/machines/launchpad-draft-1")

        assert_status_code(response, 200)
        assert_json_contains(response, ok=True, destroyed="launchpad-draft-1")
        assert platform.destroyed == ["launchpad-draft-1"]

    async def test_orchestrator_instance_forbidden(self, client, platform):
        response = await client.delete("/machines/launchpad-builder")

        assert_status_code(response, 403)
        assert platform.destroyed == []

    async def test_unmanaged_instance_rejected(self, client, test_settings):
        runner = MockStepRunner()
        app.dependency_overrides[get_compute_client] = lambda: FlyComputeClient(test_settings, runner)
        try:
            response = await client.delete("/machines/customer-prod")
        finally:
            app.dependency_overrides.pop(get_compute_client, None)

        assert_status_code(response, 400)
        assert runner.commands == []

    async def test_platform_failure_returns_502(self, client, platform):
        platform.fail_destroy_for.add("launchpad-draft-1")

        response = await client.delete("/machines/launchpad-draft-1")

        assert_status_code(response, 502)


class TestSecrets:
    """Tests for POST /secrets/{instance_name}."""

    async def test_sets_and_unsets_unstaged(self, client, platform):
        response = await client.post(
            "/secrets/launchpad-draft-1",
            json=secrets_payload(set={"FEATURE_FLAG": "on"}, unset=["OLD_KEY"]),
        )

        assert_status_code(response, 200)
        name, update = platform.secrets_updates[0]
        assert name == "launchpad-draft-1"
        assert update.set == {"FEATURE_FLAG": "on"}
        assert update.unset == ["OLD_KEY"]
        assert update.stage is False

    async def test_empty_update_returns_400(self, client, platform):
        response = await client.post("/secrets/launchpad-draft-1", json=secrets_payload())

        assert_status_code(response, 400)
        assert platform.secrets_updates == []

    async def test_platform_failure_returns_502(self, client, platform):
        platform.fail_secrets = True

        response = await client.post("/secrets/launchpad-draft-1", json=secrets_payload(set={"A": "1"}))

        assert_status_code(response, 502)


class TestLaunch:
    """Tests for POST /launch."""

    async def test_accepts_and_promotes_in_background(self, client, controller):
        payload = launch_payload(
            "dep-1",
            "launchpad-draft-1",
            team_members=[{"name": "Ada", "email": "ada@example.com", "passwordHash": "$2b$10$x"}],
            subdomain="acme",
        )

        response = await client.post("/launch", json=payload)
        await asyncio.sleep(0)

        assert_status_code(response, 202)
        assert_json_contains(response, status="accepted", deploymentId="dep-1")
        deployment_id, instance_name, members, subdomain = controller.promote.call_args.args
        assert (deployment_id, instance_name, subdomain) == ("dep-1", "launchpad-draft-1", "acme")
        assert members[0].email == "ada@example.com"
        assert members[0].password_hash == "$2b$10$x"

    async def test_missing_instance_returns_422(self, client, controller):
        response = await client.post("/launch", json={"deploymentId": "dep-1"})

        assert_validation_error(response)
        controller.promote.assert_not_called()
