"""
Integration tests for the health endpoint and API key guard.
"""
import sys
from pathlib import Path

import pytest

# Add backend to path for imports
backend_path = Path(__file__).parent.parent.parent.parent / "backend"
sys.path.insert(0, str(backend_path))

from app.config import Settings, get_settings
from app.main import app

from tdd.shared.assertions import assert_error_response, assert_json_contains, assert_status_code


class TestHealthEndpoint:
    """Tests for GET /health endpoint."""

    async def test_health_returns_ok(self, client):
        """Health endpoint returns OK status."""
        response = await client.get("/health")
        assert_status_code(response, 200)
        assert_json_contains(response, {"status": "ok"})

    async def test_health_includes_app_name(self, client):
        response = await client.get("/health")
        result = response.json()
        assert result["app"] == "Launchpad"
        assert "background_tasks" in result


class TestApiKeyGuard:
    """Control routes require a bearer token once API_KEY is configured."""

    @pytest.fixture
    def keyed(self):
        app.dependency_overrides[get_settings] = lambda: Settings(api_key="s3cret")
        yield
        app.dependency_overrides.pop(get_settings, None)

    async def test_missing_token_rejected(self, client, keyed):
        response = await client.get("/machines")
        assert_error_response(response, 401, "Unauthorized")

    async def test_wrong_token_rejected(self, client, keyed):
        response = await client.get("/machines", headers={"Authorization": "Bearer nope"})
        assert_status_code(response, 401)

    async def test_health_needs_no_token(self, client, keyed):
        response = await client.get("/health")
        assert_status_code(response, 200)
