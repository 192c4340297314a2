"""
Tests for API authentication.

Tests X-API-Key header authentication when API_AUTH_ENABLED=true.
"""

import importlib
import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

import lectio_sync.api.dependencies.auth as auth_module
from lectio_sync.api.main import create_app


# Test API key for testing
TEST_API_KEY = "test-secret-key-12345"


@pytest.fixture
def make_client(api_engine):
    """
    Factory fixture: reload the auth module under the given environment,
    then build a fresh app around the test engine.
    """
    clients = []

    def _make(env: dict) -> TestClient:
        with patch.dict(os.environ, env, clear=False):
            importlib.reload(auth_module)
        client = TestClient(create_app(lambda: api_engine))
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


class TestAuthDisabled:
    """Tests when authentication is disabled (default)."""

    def test_health_no_auth_required(self, make_client):
        """Health endpoint should work without auth."""
        client = make_client({"API_AUTH_ENABLED": "false"})

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["engine_running"] is True

    def test_sync_status_no_auth_required(self, make_client):
        client = make_client({"API_AUTH_ENABLED": "false"})

        response = client.get("/sync/status")

        assert response.status_code == 200


class TestAuthEnabled:
    """Tests when authentication is enabled."""

    @pytest.fixture
    def client(self, make_client):
        return make_client({"API_AUTH_ENABLED": "true", "API_KEY": TEST_API_KEY})

    def test_health_no_auth_required_even_when_enabled(self, client):
        """Health endpoint should work without auth even when auth is enabled."""
        response = client.get("/health")

        assert response.status_code == 200

    def test_protected_endpoint_requires_auth(self, client):
        """Protected endpoints should require auth when enabled."""
        response = client.get("/sync/status")

        assert response.status_code == 401
        assert response.json()["detail"] == "Missing API key. Provide X-API-Key header."
        assert response.headers["www-authenticate"] == "ApiKey"

    def test_invalid_api_key_rejected(self, client):
        response = client.get("/cache/stats", headers={"X-API-Key": "wrong-key"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API key"

    def test_valid_api_key_accepted(self, client):
        response = client.get("/sync/status", headers={"X-API-Key": TEST_API_KEY})

        assert response.status_code == 200
        assert response.json()["active"] is True

    def test_trigger_endpoints_protected(self, client):
        assert client.post("/sync/manual").status_code == 401
        assert client.post("/sync/background").status_code == 401
        assert client.get("/readings/2025-01-01").status_code == 401

    def test_empty_configured_key_rejects_everything(self, make_client):
        """An enabled gate with no configured key must not accept an empty match."""
        client = make_client({"API_AUTH_ENABLED": "true", "API_KEY": ""})

        response = client.get("/sync/status", headers={"X-API-Key": "anything"})

        assert response.status_code == 401

    def test_enable_flag_accepts_settings_spellings(self, make_client):
        client = make_client({"API_AUTH_ENABLED": "on", "API_KEY": TEST_API_KEY})

        assert client.get("/sync/status").status_code == 401
        assert client.get("/sync/status", headers={"X-API-Key": TEST_API_KEY}).status_code == 200

    def test_rejection_is_logged_with_path(self, client):
        with patch.object(auth_module.logger, "warning") as warning:
            client.get("/cache/stats", headers={"X-API-Key": "wrong-key"})

        warning.assert_called_once()
        assert "GET /cache/stats" in warning.call_args[0][0]
