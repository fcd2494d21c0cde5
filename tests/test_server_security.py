from __future__ import annotations

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from dvbase.mcp_gateway.config import AuthMode, SecurityConfig
from dvbase.mcp_gateway.server import create_app

SECRET = "Zt7wq2Hc9LpX4mNa"
ALLOWED = {"X-Forwarded-For": "160.79.104.1"}
HEADERS = {
    "Accept": "application/json, text/event-stream",
    "Content-Type": "application/json",
}
INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {
        "protocolVersion": "2025-03-26",
        "capabilities": {},
        "clientInfo": {"name": "pytest", "version": "0.0.1"},
    },
}


@pytest.fixture
def secret_client(fake_client, make_config):
    security = SecurityConfig(
        auth_mode=AuthMode.SECRET_PATH,
        shared_secret=SECRET,
        allowlist_enabled=True,
    )
    with TestClient(create_app(make_config(security), client=fake_client)) as client:
        yield client


@pytest.fixture
def bearer_client(fake_client, make_config):
    security = SecurityConfig(auth_mode=AuthMode.BEARER, shared_secret="T")
    with TestClient(create_app(make_config(security), client=fake_client)) as client:
        yield client


class TestSecretPathMode:
    def test_generic_and_guessed_paths_are_identical_404s(self, secret_client) -> None:
        generic = secret_client.get("/mcp", headers=ALLOWED)
        guessed = secret_client.get("/mcp/definitely-not-it-1234", headers=ALLOWED)
        posted = secret_client.post("/mcp", json=INITIALIZE, headers={**HEADERS, **ALLOWED})

        for response in (generic, guessed, posted):
            assert response.status_code == 404
            assert response.json() == {"error": "Not found"}

    def test_initialize_on_secret_path_from_allowed_network(self, secret_client) -> None:
        response = secret_client.post(
            f"/mcp/{SECRET}", json=INITIALIZE, headers={**HEADERS, **ALLOWED}
        )

        assert response.status_code == 200
        assert response.headers["mcp-session-id"]

    def test_disallowed_network_is_forbidden(self, secret_client) -> None:
        response = secret_client.post(
            f"/mcp/{SECRET}",
            json=INITIALIZE,
            headers={**HEADERS, "X-Forwarded-For": "160.79.112.1"},
        )

        assert response.status_code == 403
        assert response.json()["error"] == {"code": -32001, "message": "Forbidden"}
        assert secret_client.app.state.session_manager.active_count == 0

    def test_loopback_is_rejected_while_allowlist_enabled(self, secret_client) -> None:
        response = secret_client.post(
            f"/mcp/{SECRET}",
            json=INITIALIZE,
            headers={**HEADERS, "X-Forwarded-For": "127.0.0.1"},
        )

        assert response.status_code == 403

    def test_health_is_unauthenticated_and_hides_secret(self, secret_client) -> None:
        response = secret_client.get("/health")

        assert response.status_code == 200
        assert response.json()["security"] == {"secretPath": True, "ipWhitelist": True}
        assert SECRET not in response.text


class TestBearerMode:
    def test_missing_token_is_unauthorized(self, bearer_client) -> None:
        response = bearer_client.post("/mcp", json=INITIALIZE, headers=HEADERS)

        assert response.status_code == 401
        assert response.json()["error"] == {"code": -32001, "message": "Unauthorized"}

    def test_wrong_token_is_forbidden(self, bearer_client) -> None:
        response = bearer_client.post(
            "/mcp", json=INITIALIZE, headers={**HEADERS, "Authorization": "Bearer X"}
        )

        assert response.status_code == 403

    def test_valid_token_reaches_session_routing(self, bearer_client) -> None:
        response = bearer_client.post(
            "/mcp", json=INITIALIZE, headers={**HEADERS, "Authorization": "Bearer T"}
        )

        assert response.status_code == 200
        assert response.headers["mcp-session-id"]

    def test_health_reports_auth_enabled(self, bearer_client) -> None:
        assert bearer_client.get("/health").json()["authEnabled"] is True

    def test_unsupported_method_after_auth(self, bearer_client) -> None:
        response = bearer_client.put("/mcp", headers={"Authorization": "Bearer T"})

        assert response.status_code == 405


class TestCors:
    def test_session_header_is_exposed(self, fake_client, make_config) -> None:
        config = make_config()
        config = replace(config, server=replace(config.server, cors_origins=("https://claude.ai",)))

        with TestClient(create_app(config, client=fake_client)) as client:
            response = client.post(
                "/mcp",
                json=INITIALIZE,
                headers={**HEADERS, "Origin": "https://claude.ai"},
            )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "https://claude.ai"
        assert "mcp-session-id" in response.headers["access-control-expose-headers"]
