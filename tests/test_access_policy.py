from __future__ import annotations

import json

import pytest

from dvbase.mcp_gateway.auth import AccessOutcome, AccessPolicy, NetworkAllowlist, mask_secret
from dvbase.mcp_gateway.config import AuthMode, ConfigError, SecurityConfig
from dvbase.mcp_gateway.constants import DEFAULT_LEGACY_ADDRESSES

SECRET = "k9Xq2LmP4vR7tY1z"
ALLOWED_IP = "160.79.104.1"


def _secret_policy(allowlist_enabled: bool = True) -> AccessPolicy:
    return AccessPolicy(
        SecurityConfig(
            auth_mode=AuthMode.SECRET_PATH,
            shared_secret=SECRET,
            allowlist_enabled=allowlist_enabled,
        )
    )


class TestBearerMode:
    def test_valid_token_reaches_session_routing(self) -> None:
        policy = AccessPolicy(SecurityConfig(shared_secret="T"))

        assert policy.evaluate("/mcp", "10.0.0.1", "Bearer T").allowed
        assert policy.evaluate("/mcp", "10.0.0.1", "T").allowed

    def test_missing_header_is_unauthorized(self) -> None:
        policy = AccessPolicy(SecurityConfig(shared_secret="T"))

        decision = policy.evaluate("/mcp", "10.0.0.1", None)

        assert decision.outcome is AccessOutcome.UNAUTHORIZED
        assert decision.status_code == 401

    def test_wrong_token_is_forbidden(self) -> None:
        policy = AccessPolicy(SecurityConfig(shared_secret="T"))

        decision = policy.evaluate("/mcp", "10.0.0.1", "Bearer X")

        assert decision.outcome is AccessOutcome.FORBIDDEN
        assert decision.status_code == 403
        body = json.loads(decision.to_response().body)
        assert body == {
            "jsonrpc": "2.0",
            "error": {"code": -32001, "message": "Forbidden"},
            "id": None,
        }

    def test_token_match_is_exact(self) -> None:
        policy = AccessPolicy(SecurityConfig(shared_secret="Token"))

        assert not policy.evaluate("/mcp", "10.0.0.1", "Bearer token").allowed
        assert not policy.evaluate("/mcp", "10.0.0.1", "Bearer Tok").allowed

    def test_no_token_configured_allows_everything(self) -> None:
        policy = AccessPolicy(SecurityConfig())

        assert not policy.auth_enabled
        assert policy.evaluate("/mcp", "10.0.0.1", None).allowed
        assert policy.evaluate("/mcp", "10.0.0.1", "Bearer anything").allowed

    def test_unknown_path_is_not_found(self) -> None:
        policy = AccessPolicy(SecurityConfig(shared_secret="T"))

        decision = policy.evaluate("/mcp/extra", "10.0.0.1", "Bearer T")

        assert decision.outcome is AccessOutcome.NOT_FOUND


class TestSecretPathMode:
    def test_generic_and_guessed_paths_are_not_found(self) -> None:
        policy = _secret_policy()

        base = policy.evaluate("/mcp", ALLOWED_IP, None)
        guess = policy.evaluate("/mcp/not-the-secret-at-all", ALLOWED_IP, None)

        assert base.outcome is AccessOutcome.NOT_FOUND
        assert guess.outcome is AccessOutcome.NOT_FOUND
        assert base.to_response().body == guess.to_response().body
        assert json.loads(base.to_response().body) == {"error": "Not found"}

    def test_secret_path_from_allowed_network(self) -> None:
        policy = _secret_policy()

        assert policy.endpoint_path == f"/mcp/{SECRET}"
        assert policy.evaluate(f"/mcp/{SECRET}", ALLOWED_IP, None).allowed

    def test_disallowed_address_is_forbidden(self) -> None:
        policy = _secret_policy()

        decision = policy.evaluate(f"/mcp/{SECRET}", "160.79.112.1", None)

        assert decision.outcome is AccessOutcome.FORBIDDEN
        assert json.loads(decision.to_response().body)["error"]["message"] == "Forbidden"

    def test_invalid_config_fails_at_construction(self) -> None:
        with pytest.raises(ConfigError):
            AccessPolicy(SecurityConfig(auth_mode=AuthMode.SECRET_PATH, shared_secret="short"))
        with pytest.raises(ConfigError):
            AccessPolicy(SecurityConfig(auth_mode=AuthMode.SECRET_PATH))

    def test_describe_hides_secret(self) -> None:
        description = _secret_policy().describe()

        assert description == {"security": {"secretPath": True, "ipWhitelist": True}}
        assert SECRET not in json.dumps(description)

    def test_mask_path_hides_secret(self) -> None:
        masked = _secret_policy().mask_path(f"/mcp/{SECRET}")

        assert SECRET not in masked
        assert masked == f"/mcp/{mask_secret(SECRET)}"


class TestNetworkAllowlist:
    def _allowlist(self, enabled: bool = True) -> NetworkAllowlist:
        return NetworkAllowlist(["160.79.104.0/21"], DEFAULT_LEGACY_ADDRESSES, enabled=enabled)

    def test_range_boundaries(self) -> None:
        allowlist = self._allowlist()

        assert allowlist.is_allowed("160.79.104.1")
        assert allowlist.is_allowed("160.79.111.254")
        assert not allowlist.is_allowed("160.79.112.1")
        assert not allowlist.is_allowed("160.79.103.255")

    @pytest.mark.parametrize("address", DEFAULT_LEGACY_ADDRESSES)
    def test_legacy_addresses_are_allowed(self, address: str) -> None:
        assert self._allowlist().is_allowed(address)

    def test_ipv4_mapped_ipv6_is_unwrapped(self) -> None:
        allowlist = self._allowlist()

        assert allowlist.is_allowed("::ffff:160.79.104.1")
        assert not allowlist.is_allowed("::ffff:160.79.112.1")

    def test_loopback_only_when_disabled(self) -> None:
        assert not self._allowlist().is_allowed("127.0.0.1")
        assert not self._allowlist().is_allowed("::1")
        assert self._allowlist(enabled=False).is_allowed("127.0.0.1")

    def test_unparseable_address_is_rejected(self) -> None:
        assert not self._allowlist().is_allowed("testclient")
        assert not self._allowlist().is_allowed("")


class TestClientAddress:
    def test_forwarded_for_used_when_proxy_trusted(self) -> None:
        policy = _secret_policy()
        scope = {
            "client": ("10.1.1.1", 5555),
            "headers": [(b"x-forwarded-for", b"160.79.104.9, 10.1.1.1")],
        }

        assert policy.client_address(scope) == "160.79.104.9"

    def test_peer_used_when_proxy_not_trusted(self) -> None:
        policy = AccessPolicy(SecurityConfig(trust_proxy=False))
        scope = {
            "client": ("10.1.1.1", 5555),
            "headers": [(b"x-forwarded-for", b"160.79.104.9")],
        }

        assert policy.client_address(scope) == "10.1.1.1"

    def test_forged_forwarded_for_is_ignored_without_proxy_trust(self) -> None:
        policy = AccessPolicy(
            SecurityConfig(
                auth_mode=AuthMode.SECRET_PATH,
                shared_secret=SECRET,
                allowlist_enabled=True,
                trust_proxy=False,
            )
        )
        scope = {
            "type": "http",
            "method": "POST",
            "path": f"/mcp/{SECRET}",
            "client": ("203.0.113.9", 5555),
            "headers": [(b"x-forwarded-for", b"160.79.104.1, 203.0.113.9")],
        }

        decision, address = policy.evaluate_scope(scope)

        assert address == "203.0.113.9"
        assert decision.outcome is AccessOutcome.FORBIDDEN

    def test_evaluate_scope_checks_path_address_and_header(self) -> None:
        policy = AccessPolicy(SecurityConfig(shared_secret="T"))
        scope = {
            "type": "http",
            "method": "POST",
            "path": "/mcp",
            "client": ("10.1.1.1", 5555),
            "headers": [(b"authorization", b"Bearer T")],
        }

        decision, address = policy.evaluate_scope(scope)

        assert decision.allowed
        assert address == "10.1.1.1"
