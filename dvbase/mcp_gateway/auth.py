"""Request authentication for the DVBase MCP gateway.

Two deployable policies share one ``AccessPolicy``:

- bearer: a shared token in the ``Authorization`` header (``<token>`` or
  ``Bearer <token>``). With no token configured every request passes.
- secret_path: the endpoint lives at ``/mcp/<secret>``; every other ``/mcp``
  path answers a bare 404.

Either mode can additionally restrict client addresses to an allowlist.
"""

from __future__ import annotations

import hmac
import ipaddress
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from starlette.responses import JSONResponse
from starlette.types import Scope

from dvbase.mcp_gateway.config import AuthMode, SecurityConfig
from dvbase.mcp_gateway.constants import (
    ERROR_ACCESS_DENIED,
    LOOPBACK_HOSTS,
    MCP_BASE_PATH,
)

logger = logging.getLogger("dvbase.mcp_gateway.auth")

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class AccessOutcome(str, Enum):
    ALLOW = "allow"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class AccessDecision:
    outcome: AccessOutcome
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.outcome is AccessOutcome.ALLOW

    @property
    def status_code(self) -> int:
        return {
            AccessOutcome.ALLOW: 200,
            AccessOutcome.NOT_FOUND: 404,
            AccessOutcome.UNAUTHORIZED: 401,
            AccessOutcome.FORBIDDEN: 403,
        }[self.outcome]

    def to_response(self) -> JSONResponse:
        """Rejection body. ``reason`` stays server-side."""
        if self.outcome is AccessOutcome.NOT_FOUND:
            return JSONResponse({"error": "Not found"}, status_code=404)
        message = "Unauthorized" if self.outcome is AccessOutcome.UNAUTHORIZED else "Forbidden"
        return JSONResponse(
            {
                "jsonrpc": "2.0",
                "error": {"code": ERROR_ACCESS_DENIED, "message": message},
                "id": None,
            },
            status_code=self.status_code,
        )


ALLOW = AccessDecision(AccessOutcome.ALLOW)


def _parse_address(value: str) -> IPAddress | None:
    candidate = value.strip()
    if candidate.startswith("[") and candidate.endswith("]"):
        candidate = candidate[1:-1]
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


class NetworkAllowlist:
    """Allowed client networks plus a fixed set of individual addresses."""

    def __init__(
        self,
        networks: Iterable[str],
        addresses: Iterable[str],
        enabled: bool = True,
    ) -> None:
        self.enabled = enabled
        self.networks = tuple(ipaddress.ip_network(network, strict=False) for network in networks)
        parsed = (_parse_address(address) for address in addresses)
        self.addresses = frozenset(address for address in parsed if address is not None)

    def is_allowed(self, client_address: str) -> bool:
        """Loopback passes only while the allowlist is disabled."""
        if not self.enabled:
            return True
        if client_address.strip().lower() in LOOPBACK_HOSTS:
            return False
        address = _parse_address(client_address)
        if address is None or address.is_loopback:
            return False
        if address in self.addresses:
            return True
        return any(address in network for network in self.networks)


def _header(scope: Scope, name: bytes) -> str | None:
    for key, value in scope.get("headers", []):
        if key.lower() == name:
            return value.decode("latin-1")
    return None


class AccessPolicy:
    """Decides whether an inbound request may reach session routing."""

    def __init__(self, config: SecurityConfig) -> None:
        config.validate()
        self.config = config
        self.allowlist = NetworkAllowlist(
            config.allowed_networks,
            config.legacy_addresses,
            enabled=config.allowlist_enabled,
        )
        if config.auth_mode is AuthMode.SECRET_PATH:
            self.endpoint_path = f"{MCP_BASE_PATH}/{config.shared_secret}"
        else:
            self.endpoint_path = MCP_BASE_PATH

    @property
    def auth_mode(self) -> AuthMode:
        return self.config.auth_mode

    @property
    def auth_enabled(self) -> bool:
        return bool(self.config.shared_secret)

    def client_address(self, scope: Scope) -> str:
        """Leftmost ``X-Forwarded-For`` entry when proxies are trusted, else the peer.

        With ``trust_proxy`` the allowlist only holds behind a reverse proxy that
        overwrites ``X-Forwarded-For``; a directly exposed server accepts whatever
        address the client puts in the header.
        """
        if self.config.trust_proxy:
            forwarded = _header(scope, b"x-forwarded-for")
            if forwarded:
                first = forwarded.split(",")[0].strip()
                if first:
                    return first
        client = scope.get("client")
        return str(client[0]) if client else ""

    def is_endpoint(self, path: str) -> bool:
        return hmac.compare_digest(path.encode("utf-8"), self.endpoint_path.encode("utf-8"))

    def _check_token(self, authorization: str | None) -> AccessDecision:
        expected = self.config.shared_secret
        if not expected:
            return ALLOW
        if authorization is None or authorization.strip() == "":
            return AccessDecision(AccessOutcome.UNAUTHORIZED, "missing credential")
        presented = authorization.strip()
        if presented.startswith("Bearer "):
            presented = presented[len("Bearer ") :].strip()
        if hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
            return ALLOW
        return AccessDecision(AccessOutcome.FORBIDDEN, "invalid credential")

    def evaluate(self, path: str, client_address: str, authorization: str | None) -> AccessDecision:
        if not self.is_endpoint(path):
            return AccessDecision(AccessOutcome.NOT_FOUND, "unknown endpoint path")

        if not self.allowlist.is_allowed(client_address):
            return AccessDecision(AccessOutcome.FORBIDDEN, "address not allowlisted")

        if self.config.auth_mode is AuthMode.BEARER:
            return self._check_token(authorization)
        return ALLOW

    def evaluate_scope(self, scope: Scope) -> tuple[AccessDecision, str]:
        """Evaluate an ASGI request. Returns the decision and the client address."""
        client_address = self.client_address(scope)
        path = str(scope.get("path", ""))
        decision = self.evaluate(path, client_address, _header(scope, b"authorization"))
        if decision.outcome in (AccessOutcome.UNAUTHORIZED, AccessOutcome.FORBIDDEN):
            logger.warning(
                "access_denied outcome=%s reason=%s ip=%s method=%s path=%s",
                decision.outcome.value,
                decision.reason,
                client_address or "(unknown)",
                scope.get("method", ""),
                self.mask_path(path),
                extra={
                    "outcome": decision.outcome.value,
                    "reason": decision.reason,
                    "client_address": client_address,
                },
            )
        return decision, client_address

    def mask_path(self, path: str) -> str:
        secret = self.config.shared_secret
        if self.config.auth_mode is AuthMode.SECRET_PATH and secret and secret in path:
            return path.replace(secret, mask_secret(secret))
        return path

    def describe(self) -> dict[str, Any]:
        """Security summary for the health endpoint. Never includes secrets."""
        if self.config.auth_mode is AuthMode.SECRET_PATH:
            return {
                "security": {
                    "secretPath": True,
                    "ipWhitelist": self.allowlist.enabled,
                }
            }
        return {"authEnabled": self.auth_enabled}


def mask_secret(secret: str) -> str:
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}...{secret[-4:]}"
