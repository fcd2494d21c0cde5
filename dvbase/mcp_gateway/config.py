"""Environment configuration for the DVBase MCP gateway.

All values are read once at startup; nothing here changes while serving.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum

from dvbase.clients.ninox import NinoxClientConfig
from dvbase.mcp_gateway.constants import (
    DEFAULT_ALLOWED_NETWORKS,
    DEFAULT_CONTEXT_CACHE_TTL_SECONDS,
    DEFAULT_LEGACY_ADDRESSES,
    DEFAULT_PORT,
    MIN_SECRET_PATH_LENGTH,
)

_FALSE_VALUES = frozenset({"0", "false", "no", "off"})
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class ConfigError(ValueError):
    """Invalid or missing startup configuration. Fatal before listening."""


class AuthMode(str, Enum):
    BEARER = "bearer"
    SECRET_PATH = "secret_path"


@dataclass(frozen=True)
class SecurityConfig:
    auth_mode: AuthMode = AuthMode.BEARER
    shared_secret: str | None = None
    allowlist_enabled: bool = False
    allowed_networks: tuple[str, ...] = DEFAULT_ALLOWED_NETWORKS
    legacy_addresses: tuple[str, ...] = DEFAULT_LEGACY_ADDRESSES
    trust_proxy: bool = True

    def validate(self) -> None:
        if self.auth_mode is not AuthMode.SECRET_PATH:
            return
        if not self.shared_secret:
            raise ConfigError(
                "MCP_SECRET_PATH is not set. The server does not start without a secret path "
                f"(at least {MIN_SECRET_PATH_LENGTH} characters)."
            )
        if len(self.shared_secret) < MIN_SECRET_PATH_LENGTH:
            raise ConfigError(
                f"MCP_SECRET_PATH is too short ({len(self.shared_secret)} characters). "
                f"At least {MIN_SECRET_PATH_LENGTH} characters are required."
            )
        if "/" in self.shared_secret:
            raise ConfigError("MCP_SECRET_PATH must be a single path segment (no '/').")


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    json_response: bool = False
    cors_origins: tuple[str, ...] = ()
    log_level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    ninox: NinoxClientConfig
    documentation_table_id: str | None = None
    context_cache_ttl: float = DEFAULT_CONTEXT_CACHE_TTL_SECONDS
    security: SecurityConfig = field(default_factory=SecurityConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    def with_overrides(
        self,
        *,
        host: str | None = None,
        port: int | None = None,
        json_response: bool | None = None,
    ) -> AppConfig:
        """Apply command-line listen overrides."""
        server = replace(
            self.server,
            host=host if host is not None else self.server.host,
            port=port if port is not None else self.server.port,
            json_response=json_response if json_response is not None else self.server.json_response,
        )
        return replace(self, server=server)


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    normalized = value.strip().lower()
    if normalized in _FALSE_VALUES:
        return False
    if normalized in _TRUE_VALUES:
        return True
    raise ConfigError(f"Expected a boolean value, got {value!r}")


def _parse_number(name: str, value: str | None, default: float) -> float:
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e


def _parse_list(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_port(value: str | None) -> int:
    if value is None or value.strip() == "":
        return DEFAULT_PORT
    try:
        port = int(value)
    except ValueError as e:
        raise ConfigError(f"PORT must be an integer, got {value!r}") from e
    if not 0 < port < 65536:
        raise ConfigError(f"PORT out of range: {port}")
    return port


def _parse_log_level(value: str | None) -> str:
    level = (value or "").strip().upper() or "INFO"
    if level not in _LOG_LEVELS:
        raise ConfigError(f"LOG_LEVEL must be one of: {', '.join(_LOG_LEVELS)}")
    return level


def _split_ranges(entries: tuple[str, ...]) -> tuple[tuple[str, ...], tuple[str, ...]]:
    networks = tuple(entry for entry in entries if "/" in entry)
    addresses = tuple(entry for entry in entries if "/" not in entry)
    return networks, addresses


def load_security_config(env: Mapping[str, str]) -> SecurityConfig:
    secret_path = env.get("MCP_SECRET_PATH", "").strip()
    mode_value = env.get("MCP_AUTH_MODE", "").strip().lower()
    if mode_value:
        try:
            auth_mode = AuthMode(mode_value)
        except ValueError as e:
            choices = ", ".join(mode.value for mode in AuthMode)
            raise ConfigError(f"MCP_AUTH_MODE must be one of: {choices}") from e
    else:
        auth_mode = AuthMode.SECRET_PATH if secret_path else AuthMode.BEARER

    if auth_mode is AuthMode.SECRET_PATH:
        shared_secret = secret_path or None
        allowlist_default = True
    else:
        shared_secret = env.get("MCP_AUTH_TOKEN", "").strip() or None
        allowlist_default = False

    networks, addresses = DEFAULT_ALLOWED_NETWORKS, DEFAULT_LEGACY_ADDRESSES
    custom_ranges = _parse_list(env.get("IP_WHITELIST_RANGES"))
    if custom_ranges:
        networks, addresses = _split_ranges(custom_ranges)

    security = SecurityConfig(
        auth_mode=auth_mode,
        shared_secret=shared_secret,
        allowlist_enabled=_parse_bool(env.get("IP_WHITELIST_ENABLED"), allowlist_default),
        allowed_networks=networks,
        legacy_addresses=addresses,
        trust_proxy=_parse_bool(env.get("TRUST_PROXY"), True),
    )
    security.validate()
    return security


def load_config(env: Mapping[str, str] | None = None) -> AppConfig:
    """Build the application config from environment variables.

    Raises:
        ConfigError: when required values are missing or malformed
    """
    source: Mapping[str, str] = os.environ if env is None else env

    missing = [
        name
        for name in ("NINOX_API_KEY", "NINOX_TEAM_ID", "NINOX_DATABASE_ID")
        if not source.get(name, "").strip()
    ]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    ninox = NinoxClientConfig(
        api_key=source["NINOX_API_KEY"].strip(),
        team_id=source["NINOX_TEAM_ID"].strip(),
        database_id=source["NINOX_DATABASE_ID"].strip(),
        base_url=source.get("NINOX_BASE_URL", "").strip() or None,
        timeout=_parse_number("NINOX_TIMEOUT_SECONDS", source.get("NINOX_TIMEOUT_SECONDS"), 30.0),
    )

    server = ServerConfig(
        host=source.get("HOST", "").strip() or "0.0.0.0",
        port=_parse_port(source.get("PORT")),
        json_response=_parse_bool(source.get("MCP_JSON_RESPONSE"), False),
        cors_origins=_parse_list(source.get("MCP_CORS_ORIGINS")),
        log_level=_parse_log_level(source.get("LOG_LEVEL")),
    )

    return AppConfig(
        ninox=ninox,
        documentation_table_id=source.get("DOKU_TABLE_ID", "").strip() or None,
        context_cache_ttl=_parse_number(
            "CONTEXT_CACHE_TTL_SECONDS",
            source.get("CONTEXT_CACHE_TTL_SECONDS"),
            DEFAULT_CONTEXT_CACHE_TTL_SECONDS,
        ),
        security=load_security_config(source),
        server=server,
    )
