"""DVBase MCP server: HTTP app, health endpoint and command-line entry point."""

from __future__ import annotations

import argparse
import contextlib
import logging
import os
import sys
from collections.abc import AsyncIterator
from typing import Any

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.types import Receive, Scope, Send

from dvbase import __version__
from dvbase.clients.ninox import NinoxClient
from dvbase.mcp_gateway.auth import AccessPolicy, mask_secret
from dvbase.mcp_gateway.config import AppConfig, AuthMode, ConfigError, load_config
from dvbase.mcp_gateway.constants import (
    HEALTH_PATH,
    MCP_BASE_PATH,
    MCP_SESSION_ID_HEADER,
    SERVER_NAME,
)
from dvbase.mcp_gateway.context_store import ContextStore
from dvbase.mcp_gateway.registry import registry_factory
from dvbase.mcp_gateway.session import SessionManager

_gateway_log = logging.getLogger("dvbase.mcp_gateway")

_MCP_METHODS = frozenset({"GET", "POST", "DELETE"})


class McpEndpoint:
    """ASGI endpoint for every ``/mcp`` path: access policy first, then session routing."""

    def __init__(self, policy: AccessPolicy, session_manager: SessionManager) -> None:
        self.policy = policy
        self.session_manager = session_manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        decision, client_address = self.policy.evaluate_scope(scope)
        if not decision.allowed:
            await decision.to_response()(scope, receive, send)
            return

        if scope.get("method") not in _MCP_METHODS:
            response = JSONResponse(
                {"error": "Method not allowed"},
                status_code=405,
                headers={"Allow": ", ".join(sorted(_MCP_METHODS))},
            )
            await response(scope, receive, send)
            return

        await self.session_manager.handle_request(
            scope, receive, send, client_address=client_address
        )


def create_app(config: AppConfig, client: NinoxClient | None = None) -> FastAPI:
    """Build the HTTP application.

    Args:
        config: Validated application config
        client: Ninox client to use; one is created from ``config.ninox`` when omitted
    """
    ninox = client if client is not None else NinoxClient(config.ninox)
    context_store = (
        ContextStore(ninox, config.documentation_table_id, config.context_cache_ttl)
        if config.documentation_table_id
        else None
    )
    policy = AccessPolicy(config.security)
    session_manager = SessionManager(
        registry_factory(ninox, context_store),
        json_response=config.server.json_response,
    )

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with session_manager.run():
            yield
        if client is None:
            ninox.close()

    app = FastAPI(title="DVBase MCP Server", version=__version__, lifespan=lifespan)
    app.state.policy = policy
    app.state.session_manager = session_manager
    app.state.context_store = context_store

    if config.server.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(config.server.cors_origins),
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=[MCP_SESSION_ID_HEADER],
        )

    @app.get(HEALTH_PATH)
    async def health_check() -> dict[str, Any]:
        """Liveness probe. Not behind the access policy."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": __version__,
            "activeSessions": session_manager.active_count,
            **policy.describe(),
        }

    endpoint = McpEndpoint(policy, session_manager)
    app.add_route(MCP_BASE_PATH, endpoint, include_in_schema=False)
    app.add_route(f"{MCP_BASE_PATH}/{{path:path}}", endpoint, include_in_schema=False)
    return app


def _print_startup(config: AppConfig, policy: AccessPolicy) -> None:
    security = config.security
    print(
        f"Starting DVBase MCP server on {config.server.host}:{config.server.port}",
        file=sys.stderr,
    )
    if security.auth_mode is AuthMode.SECRET_PATH:
        masked = f"{MCP_BASE_PATH}/{mask_secret(security.shared_secret or '')}"
        print(f"MCP endpoint: {masked} (secret path)", file=sys.stderr)
    else:
        print(f"MCP endpoint: {policy.endpoint_path}", file=sys.stderr)
        if policy.auth_enabled:
            print("Authentication: ENABLED (bearer token)", file=sys.stderr)
        else:
            _gateway_log.warning(
                "auth_disabled MCP_AUTH_TOKEN is not set; every request is accepted "
                "(local development only)"
            )
    state = "ENABLED" if policy.allowlist.enabled else "DISABLED"
    print(f"IP allowlist: {state}", file=sys.stderr)
    if policy.allowlist.enabled and security.trust_proxy:
        print(
            "IP allowlist uses X-Forwarded-For; run behind a proxy that overwrites it",
            file=sys.stderr,
        )
    if config.documentation_table_id is None:
        print("Context knowledge: DISABLED (DOKU_TABLE_ID not set)", file=sys.stderr)
    print(f"Health check: {HEALTH_PATH}", file=sys.stderr)


def main(argv: list[str] | None = None) -> None:
    """Run the MCP server over streamable HTTP."""
    load_dotenv()

    parser = argparse.ArgumentParser(description="DVBase MCP Server")
    parser.add_argument("--host", default=None, help="Listen host (default: HOST or 0.0.0.0)")
    parser.add_argument(
        "--port", type=int, default=None, help="Listen port (default: PORT or 3001)"
    )
    parser.add_argument(
        "--auth-mode",
        choices=[mode.value for mode in AuthMode],
        default=None,
        help="Request authentication mode (default: MCP_AUTH_MODE)",
    )
    parser.add_argument(
        "--json-response",
        action="store_true",
        default=None,
        help="Answer POST requests with JSON instead of SSE streams",
    )
    args = parser.parse_args(argv)

    env = dict(os.environ)
    if args.auth_mode:
        env["MCP_AUTH_MODE"] = args.auth_mode

    try:
        config = load_config(env).with_overrides(
            host=args.host,
            port=args.port,
            json_response=args.json_response,
        )
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=config.server.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    app = create_app(config)
    _print_startup(config, app.state.policy)
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
    )


if __name__ == "__main__":
    main()
