"""DVBase MCP gateway - Ninox schema, context and queries over streamable HTTP."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dvbase.mcp_gateway.server import create_app


def __getattr__(name: str) -> Any:
    if name == "create_app":
        from dvbase.mcp_gateway.server import create_app

        return create_app
    raise AttributeError(f"module 'dvbase.mcp_gateway' has no attribute '{name}'")


__all__ = ["create_app"]
