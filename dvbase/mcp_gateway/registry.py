"""Tool registry: named, schema-validated tools bound to one MCP server instance.

A registry is created per protocol session; the session owns it exclusively.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mcp import types
from mcp.server.lowlevel import Server

from dvbase import __version__
from dvbase.clients.ninox import NinoxClient
from dvbase.core.types import ToolResult
from dvbase.mcp_gateway.constants import MCP_SERVER_NAME
from dvbase.mcp_gateway.context_store import ContextStore
from dvbase.mcp_gateway.tools import ContextTools, QueryTools, SchemaTools

logger = logging.getLogger("dvbase.mcp_gateway")

_MODULE_NAME_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "moduleName": {
            "type": "string",
            "description": 'Module name, e.g. "Bautagesbericht", "Faktura", "DATEV-Export"',
        }
    },
    "required": ["moduleName"],
}

_TOOL_SPECS: list[dict[str, Any]] = [
    {
        "name": "list_modules",
        "description": (
            "Lists all available DVBase modules and tables. Use this as the entry point "
            "to see which modules exist."
        ),
        "input_schema": {"type": "object", "properties": {}},
    },
    {
        "name": "get_schema",
        "description": (
            "Fetches the Ninox schema of one table: fields, field types, formulas, "
            "references. Use list_modules to see the available table IDs."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "tableId": {
                    "type": "string",
                    "description": "The Ninox table ID. Use list_modules to see available IDs.",
                }
            },
            "required": ["tableId"],
        },
    },
    {
        "name": "get_context",
        "description": (
            "Fetches developer context knowledge for a DVBase module: process description, "
            "known issues, n8n dependencies, customer-specific adjustments."
        ),
        "input_schema": _MODULE_NAME_SCHEMA,
    },
    {
        "name": "get_full_module_info",
        "description": (
            "Combines schema and context knowledge for a DVBase module. Recommended for "
            "debugging: all tables with fields and formulas plus process knowledge, known "
            "issues and n8n dependencies."
        ),
        "input_schema": _MODULE_NAME_SCHEMA,
    },
    {
        "name": "query_data",
        "description": (
            "Runs a read-only Ninox script query against the DVBase database. Can select, "
            "filter and aggregate any data. Examples: '(select Rechnungen where Status = "
            "\"Offen\")', 'cnt(select Bautagesberichte)', '(select Mitarbeiter).\"Name\"'"
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": (
                        'Ninox script query, e.g. (select Tabelle)."Feldname", '
                        'cnt(select Tabelle where Feld = "Wert"), sum((select Tabelle)."Betrag")'
                    ),
                }
            },
            "required": ["query"],
        },
    },
]

TOOL_SPECS: list[dict[str, Any]] = _TOOL_SPECS


def _make_tool(spec: dict[str, Any]) -> types.Tool:
    return types.Tool(
        name=str(spec["name"]),
        description=str(spec["description"]),
        inputSchema=spec["input_schema"],
        annotations=types.ToolAnnotations(readOnlyHint=True, openWorldHint=True),
    )


def _require_str(arguments: dict[str, Any], name: str) -> str:
    value = arguments[name]
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    return value


class ToolRegistry:
    """Dispatches tool calls for a single session."""

    def __init__(
        self,
        client: NinoxClient,
        context_store: ContextStore | None,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id
        self.schema_tools = SchemaTools(client, context_store)
        self.context_tools = ContextTools(client, context_store)
        self.query_tools = QueryTools(client)
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[ToolResult]]] = {
            "list_modules": lambda args: self.schema_tools.list_modules(),
            "get_schema": lambda args: self.schema_tools.get_schema(_require_str(args, "tableId")),
            "get_context": lambda args: self.context_tools.get_context(
                _require_str(args, "moduleName")
            ),
            "get_full_module_info": lambda args: self.context_tools.get_full_module_info(
                _require_str(args, "moduleName")
            ),
            "query_data": lambda args: self.query_tools.query_data(_require_str(args, "query")),
        }
        self.server = self._build_server()

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    def list_tools(self) -> list[types.Tool]:
        return [_make_tool(spec) for spec in _TOOL_SPECS]

    async def call(self, name: str, arguments: dict[str, Any] | None) -> ToolResult:
        """Run a tool. Never raises; failures come back as error-flagged text."""
        args = arguments or {}
        logger.info(
            "tool_call tool=%s session_id=%s",
            name,
            self.session_id or "(none)",
            extra={"tool": name, "session_id": self.session_id},
        )
        handler = self._handlers.get(name)
        if handler is None:
            return ToolResult.error(f"Unknown tool: {name}")

        try:
            result = await handler(args)
        except KeyError as e:
            return ToolResult.error(f"Missing required argument: {e}")
        except ValueError as e:
            return ToolResult.error(f"Invalid argument: {e}")
        except Exception as e:
            logger.exception(
                "tool_error tool=%s session_id=%s",
                name,
                self.session_id or "(none)",
                extra={"tool": name, "session_id": self.session_id, "error": str(e)},
            )
            return ToolResult.error(f"Error: {e}")

        if result.is_error:
            logger.warning(
                "tool_failed tool=%s session_id=%s",
                name,
                self.session_id or "(none)",
                extra={"tool": name, "session_id": self.session_id},
            )
        return result

    def _build_server(self) -> Server[Any, Any]:
        server: Server[Any, Any] = Server(MCP_SERVER_NAME, version=__version__)

        @server.list_tools()
        async def handle_list_tools() -> list[types.Tool]:
            return self.list_tools()

        @server.call_tool()
        async def handle_call_tool(name: str, arguments: dict[str, Any]) -> types.CallToolResult:
            result = await self.call(name, arguments)
            return types.CallToolResult(
                content=[types.TextContent(type="text", text=result.text)],
                isError=result.is_error,
            )

        return server


RegistryFactory = Callable[[str], ToolRegistry]


def registry_factory(client: NinoxClient, context_store: ContextStore | None) -> RegistryFactory:
    """Factory handing every new session its own registry and server."""

    def create(session_id: str) -> ToolRegistry:
        return ToolRegistry(client, context_store, session_id=session_id)

    return create
