"""Context tools: documentation lookup and the combined module view."""

import asyncio

from dvbase.clients.ninox import NinoxClient
from dvbase.core.types import NinoxTable, ToolResult
from dvbase.mcp_gateway.context_store import ContextStore
from dvbase.mcp_gateway.formatting import format_context, format_schema

CONTEXT_NOT_CONFIGURED = (
    "Context knowledge unavailable: DOKU_TABLE_ID is not configured. Create the "
    "documentation table in Ninox and set its table ID in the environment."
)


def _matches_module(table: NinoxTable, module_name: str) -> bool:
    table_name = table.name.lower()
    wanted = module_name.lower()
    return bool(table_name) and (wanted in table_name or table_name in wanted)


class ContextTools:
    """Developer context tools."""

    def __init__(self, client: NinoxClient, context_store: ContextStore | None) -> None:
        """Initialize context tools.

        Args:
            client: Ninox API client
            context_store: Documentation lookup, or None when DOKU_TABLE_ID is unset
        """
        self.client = client
        self.context_store = context_store

    async def get_context(self, module_name: str) -> ToolResult:
        if self.context_store is None:
            return ToolResult.error(CONTEXT_NOT_CONFIGURED)

        try:
            context = await self.context_store.get_module_context(module_name)
            if context is None:
                modules = await self.context_store.list_modules()
                available = ", ".join(modules) or "none documented"
                return ToolResult(
                    f'No context knowledge found for module "{module_name}". '
                    f"Documented modules: {available}"
                )
            return ToolResult(format_context(context))
        except Exception as e:
            return ToolResult.error(f"Error fetching context knowledge: {e}")

    async def _render_tables(self, table_ids: list[str]) -> str:
        text = ""
        for table_id in table_ids:
            try:
                table = await asyncio.to_thread(self.client.get_table_schema, table_id)
                text += format_schema(table)
            except Exception as e:
                text += f"_Error loading table {table_id}: {e}_\n\n"
        return text

    async def get_full_module_info(self, module_name: str) -> ToolResult:
        """Context plus the schemas of every related table."""
        try:
            text = f"# DVBase module: {module_name}\n\n"

            related_table_ids: list[str] = []
            if self.context_store is not None:
                context = await self.context_store.get_module_context(module_name)
                if context is not None:
                    text += format_context(context)
                    related_table_ids = list(context.related_table_ids)
                else:
                    text += f'_No context knowledge documented for "{module_name}"._\n\n'

            if related_table_ids:
                text += "---\n\n# Schema\n\n"
                text += await self._render_tables(related_table_ids)
                return ToolResult(text)

            tables = await asyncio.to_thread(self.client.list_tables)
            matching = [table.id for table in tables if _matches_module(table, module_name)]
            if matching:
                text += "---\n\n# Schema (found by name matching)\n\n"
                text += await self._render_tables(matching)
            else:
                text += (
                    "_No matching tables found. Use list_modules for an overview "
                    "and get_schema for individual tables._\n"
                )
            return ToolResult(text)
        except Exception as e:
            return ToolResult.error(f"Error: {e}")
