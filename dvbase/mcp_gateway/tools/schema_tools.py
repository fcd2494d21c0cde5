"""Schema tools: table overview and per-table schema."""

import asyncio
import logging

from dvbase.clients.ninox import NinoxClient
from dvbase.core.types import ToolResult
from dvbase.mcp_gateway.context_store import ContextStore
from dvbase.mcp_gateway.formatting import format_schema, format_table_list

logger = logging.getLogger("dvbase.mcp_gateway")


class SchemaTools:
    """Schema inspection tools."""

    def __init__(self, client: NinoxClient, context_store: ContextStore | None) -> None:
        """Initialize schema tools.

        Args:
            client: Ninox API client
            context_store: Documentation lookup, or None when not configured
        """
        self.client = client
        self.context_store = context_store

    async def list_modules(self) -> ToolResult:
        """List all tables, plus documented modules when documentation is configured."""
        try:
            tables = await asyncio.to_thread(self.client.list_tables)
            documented: list[str] = []
            if self.context_store is not None:
                try:
                    documented = await self.context_store.list_modules()
                except Exception as e:
                    logger.warning("context_list_failed error=%s", e, extra={"error": str(e)})
            return ToolResult(format_table_list(tables, documented))
        except Exception as e:
            return ToolResult.error(f"Error fetching modules: {e}")

    async def get_schema(self, table_id: str) -> ToolResult:
        try:
            table = await asyncio.to_thread(self.client.get_table_schema, table_id)
            return ToolResult(format_schema(table))
        except Exception as e:
            return ToolResult.error(f'Error fetching schema for table "{table_id}": {e}')
