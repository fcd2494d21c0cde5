"""Read-only Ninox script queries."""

import asyncio

from dvbase.clients.ninox import NinoxClient
from dvbase.core.types import ToolResult
from dvbase.mcp_gateway.formatting import format_query_result


class QueryTools:
    def __init__(self, client: NinoxClient) -> None:
        self.client = client

    async def query_data(self, query: str) -> ToolResult:
        try:
            result = await asyncio.to_thread(self.client.execute_query, query)
            return ToolResult(format_query_result(query, result))
        except Exception as e:
            return ToolResult.error(f'Error in query "{query}": {e}')
