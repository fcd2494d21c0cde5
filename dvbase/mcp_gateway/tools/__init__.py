"""MCP Gateway tool modules."""

from dvbase.mcp_gateway.tools.context_tools import ContextTools
from dvbase.mcp_gateway.tools.query_tools import QueryTools
from dvbase.mcp_gateway.tools.schema_tools import SchemaTools

__all__ = [
    "SchemaTools",
    "ContextTools",
    "QueryTools",
]
