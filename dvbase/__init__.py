"""DVBase MCP server: Ninox schema, documentation and queries over MCP."""

__version__ = "1.1.0"
