"""Constants and limits for the DVBase MCP gateway."""

SERVER_NAME = "dvbase-mcp"
MCP_SERVER_NAME = "dvbase"

MCP_BASE_PATH = "/mcp"
HEALTH_PATH = "/health"
MCP_SESSION_ID_HEADER = "mcp-session-id"

# JSON-RPC error codes used outside the protocol library
ERROR_NO_VALID_SESSION = -32000
ERROR_ACCESS_DENIED = -32001
ERROR_INTERNAL = -32603

NO_VALID_SESSION_MESSAGE = "No valid session. Send an initialize request first."
INVALID_SESSION_MESSAGE = "Invalid or missing session ID"

MIN_SECRET_PATH_LENGTH = 16

# Anthropic's published outbound ranges for Claude.ai MCP connections
DEFAULT_ALLOWED_NETWORKS: tuple[str, ...] = ("160.79.104.0/21",)
DEFAULT_LEGACY_ADDRESSES: tuple[str, ...] = (
    "34.162.46.92",
    "34.162.102.82",
    "34.162.136.91",
    "34.162.142.92",
    "34.162.183.95",
)
LOOPBACK_HOSTS: frozenset[str] = frozenset({"127.0.0.1", "::1", "localhost"})

DEFAULT_PORT = 3001
DEFAULT_CONTEXT_CACHE_TTL_SECONDS = 300.0
DOCUMENTATION_PAGE_SIZE = 250
