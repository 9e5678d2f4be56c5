"""
Constantes globales pour MCP Stdio Proxy.
"""

# ============================================================================
# PROCESSUS ENFANT PAR DÉFAUT
# ============================================================================
DEFAULT_COMMAND = "npx"
DEFAULT_ARGS = ["-y", "@dynatrace-oss/dynatrace-mcp-server@latest"]
DEFAULT_REQUIRED_ENV = ["DT_PLATFORM_TOKEN", "DT_ENVIRONMENT"]

# ============================================================================
# DÉLAIS (secondes)
# ============================================================================
DEFAULT_READY_TIMEOUT_S = 30.0
DEFAULT_REQUEST_TIMEOUT_S = 10.0
DEFAULT_TOOL_CALL_TIMEOUT_S = 30.0
DEFAULT_HANDSHAKE_DELAY_S = 1.0
DEFAULT_SHUTDOWN_GRACE_S = 5.0
EXIT_DRAIN_TIMEOUT_S = 1.0

# ============================================================================
# DÉTECTION DE DISPONIBILITÉ
# ============================================================================
DEFAULT_READY_MARKERS = [
    "Server ready",
    "running on stdio",
    "MCP server started",
]
DEFAULT_READY_METHODS = [
    "notifications/ready",
]
READINESS_BUFFER_MAX_CHARS = 64 * 1024

# ============================================================================
# FLUX STDIO
# ============================================================================
DEFAULT_STREAM_LIMIT_BYTES = 8 * 1024 * 1024  # 8 MiB
MIN_STREAM_LIMIT_BYTES = 64 * 1024
MAX_STREAM_LIMIT_BYTES = 64 * 1024 * 1024  # 64 MiB
READ_CHUNK_BYTES = 64 * 1024

# ============================================================================
# JSON-RPC / MCP
# ============================================================================
JSONRPC_VERSION = "2.0"
MCP_PROTOCOL_VERSION = "2024-11-05"
HANDSHAKE_REQUEST_ID = "bridge-initialize"
CLIENT_NAME = "mcp-stdio-proxy"
CLIENT_VERSION = "1.0.0"

JSONRPC_METHOD_NOT_FOUND = -32601

# ============================================================================
# SERVEUR HTTP
# ============================================================================
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_LOG_LEVEL = "INFO"
