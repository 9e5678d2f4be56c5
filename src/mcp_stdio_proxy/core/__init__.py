"""
Cœur du MCP Stdio Proxy.
Modules indépendants sans I/O ni dépendances externes au package.
"""

from .exceptions import (
    MCPProxyError,
    ConfigurationError,
    BridgeError,
    SpawnError,
    InitTimeoutError,
    NotReadyError,
    WriteError,
    RequestTimeoutError,
    ProcessClosedError,
    DuplicateIdError,
)
from .jsonrpc import (
    build_request,
    build_notification,
    build_result,
    build_error,
    id_key,
    is_request,
    is_response,
    is_notification,
)

__all__ = [
    # Exceptions
    "MCPProxyError",
    "ConfigurationError",
    "BridgeError",
    "SpawnError",
    "InitTimeoutError",
    "NotReadyError",
    "WriteError",
    "RequestTimeoutError",
    "ProcessClosedError",
    "DuplicateIdError",
    # JSON-RPC
    "build_request",
    "build_notification",
    "build_result",
    "build_error",
    "id_key",
    "is_request",
    "is_response",
    "is_notification",
]
