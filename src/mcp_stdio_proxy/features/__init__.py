"""
Fonctionnalités du MCP Stdio Proxy.
"""

from .bridge import BridgeSession, BridgeMonitor

__all__ = [
    "BridgeSession",
    "BridgeMonitor",
]
