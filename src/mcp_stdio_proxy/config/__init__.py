"""
Configuration du MCP Stdio Proxy.
"""

from .loader import load_config, reload_config, get_config
from .settings import Settings, BridgeConfig, MonitoringConfig, ServerConfig

__all__ = [
    "load_config",
    "reload_config",
    "get_config",
    "Settings",
    "BridgeConfig",
    "MonitoringConfig",
    "ServerConfig",
]
