"""
MCP stdio proxy - expose un serveur MCP stdio (JSON-RPC ligne à ligne) en HTTP.
"""

__version__ = "1.0.0"
