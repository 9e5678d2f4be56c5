"""
Couche HTTP du MCP Stdio Proxy.
"""
