"""
Dépendances FastAPI partagées par les routes.
"""
from fastapi import Request

from ..core.exceptions import NotReadyError
from ..features.bridge import BridgeSession


def get_bridge(request: Request) -> BridgeSession:
    """Session MCP injectée par la factory (app.state.bridge)."""
    bridge = getattr(request.app.state, "bridge", None)
    if bridge is None:
        raise NotReadyError("Session MCP non initialisée", state="missing")
    return bridge
