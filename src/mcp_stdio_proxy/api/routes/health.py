"""
Routes API pour le health check.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from ..dependencies import get_bridge
from ...features.bridge import BridgeSession

router = APIRouter()


@router.get("/health")
async def health_check(bridge: BridgeSession = Depends(get_bridge)):
    """Health check: disponibilité du serveur MCP, processus, requêtes en vol."""
    return {
        "status": "ok",
        "mcpReady": bridge.is_ready(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "bridge": bridge.status(),
        "monitor": bridge.monitor.get_summary(),
    }
