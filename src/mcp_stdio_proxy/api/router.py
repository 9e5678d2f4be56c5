"""
Router principal de l'API.
"""
from fastapi import APIRouter

from .routes import health, mcp

# Router principal
api_router = APIRouter()

# Inclusion des sous-routers
api_router.include_router(health.router, prefix="", tags=["health"])
api_router.include_router(mcp.router, prefix="", tags=["mcp"])
