"""
MCP stdio proxy - Application FastAPI Factory.
Une session bridge unique par application: le serveur MCP enfant est lancé au
startup et arrêté au shutdown.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.errors import bridge_error_response
from .api.router import api_router
from .config.loader import load_config
from .config.settings import Settings
from .core.exceptions import BridgeError
from .features.bridge import BridgeMonitor, BridgeSession

logger = logging.getLogger(__name__)


def create_session(settings: Settings) -> BridgeSession:
    """Construit la session bridge (non démarrée) depuis la configuration."""
    monitor = BridgeMonitor.from_config(settings.monitoring)
    return BridgeSession(settings.bridge, monitor=monitor)


def create_app(settings: Optional[Settings] = None, session: Optional[BridgeSession] = None) -> FastAPI:
    """
    Factory pour créer l'application FastAPI.

    Args:
        settings: Configuration (défaut: config.toml + env)
        session: Session bridge à injecter (défaut: construite depuis `settings`)

    Returns:
        Instance configurée de FastAPI
    """
    if settings is None:
        settings = Settings.from_config(load_config())
    if session is None:
        session = create_session(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Gestion du cycle de vie de l'application."""
        # Startup
        bridge: BridgeSession = app.state.bridge
        try:
            signal_name = await bridge.start()
        except BridgeError as e:
            logger.error("Démarrage impossible: %s", e)
            raise
        logger.info("Bridge MCP opérationnel (signal: %s)", signal_name)
        yield
        # Shutdown
        await bridge.shutdown()
        logger.info("Bridge MCP arrêté")

    app = FastAPI(
        title="MCP stdio proxy",
        description="Bridge HTTP vers un serveur MCP stdio (JSON-RPC 2.0)",
        version=__version__,
        lifespan=lifespan
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.bridge = session

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError):
        # Erreurs levées hors des routes (dépendances)
        return bridge_error_response(exc)

    # Inclusion des routes API
    app.include_router(api_router)

    return app


# Instance de l'application pour uvicorn
app = create_app()
