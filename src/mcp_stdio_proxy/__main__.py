"""
Point d'entrée pour `python -m mcp_stdio_proxy`.
"""
import os
import logging
import uvicorn

from .config.loader import load_config
from .config.settings import Settings


def main():
    """Fonction principale."""
    import argparse

    parser = argparse.ArgumentParser(description="MCP stdio proxy")
    parser.add_argument("--config", default=None, help="Fichier config.toml (défaut: MCP_PROXY_CONFIG ou ./config.toml)")
    parser.add_argument("--host", default=None, help="Host (défaut: [server].host ou 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Port (défaut: PORT, [server].port ou 3000)")
    parser.add_argument("--log-level", default=None, help="Niveau de log (défaut: INFO)")
    parser.add_argument("--reload", action="store_true", help="Activer le reload auto")

    args = parser.parse_args()

    if args.config:
        # Lu aussi par le worker uvicorn à l'import de `mcp_stdio_proxy.main`.
        os.environ["MCP_PROXY_CONFIG"] = os.path.abspath(args.config)

    server = Settings.from_config(load_config(args.config)).server
    host = args.host or server.host
    port = args.port or server.port
    log_level = (args.log_level or server.log_level).upper()

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print(f"🚀 Démarrage du MCP stdio proxy sur {host}:{port}")

    uvicorn.run(
        "mcp_stdio_proxy.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level=log_level.lower(),
    )


if __name__ == "__main__":
    main()
