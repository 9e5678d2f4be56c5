"""
Configuration des tests pytest.
"""
import pytest
import sys
import os
from pathlib import Path

# Ajoute src au path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from mcp_stdio_proxy.config.loader import _clear_config_cache
from mcp_stdio_proxy.config.settings import BridgeConfig

FAKE_SERVER = Path(__file__).resolve().parent / "fixtures" / "fake_mcp_server_stdio.py"


# Configuration pytest-asyncio
def pytest_configure(config):
    """Configure les marqueurs utilisés par la suite."""
    config.addinivalue_line(
        "markers", "asyncio: marque un test comme asynchrone"
    )
    config.addinivalue_line(
        "markers", "unit: test unitaire (aucun processus externe)"
    )
    config.addinivalue_line(
        "markers", "integration: test lançant le faux serveur MCP stdio"
    )


@pytest.fixture(autouse=True)
def clean_config_cache():
    """Isole le cache de configuration entre les tests."""
    _clear_config_cache()
    yield
    _clear_config_cache()


@pytest.fixture
def fake_server_path() -> Path:
    return FAKE_SERVER


@pytest.fixture
def fake_bridge_config():
    """Configuration bridge pointant sur le faux serveur MCP (python courant)."""

    def _make(**overrides) -> BridgeConfig:
        values = dict(
            command=sys.executable,
            args=["-u", str(FAKE_SERVER)],
            required_env=[],
            ready_timeout_s=5.0,
            request_timeout_s=3.0,
            tool_call_timeout_s=3.0,
            handshake_delay_s=0.05,
            shutdown_grace_s=2.0,
        )
        values.update(overrides)
        return BridgeConfig(**values)

    return _make
