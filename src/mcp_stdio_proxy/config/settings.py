"""
Dataclasses pour la configuration.

Règle de priorité: env > toml > défauts. Les valeurs invalides retombent sur le
défaut (clamp des bornes) plutôt que de faire échouer le démarrage.
"""
import os
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from ..core.constants import (
    DEFAULT_COMMAND,
    DEFAULT_ARGS,
    DEFAULT_REQUIRED_ENV,
    DEFAULT_READY_TIMEOUT_S,
    DEFAULT_REQUEST_TIMEOUT_S,
    DEFAULT_TOOL_CALL_TIMEOUT_S,
    DEFAULT_HANDSHAKE_DELAY_S,
    DEFAULT_SHUTDOWN_GRACE_S,
    DEFAULT_READY_MARKERS,
    DEFAULT_READY_METHODS,
    DEFAULT_STREAM_LIMIT_BYTES,
    MIN_STREAM_LIMIT_BYTES,
    MAX_STREAM_LIMIT_BYTES,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_LOG_LEVEL,
)


def _env_flag(name: str, *, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, *, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, *, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _clamp_int(value: object, *, default: int, min_value: int, max_value: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        v = value
    elif isinstance(value, float):
        v = int(value)
    else:
        return default
    if v < min_value:
        return min_value
    if v > max_value:
        return max_value
    return v


def _positive_float(value: object, *, default: float) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    return default


def _str_list(value: object, *, default: List[str]) -> List[str]:
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return list(value)
    return list(default)


def clamp_stream_limit(value: object) -> int:
    """Taille max (en bytes) d'une ligne lue depuis stdout/stderr de l'enfant."""
    if isinstance(value, int) and not isinstance(value, bool) and value <= 0:
        return DEFAULT_STREAM_LIMIT_BYTES
    return _clamp_int(
        value,
        default=DEFAULT_STREAM_LIMIT_BYTES,
        min_value=MIN_STREAM_LIMIT_BYTES,
        max_value=MAX_STREAM_LIMIT_BYTES,
    )


@dataclass
class BridgeConfig:
    """Configuration du processus enfant et du bridge stdio."""
    command: str = DEFAULT_COMMAND
    args: List[str] = field(default_factory=lambda: list(DEFAULT_ARGS))
    env: Dict[str, str] = field(default_factory=dict)
    required_env: List[str] = field(default_factory=lambda: list(DEFAULT_REQUIRED_ENV))
    ready_timeout_s: float = DEFAULT_READY_TIMEOUT_S
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S
    tool_call_timeout_s: float = DEFAULT_TOOL_CALL_TIMEOUT_S
    handshake_delay_s: float = DEFAULT_HANDSHAKE_DELAY_S
    shutdown_grace_s: float = DEFAULT_SHUTDOWN_GRACE_S
    ready_markers: List[str] = field(default_factory=lambda: list(DEFAULT_READY_MARKERS))
    ready_methods: List[str] = field(default_factory=lambda: list(DEFAULT_READY_METHODS))
    stream_limit_bytes: int = DEFAULT_STREAM_LIMIT_BYTES
    workspace_root: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeConfig":
        """Crée une instance depuis la section [bridge] (valeurs validées)."""
        defaults = cls()

        command_obj = data.get("command", defaults.command)
        command = command_obj if isinstance(command_obj, str) and command_obj.strip() else defaults.command

        env_obj = data.get("env", {})
        env = {str(k): str(v) for k, v in env_obj.items()} if isinstance(env_obj, dict) else {}

        workspace_obj = data.get("workspace_root")
        workspace_root = workspace_obj if isinstance(workspace_obj, str) and workspace_obj else None

        return cls(
            command=command,
            args=_str_list(data.get("args"), default=defaults.args),
            env=env,
            required_env=_str_list(data.get("required_env"), default=defaults.required_env),
            ready_timeout_s=_positive_float(data.get("ready_timeout_s"), default=defaults.ready_timeout_s),
            request_timeout_s=_positive_float(data.get("request_timeout_s"), default=defaults.request_timeout_s),
            tool_call_timeout_s=_positive_float(data.get("tool_call_timeout_s"), default=defaults.tool_call_timeout_s),
            handshake_delay_s=_positive_float(data.get("handshake_delay_s"), default=defaults.handshake_delay_s),
            shutdown_grace_s=_positive_float(data.get("shutdown_grace_s"), default=defaults.shutdown_grace_s),
            ready_markers=_str_list(data.get("ready_markers"), default=defaults.ready_markers),
            ready_methods=_str_list(data.get("ready_methods"), default=defaults.ready_methods),
            stream_limit_bytes=clamp_stream_limit(data.get("stream_limit_bytes", defaults.stream_limit_bytes)),
            workspace_root=workspace_root,
        )

    def apply_env_overrides(self) -> "BridgeConfig":
        """Applique les surcharges d'environnement (env > toml)."""
        command = os.getenv("MCP_BRIDGE_COMMAND")
        if command and command.strip():
            self.command = command.strip()
        self.ready_timeout_s = _positive_float(
            _env_float("MCP_BRIDGE_READY_TIMEOUT", default=self.ready_timeout_s),
            default=self.ready_timeout_s,
        )
        self.request_timeout_s = _positive_float(
            _env_float("MCP_BRIDGE_REQUEST_TIMEOUT", default=self.request_timeout_s),
            default=self.request_timeout_s,
        )
        self.stream_limit_bytes = clamp_stream_limit(
            _env_int("MCP_BRIDGE_STDIO_STREAM_LIMIT", default=self.stream_limit_bytes)
        )
        workspace = os.getenv("MCP_WORKSPACE_ROOT") or os.getenv("WORKSPACE_PATH")
        if workspace:
            self.workspace_root = workspace
        return self


@dataclass
class MonitoringConfig:
    """Configuration du monitoring opt-in du trafic JSON-RPC."""
    enabled: bool = False
    log_path: Optional[str] = None
    queue_max: int = 1000

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitoringConfig":
        """Crée une instance depuis un dictionnaire."""
        log_path = data.get("log_path")
        return cls(
            enabled=bool(data.get("enabled", False)),
            log_path=log_path if isinstance(log_path, str) and log_path else None,
            queue_max=_clamp_int(data.get("queue_max", 1000), default=1000, min_value=1, max_value=100_000),
        )

    def apply_env_overrides(self) -> "MonitoringConfig":
        self.enabled = _env_flag("MCP_BRIDGE_MONITORING_ENABLED", default=self.enabled)
        log_path = os.getenv("MCP_BRIDGE_MONITORING_LOG_PATH")
        if log_path:
            self.log_path = log_path
        return self


@dataclass
class ServerConfig:
    """Configuration du serveur HTTP."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerConfig":
        """Crée une instance depuis un dictionnaire."""
        host = data.get("host", DEFAULT_HOST)
        log_level = data.get("log_level", DEFAULT_LOG_LEVEL)
        return cls(
            host=host if isinstance(host, str) and host else DEFAULT_HOST,
            port=_clamp_int(data.get("port", DEFAULT_PORT), default=DEFAULT_PORT, min_value=1, max_value=65535),
            log_level=log_level.upper() if isinstance(log_level, str) else DEFAULT_LOG_LEVEL,
        )

    def apply_env_overrides(self) -> "ServerConfig":
        self.port = _clamp_int(_env_int("PORT", default=self.port), default=self.port, min_value=1, max_value=65535)
        return self


@dataclass
class Settings:
    """Configuration globale de l'application."""
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_config(cls, config: Dict[str, Any], *, apply_env: bool = True) -> "Settings":
        """Crée une instance depuis la configuration chargée."""

        def _section(name: str) -> Dict[str, Any]:
            obj = config.get(name)
            return obj if isinstance(obj, dict) else {}

        settings = cls(
            bridge=BridgeConfig.from_dict(_section("bridge")),
            monitoring=MonitoringConfig.from_dict(_section("monitoring")),
            server=ServerConfig.from_dict(_section("server")),
        )
        if apply_env:
            settings.bridge.apply_env_overrides()
            settings.monitoring.apply_env_overrides()
            settings.server.apply_env_overrides()
        return settings
