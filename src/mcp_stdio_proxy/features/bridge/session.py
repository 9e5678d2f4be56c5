"""mcp_stdio_proxy.features.bridge.session

Façade du bridge: une session explicite (create → start → shutdown) qui compose
superviseur de processus, détecteur de disponibilité, framers et corrélateur.

La couche HTTP reçoit la session par injection (app.state) et n'appelle que:
`invoke()`, `is_ready()`, `status()` et `shutdown()`.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import os
from pathlib import Path
import signal
from typing import Coroutine, Mapping, Sequence

from ...config.settings import BridgeConfig
from ...core.constants import (
    CLIENT_NAME,
    CLIENT_VERSION,
    HANDSHAKE_REQUEST_ID,
    JSONRPC_METHOD_NOT_FOUND,
    MCP_PROTOCOL_VERSION,
)
from ...core.exceptions import (
    BridgeError,
    DuplicateIdError,
    NotReadyError,
    SpawnError,
    WriteError,
)
from ...core.jsonrpc import (
    build_error,
    build_request,
    build_result,
    id_key,
    is_notification,
    is_request,
    is_response,
)
from .correlator import RequestCorrelator
from .framing import FramedLine, LineFramer
from .monitor import BridgeMonitor
from .process import Channel, ProcessSupervisor
from .readiness import (
    NotificationMatcher,
    ReadinessDetector,
    ReadinessMatcher,
    ReadinessState,
    ResponseIdMatcher,
    TextMarkerMatcher,
)

logger = logging.getLogger(__name__)


def build_default_matchers(config: BridgeConfig) -> list[ReadinessMatcher]:
    """Stratégie par défaut: bannière texte, notification, réponse au handshake."""

    return [
        TextMarkerMatcher(config.ready_markers),
        NotificationMatcher(config.ready_methods),
        ResponseIdMatcher([HANDSHAKE_REQUEST_ID]),
    ]


class BridgeSession:
    """Session unique avec le serveur MCP enfant."""

    def __init__(
        self,
        config: BridgeConfig,
        *,
        monitor: BridgeMonitor | None = None,
        matchers: Sequence[ReadinessMatcher] | None = None,
        base_env: Mapping[str, str] | None = None,
        supervisor: ProcessSupervisor | None = None,
    ) -> None:
        self._config = config
        self._base_env = dict(os.environ if base_env is None else base_env)
        self._monitor = monitor or BridgeMonitor(enabled=False)
        self._supervisor = supervisor or ProcessSupervisor(name="mcp")
        self._detector = ReadinessDetector(
            matchers if matchers is not None else build_default_matchers(config)
        )
        self._correlator = RequestCorrelator(
            self._supervisor.write,
            default_timeout_s=config.request_timeout_s,
            observer=self._observe_outbound,
        )
        self._framers: dict[str, LineFramer] = {
            channel: LineFramer(max_line_bytes=config.stream_limit_bytes, name=f"child {channel}")
            for channel in ("stdout", "stderr")
        }
        self._decoders = {
            channel: codecs.getincrementaldecoder("utf-8")(errors="replace")
            for channel in ("stdout", "stderr")
        }
        self._handshake_task: asyncio.Task[None] | None = None
        self._handshake_replied = False
        self._background: set[asyncio.Task[None]] = set()
        self._started = False
        self._closed = False
        self.server_info: dict[str, object] | None = None

        self._supervisor.on_output(self._on_output)
        self._supervisor.on_exit(self._on_exit)

    @property
    def config(self) -> BridgeConfig:
        return self._config

    @property
    def monitor(self) -> BridgeMonitor:
        return self._monitor

    @property
    def correlator(self) -> RequestCorrelator:
        return self._correlator

    @property
    def readiness(self) -> ReadinessDetector:
        return self._detector

    # ------------------------------------------------------------------ #
    # Cycle de vie
    # ------------------------------------------------------------------ #

    def build_env(self) -> dict[str, str]:
        env = dict(self._base_env)
        env.update(self._config.env)
        return env

    async def start(self) -> str:
        """Lance l'enfant et attend sa disponibilité.

        Returns:
            Le nom du signal de disponibilité observé.

        Raises:
            SpawnError: configuration manquante, échec OS, sortie pendant le boot
            InitTimeoutError: aucun signal dans `ready_timeout_s`
        """

        if self._closed:
            raise NotReadyError("Session MCP arrêtée", state="closed")
        if self._started:
            return await self._detector.wait()
        self._started = True

        cfg = self._config
        await self._monitor.start()
        try:
            await self._supervisor.spawn(cfg.command, cfg.args, self.build_env(), required_env=cfg.required_env)
        except SpawnError:
            self._closed = True
            await self._monitor.stop()
            raise

        self._detector.arm(cfg.ready_timeout_s)
        self._handshake_task = asyncio.create_task(self._send_handshake())

        try:
            return await self._detector.wait()
        except BridgeError as e:
            logger.error("Échec de l'initialisation du serveur MCP: %s", e)
            await self.shutdown()
            raise

    async def shutdown(self, sig: int = signal.SIGTERM) -> None:
        """Arrête l'enfant et échoue les requêtes en vol. Idempotent."""

        if self._closed and not self._supervisor.alive:
            return
        self._closed = True

        if self._started and self._detector.state is ReadinessState.BOOTING:
            self._detector.fail(NotReadyError("Arrêt demandé pendant l'initialisation", state="closed"))
        self._detector.cancel()

        tasks = [t for t in (self._handshake_task, *self._background) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        returncode = await self._supervisor.terminate(sig, grace_s=self._config.shutdown_grace_s)
        self._correlator.fail_all_closed(returncode)
        await self._monitor.stop()

    def is_ready(self) -> bool:
        return not self._closed and self._detector.ready and self._supervisor.alive

    # ------------------------------------------------------------------ #
    # Appels
    # ------------------------------------------------------------------ #

    async def invoke(
        self,
        method: str,
        params: object | None = None,
        *,
        request_id: object | None = None,
        timeout_s: float | None = None,
    ) -> dict[str, object]:
        """Appel corrélé: retourne la réponse JSON-RPC (result ou error) du serveur."""

        if not self.is_ready():
            raise NotReadyError(state=self._state_label())
        if request_id is not None and id_key(request_id) == HANDSHAKE_REQUEST_ID:
            raise DuplicateIdError(
                f"Identifiant réservé au handshake: {request_id!r}",
                request_id=request_id,
            )
        return await self._correlator.invoke(method, params, request_id=request_id, timeout_s=timeout_s)

    async def list_tools(self) -> dict[str, object]:
        return await self.invoke("tools/list")

    async def call_tool(self, name: str, arguments: dict[str, object] | None = None) -> dict[str, object]:
        return await self.invoke(
            "tools/call",
            {"name": name, "arguments": arguments or {}},
            timeout_s=self._config.tool_call_timeout_s,
        )

    def status(self) -> dict[str, object]:
        return {
            "ready": self.is_ready(),
            "state": self._state_label(),
            "signal": self._detector.signal,
            "pid": self._supervisor.pid,
            "alive": self._supervisor.alive,
            "returncode": self._supervisor.returncode,
            "pending": self._correlator.pending_count,
            "stats": self._correlator.stats.to_dict(),
            "server_info": self.server_info,
            "command": self._config.command,
        }

    def _state_label(self) -> str:
        if self._closed:
            return "closed"
        if self._supervisor.started and not self._supervisor.alive:
            return "exited"
        return self._detector.state.value

    # ------------------------------------------------------------------ #
    # Flux entrants
    # ------------------------------------------------------------------ #

    def _on_output(self, channel: Channel, chunk: bytes) -> None:
        if self._detector.state is ReadinessState.BOOTING:
            self._detector.observe_text(channel, self._decoders[channel].decode(chunk))
        for line in self._framers[channel].feed(chunk):
            self._handle_line(channel, line)

    def _handle_line(self, channel: str, line: FramedLine) -> None:
        if not line.is_message:
            logger.info("[child %s] %s", channel, line.text)
            return

        for message in line.messages:
            self._detector.observe_message(channel, message)
            if channel != "stdout":
                # Les réponses ne sont corrélées que sur stdout.
                logger.debug("[child %s] message JSON-RPC ignoré: %s", channel, line.text[:200])
                continue
            self._monitor.observe(direction="child_to_proxy", obj=message)
            self._route_message(message)

    def _route_message(self, message: dict[str, object]) -> None:
        if is_response(message):
            if id_key(message.get("id")) == HANDSHAKE_REQUEST_ID:
                self._on_handshake_reply(message)
                return
            self._correlator.dispatch(message)
            return

        if is_request(message):
            self._spawn_background(self._answer_child_request(message))
            return

        if is_notification(message):
            logger.debug("Notification MCP: %s", message.get("method"))
            return

        logger.debug("Message JSON-RPC non routable: %r", message)

    def _on_exit(self, returncode: int | None) -> None:
        for channel, framer in self._framers.items():
            for line in framer.flush():
                self._handle_line(channel, line)

        if self._detector.state is ReadinessState.BOOTING:
            self._detector.fail(
                SpawnError(
                    f"Processus MCP terminé pendant l'initialisation (code {returncode})",
                    details={"returncode": returncode},
                )
            )
        self._correlator.fail_all_closed(returncode)

    # ------------------------------------------------------------------ #
    # Handshake et requêtes initiées par l'enfant
    # ------------------------------------------------------------------ #

    async def _send_handshake(self) -> None:
        await asyncio.sleep(self._config.handshake_delay_s)
        params = {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {"roots": {"listChanged": False}},
            "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
        }
        try:
            await self._send_payload(build_request("initialize", params, HANDSHAKE_REQUEST_ID))
        except WriteError as e:
            logger.warning("Handshake initialize non envoyé: %s", e)

    def _on_handshake_reply(self, message: dict[str, object]) -> None:
        if self._handshake_replied:
            return
        self._handshake_replied = True

        if "error" in message:
            logger.warning("Handshake initialize refusé: %s", message.get("error"))
            return

        result = message.get("result")
        if isinstance(result, dict) and isinstance(result.get("serverInfo"), dict):
            self.server_info = result["serverInfo"]
        logger.info("Handshake MCP reçu (serverInfo=%s)", self.server_info)
        self._spawn_background(self._send_initialized())

    async def _send_initialized(self) -> None:
        try:
            await self._correlator.notify("notifications/initialized")
        except WriteError as e:
            logger.warning("notifications/initialized non envoyée: %s", e)

    async def _answer_child_request(self, message: dict[str, object]) -> None:
        method = message.get("method")
        req_id = message.get("id")

        if method == "ping":
            reply = build_result(req_id, {})
        elif method == "roots/list":
            reply = build_result(req_id, {"roots": [{"uri": self._workspace_uri(), "name": "workspace"}]})
        else:
            reply = build_error(req_id, code=JSONRPC_METHOD_NOT_FOUND, message=f"Method not found: {method}")

        try:
            await self._send_payload(reply)
        except WriteError as e:
            logger.warning("Réponse à %s non envoyée: %s", method, e)

    def _workspace_uri(self) -> str:
        root = self._config.workspace_root or os.getcwd()
        return Path(root).expanduser().resolve(strict=False).as_uri()

    async def _send_payload(self, payload: dict[str, object]) -> None:
        self._observe_outbound(payload)
        await self._supervisor.write(json.dumps(payload, ensure_ascii=False).encode("utf-8"))

    def _observe_outbound(self, payload: dict[str, object]) -> None:
        self._monitor.observe(direction="proxy_to_child", obj=payload)

    def _spawn_background(self, coro: Coroutine[object, object, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
