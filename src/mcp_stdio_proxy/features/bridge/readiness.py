"""mcp_stdio_proxy.features.bridge.readiness

Détection de la disponibilité du processus MCP enfant.

Le protocole de démarrage n'est pas uniforme d'une version à l'autre: certaines
builds loggent une bannière ("Server ready", "... running on stdio"), d'autres
émettent une notification JSON-RPC. Le détecteur accepte donc plusieurs signaux
indépendants, fournis sous forme d'une liste ordonnée de matchers.

Machine à états: BOOTING → READY ou BOOTING → FAILED (timeout). Transitions uniques.
"""

from __future__ import annotations

import asyncio
from enum import Enum
import logging
from typing import Iterable, Protocol, Sequence

from ...core.constants import READINESS_BUFFER_MAX_CHARS
from ...core.exceptions import BridgeError, InitTimeoutError
from ...core.jsonrpc import id_key, is_notification, is_response

logger = logging.getLogger(__name__)


class ReadinessState(str, Enum):
    BOOTING = "booting"
    READY = "ready"
    FAILED = "failed"


class ReadinessMatcher(Protocol):
    name: str

    def match_text(self, text: str) -> bool: ...

    def match_message(self, message: dict[str, object]) -> bool: ...


class TextMarkerMatcher:
    """Sous-chaîne connue dans la sortie brute (stdout ou stderr)."""

    name = "text-marker"

    def __init__(self, markers: Iterable[str]) -> None:
        self.markers = [m for m in markers if m]

    def match_text(self, text: str) -> bool:
        return any(marker in text for marker in self.markers)

    def match_message(self, message: dict[str, object]) -> bool:
        return False


class NotificationMatcher:
    """Notification JSON-RPC (sans id) dont la méthode signale la fin du boot."""

    name = "notification"

    def __init__(self, methods: Iterable[str]) -> None:
        self.methods = frozenset(methods)

    def match_text(self, text: str) -> bool:
        return False

    def match_message(self, message: dict[str, object]) -> bool:
        return is_notification(message) and message.get("method") in self.methods


class ResponseIdMatcher:
    """Réponse (result) à une requête de handshake connue du bridge."""

    name = "handshake-reply"

    def __init__(self, request_ids: Iterable[object]) -> None:
        self.keys = frozenset(k for k in (id_key(i) for i in request_ids) if k is not None)

    def match_text(self, text: str) -> bool:
        return False

    def match_message(self, message: dict[str, object]) -> bool:
        return is_response(message) and "result" in message and id_key(message.get("id")) in self.keys


class ReadinessDetector:
    """Observe la sortie précoce des deux canaux jusqu'au premier signal."""

    def __init__(
        self,
        matchers: Sequence[ReadinessMatcher],
        *,
        max_buffer_chars: int = READINESS_BUFFER_MAX_CHARS,
    ) -> None:
        self._matchers = list(matchers)
        self._max_buffer_chars = max(1, int(max_buffer_chars))
        self._buffers: dict[str, str] = {}
        self._state = ReadinessState.BOOTING
        self._future: asyncio.Future[str] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self.signal: str | None = None

    @property
    def state(self) -> ReadinessState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is ReadinessState.READY

    def _get_future(self) -> asyncio.Future[str]:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    def arm(self, timeout_s: float) -> None:
        """Démarre le timer compagnon: FAILED si aucun signal avant `timeout_s`."""

        self._get_future()
        if self._state is not ReadinessState.BOOTING or self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(timeout_s, self._expire, timeout_s)

    def observe_text(self, channel: str, text: str) -> bool:
        if self._state is not ReadinessState.BOOTING or not text:
            return False

        # Un marqueur peut être coupé entre deux chunks: on teste le tampon cumulé.
        buffered = self._buffers.get(channel, "") + text
        if len(buffered) > self._max_buffer_chars:
            buffered = buffered[-self._max_buffer_chars:]
        self._buffers[channel] = buffered

        for matcher in self._matchers:
            if matcher.match_text(buffered):
                self._mark_ready(f"{matcher.name}@{channel}")
                return True
        return False

    def observe_message(self, channel: str, message: dict[str, object]) -> bool:
        if self._state is not ReadinessState.BOOTING:
            return False
        for matcher in self._matchers:
            if matcher.match_message(message):
                self._mark_ready(f"{matcher.name}@{channel}")
                return True
        return False

    def fail(self, exc: BridgeError) -> None:
        """BOOTING → FAILED avec une erreur explicite (ex: sortie pendant le boot)."""

        if self._state is not ReadinessState.BOOTING:
            return
        self._state = ReadinessState.FAILED
        self._finish()
        future = self._get_future()
        if not future.done():
            future.set_exception(exc)

    async def wait(self) -> str:
        """Retourne le signal déclencheur, ou lève l'erreur d'échec."""

        return await asyncio.shield(self._get_future())

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _mark_ready(self, signal_name: str) -> None:
        self._state = ReadinessState.READY
        self.signal = signal_name
        self._finish()
        logger.info("Serveur MCP prêt (signal: %s)", signal_name)
        future = self._get_future()
        if not future.done():
            future.set_result(signal_name)

    def _expire(self, timeout_s: float) -> None:
        self._timer = None
        if self._state is not ReadinessState.BOOTING:
            return
        self._state = ReadinessState.FAILED
        self._finish()
        logger.error("Initialisation du serveur MCP: timeout après %.1fs", timeout_s)
        future = self._get_future()
        if not future.done():
            future.set_exception(
                InitTimeoutError("MCP server initialization timeout", timeout_s=timeout_s)
            )

    def _finish(self) -> None:
        self.cancel()
        self._buffers.clear()
