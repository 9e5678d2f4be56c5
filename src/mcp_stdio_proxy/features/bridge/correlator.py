"""mcp_stdio_proxy.features.bridge.correlator

Corrélation requête/réponse JSON-RPC sur un unique canal stdio.

Chaque requête sortante reçoit un identifiant, une entrée en attente (future +
timer) puis est écrite sur le stdin de l'enfant. Les réponses lues sur stdout sont
routées par égalité exacte d'identifiant, dans n'importe quel ordre.

Garanties:
- une seule issue par identifiant: réponse, timeout, échec d'écriture ou fermeture
- une réponse tardive ou inconnue est ignorée sans effet sur les autres requêtes
- aucune attente globale: chaque appelant attend sa propre future

Les mutations du mapping se font dans des sections synchrones de la boucle
asyncio (pas d'`await` entre le test et la mutation).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
import logging
import time
import uuid
from typing import Awaitable, Callable

from ...core.exceptions import (
    BridgeError,
    DuplicateIdError,
    ProcessClosedError,
    RequestTimeoutError,
    WriteError,
)
from ...core.jsonrpc import build_notification, build_request, id_key, is_response, safe_jsonrpc_id

logger = logging.getLogger(__name__)

Writer = Callable[[bytes], Awaitable[None]]
Observer = Callable[[dict[str, object]], None]
ErrorFactory = Callable[["PendingRequest"], BridgeError]


@dataclass
class PendingRequest:
    request_id: object
    key: str
    method: str
    future: asyncio.Future[dict[str, object]]
    timeout_s: float
    created_at: float = field(default_factory=time.monotonic)
    timer: asyncio.TimerHandle | None = None

    @property
    def age_s(self) -> float:
        return time.monotonic() - self.created_at


@dataclass
class CorrelatorStats:
    sent: int = 0
    resolved: int = 0
    timed_out: int = 0
    write_failed: int = 0
    closed: int = 0
    dropped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "sent": self.sent,
            "resolved": self.resolved,
            "timed_out": self.timed_out,
            "write_failed": self.write_failed,
            "closed": self.closed,
            "dropped": self.dropped,
        }


def generate_request_id() -> str:
    return uuid.uuid4().hex


class RequestCorrelator:
    """Multiplexe les appels concurrents sur un writer unique."""

    def __init__(
        self,
        writer: Writer,
        *,
        default_timeout_s: float,
        observer: Observer | None = None,
    ) -> None:
        self._writer = writer
        self._observer = observer
        self._default_timeout_s = default_timeout_s
        self._pending: dict[str, PendingRequest] = {}
        self.stats = CorrelatorStats()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def pending_ids(self) -> list[object]:
        return [entry.request_id for entry in self._pending.values()]

    def is_pending(self, request_id: object) -> bool:
        key = id_key(request_id)
        return key is not None and key in self._pending

    async def invoke(
        self,
        method: str,
        params: object | None = None,
        *,
        request_id: object | None = None,
        timeout_s: float | None = None,
    ) -> dict[str, object]:
        """Envoie une requête et attend sa réponse JSON-RPC complète.

        Raises:
            DuplicateIdError: identifiant déjà en vol (l'entrée existante est conservée)
            WriteError: écriture stdin impossible
            RequestTimeoutError: pas de réponse dans `timeout_s`
            ProcessClosedError: l'enfant s'est terminé avant la réponse
        """

        if request_id is None:
            request_id = generate_request_id()
        wire_id = safe_jsonrpc_id(request_id)
        if wire_id is None:
            raise ValueError(f"Identifiant JSON-RPC invalide: {request_id!r}")
        # La clé et l'id écrit sur le fil ont la même forme normalisée.
        request_id = wire_id
        key = id_key(request_id)

        payload = build_request(method, params, request_id)
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")

        effective_timeout = self._default_timeout_s if timeout_s is None else timeout_s
        entry = self._register(key, request_id, method, effective_timeout)

        try:
            self._observe(payload)
            try:
                await self._writer(data)
            except WriteError as e:
                self.stats.write_failed += 1
                self._fail(key, WriteError(e.message, request_id=request_id))
            else:
                self.stats.sent += 1
                logger.debug("→ %s (id=%s)", method, request_id)

            return await entry.future
        finally:
            # Appelant annulé: l'entrée ne doit jamais rester orpheline.
            self._discard(key, entry)

    async def notify(self, method: str, params: object | None = None) -> None:
        """Notification sans id: aucune entrée en attente, aucune réponse attendue."""

        payload = build_notification(method, params)
        self._observe(payload)
        await self._writer(json.dumps(payload, ensure_ascii=False).encode("utf-8"))

    def dispatch(self, message: dict[str, object]) -> bool:
        """Résout l'entrée correspondant à une réponse. Retourne True si routée."""

        if not is_response(message):
            return False

        key = id_key(message.get("id"))
        entry = self._pending.pop(key, None) if key is not None else None
        if entry is None:
            self.stats.dropped += 1
            logger.debug("Réponse ignorée (id inconnu ou déjà résolu): %r", message.get("id"))
            return False

        self._cancel_timer(entry)
        if entry.future.done():
            return False
        entry.future.set_result(message)
        self.stats.resolved += 1
        logger.debug("← %s (id=%s, %.0f ms)", entry.method, entry.request_id, entry.age_s * 1000)
        return True

    def fail_all(self, error_factory: ErrorFactory) -> int:
        """Échoue toutes les entrées en attente en une passe et vide le mapping."""

        entries = list(self._pending.values())
        self._pending.clear()
        for entry in entries:
            self._cancel_timer(entry)
            if not entry.future.done():
                entry.future.set_exception(error_factory(entry))
                self.stats.closed += 1
        if entries:
            logger.warning("%d requête(s) en vol échouée(s)", len(entries))
        return len(entries)

    def fail_all_closed(self, returncode: int | None) -> int:
        return self.fail_all(
            lambda entry: ProcessClosedError(
                f"Processus MCP terminé avant la réponse à {entry.method}",
                returncode=returncode,
                request_id=entry.request_id,
            )
        )

    def _observe(self, payload: dict[str, object]) -> None:
        if self._observer is not None:
            self._observer(payload)

    def _register(self, key: str, request_id: object, method: str, timeout_s: float) -> PendingRequest:
        if key in self._pending:
            raise DuplicateIdError(
                f"Requête déjà en vol avec l'identifiant {request_id!r}",
                request_id=request_id,
            )

        loop = asyncio.get_running_loop()
        entry = PendingRequest(
            request_id=request_id,
            key=key,
            method=method,
            future=loop.create_future(),
            timeout_s=timeout_s,
        )
        entry.timer = loop.call_later(timeout_s, self._expire, key, entry)
        self._pending[key] = entry
        return entry

    def _expire(self, key: str, entry: PendingRequest) -> None:
        entry.timer = None
        if self._pending.get(key) is not entry:
            return
        del self._pending[key]
        if entry.future.done():
            return
        self.stats.timed_out += 1
        logger.warning("Timeout MCP: %s (id=%s) après %.1fs", entry.method, entry.request_id, entry.timeout_s)
        entry.future.set_exception(
            RequestTimeoutError(
                "MCP response timeout",
                request_id=entry.request_id,
                method=entry.method,
                timeout_s=entry.timeout_s,
            )
        )

    def _fail(self, key: str, exc: BridgeError) -> None:
        entry = self._pending.pop(key, None)
        if entry is None:
            return
        self._cancel_timer(entry)
        if not entry.future.done():
            entry.future.set_exception(exc)

    def _discard(self, key: str, entry: PendingRequest) -> None:
        if self._pending.get(key) is entry:
            del self._pending[key]
            self._cancel_timer(entry)

    @staticmethod
    def _cancel_timer(entry: PendingRequest) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
