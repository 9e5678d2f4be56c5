"""mcp_stdio_proxy.features.bridge.monitor

Monitoring opt-in du trafic JSON-RPC entre le proxy et le processus enfant.

Important:
- Logger uniquement de la metadata (pas de params/result).
- L'écriture JSONL est asynchrone (queue bornée + aiofiles); une file pleine
  incrémente un compteur au lieu de bloquer le trafic.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
from typing import Literal

import aiofiles

from ...config.settings import MonitoringConfig

logger = logging.getLogger(__name__)

Direction = Literal["proxy_to_child", "child_to_proxy"]
EventKind = Literal["request", "notification", "response"]


@dataclass(frozen=True)
class BridgeMonitorEvent:
    ts: str
    direction: Direction
    kind: EventKind
    method: str | None
    req_id: object | None
    is_error: bool = False

    def to_json_line(self) -> str:
        payload: dict[str, object] = {
            "ts": self.ts,
            "direction": self.direction,
            "kind": self.kind,
        }
        if self.method is not None:
            payload["method"] = self.method
        if self.req_id is not None:
            payload["id"] = self.req_id
        if self.is_error:
            payload["error"] = True
        return json.dumps(payload, ensure_ascii=False)


def _now_utc_iso() -> str:
    # ISO 8601 UTC with ms precision, 'Z' suffix.
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def classify_jsonrpc(obj: dict[str, object]) -> tuple[EventKind | None, str | None, object | None]:
    if isinstance(obj.get("method"), str):
        kind: EventKind = "request" if obj.get("id") is not None else "notification"
        return kind, str(obj.get("method")), obj.get("id")
    if "result" in obj or "error" in obj:
        return "response", None, obj.get("id")
    return None, None, obj.get("id")


class BridgeMonitor:
    """Compteurs de trafic + journal JSONL optionnel."""

    def __init__(
        self,
        *,
        enabled: bool,
        log_path: Path | None = None,
        queue_max: int = 1000,
    ) -> None:
        self._enabled = enabled
        self._log_path = log_path if enabled else None
        self._queue_max = max(1, queue_max)

        self._queue: asyncio.Queue[str | None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._closing = False

        self.outbound_requests_by_method: dict[str, int] = {}
        self.inbound_requests_by_method: dict[str, int] = {}
        self.notifications_total: int = 0
        self.responses_total: int = 0
        self.responses_error_total: int = 0

        self.log_dropped_total: int = 0
        self.log_write_errors_total: int = 0
        self.log_write_disabled: bool = False
        self.log_last_error: str | None = None

    @classmethod
    def from_config(cls, config: MonitoringConfig) -> BridgeMonitor:
        log_path = None
        if config.enabled and config.log_path:
            log_path = Path(config.log_path).expanduser().resolve(strict=False)
        return cls(enabled=config.enabled, log_path=log_path, queue_max=config.queue_max)

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def start(self) -> None:
        if not self._enabled or self._log_path is None or self._queue is not None:
            return

        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._queue = asyncio.Queue(maxsize=self._queue_max)
        self._writer_task = asyncio.create_task(self._writer_loop())

    def observe(self, *, direction: Direction, obj: object) -> None:
        if not self._enabled or self._closing:
            return
        if not isinstance(obj, dict):
            return

        kind, method, req_id = classify_jsonrpc(obj)
        if kind is None:
            return

        if kind == "request" and method is not None:
            target = (
                self.outbound_requests_by_method
                if direction == "proxy_to_child"
                else self.inbound_requests_by_method
            )
            target[method] = target.get(method, 0) + 1
        elif kind == "notification":
            self.notifications_total += 1
        else:
            self.responses_total += 1
            if "error" in obj:
                self.responses_error_total += 1

        self._enqueue_event(
            BridgeMonitorEvent(
                ts=_now_utc_iso(),
                direction=direction,
                kind=kind,
                method=method,
                req_id=req_id,
                is_error="error" in obj,
            )
        )

    async def stop(self) -> None:
        if not self._enabled or self._closing:
            return

        self._closing = True

        queue = self._queue
        writer_task = self._writer_task
        if queue is None or writer_task is None:
            return

        try:
            await asyncio.wait_for(queue.join(), timeout=1.0)
        except asyncio.TimeoutError:
            logger.warning("Monitor: file non vidée à l'arrêt (%d ligne(s))", queue.qsize())

        try:
            queue.put_nowait(None)
        except asyncio.QueueFull:
            writer_task.cancel()

        try:
            await asyncio.wait_for(writer_task, timeout=1.0)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            writer_task.cancel()

    def get_summary(self) -> dict[str, object]:
        return {
            "enabled": self._enabled,
            "log_path": str(self._log_path) if self._log_path is not None else None,
            "outbound_requests_by_method": dict(self.outbound_requests_by_method),
            "inbound_requests_by_method": dict(self.inbound_requests_by_method),
            "notifications_total": self.notifications_total,
            "responses_total": self.responses_total,
            "responses_error_total": self.responses_error_total,
            "log_dropped_total": self.log_dropped_total,
            "log_write_errors_total": self.log_write_errors_total,
            "log_write_disabled": self.log_write_disabled,
            "log_last_error": self.log_last_error,
        }

    def _enqueue_event(self, event: BridgeMonitorEvent) -> None:
        if self._queue is None or self.log_write_disabled:
            return

        try:
            self._queue.put_nowait(event.to_json_line())
        except asyncio.QueueFull:
            self.log_dropped_total += 1

    async def _writer_loop(self) -> None:
        assert self._queue is not None
        assert self._log_path is not None

        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                if self.log_write_disabled:
                    continue

                try:
                    async with aiofiles.open(self._log_path, "a", encoding="utf-8") as f:
                        await f.write(item + "\n")
                except OSError as e:
                    self.log_write_errors_total += 1
                    self.log_write_disabled = True
                    self.log_last_error = str(e)
                    logger.error("Monitor: écriture désactivée (%s)", e)
            finally:
                self._queue.task_done()
