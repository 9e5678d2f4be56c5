"""mcp_stdio_proxy.features.bridge.framing

Découpage d'un flux d'octets brut en lignes classées.

Le processus enfant mélange des trames JSON-RPC et des logs humains sur stdout
comme sur stderr. Chaque ligne complète est classée explicitement:

- MESSAGE: objet JSON portant au moins une clé JSON-RPC (id/method/result/error),
  ou tableau de tels objets (batch)
- DIAGNOSTIC: tout le reste (bannières, logs, JSON non protocolaire)

Une ligne DIAGNOSTIC n'est jamais une erreur de protocole.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import json
import logging

from ...core.constants import DEFAULT_STREAM_LIMIT_BYTES

logger = logging.getLogger(__name__)

_PROTOCOL_KEYS = frozenset({"id", "method", "result", "error"})


class LineKind(str, Enum):
    MESSAGE = "message"
    DIAGNOSTIC = "diagnostic"


@dataclass(frozen=True)
class FramedLine:
    kind: LineKind
    text: str
    messages: list[dict[str, object]] = field(default_factory=list)

    @property
    def is_message(self) -> bool:
        return self.kind is LineKind.MESSAGE


def _is_protocol_object(obj: object) -> bool:
    return isinstance(obj, dict) and any(key in obj for key in _PROTOCOL_KEYS)


def _decode_json(text: str) -> tuple[bool, object]:
    try:
        return True, json.loads(text)
    except json.JSONDecodeError:
        return False, None


def classify_line(raw_line: bytes | str) -> FramedLine:
    """Classe une ligne complète (sans terminateur) en MESSAGE ou DIAGNOSTIC."""

    if isinstance(raw_line, bytes):
        text = raw_line.decode("utf-8", errors="replace")
    else:
        text = raw_line
    text = text.strip()

    # Seules les lignes qui ressemblent à du JSON structuré sont décodées.
    if not text.startswith(("{", "[")):
        return FramedLine(kind=LineKind.DIAGNOSTIC, text=text)

    decoded, obj = _decode_json(text)
    if not decoded:
        return FramedLine(kind=LineKind.DIAGNOSTIC, text=text)

    if _is_protocol_object(obj):
        return FramedLine(kind=LineKind.MESSAGE, text=text, messages=[obj])

    if isinstance(obj, list) and obj and all(_is_protocol_object(item) for item in obj):
        return FramedLine(kind=LineKind.MESSAGE, text=text, messages=list(obj))

    return FramedLine(kind=LineKind.DIAGNOSTIC, text=text)


class LineFramer:
    """Accumulateur incrémental: chunks d'octets → lignes classées.

    Tolère les lectures partielles, plusieurs messages par chunk et une ligne
    complétée par un chunk ultérieur. Une ligne sans terminateur qui dépasse
    `max_line_bytes` est abandonnée; le framer se resynchronise au prochain `\\n`.
    """

    def __init__(self, *, max_line_bytes: int = DEFAULT_STREAM_LIMIT_BYTES, name: str = "stream") -> None:
        self._max_line_bytes = max(1, int(max_line_bytes))
        self._name = name
        self._buffer = bytearray()
        self._discarding = False
        self.dropped_lines = 0

    @property
    def buffered_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[FramedLine]:
        lines: list[FramedLine] = []
        if not chunk:
            return lines

        self._buffer.extend(chunk)

        while True:
            newline_at = self._buffer.find(b"\n")
            if newline_at < 0:
                break

            raw = bytes(self._buffer[:newline_at])
            del self._buffer[: newline_at + 1]

            if self._discarding:
                # Fin de la ligne surdimensionnée: on reprend au prochain message.
                self._discarding = False
                continue

            if len(raw) > self._max_line_bytes:
                self._drop_oversized(len(raw))
                continue

            framed = self._frame(raw)
            if framed is not None:
                lines.append(framed)

        if len(self._buffer) > self._max_line_bytes:
            if not self._discarding:
                self._drop_oversized(len(self._buffer))
            self._buffer.clear()
            self._discarding = True

        return lines

    def flush(self) -> list[FramedLine]:
        """Classe la dernière ligne non terminée (EOF)."""

        raw = bytes(self._buffer)
        self._buffer.clear()
        discarding = self._discarding
        self._discarding = False
        if discarding:
            return []
        framed = self._frame(raw)
        return [framed] if framed is not None else []

    def _frame(self, raw: bytes) -> FramedLine | None:
        if not raw.strip():
            return None
        return classify_line(raw)

    def _drop_oversized(self, size: int) -> None:
        self.dropped_lines += 1
        logger.warning(
            "%s: ligne de %d octets au-delà de la limite (%d), ignorée "
            "(augmenter MCP_BRIDGE_STDIO_STREAM_LIMIT)",
            self._name,
            size,
            self._max_line_bytes,
        )
