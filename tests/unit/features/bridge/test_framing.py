"""Tests unitaires — découpage et classification des lignes stdio.

Objectifs:
    - Lectures partielles, plusieurs messages par chunk
    - Logs non-JSON classés DIAGNOSTIC (jamais une erreur)
    - Ligne surdimensionnée abandonnée puis resynchronisation
"""

from __future__ import annotations

import json

import pytest

from mcp_stdio_proxy.features.bridge.framing import LineFramer, LineKind, classify_line


def _line(obj: object) -> bytes:
    return (json.dumps(obj) + "\n").encode("utf-8")


@pytest.mark.unit
def test_classify_line_message_and_diagnostic():
    msg = classify_line(b'{"jsonrpc": "2.0", "id": 1, "result": {"ok": true}}')
    assert msg.kind is LineKind.MESSAGE
    assert msg.messages == [{"jsonrpc": "2.0", "id": 1, "result": {"ok": True}}]

    assert classify_line("Dynatrace MCP server v1.2 starting").kind is LineKind.DIAGNOSTIC
    assert classify_line("{not json").kind is LineKind.DIAGNOSTIC
    # JSON valide mais sans clé protocolaire: log structuré
    assert classify_line('{"level": "info", "msg": "hello"}').kind is LineKind.DIAGNOSTIC
    assert classify_line("[]").kind is LineKind.DIAGNOSTIC


@pytest.mark.unit
def test_classify_line_batch_array():
    framed = classify_line('[{"jsonrpc":"2.0","id":1,"result":1},{"jsonrpc":"2.0","id":2,"result":2}]')
    assert framed.is_message
    assert [m["id"] for m in framed.messages] == [1, 2]


@pytest.mark.unit
def test_feed_handles_partial_reads():
    framer = LineFramer(max_line_bytes=1024)
    data = _line({"jsonrpc": "2.0", "id": "a", "result": {}})

    assert framer.feed(data[:10]) == []
    assert framer.buffered_bytes == 10
    lines = framer.feed(data[10:])

    assert len(lines) == 1
    assert lines[0].messages[0]["id"] == "a"
    assert framer.buffered_bytes == 0


@pytest.mark.unit
def test_feed_splits_multiple_messages_and_logs_in_one_chunk():
    framer = LineFramer(max_line_bytes=1024)
    chunk = (
        _line({"jsonrpc": "2.0", "id": 1, "result": 1})
        + b"some log line\r\n"
        + b"\n"
        + _line({"jsonrpc": "2.0", "method": "notifications/ready"})
    )

    lines = framer.feed(chunk)
    assert [line.kind for line in lines] == [LineKind.MESSAGE, LineKind.DIAGNOSTIC, LineKind.MESSAGE]
    assert lines[1].text == "some log line"


@pytest.mark.unit
def test_oversized_line_is_dropped_and_framer_resyncs():
    framer = LineFramer(max_line_bytes=64)

    # Ligne trop longue reçue en plusieurs chunks sans terminateur
    assert framer.feed(b"x" * 50) == []
    assert framer.feed(b"x" * 50) == []
    assert framer.dropped_lines == 1
    assert framer.buffered_bytes == 0

    # Fin de la ligne surdimensionnée puis message valide
    lines = framer.feed(b"xxxx\n" + _line({"jsonrpc": "2.0", "id": 9, "result": {}}))
    assert len(lines) == 1
    assert lines[0].messages[0]["id"] == 9
    assert framer.dropped_lines == 1


@pytest.mark.unit
def test_oversized_complete_line_in_single_chunk():
    framer = LineFramer(max_line_bytes=32)
    lines = framer.feed(b"y" * 40 + b"\n" + b'{"id":1,"result":2}\n')
    assert framer.dropped_lines == 1
    assert len(lines) == 1
    assert lines[0].is_message


@pytest.mark.unit
def test_flush_returns_trailing_line_without_newline():
    framer = LineFramer(max_line_bytes=1024)
    assert framer.feed(b'{"jsonrpc":"2.0","id":3,"result":"end"}') == []
    lines = framer.flush()
    assert len(lines) == 1
    assert lines[0].messages[0]["result"] == "end"
    assert framer.flush() == []


@pytest.mark.unit
def test_two_complete_lines_and_partial_third_completed_later():
    framer = LineFramer(max_line_bytes=1024)
    first = _line({"jsonrpc": "2.0", "id": 1, "result": "one"})
    second = _line({"jsonrpc": "2.0", "id": 2, "result": "two"})
    third = _line({"jsonrpc": "2.0", "id": 3, "result": "three"})

    lines = framer.feed(first + second + third[:12])
    assert [line.messages[0]["id"] for line in lines] == [1, 2]
    assert framer.buffered_bytes == 12

    lines = framer.feed(third[12:])
    assert [line.messages[0]["result"] for line in lines] == ["three"]
    assert framer.buffered_bytes == 0


@pytest.mark.unit
def test_noise_then_reply_in_one_chunk():
    framer = LineFramer(max_line_bytes=1024)
    lines = framer.feed(b'noise\n{"id":"a","result":[1,2]}\n')

    assert [line.kind for line in lines] == [LineKind.DIAGNOSTIC, LineKind.MESSAGE]
    assert lines[0].text == "noise"
    assert lines[1].messages == [{"id": "a", "result": [1, 2]}]
