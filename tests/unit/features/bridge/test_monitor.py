"""Tests unitaires — monitoring opt-in du trafic JSON-RPC (JSONL via aiofiles)."""

from __future__ import annotations

import json

import pytest

from mcp_stdio_proxy.config.settings import MonitoringConfig
from mcp_stdio_proxy.features.bridge.monitor import BridgeMonitor, classify_jsonrpc


@pytest.mark.unit
def test_classify_jsonrpc():
    assert classify_jsonrpc({"jsonrpc": "2.0", "id": 1, "method": "tools/list"}) == ("request", "tools/list", 1)
    assert classify_jsonrpc({"jsonrpc": "2.0", "method": "notifications/ready"}) == (
        "notification",
        "notifications/ready",
        None,
    )
    assert classify_jsonrpc({"jsonrpc": "2.0", "id": 1, "result": {}}) == ("response", None, 1)
    assert classify_jsonrpc({"foo": "bar"}) == (None, None, None)


@pytest.mark.unit
def test_disabled_monitor_counts_nothing():
    monitor = BridgeMonitor(enabled=False)
    monitor.observe(direction="proxy_to_child", obj={"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
    summary = monitor.get_summary()
    assert summary["enabled"] is False
    assert summary["outbound_requests_by_method"] == {}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_enabled_monitor_writes_metadata_only(tmp_path):
    log_path = tmp_path / "logs" / "bridge.jsonl"
    monitor = BridgeMonitor.from_config(MonitoringConfig(enabled=True, log_path=str(log_path)))
    await monitor.start()

    monitor.observe(
        direction="proxy_to_child",
        obj={"jsonrpc": "2.0", "id": "a", "method": "tools/call", "params": {"secret": "token"}},
    )
    monitor.observe(direction="child_to_proxy", obj={"jsonrpc": "2.0", "id": "s1", "method": "roots/list"})
    monitor.observe(direction="child_to_proxy", obj={"jsonrpc": "2.0", "method": "notifications/ready"})
    monitor.observe(direction="child_to_proxy", obj={"jsonrpc": "2.0", "id": "a", "error": {"code": -1}})
    await monitor.stop()

    summary = monitor.get_summary()
    assert summary["outbound_requests_by_method"] == {"tools/call": 1}
    assert summary["inbound_requests_by_method"] == {"roots/list": 1}
    assert summary["notifications_total"] == 1
    assert summary["responses_total"] == 1
    assert summary["responses_error_total"] == 1

    content = log_path.read_text(encoding="utf-8")
    assert "secret" not in content
    events = [json.loads(line) for line in content.splitlines()]
    assert [e["kind"] for e in events] == ["request", "request", "notification", "response"]
    assert events[0]["direction"] == "proxy_to_child"
    assert events[-1]["error"] is True
    assert events[0]["ts"].endswith("Z")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_full_queue_drops_instead_of_blocking(tmp_path):
    monitor = BridgeMonitor(enabled=True, log_path=tmp_path / "bridge.jsonl", queue_max=1)
    await monitor.start()

    # Pas d'await entre les observe(): le writer n'a pas encore consommé la file
    for i in range(5):
        monitor.observe(direction="proxy_to_child", obj={"jsonrpc": "2.0", "id": i, "method": "ping"})

    assert monitor.log_dropped_total == 4
    assert monitor.outbound_requests_by_method == {"ping": 5}
    await monitor.stop()
