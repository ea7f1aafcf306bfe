"""
tests/test_relay.py

Tests for the hysteria2 relay: config validation, counter summing and the
pull → push cycle against httpx.MockTransport.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from xtrafficdash.backend.errors import RelayError, ValidationError
from xtrafficdash.backend.metrics import METRICS
from xtrafficdash.backend.relay import RelayClient, relay_poller, sync_all
from xtrafficdash.backend.relay.client import RELAY_TAG, build_report, sum_traffic
from xtrafficdash.backend.relay.validator import (
    is_valid_host,
    parse_port,
    validate_relay_config,
    validate_relay_configs,
)

TARGET = "http://collector:37022/api/traffic"

CFG = {
    "source_api_host": "203.0.113.7",
    "source_api_port": 8080,
    "source_api_password": "pw",
    "target_api_url": TARGET,
}


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset_all()
    yield


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestValidator:

    @pytest.mark.parametrize("host,ok", [
        ("203.0.113.7", True),
        ("node.example.com", True),
        ("localhost", False),
        ("", False),
        (None, False),
        ("bad host.com", False),
    ])
    def test_host(self, host, ok):
        assert is_valid_host(host) is ok

    @pytest.mark.parametrize("port,expected", [
        (8080, 8080), ("443", 443), (" 22 ", 22), (0, None), (65536, None),
        ("x", None), ("²", None), (True, None), (None, None),
    ])
    def test_port(self, port, expected):
        assert parse_port(port) == expected

    def test_normalises(self):
        cfg = validate_relay_config({**CFG, "source_api_host": " node.example.com ", "source_api_port": "9000"})
        assert cfg["source_api_host"] == "node.example.com"
        assert cfg["source_api_port"] == 9000

    @pytest.mark.parametrize("field,value", [
        ("source_api_host", "not a host"),
        ("source_api_port", 70000),
        ("source_api_password", "   "),
        ("target_api_url", "collector:37022"),
    ])
    def test_rejects(self, field, value):
        with pytest.raises(ValidationError):
            validate_relay_config({**CFG, field: value})

    def test_batch_error_names_row(self):
        with pytest.raises(ValidationError, match="row 2"):
            validate_relay_configs([CFG, {**CFG, "source_api_port": "x"}])

    def test_batch_requires_list(self):
        with pytest.raises(ValidationError):
            validate_relay_configs(CFG)

    def test_batch_empty_ok(self):
        assert validate_relay_configs([]) == []


# ---------------------------------------------------------------------------
# Summing
# ---------------------------------------------------------------------------

class TestSumTraffic:

    def test_sums_users(self):
        data = {"alice": {"tx": 10, "rx": 20}, "bob": {"tx": 1, "rx": 2}}
        assert sum_traffic(data) == (11, 22)

    def test_ignores_non_object_entries(self):
        assert sum_traffic({"alice": {"tx": 5}, "meta": "x"}) == (5, 0)

    def test_empty(self):
        assert sum_traffic({}) == (0, 0)

    def test_not_an_object(self):
        with pytest.raises(RelayError):
            sum_traffic([1, 2])

    def test_bad_counter(self):
        with pytest.raises(RelayError):
            sum_traffic({"alice": {"tx": "many"}})

    def test_infinite_counter(self):
        with pytest.raises(RelayError):
            sum_traffic({"alice": {"tx": float("inf"), "rx": 1}})

    def test_report_shape(self):
        report = build_report(3, 4)
        (entry,) = report["inboundTraffics"]
        assert entry["Tag"] == RELAY_TAG
        assert (entry["Up"], entry["Down"]) == (3, 4)


# ---------------------------------------------------------------------------
# Pull → push
# ---------------------------------------------------------------------------

def _transport(traffic_status=200, traffic_body=None, push_status=200, seen=None):
    seen = seen if seen is not None else []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.method == "GET":
            body = traffic_body if traffic_body is not None else {"u": {"tx": 100, "rx": 200}}
            return httpx.Response(traffic_status, json=body)
        return httpx.Response(push_status, json={"success": push_status == 200})

    return httpx.MockTransport(handler)


class TestSync:

    def test_sync_once_pulls_and_pushes(self):
        seen: list[httpx.Request] = []
        client = RelayClient(transport=_transport(seen=seen))
        assert asyncio.run(client.sync_once(CFG, TARGET)) is True

        pull, push = seen
        assert str(pull.url) == "http://203.0.113.7:8080/traffic?clear=1"
        assert pull.headers["Authorization"] == "pw"
        assert str(push.url) == TARGET
        assert push.headers["X-Real-Ip"] == "203.0.113.7"
        body = json.loads(push.content)
        assert body["inboundTraffics"][0]["Up"] == 100
        assert body["inboundTraffics"][0]["Down"] == 200
        assert METRICS.relay_pulls_ok.value == 1

    def test_pull_error_status(self):
        seen: list[httpx.Request] = []
        client = RelayClient(transport=_transport(traffic_status=401, seen=seen))
        assert asyncio.run(client.sync_once(CFG, TARGET)) is False
        assert len(seen) == 1
        assert METRICS.relay_pulls_failed.value == 1

    def test_push_error_status(self):
        client = RelayClient(transport=_transport(push_status=500))
        assert asyncio.run(client.sync_once(CFG, TARGET)) is False

    def test_pull_raises_relay_error(self):
        client = RelayClient(transport=_transport(traffic_body=["bad"]))
        with pytest.raises(RelayError):
            asyncio.run(client.pull(CFG))

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = RelayClient(transport=httpx.MockTransport(handler))
        assert asyncio.run(client.sync_once(CFG, TARGET)) is False

    def test_sync_all_uses_first_target(self):
        seen: list[httpx.Request] = []
        client = RelayClient(transport=_transport(seen=seen))
        configs = [
            CFG,
            {**CFG, "source_api_host": "node.example.com", "target_api_url": "http://elsewhere/"},
        ]
        assert asyncio.run(sync_all(configs, client)) == 2
        pushes = [r for r in seen if r.method == "POST"]
        assert {str(r.url) for r in pushes} == {TARGET}

    def test_sync_all_skips_incomplete(self):
        seen: list[httpx.Request] = []
        client = RelayClient(transport=_transport(seen=seen))
        configs = [CFG, {**CFG, "source_api_password": ""}]
        assert asyncio.run(sync_all(configs, client)) == 1

    def test_sync_all_empty_target(self):
        client = RelayClient(transport=_transport())
        assert asyncio.run(sync_all([{**CFG, "target_api_url": ""}], client)) == 0

    def test_sync_all_no_configs(self):
        assert asyncio.run(sync_all([], RelayClient(transport=_transport()))) == 0

    def test_infinite_counter_fails_only_that_node(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"success": True})
            if request.url.host == "203.0.113.7":
                return httpx.Response(
                    200,
                    content=b'{"user": {"tx": Infinity, "rx": 1}}',
                    headers={"Content-Type": "application/json"},
                )
            return httpx.Response(200, json={"user": {"tx": 1, "rx": 1}})

        client = RelayClient(transport=httpx.MockTransport(handler))
        configs = [CFG, {**CFG, "source_api_host": "node.example.com"}]
        assert asyncio.run(sync_all(configs, client)) == 1
        assert METRICS.relay_pulls_failed.value == 1
        assert METRICS.relay_pulls_ok.value == 1

    def test_sync_all_survives_unexpected_error(self):
        class ExplodingClient:
            async def sync_once(self, cfg, target_url):
                if cfg["source_api_host"] == "203.0.113.7":
                    raise RuntimeError("boom")
                return True

        configs = [CFG, {**CFG, "source_api_host": "node.example.com"}]
        assert asyncio.run(sync_all(configs, ExplodingClient())) == 1
        assert METRICS.relay_pulls_failed.value == 1


class TestPoller:

    def test_keeps_polling_after_failed_round(self):
        calls = []

        class Service:
            def list_relay_configs(self):
                calls.append(1)
                return [None]  # not a config; sync_all raises on it

        async def scenario():
            shutdown = asyncio.Event()
            task = asyncio.create_task(
                relay_poller(Service(), RelayClient(transport=_transport()), 0.01, shutdown)
            )
            while len(calls) < 3:
                await asyncio.sleep(0.01)
            shutdown.set()
            await asyncio.wait_for(task, timeout=1)

        asyncio.run(asyncio.wait_for(scenario(), timeout=5))
        assert len(calls) >= 3

    def test_stops_on_shutdown(self):
        class Service:
            def list_relay_configs(self):
                return []

        async def scenario():
            shutdown = asyncio.Event()
            task = asyncio.create_task(
                relay_poller(Service(), RelayClient(transport=_transport()), 60, shutdown)
            )
            await asyncio.sleep(0.05)
            shutdown.set()
            await asyncio.wait_for(task, timeout=1)
            return task.done()

        assert asyncio.run(scenario()) is True
