"""
tests/test_accumulator.py

Tests for aggregation/accumulator.py — ingest semantics, atomicity and
concurrency, driven through TrafficService with a fixed clock.
"""

from __future__ import annotations

import itertools
import sqlite3
import threading
from datetime import datetime, timedelta
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest

from xtrafficdash.backend.config import Settings
from xtrafficdash.backend.errors import StorageError, ValidationError
from xtrafficdash.backend.metrics import METRICS
from xtrafficdash.backend.models import CLIENT, PORT
from xtrafficdash.backend.service import TrafficService
from xtrafficdash.backend.storage import Database, apply_migrations

TZ = ZoneInfo("Asia/Shanghai")
T0 = datetime(2024, 3, 10, 12, 0, 0, tzinfo=TZ)
TODAY = "2024-03-10"


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def inbound(tag: str, up: int, down: int, is_inbound: bool = True) -> dict:
    return {"Tag": tag, "Up": up, "Down": down, "IsInbound": is_inbound, "IsOutbound": not is_inbound}


def report(inbounds=(), clients=()) -> dict:
    return {"inboundTraffics": list(inbounds), "clientTraffics": list(clients)}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset_all()
    yield
    METRICS.reset_all()


@pytest.fixture
def clock():
    return FakeClock(T0)


def _service(clock, mode: str = "history") -> TrafficService:
    db = Database(":memory:")
    db.init_schema()
    apply_migrations(db)
    cfg = Settings(_env_file=None, TIMEZONE="Asia/Shanghai", COUNTER_MODE=mode)
    return TrafficService(db, cfg, clock=clock)


@pytest.fixture
def service(clock):
    svc = _service(clock)
    yield svc
    svc.db.close()


@pytest.fixture
def live_service(clock):
    svc = _service(clock, mode="live")
    yield svc
    svc.db.close()


def _service_id(service: TrafficService, ip: str = "1.2.3.4") -> int:
    row = service.db.execute("SELECT id FROM services WHERE ip_address = ?", (ip,)).fetchone()
    return row["id"]


def _port(service: TrafficService, ip: str = "1.2.3.4", tag: str = "inbound-8443") -> dict:
    return service.repo.get_entity(PORT, _service_id(service, ip), tag)


# ---------------------------------------------------------------------------
# Basic accumulation
# ---------------------------------------------------------------------------

class TestIngestScenario:

    def test_two_reports_same_day_accumulate(self, service, clock):
        service.ingest("1.2.3.4", report([inbound("inbound-8443", 100, 50)]))
        clock.advance(seconds=1)
        service.ingest("1.2.3.4", report([inbound("inbound-8443", 30, 10)]))

        entity = _port(service)
        assert entity["port"] == 8443
        assert entity["last_updated"] == (T0 + timedelta(seconds=1)).timestamp()
        assert service.repo.history_rows(PORT, entity["id"]) == [
            {"date": TODAY, "daily_up": 130, "daily_down": 60}
        ]

        detail = service.get_entity_detail(entity["service_id"], "port", "inbound-8443", 7)
        upload = detail["traffic"]["upload_data"]
        assert upload == [0, 0, 0, 0, 0, 0, 130]
        assert detail["traffic"]["dates"][-1] == TODAY

    def test_unparseable_port_defaults_to_zero(self, service):
        service.ingest("1.2.3.4", report([inbound("vless-reality", 1, 1)]))
        assert _port(service, tag="vless-reality")["port"] == 0

    def test_client_deltas_recorded(self, service):
        service.ingest("1.2.3.4", report(clients=[{"email": "a@x.io", "up": 5, "down": 7}]))
        sid = _service_id(service)
        client = service.repo.get_entity(CLIENT, sid, "a@x.io")
        assert service.repo.history_totals(CLIENT, client["id"]) == (5, 7)

    def test_result_counts(self, service):
        result = service.ingest(
            "1.2.3.4",
            report(
                [inbound("in-1", 1, 0), inbound("in-2", 0, 0), inbound("out", 9, 9, is_inbound=False)],
                [{"email": "a@x.io", "up": 1, "down": 1}],
            ),
        )
        assert result.source_created is True
        assert result.ports_touched == 2
        assert result.clients_touched == 1
        assert result.deltas_applied == 2
        assert result.deltas_skipped == 1
        assert METRICS.reports_received.value == 1
        assert METRICS.deltas_applied.value == 2

    def test_next_day_goes_to_new_bucket(self, service, clock):
        service.ingest("1.2.3.4", report([inbound("in-1", 10, 10)]))
        clock.advance(days=1)
        service.ingest("1.2.3.4", report([inbound("in-1", 5, 5)]))
        rows = service.repo.history_rows(PORT, _port(service, tag="in-1")["id"])
        assert [(r["date"], r["daily_up"]) for r in rows] == [(TODAY, 10), ("2024-03-11", 5)]

    def test_local_timezone_decides_the_date(self, service, clock):
        # 00:30 on the 11th in Shanghai is still the 10th in UTC
        clock.now = datetime(2024, 3, 11, 0, 30, tzinfo=TZ)
        service.ingest("1.2.3.4", report([inbound("in-1", 1, 1)]))
        rows = service.repo.history_rows(PORT, _port(service, tag="in-1")["id"])
        assert rows[0]["date"] == "2024-03-11"


class TestCommutativity:

    @pytest.mark.parametrize("order", list(itertools.permutations([(10, 1), (20, 2), (30, 3)])))
    def test_order_does_not_matter(self, service, order):
        for up, down in order:
            service.ingest("1.2.3.4", report([inbound("in-1", up, down)]))
        eid = _port(service, tag="in-1")["id"]
        assert service.repo.history_totals(PORT, eid) == (60, 6)

    def test_concurrent_ingests_all_counted(self, service):
        errors: list[Exception] = []

        def worker():
            try:
                for _ in range(25):
                    service.ingest("1.2.3.4", report([inbound("in-1", 1, 2)]))
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        eid = _port(service, tag="in-1")["id"]
        assert service.repo.history_totals(PORT, eid) == (200, 400)


# ---------------------------------------------------------------------------
# Heartbeats and skipped elements
# ---------------------------------------------------------------------------

class TestZeroDeltaHeartbeat:

    def test_heartbeat_updates_last_seen_only(self, service, clock):
        service.ingest("1.2.3.4", report([inbound("in-1", 5, 5)]))
        before = _port(service, tag="in-1")

        clock.advance(seconds=30)
        service.ingest("1.2.3.4", report([inbound("in-1", 0, 0)]))

        after = _port(service, tag="in-1")
        assert after["last_updated"] == before["last_updated"]
        assert service.repo.history_totals(PORT, after["id"]) == (5, 5)
        svc_row = service.repo.get_service(after["service_id"])
        assert svc_row["last_seen"] == clock.now.timestamp()

    def test_zero_delta_creates_entity_without_history(self, service):
        service.ingest("1.2.3.4", report([inbound("in-1", 0, 0)]))
        entity = _port(service, tag="in-1")
        assert entity is not None
        assert entity["last_updated"] is None
        assert service.repo.history_rows(PORT, entity["id"]) == []

    def test_empty_report_still_marks_source_seen(self, service, clock):
        result = service.ingest("5.6.7.8", {})
        row = service.repo.get_service(result.source_id)
        assert row["last_seen"] == clock.now.timestamp()


class TestSkippedElements:

    def test_outbound_leg_skipped_entirely(self, service):
        service.ingest("1.2.3.4", report([inbound("direct", 9, 9, is_inbound=False)]))
        sid = _service_id(service)
        assert service.repo.list_entities(PORT, sid) == []

    def test_malformed_elements_warn_and_continue(self, service):
        result = service.ingest(
            "1.2.3.4",
            report(
                ["not-an-object", {"Tag": "", "Up": 1}, inbound("in-1", 4, 4),
                 {"Tag": "in-2", "Up": "lots", "Down": 1}],
                [{"email": "   ", "up": 1}],
            ),
        )
        assert len(result.warnings) == 4
        assert METRICS.parse_warnings.value == 4
        assert service.repo.history_totals(PORT, _port(service, tag="in-1")["id"]) == (4, 4)

    def test_empty_source_ip_rejected(self, service):
        with pytest.raises(ValidationError):
            service.ingest("  ", report([inbound("in-1", 1, 1)]))

    def test_non_object_body_rejected(self, service):
        with pytest.raises(ValidationError):
            service.ingest("1.2.3.4", ["inboundTraffics"])


# ---------------------------------------------------------------------------
# Atomicity
# ---------------------------------------------------------------------------

class TestRollback:

    def test_storage_failure_rolls_back_whole_batch(self, service):
        with patch.object(
            service.repo, "touch_service", side_effect=sqlite3.OperationalError("disk I/O error")
        ):
            with pytest.raises(StorageError):
                service.ingest(
                    "1.2.3.4",
                    report([inbound("in-1", 1, 1), inbound("in-2", 2, 2)],
                           [{"email": "a@x.io", "up": 3, "down": 3}]),
                )

        assert service.repo.list_services() == []
        count = service.db.execute("SELECT COUNT(*) FROM inbound_traffic_history").fetchone()[0]
        assert count == 0
        assert METRICS.reports_failed.value == 1
        assert METRICS.reports_received.value == 0

    def test_service_usable_after_rollback(self, service):
        with patch.object(service.repo, "touch_service", side_effect=sqlite3.OperationalError("x")):
            with pytest.raises(StorageError):
                service.ingest("1.2.3.4", report([inbound("in-1", 1, 1)]))
        service.ingest("1.2.3.4", report([inbound("in-1", 1, 1)]))
        assert service.repo.history_totals(PORT, _port(service, tag="in-1")["id"]) == (1, 1)


# ---------------------------------------------------------------------------
# Live counter mode
# ---------------------------------------------------------------------------

class TestLiveMode:

    def test_ingest_adds_to_live_counters(self, live_service):
        live_service.ingest("1.2.3.4", report([inbound("in-1", 10, 20)]))
        live_service.ingest("1.2.3.4", report([inbound("in-1", 1, 2)]))
        entity = _port(live_service, tag="in-1")
        assert (entity["up"], entity["down"]) == (11, 22)
        assert live_service.repo.history_rows(PORT, entity["id"]) == []

    def test_live_counters_show_as_today(self, live_service):
        live_service.ingest("1.2.3.4", report([inbound("in-1", 10, 20)]))
        entity = _port(live_service, tag="in-1")
        detail = live_service.get_entity_detail(entity["service_id"], "port", "in-1", 7)
        assert detail["port_info"]["today_up"] == 10
        assert detail["traffic"]["upload_data"][-1] == 10
