"""
backend/service.py

TrafficService — the one object the API layer and the background tasks
talk to. It owns the storage handle, the configuration and the core
components, and turns their results into response-ready dicts
(masked IPs, ISO timestamps in the deployment timezone).

Identifiers are validated here, before any storage access. Read paths
never create rows; only ingest() does.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable

from .aggregation import (
    CounterAccumulator,
    DailyRollover,
    SummaryAggregator,
    WindowQuery,
    WindowSeries,
)
from .aggregation.models import SourceSummary
from .config import Settings
from .errors import NotFoundError, ValidationError
from .export import history_filename, render_history_csv
from .formatting import mask_ip, to_iso
from .models import CLIENT, PORT, IngestResult, RolloverResult, TrafficReport, parse_report
from .relay.validator import validate_relay_config, validate_relay_configs
from .storage import Database, HistoryFilter, TrafficRepository

logger = logging.getLogger(__name__)

_KIND_ALIASES = {
    "port": PORT,
    "inbound": PORT,
    "client": CLIENT,
    "user": CLIENT,
}


# ---------------------------------------------------------------------------
# Identifier parsing
# ---------------------------------------------------------------------------

def parse_source_id(value: Any) -> int:
    """Positive integer service id from an int or a numeric string."""
    if isinstance(value, bool):
        raise ValidationError(f"invalid service id {value!r}")
    if isinstance(value, int):
        source_id = value
    elif isinstance(value, str) and value.strip().isdecimal():
        source_id = int(value.strip())
    else:
        raise ValidationError(f"invalid service id {value!r}")
    if source_id <= 0:
        raise ValidationError(f"invalid service id {value!r}")
    return source_id


def parse_kind(value: Any) -> str:
    kind = _KIND_ALIASES.get(str(value).strip().lower()) if value is not None else None
    if kind is None:
        raise ValidationError(f"invalid entity kind {value!r} (expected port or client)")
    return kind


def require_key(value: Any, what: str = "key") -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{what} must not be empty")
    return value.strip()


def _parse_date_param(value: Any, what: str) -> str | None:
    if value is None or value == "":
        return None
    try:
        return date.fromisoformat(str(value)).isoformat()
    except ValueError:
        raise ValidationError(f"{what} must be YYYY-MM-DD") from None


def history_filter(
    service_id: Any = None,
    tag: Any = None,
    email: Any = None,
    start_date: Any = None,
    end_date: Any = None,
    limit: Any = None,
) -> HistoryFilter:
    """Build a HistoryFilter from raw query parameters."""
    if limit in (None, ""):
        max_rows = 100
    elif isinstance(limit, int) or (isinstance(limit, str) and limit.strip().isdecimal()):
        max_rows = int(limit)
    else:
        raise ValidationError(f"invalid limit {limit!r}")
    return HistoryFilter(
        service_id=parse_source_id(service_id) if service_id not in (None, "") else None,
        tag=tag or None,
        email=email or None,
        start_date=_parse_date_param(start_date, "start_date"),
        end_date=_parse_date_param(end_date, "end_date"),
        limit=max_rows,
    )


def _clean_name(name: Any) -> str | None:
    if name is None:
        return None
    if not isinstance(name, str):
        raise ValidationError("custom_name must be a string")
    return name.strip() or None


class TrafficService:
    """
    Args:
        db:       Open Database with schema and migrations applied.
        settings: Application settings.
        clock:    Zero-arg callable returning an aware datetime. Defaults to
                  the current time in settings.TIMEZONE.
    """

    def __init__(
        self,
        db: Database,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db
        self._settings = settings
        self._tz = settings.tzinfo
        self._clock = clock or (lambda: datetime.now(self._tz))
        mode = settings.COUNTER_MODE

        self.repo = TrafficRepository(db)
        self.accumulator = CounterAccumulator(self.repo, mode, self._clock)
        self.rollover = DailyRollover(self.repo, mode, self._clock)
        self.windows = WindowQuery(
            self.repo,
            mode,
            self._clock,
            freshness_seconds=settings.ENTITY_FRESHNESS_SECONDS,
            default_days=settings.DEFAULT_WINDOW_DAYS,
            max_days=settings.MAX_WINDOW_DAYS,
        )
        self.summary = SummaryAggregator(
            self.repo,
            mode,
            self._clock,
            source_freshness_seconds=settings.SOURCE_FRESHNESS_SECONDS,
            entity_freshness_seconds=settings.ENTITY_FRESHNESS_SECONDS,
        )
        logger.info("TrafficService ready — mode=%s tz=%s", mode, settings.TIMEZONE)

    @property
    def db(self) -> Database:
        return self._db

    @property
    def settings(self) -> Settings:
        return self._settings

    def now(self) -> datetime:
        return self._clock()

    # ==================================================================
    # Writes
    # ==================================================================

    def ingest(self, source_ip: str, payload: dict | TrafficReport) -> IngestResult:
        report = payload if isinstance(payload, TrafficReport) else parse_report(payload)
        return self.accumulator.ingest(source_ip, report)

    def trigger_rollover(self, day: date | None = None) -> RolloverResult:
        return self.rollover.run(day)

    def delete_source(self, source_id: Any) -> None:
        sid = parse_source_id(source_id)
        with self._db.transaction():
            deleted = self.repo.delete_service(sid)
        if not deleted:
            raise NotFoundError(f"service {sid} not found")
        logger.info("Deleted service %d with all ports, clients and history", sid)

    def rename_source(self, source_id: Any, name: Any) -> dict:
        sid = parse_source_id(source_id)
        custom_name = _clean_name(name)
        with self._db.transaction():
            found = self.repo.rename_service(sid, custom_name, self._clock().timestamp())
        if not found:
            raise NotFoundError(f"service {sid} not found")
        return {"service_id": sid, "custom_name": custom_name}

    def rename_entity(self, source_id: Any, kind: Any, key: Any, name: Any) -> dict:
        sid = parse_source_id(source_id)
        kind = parse_kind(kind)
        key = require_key(key, "tag" if kind == PORT else "email")
        custom_name = _clean_name(name)
        with self._db.transaction():
            found = self.repo.rename_entity(kind, sid, key, custom_name)
        if not found:
            raise NotFoundError(f"{kind} {key!r} not found for service {sid}")
        label = "tag" if kind == PORT else "email"
        return {"service_id": sid, label: key, "custom_name": custom_name}

    # ==================================================================
    # Reads
    # ==================================================================

    def list_sources(self) -> list[dict]:
        return [self._source_dict(s) for s in self.summary.list_sources()]

    def traffic_summary(self) -> dict:
        summary = self.summary.traffic_summary()
        summary["services"] = [self._source_dict(s) for s in summary["services"]]
        return summary

    def get_source_window(self, source_id: Any, days: Any = None) -> WindowSeries:
        return self.windows.source_series(parse_source_id(source_id), days)

    def get_source_detail(self, source_id: Any, days: Any = None) -> dict:
        sid = parse_source_id(source_id)
        days = self.windows.clamp(days)
        service, ports, clients = self.summary.source_entities(sid)
        series = self.windows.source_series(sid, days)
        ip = self._ip(service["ip_address"])
        return {
            "service": {
                "id": service["id"],
                "ip_address": ip,
                "service_name": self._ip(service["service_name"]),
                "custom_name": service["custom_name"],
                "display_name": service["custom_name"] or ip,
                "first_seen": to_iso(service["first_seen"], self._tz),
                "last_seen": to_iso(service["last_seen"], self._tz),
                "is_active": service["is_active"],
                "status": "active" if service["is_active"] else "inactive",
            },
            "inbound_traffics": [self._entity_dict(PORT, e) for e in ports],
            "client_traffics": [self._entity_dict(CLIENT, e) for e in clients],
            "days": days,
            "traffic": series.as_dict(),
        }

    def get_entity_detail(self, source_id: Any, kind: Any, key: Any, days: Any = None) -> dict:
        sid = parse_source_id(source_id)
        kind = parse_kind(kind)
        key = require_key(key, "tag" if kind == PORT else "email")
        days = self.windows.clamp(days)
        with self._db.read():
            window = self.windows.entity_window(kind, sid, key, days)
            service = self.repo.get_service(sid)

        entity = window.entity
        info = {
            "service_id": sid,
            "ip_address": self._ip(service["ip_address"]),
            "service_name": self._ip(service["service_name"]),
            "custom_name": entity["custom_name"],
            "today_up": window.today_up,
            "today_down": window.today_down,
            "today_total": window.today_up + window.today_down,
            "total_up": window.total_up,
            "total_down": window.total_down,
            "total": window.total_up + window.total_down,
            "last_seen": to_iso(window.last_updated, self._tz),
            "is_active": window.is_live,
        }
        if kind == PORT:
            info.update(tag=entity["tag"], port=entity["port"])
            info_key = "port_info"
        else:
            info.update(email=entity["email"])
            info_key = "user_info"
        return {
            info_key: info,
            "days": days,
            "traffic": window.series.as_dict(),
            "history": window.series.newest_first(),
        }

    def export_history_csv(self, source_id: Any, kind: Any, key: Any) -> tuple[str, str]:
        """Return (filename, csv text) for an entity's full history."""
        sid = parse_source_id(source_id)
        kind = parse_kind(kind)
        key = require_key(key, "tag" if kind == PORT else "email")
        _, series = self.windows.full_series(kind, sid, key)
        return history_filename(kind, sid, key), render_history_csv(series)

    def query_history(self, flt: HistoryFilter | None = None) -> list[dict]:
        """Flat history listing, newest first."""
        flt = flt or HistoryFilter()
        with self._db.read():
            rows = self.repo.query_history(flt)
        label = "email" if flt.kind == CLIENT else "tag"
        return [
            {
                "date": r["date"],
                "service_id": r["service_id"],
                "ip_address": self._ip(r["ip_address"]),
                label: r["entity_key"],
                "daily_up": r["daily_up"],
                "daily_down": r["daily_down"],
                "total_daily": r["daily_up"] + r["daily_down"],
            }
            for r in rows
        ]

    def health(self) -> dict:
        return {
            "database": "ok" if self._db.ping() else "unavailable",
            "counter_mode": self._settings.COUNTER_MODE,
            "timezone": self._settings.TIMEZONE,
            "time": self._clock().isoformat(timespec="seconds"),
        }

    # ==================================================================
    # Relay configs
    # ==================================================================

    def list_relay_configs(self) -> list[dict]:
        with self._db.read():
            return self.repo.list_relay_configs()

    def add_relay_config(self, raw: Any) -> dict:
        cfg = validate_relay_config(raw)
        with self._db.transaction():
            cfg["id"] = self.repo.add_relay_config(cfg)
        logger.info("Relay config %d added for %s", cfg["id"], cfg["source_api_host"])
        return cfg

    def update_relay_config(self, raw: Any) -> dict:
        if not isinstance(raw, dict):
            raise ValidationError("config must be an object")
        config_id = parse_source_id(raw.get("id"))
        cfg = validate_relay_config(raw)
        with self._db.transaction():
            found = self.repo.update_relay_config(config_id, cfg)
        if not found:
            raise NotFoundError(f"relay config {config_id} not found")
        cfg["id"] = config_id
        return cfg

    def delete_relay_config(self, config_id: Any) -> None:
        cid = parse_source_id(config_id)
        with self._db.transaction():
            found = self.repo.delete_relay_config(cid)
        if not found:
            raise NotFoundError(f"relay config {cid} not found")

    def replace_relay_configs(self, raws: Any) -> list[dict]:
        configs = validate_relay_configs(raws)
        with self._db.transaction():
            self.repo.clear_relay_configs()
            for cfg in configs:
                cfg["id"] = self.repo.add_relay_config(cfg)
        logger.info("Relay configs replaced (%d entries)", len(configs))
        return configs

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ip(self, ip: str | None) -> str | None:
        return mask_ip(ip) if self._settings.MASK_IPS else ip

    def _source_dict(self, s: SourceSummary) -> dict:
        ip = self._ip(s.ip_address)
        return {
            "id": s.id,
            "ip_address": ip,
            "service_name": self._ip(s.service_name),
            "custom_name": s.custom_name,
            "display_name": s.custom_name or ip,
            "status": "active" if s.is_active else "inactive",
            "is_active": s.is_active,
            "first_seen": to_iso(s.first_seen, self._tz),
            "last_seen": to_iso(s.last_seen, self._tz),
            "inbound_count": s.inbound_count,
            "client_count": s.client_count,
            "today_up": s.today_up,
            "today_down": s.today_down,
            "today_total": s.today_total,
        }

    def _entity_dict(self, kind: str, e: dict) -> dict:
        d = {
            "id": e["id"],
            "custom_name": e["custom_name"],
            "status": e["status"],
            "today_up": e["today_up"],
            "today_down": e["today_down"],
            "today_total": e["today_up"] + e["today_down"],
            "last_updated": to_iso(e["last_updated"], self._tz),
            "is_active": e["is_live"],
        }
        if kind == PORT:
            d.update(tag=e["tag"], port=e["port"], display_name=e["custom_name"] or e["tag"])
        else:
            d.update(email=e["email"], display_name=e["custom_name"] or e["email"])
        return d
