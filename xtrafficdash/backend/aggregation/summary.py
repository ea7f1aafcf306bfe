"""
aggregation/summary.py

SummaryAggregator — per-source listing and per-source entity tables.

list_sources() runs a fixed number of grouped queries (services, entity
counts, today's inbound totals) no matter how many sources exist.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from ..errors import NotFoundError
from ..models import CLIENT, PORT
from ..storage.repository import TrafficRepository
from .models import SourceSummary
from .time_window import is_fresh, is_live

logger = logging.getLogger(__name__)


class SummaryAggregator:
    def __init__(
        self,
        repo: TrafficRepository,
        mode: str,
        clock: Callable[[], datetime],
        source_freshness_seconds: int = 30,
        entity_freshness_seconds: int = 60,
    ) -> None:
        self._repo = repo
        self._mode = mode
        self._clock = clock
        self._source_freshness = source_freshness_seconds
        self._entity_freshness = entity_freshness_seconds

    def list_sources(self) -> list[SourceSummary]:
        now_dt = self._clock()
        now = now_dt.timestamp()
        today = now_dt.date().isoformat()

        with self._repo.db.read():
            services = self._repo.list_services()
            counts = self._repo.count_active_entities()
            totals = self._repo.day_inbound_totals(today)
            live = self._repo.live_inbound_totals() if self._mode == "live" else {}

        summaries = []
        for svc in services:
            sid = svc["id"]
            up, down = totals.get(sid, (0, 0))
            live_up, live_down = live.get(sid, (0, 0))
            inbound_count, client_count = counts.get(sid, (0, 0))
            summaries.append(
                SourceSummary(
                    id=sid,
                    ip_address=svc["ip_address"],
                    service_name=svc["service_name"],
                    custom_name=svc["custom_name"],
                    first_seen=svc["first_seen"],
                    last_seen=svc["last_seen"],
                    is_active=is_fresh(svc["last_seen"], now, self._source_freshness),
                    inbound_count=inbound_count,
                    client_count=client_count,
                    today_up=up + live_up,
                    today_down=down + live_down,
                )
            )
        return summaries

    def traffic_summary(self) -> dict:
        """Today's inbound totals across all sources."""
        summaries = self.list_sources()
        total_up = sum(s.today_up for s in summaries)
        total_down = sum(s.today_down for s in summaries)
        return {
            "total_services": len(summaries),
            "total_up": total_up,
            "total_down": total_down,
            "total_traffic": total_up + total_down,
            "services": summaries,
        }

    def source_entities(self, service_id: int) -> tuple[dict, list[dict], list[dict]]:
        """
        Return (service row, ports, clients) for one source.

        Each entity dict gains ``today_up``, ``today_down`` and ``is_live``.
        """
        now_dt = self._clock()
        now = now_dt.timestamp()
        today = now_dt.date().isoformat()

        with self._repo.db.read():
            service = self._repo.get_service(service_id)
            if service is None:
                raise NotFoundError(f"service {service_id} not found")
            service["is_active"] = is_fresh(service["last_seen"], now, self._source_freshness)
            tables = {}
            for kind in (PORT, CLIENT):
                entities = self._repo.list_entities(kind, service_id)
                day = self._repo.day_totals_by_entity(kind, service_id, today)
                for entity in entities:
                    up, down = day.get(entity["id"], (0, 0))
                    if self._mode == "live":
                        up += entity["up"]
                        down += entity["down"]
                    entity["today_up"] = up
                    entity["today_down"] = down
                    entity["is_live"] = is_live(
                        entity["last_updated"], now, up, down, self._entity_freshness
                    )
                tables[kind] = entities
        return service, tables[PORT], tables[CLIENT]
