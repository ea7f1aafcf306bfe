"""
aggregation/query.py

WindowQuery — windowed history reads for one entity or one whole source.

"Today" values are always computed at read time: in history mode from the
history row dated today, in live mode from the entity's live counters plus
any history row dated today. Nothing is cached.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable

from ..errors import NotFoundError
from ..models import PORT
from ..storage.repository import TrafficRepository
from .models import EntityWindow, WindowSeries
from .time_window import (
    DEFAULT_DAYS,
    MAX_DAYS,
    build_series,
    clamp_days,
    date_axis,
    dates_between,
    fold_rows,
    is_live,
)

logger = logging.getLogger(__name__)


class WindowQuery:
    """
    Args:
        repo:              Storage access.
        mode:              'history' or 'live'.
        clock:             Zero-arg callable returning an aware datetime.
        freshness_seconds: Max age of last_updated for an entity to read as live.
        default_days:      Window length used when the request is out of range.
        max_days:          Longest window accepted.
    """

    def __init__(
        self,
        repo: TrafficRepository,
        mode: str,
        clock: Callable[[], datetime],
        freshness_seconds: int = 60,
        default_days: int = DEFAULT_DAYS,
        max_days: int = MAX_DAYS,
    ) -> None:
        self._repo = repo
        self._mode = mode
        self._clock = clock
        self._freshness = freshness_seconds
        self._default_days = default_days
        self._max_days = max_days

    def clamp(self, days: Any) -> int:
        return clamp_days(days, default=self._default_days, maximum=self._max_days)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def entity_window(self, kind: str, service_id: int, key: str, days: Any = None) -> EntityWindow:
        """Window series plus today / all-time counters and liveness for one entity."""
        days = self.clamp(days)
        now_dt = self._clock()
        today = now_dt.date()
        axis = date_axis(today, days)

        with self._repo.db.read():
            entity = self._require_entity(kind, service_id, key)
            rows = self._repo.history_rows(
                kind, entity["id"], axis[0].isoformat(), today.isoformat()
            )
            today_rows = self._repo.history_rows(
                kind, entity["id"], today.isoformat(), today.isoformat()
            )
            total_up, total_down = self._repo.history_totals(kind, entity["id"])

        folded = fold_rows(rows)
        today_up, today_down = fold_rows(today_rows).get(today, [0, 0])

        if self._mode == "live":
            live_up, live_down = entity["up"], entity["down"]
            bucket = folded.setdefault(today, [0, 0])
            bucket[0] += live_up
            bucket[1] += live_down
            today_up += live_up
            today_down += live_down
            total_up += live_up
            total_down += live_down

        return EntityWindow(
            kind=kind,
            entity=entity,
            series=build_series(axis, folded),
            today_up=today_up,
            today_down=today_down,
            total_up=total_up,
            total_down=total_down,
            last_updated=entity["last_updated"],
            is_live=is_live(
                entity["last_updated"], now_dt.timestamp(),
                today_up, today_down, self._freshness,
            ),
        )

    def source_series(self, service_id: int, days: Any = None) -> WindowSeries:
        """Inbound series summed over every port of one source."""
        days = self.clamp(days)
        today = self._clock().date()
        axis = date_axis(today, days)

        with self._repo.db.read():
            if self._repo.get_service(service_id) is None:
                raise NotFoundError(f"service {service_id} not found")
            rows = self._repo.service_history_rows(
                service_id, axis[0].isoformat(), today.isoformat()
            )
            live = self._repo.live_inbound_totals() if self._mode == "live" else {}

        folded = fold_rows(rows)
        if service_id in live:
            bucket = folded.setdefault(today, [0, 0])
            bucket[0] += live[service_id][0]
            bucket[1] += live[service_id][1]
        return build_series(axis, folded)

    def full_series(self, kind: str, service_id: int, key: str) -> tuple[dict, WindowSeries]:
        """
        Unbounded series for export: first history date through today,
        gap-filled. An entity with no history yields just today.
        """
        today = self._clock().date()
        with self._repo.db.read():
            entity = self._require_entity(kind, service_id, key)
            rows = self._repo.history_rows(kind, entity["id"])

        folded = fold_rows(rows)
        if self._mode == "live" and (entity["up"] or entity["down"]):
            bucket = folded.setdefault(today, [0, 0])
            bucket[0] += entity["up"]
            bucket[1] += entity["down"]

        start: date = min(folded, default=today)
        end: date = max(max(folded, default=today), today)
        return entity, build_series(dates_between(min(start, today), end), folded)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_entity(self, kind: str, service_id: int, key: str) -> dict:
        entity = self._repo.get_entity(kind, service_id, key)
        if entity is None:
            label = "port" if kind == PORT else "client"
            raise NotFoundError(f"{label} {key!r} not found for service {service_id}")
        return entity
