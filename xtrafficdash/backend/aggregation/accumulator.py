"""
aggregation/accumulator.py

CounterAccumulator — merges one report's deltas into storage.

For every countable delta the entity row is resolved (created on first
sight) and, if it carried traffic, the delta is added either to today's
history bucket (history mode) or to the entity's live counters (live mode),
and the entity's last_updated is bumped. Zero deltas only ensure the row
exists. The source's last_seen is bumped for every report.

The whole report is one transaction: a storage failure rolls back every
write of the batch and surfaces as StorageError.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from ..errors import StorageError, ValidationError
from ..formatting import format_bytes
from ..metrics import METRICS
from ..models import CLIENT, PORT, IngestResult, TrafficReport
from ..storage.repository import TrafficRepository

logger = logging.getLogger(__name__)


class CounterAccumulator:
    """
    Args:
        repo:  Storage access.
        mode:  'history' (add to today's bucket) or 'live' (add to entity counters).
        clock: Zero-arg callable returning an aware datetime in the deployment zone.
    """

    def __init__(
        self,
        repo: TrafficRepository,
        mode: str,
        clock: Callable[[], datetime],
    ) -> None:
        self._repo = repo
        self._mode = mode
        self._clock = clock

    def ingest(self, source_ip: str, report: TrafficReport) -> IngestResult:
        if not source_ip or not source_ip.strip():
            raise ValidationError("source IP is required")
        source_ip = source_ip.strip()

        now_dt = self._clock()
        now = now_dt.timestamp()
        today = now_dt.date().isoformat()

        for warning in report.warnings:
            logger.warning("Report from %s: skipped %s", source_ip, warning)
        METRICS.parse_warnings.inc(len(report.warnings))

        try:
            with self._repo.db.transaction():
                result = self._apply(source_ip, report, now, today)
        except StorageError:
            METRICS.reports_failed.inc()
            logger.error("Report from %s rolled back", source_ip)
            raise

        result.warnings = list(report.warnings)
        result.deltas_skipped += len(report.warnings)
        METRICS.reports_received.inc()
        METRICS.deltas_applied.inc(result.deltas_applied)
        METRICS.deltas_skipped.inc(result.deltas_skipped)

        if result.active_ports:
            ports = ", ".join(
                f"{tag}(↑{format_bytes(up)} ↓{format_bytes(down)})"
                for tag, up, down in result.active_ports
            )
            logger.info("Report from %s — active ports: %s", source_ip, ports)
        else:
            logger.debug("Heartbeat from %s — no traffic", source_ip)
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _apply(self, source_ip: str, report: TrafficReport, now: float, today: str) -> IngestResult:
        repo = self._repo
        service_id, created = repo.get_or_create_service(source_ip, now)
        if created:
            logger.info("New service %s (id=%d)", source_ip, service_id)
        result = IngestResult(source_id=service_id, source_created=created)

        for delta in report.inbound:
            if not delta.is_inbound:
                result.deltas_skipped += 1
                continue
            port = delta.port
            if port == 0:
                logger.debug("No port in tag %r, storing port=0", delta.tag)
            entity_id = repo.get_or_create_inbound(service_id, delta.tag, port)
            result.ports_touched += 1
            if delta.has_traffic:
                self._add(PORT, entity_id, service_id, today, delta.up, delta.down, now)
                result.deltas_applied += 1
                result.active_ports.append((delta.tag, delta.up, delta.down))

        for delta in report.clients:
            entity_id = repo.get_or_create_client(service_id, delta.email)
            result.clients_touched += 1
            if delta.has_traffic:
                self._add(CLIENT, entity_id, service_id, today, delta.up, delta.down, now)
                result.deltas_applied += 1

        repo.touch_service(service_id, now)
        return result

    def _add(
        self,
        kind: str,
        entity_id: int,
        service_id: int,
        today: str,
        up: int,
        down: int,
        now: float,
    ) -> None:
        if self._mode == "live":
            self._repo.add_live(kind, entity_id, up, down)
        else:
            self._repo.add_history(kind, entity_id, service_id, today, up, down)
        self._repo.mark_entity_updated(kind, entity_id, now)
        logger.debug("%s #%d += (%d, %d) on %s", kind, entity_id, up, down, today)
