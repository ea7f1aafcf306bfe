"""
backend/models.py

Shared dataclasses for every stage of the traffic pipeline.
Defining all of them here locks the contracts between the HTTP layer,
the accumulator, the rollover and the query engine early, so each can be
developed against a stable interface.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .errors import ValidationError

logger = logging.getLogger(__name__)

PORT = "port"
CLIENT = "client"
ENTITY_KINDS = (PORT, CLIENT)

# "inbound-8443" → 8443
_PORT_SUFFIX = re.compile(r"-(\d+)$")


def extract_port(tag: str) -> int:
    """Best-effort numeric port from a ``…-<digits>`` tag suffix; 0 otherwise."""
    match = _PORT_SUFFIX.search(tag)
    if not match:
        return 0
    port = int(match.group(1))
    return port if 0 <= port <= 65535 else 0


# ---------------------------------------------------------------------------
# Stage 1: Ingestion input
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class InboundDelta:
    """Per-interval byte delta for one inbound tag."""

    tag: str
    up: int = 0
    down: int = 0
    is_inbound: bool = True
    """False for outbound / non-countable legs; those are skipped entirely."""

    @property
    def port(self) -> int:
        return extract_port(self.tag)

    @property
    def has_traffic(self) -> bool:
        return self.up != 0 or self.down != 0


@dataclass(slots=True)
class ClientDelta:
    """Per-interval byte delta for one client (keyed by email)."""

    email: str
    up: int = 0
    down: int = 0

    @property
    def has_traffic(self) -> bool:
        return self.up != 0 or self.down != 0


@dataclass
class TrafficReport:
    """One report from a remote node, after shape validation."""

    inbound: list[InboundDelta] = field(default_factory=list)
    clients: list[ClientDelta] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    """Elements skipped while parsing (non-fatal)."""

    def __repr__(self) -> str:
        return (
            f"TrafficReport(inbound={len(self.inbound)} "
            f"clients={len(self.clients)} warnings={len(self.warnings)})"
        )


def _pick(item: dict, *names: str) -> Any:
    for name in names:
        if name in item:
            return item[name]
    return None


def _as_count(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError("boolean is not a byte count")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdecimal():
        return int(value.strip())
    raise ValueError(f"not a byte count: {value!r}")


def parse_report(payload: Any) -> TrafficReport:
    """
    Turn a raw JSON body into a TrafficReport.

    Accepted shape::

        {
          "clientTraffics":  [{"email": str, "up": int, "down": int}, ...],
          "inboundTraffics": [{"Tag": str, "Up": int, "Down": int,
                               "IsInbound": bool, "IsOutbound": bool}, ...]
        }

    Field names are accepted in either capitalisation. A body that is not an
    object raises ValidationError. Individual elements with a bad shape, an
    empty identity key or a non-numeric counter are recorded in
    ``report.warnings`` and skipped.
    """
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")

    report = TrafficReport()

    clients = payload.get("clientTraffics") or []
    inbounds = payload.get("inboundTraffics") or []
    if not isinstance(clients, list):
        report.warnings.append("clientTraffics is not a list")
        clients = []
    if not isinstance(inbounds, list):
        report.warnings.append("inboundTraffics is not a list")
        inbounds = []

    for i, item in enumerate(clients):
        if not isinstance(item, dict):
            report.warnings.append(f"clientTraffics[{i}]: not an object")
            continue
        email = _pick(item, "email", "Email")
        if not isinstance(email, str) or not email.strip():
            report.warnings.append(f"clientTraffics[{i}]: empty email")
            continue
        try:
            up = _as_count(_pick(item, "up", "Up"))
            down = _as_count(_pick(item, "down", "Down"))
        except ValueError as exc:
            report.warnings.append(f"clientTraffics[{i}]: {exc}")
            continue
        report.clients.append(ClientDelta(email=email.strip(), up=up, down=down))

    for i, item in enumerate(inbounds):
        if not isinstance(item, dict):
            report.warnings.append(f"inboundTraffics[{i}]: not an object")
            continue
        tag = _pick(item, "Tag", "tag")
        if not isinstance(tag, str) or not tag.strip():
            report.warnings.append(f"inboundTraffics[{i}]: empty tag")
            continue
        try:
            up = _as_count(_pick(item, "Up", "up"))
            down = _as_count(_pick(item, "Down", "down"))
        except ValueError as exc:
            report.warnings.append(f"inboundTraffics[{i}]: {exc}")
            continue
        is_inbound = _pick(item, "IsInbound", "isInbound")
        report.inbound.append(
            InboundDelta(
                tag=tag.strip(),
                up=up,
                down=down,
                is_inbound=bool(is_inbound) if is_inbound is not None else True,
            )
        )

    return report


# ---------------------------------------------------------------------------
# Stage 2: Write results
# ---------------------------------------------------------------------------

@dataclass
class IngestResult:
    """Outcome of one committed ingest call."""

    source_id: int
    source_created: bool = False
    ports_touched: int = 0
    clients_touched: int = 0
    deltas_applied: int = 0
    """Deltas that carried nonzero traffic and were written."""

    deltas_skipped: int = 0
    """Outbound legs plus elements rejected at parse time."""

    warnings: list[str] = field(default_factory=list)
    active_ports: list[tuple[str, int, int]] = field(default_factory=list)
    """(tag, up, down) for every inbound delta that carried traffic."""

    def as_dict(self) -> dict:
        return {
            "service_id": self.source_id,
            "service_created": self.source_created,
            "ports_touched": self.ports_touched,
            "clients_touched": self.clients_touched,
            "deltas_applied": self.deltas_applied,
            "deltas_skipped": self.deltas_skipped,
            "warnings": list(self.warnings),
        }


@dataclass
class RolloverResult:
    """Outcome of one daily rollover."""

    date: str
    """Calendar date (YYYY-MM-DD) the live counters were closed into."""

    mode: str
    ports_flushed: int = 0
    clients_flushed: int = 0
    counters_reset: int = 0

    def as_dict(self) -> dict:
        return {
            "date": self.date,
            "mode": self.mode,
            "ports_flushed": self.ports_flushed,
            "clients_flushed": self.clients_flushed,
            "counters_reset": self.counters_reset,
        }
