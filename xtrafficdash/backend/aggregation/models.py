"""
aggregation/models.py

Read-side data models for the aggregation layer.

WindowSeries  — N consecutive calendar days of (upload, download), oldest first
EntityWindow  — one port or client: window series plus today / all-time counters
SourceSummary — one row of the per-source listing
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date


# ---------------------------------------------------------------------------
# WindowSeries: gap-filled daily series
# ---------------------------------------------------------------------------

@dataclass
class WindowSeries:
    """
    Positionally aligned daily series.

    ``dates[i]`` pairs with ``upload[i]`` / ``download[i]``. Dates are
    consecutive and ascending; days without history hold zeros.
    """

    dates: list[date] = field(default_factory=list)
    upload: list[int] = field(default_factory=list)
    download: list[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.dates)

    @property
    def total_up(self) -> int:
        return sum(self.upload)

    @property
    def total_down(self) -> int:
        return sum(self.download)

    def as_dict(self) -> dict:
        return {
            "dates": [d.isoformat() for d in self.dates],
            "upload_data": list(self.upload),
            "download_data": list(self.download),
        }

    def newest_first(self) -> list[dict]:
        """Entries as history rows, most recent date first."""
        return [
            {
                "date": d.isoformat(),
                "daily_up": up,
                "daily_down": down,
                "total_daily": up + down,
            }
            for d, up, down in reversed(list(zip(self.dates, self.upload, self.download)))
        ]

    def __repr__(self) -> str:
        span = f"{self.dates[0]}..{self.dates[-1]}" if self.dates else "empty"
        return f"WindowSeries({span} up={self.total_up} down={self.total_down})"


# ---------------------------------------------------------------------------
# EntityWindow: single port / client view
# ---------------------------------------------------------------------------

@dataclass
class EntityWindow:
    kind: str
    """'port' or 'client'."""

    entity: dict
    """The entity row (id, service_id, tag/email, custom_name, ...)."""

    series: WindowSeries
    today_up: int = 0
    today_down: int = 0
    total_up: int = 0
    total_down: int = 0
    """All-time sums, independent of the window length."""

    last_updated: float | None = None
    is_live: bool = False


# ---------------------------------------------------------------------------
# SourceSummary: one row of list_sources()
# ---------------------------------------------------------------------------

@dataclass
class SourceSummary:
    id: int
    ip_address: str
    service_name: str
    custom_name: str | None
    first_seen: float
    last_seen: float
    is_active: bool
    inbound_count: int = 0
    client_count: int = 0
    today_up: int = 0
    today_down: int = 0

    @property
    def today_total(self) -> int:
        return self.today_up + self.today_down
