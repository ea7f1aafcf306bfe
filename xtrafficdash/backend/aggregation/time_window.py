"""
aggregation/time_window.py

Calendar-window helpers for the query engine.

Design:
  - A window is `days` consecutive local calendar dates ending today,
    oldest first. Consumers render it left-to-right as a time axis.
  - History rows are folded by calendar date: any time-of-day component is
    dropped, and several rows landing on the same date are summed.
  - Dates with no row are zero, never missing.

Pure functions only — no storage access, no clock.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Iterable

from .models import WindowSeries

logger = logging.getLogger(__name__)

DEFAULT_DAYS = 7
MAX_DAYS = 30


def clamp_days(value: Any, default: int = DEFAULT_DAYS, maximum: int = MAX_DAYS) -> int:
    """
    Coerce a requested window length to 1..maximum.

    Accepts ints and numeric strings. Anything else, and anything out of
    range, falls back to ``default``.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str):
        value = value.strip()
        if not value.lstrip("-").isdecimal():
            return default
        value = int(value)
    if not isinstance(value, int):
        return default
    if 1 <= value <= maximum:
        return value
    return default


def date_axis(today: date, days: int) -> list[date]:
    """``days`` consecutive dates ending with ``today``, oldest first."""
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def dates_between(start: date, end: date) -> list[date]:
    """Inclusive ascending range; empty if start > end."""
    if start > end:
        return []
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def normalise_date(value: Any) -> date | None:
    """
    Reduce a stored date representation to a plain calendar date.

    Handles ``date``, ``datetime``, ``'YYYY-MM-DD'``, ``'YYYY-MM-DD HH:MM:SS'``
    and ISO strings with ``T`` / ``Z`` / offsets. Returns None if unparsable.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if len(text) < 10:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def fold_rows(rows: Iterable[dict]) -> dict[date, list[int]]:
    """
    Sum history rows into {date: [up, down]}.

    Each row needs ``date``, ``daily_up`` and ``daily_down``. Rows whose
    date cannot be parsed are skipped with a warning.
    """
    folded: dict[date, list[int]] = {}
    for row in rows:
        day = normalise_date(row["date"])
        if day is None:
            logger.warning("Skipping history row with unparsable date %r", row["date"])
            continue
        bucket = folded.setdefault(day, [0, 0])
        bucket[0] += row["daily_up"] or 0
        bucket[1] += row["daily_down"] or 0
    return folded


def build_series(axis: list[date], folded: dict[date, list[int]]) -> WindowSeries:
    """Align folded totals with ``axis``; missing dates become zero."""
    series = WindowSeries(dates=list(axis))
    for day in axis:
        up, down = folded.get(day, (0, 0))
        series.upload.append(up)
        series.download.append(down)
    return series


def is_live(
    last_updated: float | None,
    now: float,
    today_up: int,
    today_down: int,
    threshold_seconds: int = 60,
) -> bool:
    """Recent activity AND nonzero traffic today."""
    if last_updated is None:
        return False
    if now - last_updated > threshold_seconds:
        return False
    return (today_up + today_down) > 0


def is_fresh(last_seen: float | None, now: float, threshold_seconds: int = 30) -> bool:
    """True if ``last_seen`` is within ``threshold_seconds`` of ``now``."""
    return last_seen is not None and now - last_seen <= threshold_seconds
