"""
backend/export.py

CSV rendering for per-entity history downloads.
"""

from __future__ import annotations

import csv
import io
import re

from .aggregation.models import WindowSeries
from .formatting import format_bytes

CSV_COLUMNS = [
    "date",
    "upload_bytes",
    "download_bytes",
    "total_bytes",
    "upload",
    "download",
    "total",
]

_UNSAFE = re.compile(r"[^A-Za-z0-9._@-]+")


def history_filename(kind: str, source_id: int, key: str) -> str:
    safe_key = _UNSAFE.sub("_", key).strip("_") or "entity"
    return f"{kind}-{source_id}-{safe_key}-history.csv"


def render_history_csv(series: WindowSeries) -> str:
    """One row per date, oldest first; raw byte columns then formatted ones."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for day, up, down in zip(series.dates, series.upload, series.download):
        writer.writerow([
            day.isoformat(),
            up,
            down,
            up + down,
            format_bytes(up),
            format_bytes(down),
            format_bytes(up + down),
        ])
    return buf.getvalue()
