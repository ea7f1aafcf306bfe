"""
aggregation/__init__.py

Public API for the aggregation sub-package.
"""

from .accumulator import CounterAccumulator
from .models import EntityWindow, SourceSummary, WindowSeries
from .query import WindowQuery
from .rollover import DailyRollover
from .summary import SummaryAggregator
from .time_window import clamp_days, date_axis, fold_rows, normalise_date

__all__ = [
    "CounterAccumulator",
    "DailyRollover",
    "WindowQuery",
    "SummaryAggregator",
    "WindowSeries",
    "EntityWindow",
    "SourceSummary",
    "clamp_days",
    "date_axis",
    "fold_rows",
    "normalise_date",
]
