"""storage/__init__.py"""
from .database import Database
from .migrations import apply_migrations
from .repository import HistoryFilter, TrafficRepository

__all__ = ["Database", "TrafficRepository", "HistoryFilter", "apply_migrations"]
