"""
backend/metrics.py

Lightweight thread-safe counters for ingestion, rollover and relay sync.
No external dependencies — uses Python's threading.Lock.

Usage:
    from xtrafficdash.backend.metrics import METRICS
    METRICS.reports_received.inc()
    print(METRICS.as_dict())
"""

import threading


class Counter:
    """A thread-safe integer counter."""

    __slots__ = ("_value", "_lock")

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self._value += amount

    def reset(self) -> None:
        with self._lock:
            self._value = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __repr__(self) -> str:  # pragma: no cover
        return f"Counter({self._value})"


class Metrics:
    """Singleton holding all process-wide counters."""

    def __init__(self) -> None:
        # --- Ingestion ---
        self.reports_received: Counter = Counter()
        """Reports accepted and committed."""

        self.reports_failed: Counter = Counter()
        """Reports whose transaction rolled back."""

        self.deltas_applied: Counter = Counter()
        """Deltas with nonzero traffic written to a bucket or live counter."""

        self.deltas_skipped: Counter = Counter()
        """Outbound legs and malformed elements that were not counted."""

        self.parse_warnings: Counter = Counter()
        """Elements skipped because their shape or identity key was bad."""

        # --- Rollover ---
        self.rollovers_run: Counter = Counter()

        # --- Relay ---
        self.relay_pulls_ok: Counter = Counter()
        self.relay_pulls_failed: Counter = Counter()

    def as_dict(self) -> dict:
        """Return all counters as a plain dict (safe for JSON serialisation)."""
        return {
            name: attr.value
            for name, attr in vars(self).items()
            if isinstance(attr, Counter)
        }

    def reset_all(self) -> None:
        """Reset every counter to zero (useful in tests)."""
        for attr in vars(self).values():
            if isinstance(attr, Counter):
                attr.reset()


# Module-level singleton, import from here everywhere
METRICS = Metrics()
