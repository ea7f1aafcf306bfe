"""
aggregation/rollover.py

DailyRollover — closes out the live counters of the day that just ended.

Every active port / client with nonzero live counters has them added to
its history bucket dated yesterday, then all live counters are zeroed.
One transaction covers both kinds, so a failure leaves every counter
untouched. Running it twice in a row is harmless: the second pass finds
nothing but zeros.

In history mode entities never carry live counters, so the pass writes
nothing.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Callable

from ..metrics import METRICS
from ..models import CLIENT, PORT, RolloverResult
from ..storage.repository import TrafficRepository

logger = logging.getLogger(__name__)


class DailyRollover:
    def __init__(
        self,
        repo: TrafficRepository,
        mode: str,
        clock: Callable[[], datetime],
    ) -> None:
        self._repo = repo
        self._mode = mode
        self._clock = clock

    def run(self, day: date | None = None) -> RolloverResult:
        """
        Flush live counters into the bucket for ``day`` and reset them.

        ``day`` defaults to yesterday by the clock. The midnight scheduler
        passes the day it closed explicitly, so a timer that wakes early or
        late still labels the counters correctly.
        """
        if day is None:
            day = self._clock().date() - timedelta(days=1)
        closed = day.isoformat()
        result = RolloverResult(date=closed, mode=self._mode)

        with self._repo.db.transaction():
            for kind in (PORT, CLIENT):
                rows = self._repo.nonzero_live_counters(kind)
                for row in rows:
                    self._repo.add_history(
                        kind, row["id"], row["service_id"], closed, row["up"], row["down"]
                    )
                if kind == PORT:
                    result.ports_flushed = len(rows)
                else:
                    result.clients_flushed = len(rows)
                result.counters_reset += self._repo.reset_live_counters(kind)

        METRICS.rollovers_run.inc()
        if self._mode == "history":
            logger.info("Rollover for %s: history mode, no live counters to close", closed)
        else:
            logger.info(
                "Rollover for %s: %d ports, %d clients flushed",
                closed, result.ports_flushed, result.clients_flushed,
            )
        return result
