from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime, timedelta
from typing import Callable, NoReturn

import uvicorn

from .api.main import create_app
from .config import Settings, settings
from .errors import TrafficError
from .metrics import METRICS
from .relay import RelayClient, relay_poller
from .service import TrafficService
from .storage import Database, apply_migrations

logger = logging.getLogger("xtrafficdash.main")


# ---------------------------------------------------------------------------
# Daily rollover scheduler
# ---------------------------------------------------------------------------

def next_midnight(now: datetime) -> datetime:
    """The first local midnight strictly after ``now`` (aware), in its zone."""
    tomorrow = (now + timedelta(days=1)).date()
    return datetime.combine(tomorrow, datetime.min.time(), tzinfo=now.tzinfo)


def seconds_until_next_midnight(now: datetime) -> float:
    """Seconds from ``now`` (aware) to the next local midnight in its zone."""
    return max(next_midnight(now).timestamp() - now.timestamp(), 0.0)


async def rollover_scheduler(
    service: TrafficService,
    shutdown_event: asyncio.Event,
    clock: Callable[[], datetime] | None = None,
) -> None:
    """Run the daily rollover at every local midnight until shutdown."""
    clock = clock or service.now
    loop = asyncio.get_running_loop()
    logger.info("Rollover scheduler started")
    while not shutdown_event.is_set():
        now = clock()
        midnight = next_midnight(now)
        # The day ending at this midnight, whatever the clock reads on wake-up
        closing_day = midnight.date() - timedelta(days=1)
        delay = max(midnight.timestamp() - now.timestamp(), 0.0)
        logger.debug("Next rollover for %s in %.0fs", closing_day, delay)
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=delay)
            break  # shutdown requested
        except asyncio.TimeoutError:
            pass
        except asyncio.CancelledError:
            break

        try:
            result = await loop.run_in_executor(None, service.trigger_rollover, closing_day)
            logger.info("Scheduled rollover done: %s", result.as_dict())
        except TrafficError as exc:
            logger.error("Scheduled rollover failed: %s", exc)
        # Step past midnight before computing the next delay
        await asyncio.sleep(1.0)
    logger.info("Rollover scheduler exiting")


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

async def run(cfg: Settings) -> None:
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler(_signum, _frame) -> None:
        logger.info("Shutdown signal received")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    # Storage
    db = Database(cfg.DB_PATH)
    db.init_schema()
    apply_migrations(db)
    service = TrafficService(db, cfg)

    # FastAPI + uvicorn
    app = create_app(service, cfg)
    uv_config = uvicorn.Config(
        app,
        host=cfg.API_HOST,
        port=cfg.API_PORT,
        log_level="warning",
        loop="none",
    )
    uv_server = uvicorn.Server(uv_config)

    tasks = []
    if cfg.ROLLOVER_ENABLED:
        tasks.append(
            asyncio.create_task(rollover_scheduler(service, shutdown_event), name="rollover")
        )
    if cfg.RELAY_ENABLED:
        client = RelayClient(timeout=cfg.RELAY_TIMEOUT_SECONDS)
        tasks.append(
            asyncio.create_task(
                relay_poller(service, client, cfg.RELAY_POLL_INTERVAL_SECONDS, shutdown_event),
                name="relay",
            )
        )
    tasks.append(asyncio.create_task(uv_server.serve(), name="api"))

    if not cfg.PASSWORD:
        logger.warning("PASSWORD is not set — dashboard login is disabled")
    logger.info(
        "xtrafficdash — API=http://%s:%d  db=%r  mode=%s  tz=%s",
        cfg.API_HOST, cfg.API_PORT, cfg.DB_PATH, cfg.COUNTER_MODE, cfg.TIMEZONE,
    )

    await shutdown_event.wait()

    uv_server.should_exit = True
    for t in tasks[:-1]:
        t.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    db.close()
    logger.info("Final metrics — %s", METRICS.as_dict())
    logger.info("xtrafficdash stopped cleanly")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="xtrafficdash traffic collector")
    parser.add_argument("--host",    default=settings.API_HOST)
    parser.add_argument("--port",    default=settings.API_PORT, type=int)
    parser.add_argument("--db-path", default=settings.DB_PATH)
    parser.add_argument(
        "--log-level", default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args()


def main() -> NoReturn:
    args = _parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    if not 0 < args.port <= 65535:
        print(f"ERROR: invalid --port: {args.port}", file=sys.stderr)
        sys.exit(1)

    cfg = settings.model_copy(
        update={"API_HOST": args.host, "API_PORT": args.port, "DB_PATH": args.db_path}
    )
    asyncio.run(run(cfg))
    sys.exit(0)


if __name__ == "__main__":
    main()
