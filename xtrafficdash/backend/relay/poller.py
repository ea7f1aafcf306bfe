"""
relay/poller.py

Background task that syncs every configured relay node on a fixed interval.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ..errors import TrafficError
from ..metrics import METRICS
from .client import RelayClient

if TYPE_CHECKING:
    from ..service import TrafficService

logger = logging.getLogger(__name__)


async def sync_all(configs: list[dict], client: RelayClient) -> int:
    """
    Sync every usable config concurrently; return how many succeeded.

    All configs push to the first config's target URL.
    """
    if not configs:
        return 0
    target_url = configs[0].get("target_api_url") or ""
    if not target_url:
        logger.warning("[relay] target URL is empty, skipping this round")
        return 0

    usable = [
        cfg for cfg in configs
        if cfg.get("source_api_host") and cfg.get("source_api_port")
        and cfg.get("source_api_password")
    ]
    if len(usable) < len(configs):
        logger.warning("[relay] skipping %d incomplete config(s)", len(configs) - len(usable))

    results = await asyncio.gather(
        *(client.sync_once(cfg, target_url) for cfg in usable),
        return_exceptions=True,
    )
    for cfg, outcome in zip(usable, results):
        if isinstance(outcome, BaseException):
            METRICS.relay_pulls_failed.inc()
            logger.error(
                "[relay] sync for %s crashed: %r", cfg.get("source_api_host"), outcome
            )
    return sum(1 for ok in results if ok is True)


async def relay_poller(
    service: TrafficService,
    client: RelayClient,
    interval: float,
    shutdown_event: asyncio.Event,
) -> None:
    logger.info("Relay poller started (interval=%.0fs)", interval)
    loop = asyncio.get_running_loop()
    while not shutdown_event.is_set():
        try:
            configs = await loop.run_in_executor(None, service.list_relay_configs)
        except TrafficError as exc:
            logger.error("[relay] reading configs failed: %s", exc)
        else:
            try:
                await sync_all(configs, client)
            except Exception:
                logger.exception("[relay] sync round failed")

        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue
        except asyncio.CancelledError:
            break
    logger.info("Relay poller exiting")
