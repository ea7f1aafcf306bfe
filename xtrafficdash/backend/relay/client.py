"""
relay/client.py

Async HTTP client for the hysteria2 relay.

Responsibilities:
  - GET http://{host}:{port}/traffic?clear=1 with the node's password
  - Sum tx / rx over every user in the response
  - Wrap the totals as a normal traffic report (tag "hysteria2")
  - POST the report to the collector with X-Real-Ip set to the node

Usage:
    client = RelayClient(timeout=15.0)
    ok = await client.sync_once(cfg, target_url)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import RelayError
from ..metrics import METRICS

logger = logging.getLogger(__name__)

RELAY_TAG = "hysteria2"


def build_report(tx: int, rx: int) -> dict:
    """Relay totals in the same shape remote agents POST to /api/traffic."""
    return {
        "inboundTraffics": [
            {
                "IsInbound": True,
                "IsOutbound": False,
                "Tag": RELAY_TAG,
                "Up": tx,
                "Down": rx,
            }
        ],
    }


def sum_traffic(data: Any) -> tuple[int, int]:
    """
    Sum per-user counters from a ``{user: {"tx": int, "rx": int}}`` body.
    Entries that are not objects are ignored.
    """
    if not isinstance(data, dict):
        raise RelayError("relay response is not a JSON object")
    tx = rx = 0
    for user, counters in data.items():
        if not isinstance(counters, dict):
            logger.debug("Ignoring relay entry %r", user)
            continue
        try:
            tx += int(counters.get("tx") or 0)
            rx += int(counters.get("rx") or 0)
        except (TypeError, ValueError, OverflowError) as exc:
            raise RelayError(f"bad counters for {user!r}: {exc}") from exc
    return tx, rx


class RelayClient:
    """
    Args:
        timeout:   Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    def __init__(
        self,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def pull(self, cfg: dict) -> tuple[int, int]:
        """Fetch and clear the node's counters; return (tx, rx)."""
        url = f"http://{cfg['source_api_host']}:{cfg['source_api_port']}/traffic"
        try:
            async with self._client() as client:
                resp = await client.get(
                    url,
                    params={"clear": "1"},
                    headers={"Authorization": cfg["source_api_password"]},
                )
        except httpx.HTTPError as exc:
            raise RelayError(f"request to {url} failed: {exc}") from exc
        if resp.status_code != 200:
            raise RelayError(f"{url} returned {resp.status_code}: {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise RelayError(f"{url} returned invalid JSON") from exc
        return sum_traffic(data)

    async def push(self, target_url: str, source_host: str, report: dict) -> None:
        """POST a report to the collector on behalf of ``source_host``."""
        try:
            async with self._client() as client:
                resp = await client.post(
                    target_url,
                    json=report,
                    headers={"X-Real-Ip": source_host},
                )
        except httpx.HTTPError as exc:
            raise RelayError(f"push to {target_url} failed: {exc}") from exc
        if not resp.is_success:
            raise RelayError(f"{target_url} returned {resp.status_code}: {resp.text[:200]}")

    async def sync_once(self, cfg: dict, target_url: str) -> bool:
        """Pull one node and push its totals. Failures are logged, not raised."""
        host = cfg["source_api_host"]
        try:
            tx, rx = await self.pull(cfg)
            logger.info("[relay] %s tx=%d rx=%d", host, tx, rx)
            await self.push(target_url, host, build_report(tx, rx))
        except RelayError as exc:
            METRICS.relay_pulls_failed.inc()
            logger.error("[relay] sync for %s failed: %s", host, exc)
            return False
        METRICS.relay_pulls_ok.inc()
        logger.info("[relay] %s pushed to %s", host, target_url)
        return True
