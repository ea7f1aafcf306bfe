"""
api/routes/ingest.py

POST /api/traffic — traffic report from a remote node (no token; nodes
authenticate by network placement). The source is identified by the
X-Real-Ip header when a relay or reverse proxy sets it, else by the peer.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from ...errors import ValidationError
from ...service import TrafficService
from ..deps import get_service, ok, run_db

logger = logging.getLogger(__name__)
router = APIRouter(tags=["ingest"])


def source_ip_of(request: Request) -> str:
    real_ip = request.headers.get("X-Real-Ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return request.client.host if request.client else ""


@router.post("/traffic")
async def receive_traffic(
    request: Request,
    service: TrafficService = Depends(get_service),
) -> dict:
    """Accept one report and merge it into today's counters."""
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("request body must be valid JSON") from None
    result = await run_db(service.ingest, source_ip_of(request), payload)
    return ok(result.as_dict(), "traffic recorded")
