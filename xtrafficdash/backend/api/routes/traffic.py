"""
api/routes/traffic.py

GET  /api/db/traffic/summary              — today's totals across sources
GET  /api/db/traffic/history              — flat history listing, newest first
GET  /api/db/traffic/weekly/{service_id}  — 7-day source series
GET  /api/db/traffic/monthly/{service_id} — 30-day source series
POST /api/db/daily-summary                — run the daily rollover now
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ...service import TrafficService, history_filter
from ..auth import require_token
from ..deps import get_service, ok, run_db

router = APIRouter(prefix="/db", tags=["traffic"], dependencies=[Depends(require_token)])


@router.get("/traffic/summary")
async def traffic_summary(service: TrafficService = Depends(get_service)) -> dict:
    return ok(await run_db(service.traffic_summary), "summary loaded")


@router.get("/traffic/history")
async def traffic_history(
    service_id: Annotated[str | None, Query()] = None,
    tag:        Annotated[str | None, Query()] = None,
    email:      Annotated[str | None, Query()] = None,
    start_date: Annotated[str | None, Query()] = None,
    end_date:   Annotated[str | None, Query()] = None,
    limit:      Annotated[str | None, Query()] = None,
    service: TrafficService = Depends(get_service),
) -> dict:
    flt = history_filter(service_id, tag, email, start_date, end_date, limit)
    return ok(await run_db(service.query_history, flt), "history loaded")


async def _series(service: TrafficService, service_id: str, days: int) -> dict:
    series = await run_db(service.get_source_window, service_id, days)
    return {"service_id": int(service_id), "days": days, **series.as_dict()}


@router.get("/traffic/weekly/{service_id}")
async def weekly_traffic(
    service_id: str,
    service: TrafficService = Depends(get_service),
) -> dict:
    return ok(await _series(service, service_id, 7), "weekly traffic loaded")


@router.get("/traffic/monthly/{service_id}")
async def monthly_traffic(
    service_id: str,
    service: TrafficService = Depends(get_service),
) -> dict:
    return ok(await _series(service, service_id, 30), "monthly traffic loaded")


@router.post("/daily-summary")
async def daily_summary(service: TrafficService = Depends(get_service)) -> dict:
    result = await run_db(service.trigger_rollover)
    return ok(result.as_dict(), "daily rollover complete")
