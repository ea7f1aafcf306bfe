"""
api/routes/services.py

GET    /api/db/services                    — all sources with today's totals
GET    /api/db/services/{id}               — one source with its ports and clients
GET    /api/db/services/{id}/traffic?days= — source-wide daily series
DELETE /api/db/services/{id}               — delete source and everything under it
PUT    /api/db/services/{id}/custom-name   — set / clear display name
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ...service import TrafficService
from ..auth import require_token
from ..deps import get_service, ok, run_db
from ..serializers import CustomNameRequest

router = APIRouter(
    prefix="/db/services", tags=["services"], dependencies=[Depends(require_token)]
)


@router.get("")
async def list_services(service: TrafficService = Depends(get_service)) -> dict:
    return ok(await run_db(service.list_sources), "services loaded")


@router.get("/{service_id}")
async def get_service_detail(
    service_id: str,
    days: Annotated[str | None, Query()] = None,
    service: TrafficService = Depends(get_service),
) -> dict:
    return ok(await run_db(service.get_source_detail, service_id, days), "service loaded")


@router.get("/{service_id}/traffic")
async def get_service_traffic(
    service_id: str,
    days: Annotated[str | None, Query()] = None,
    service: TrafficService = Depends(get_service),
) -> dict:
    series = await run_db(service.get_source_window, service_id, days)
    return ok({"days": len(series), **series.as_dict()}, "traffic loaded")


@router.delete("/{service_id}")
async def delete_service(
    service_id: str,
    service: TrafficService = Depends(get_service),
) -> dict:
    await run_db(service.delete_source, service_id)
    return ok({"service_id": int(service_id)}, "service deleted")


@router.put("/{service_id}/custom-name")
async def rename_service(
    service_id: str,
    body: CustomNameRequest,
    service: TrafficService = Depends(get_service),
) -> dict:
    return ok(await run_db(service.rename_source, service_id, body.custom_name), "name updated")
