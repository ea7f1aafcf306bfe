"""
api/routes/detail.py

Per-port and per-client views:

GET /api/db/port-detail/{service_id}/{tag}?days=
GET /api/db/user-detail/{service_id}/{email}?days=
PUT /api/db/inbound/{service_id}/{tag}/custom-name
PUT /api/db/client/{service_id}/{email}/custom-name
GET /api/db/download/port-history/{service_id}/{tag}     (CSV)
GET /api/db/download/user-history/{service_id}/{email}   (CSV)
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from ...models import CLIENT, PORT
from ...service import TrafficService
from ..auth import require_token
from ..deps import get_service, ok, run_db
from ..serializers import CustomNameRequest

router = APIRouter(prefix="/db", tags=["detail"], dependencies=[Depends(require_token)])


@router.get("/port-detail/{service_id}/{tag}")
async def port_detail(
    service_id: str,
    tag: str,
    days: Annotated[str | None, Query()] = None,
    service: TrafficService = Depends(get_service),
) -> dict:
    data = await run_db(service.get_entity_detail, service_id, PORT, tag, days)
    return ok(data, "port detail loaded")


@router.get("/user-detail/{service_id}/{email}")
async def user_detail(
    service_id: str,
    email: str,
    days: Annotated[str | None, Query()] = None,
    service: TrafficService = Depends(get_service),
) -> dict:
    data = await run_db(service.get_entity_detail, service_id, CLIENT, email, days)
    return ok(data, "user detail loaded")


@router.put("/inbound/{service_id}/{tag}/custom-name")
async def rename_inbound(
    service_id: str,
    tag: str,
    body: CustomNameRequest,
    service: TrafficService = Depends(get_service),
) -> dict:
    data = await run_db(service.rename_entity, service_id, PORT, tag, body.custom_name)
    return ok(data, "name updated")


@router.put("/client/{service_id}/{email}/custom-name")
async def rename_client(
    service_id: str,
    email: str,
    body: CustomNameRequest,
    service: TrafficService = Depends(get_service),
) -> dict:
    data = await run_db(service.rename_entity, service_id, CLIENT, email, body.custom_name)
    return ok(data, "name updated")


def _csv_response(filename: str, text: str) -> Response:
    return Response(
        content=text,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/download/port-history/{service_id}/{tag}")
async def download_port_history(
    service_id: str,
    tag: str,
    service: TrafficService = Depends(get_service),
) -> Response:
    filename, text = await run_db(service.export_history_csv, service_id, PORT, tag)
    return _csv_response(filename, text)


@router.get("/download/user-history/{service_id}/{email}")
async def download_user_history(
    service_id: str,
    email: str,
    service: TrafficService = Depends(get_service),
) -> Response:
    filename, text = await run_db(service.export_history_csv, service_id, CLIENT, email)
    return _csv_response(filename, text)
