"""
api/routes/relay.py

Relay (hysteria2) config management:

GET    /api/hy2-configs         — list
POST   /api/hy2-configs         — replace the whole set
POST   /api/hy2-configs/add     — add one
POST   /api/hy2-configs/update  — update one (body carries its id)
DELETE /api/hy2-configs/{id}    — delete one
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from ...service import TrafficService
from ..auth import require_token
from ..deps import get_service, ok, run_db

router = APIRouter(
    prefix="/hy2-configs", tags=["relay"], dependencies=[Depends(require_token)]
)


@router.get("")
async def list_configs(service: TrafficService = Depends(get_service)) -> dict:
    return ok(await run_db(service.list_relay_configs), "relay configs loaded")


@router.post("")
async def replace_configs(
    body: Any = Body(default=None),
    service: TrafficService = Depends(get_service),
) -> dict:
    return ok(await run_db(service.replace_relay_configs, body), "relay configs saved")


@router.post("/add")
async def add_config(
    body: Any = Body(default=None),
    service: TrafficService = Depends(get_service),
) -> dict:
    return ok(await run_db(service.add_relay_config, body), "relay config added")


@router.post("/update")
async def update_config(
    body: Any = Body(default=None),
    service: TrafficService = Depends(get_service),
) -> dict:
    return ok(await run_db(service.update_relay_config, body), "relay config updated")


@router.delete("/{config_id}")
async def delete_config(
    config_id: str,
    service: TrafficService = Depends(get_service),
) -> dict:
    await run_db(service.delete_relay_config, config_id)
    return ok({"id": int(config_id)}, "relay config deleted")
