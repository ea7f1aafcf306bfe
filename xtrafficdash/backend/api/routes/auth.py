"""
api/routes/auth.py

POST /api/auth/login   — password → bearer token
GET  /api/auth/verify  — check the caller's token
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ...config import Settings
from ..auth import check_password, create_token, require_token
from ..deps import get_settings
from ..serializers import LoginRequest, LoginResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    settings: Settings = Depends(get_settings),
):
    if not check_password(body.password, settings):
        logger.warning("Failed login attempt")
        return JSONResponse(
            status_code=401,
            content=LoginResponse(success=False, message="wrong password").model_dump(),
        )
    return LoginResponse(success=True, message="login ok", token=create_token(settings))


@router.get("/verify")
async def verify(claims: dict = Depends(require_token)) -> dict:
    return {"success": True, "message": "token valid", "user_id": claims.get("user_id")}
