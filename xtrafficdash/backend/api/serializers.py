"""
api/serializers.py

Request / response bodies that have a fixed shape. Relay config bodies
are passed through untyped and validated by the service, so a bad config
gets the same 400 envelope as every other validation failure.
"""

from __future__ import annotations

from pydantic import BaseModel


class LoginRequest(BaseModel):
    password: str = ""


class LoginResponse(BaseModel):
    success: bool
    message: str
    token: str | None = None


class CustomNameRequest(BaseModel):
    custom_name: str | None = None


class HealthResponse(BaseModel):
    status: str
    database: str
    counter_mode: str
    timezone: str
    time: str
    metrics: dict[str, int]
