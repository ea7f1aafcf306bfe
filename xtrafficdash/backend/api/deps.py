"""
api/deps.py

Shared FastAPI dependencies and helpers for every router.

The TrafficService lives on app.state (set by create_app); routes get it
through get_service so tests can swap it via app.dependency_overrides.
All storage calls block, so routes hand them to a dedicated thread pool
and never run them on the event loop.
"""

from __future__ import annotations

import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

from fastapi import Request

from ..config import Settings
from ..service import TrafficService

T = TypeVar("T")

# Dedicated thread pool, sqlite3 calls block
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="db-io")


def get_service(request: Request) -> TrafficService:
    return request.app.state.service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def run_db(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking service call in the storage thread pool."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_executor, functools.partial(fn, *args, **kwargs))


def ok(data: Any = None, message: str = "ok") -> dict:
    """Success envelope shared by every JSON route."""
    return {"success": True, "message": message, "data": data}
