"""
api/main.py

create_app(service, settings) builds the FastAPI application. The service
and settings are stored on app.state; routers reach them through
api.deps, so nothing here is module-global.

Every TrafficError becomes {"success": false, "error": ...} with the
status code its class declares; request-shape errors are reported as 400.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import Settings
from ..errors import TrafficError
from ..metrics import METRICS
from ..service import TrafficService
from .deps import get_service, run_db
from .routes import auth as auth_router
from .routes import detail as detail_router
from .routes import ingest as ingest_router
from .routes import relay as relay_router
from .routes import services as services_router
from .routes import traffic as traffic_router
from .serializers import HealthResponse

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def create_app(service: TrafficService, settings: Settings) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("FastAPI startup")
        yield
        logger.info("FastAPI shutdown")

    app = FastAPI(
        title="xtrafficdash — Proxy Traffic Dashboard",
        version="1.0.0",
        description="Per-port and per-client traffic accounting for proxy nodes",
        lifespan=lifespan,
        debug=settings.DEBUG_MODE,
    )
    app.state.service = service
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials="*" not in settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TrafficError)
    async def traffic_error_handler(request: Request, exc: TrafficError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(p) for p in first.get("loc", ()))
        return _error(400, f"invalid request: {where} {first.get('msg', '')}".strip())

    # REST routers
    app.include_router(ingest_router.router,   prefix="/api")
    app.include_router(auth_router.router,     prefix="/api")
    app.include_router(services_router.router, prefix="/api")
    app.include_router(traffic_router.router,  prefix="/api")
    app.include_router(detail_router.router,   prefix="/api")
    app.include_router(relay_router.router,    prefix="/api")

    async def health(svc: TrafficService = Depends(get_service)) -> HealthResponse:
        info = await run_db(svc.health)
        status = "ok" if info["database"] == "ok" else "degraded"
        return HealthResponse(status=status, metrics=METRICS.as_dict(), **info)

    app.add_api_route("/health", health, methods=["GET"], response_model=HealthResponse)
    app.add_api_route("/api/health", health, methods=["GET"], response_model=HealthResponse)

    return app
