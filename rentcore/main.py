from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .db import Base, engine
from .errors import RentCoreError
from .logging_config import configure_logging
from .middleware.observability import AccessLogMiddleware, RequestContextMiddleware
from .routers.contracts import router as contracts_router
from .routers.health import router as health_router
from .routers.maintenance import router as maintenance_router
from .routers.payments import router as payments_router
from .routers.rooms import router as rooms_router
from .security.roles import RoleRegistry

API_PREFIX = "/api"

log = logging.getLogger("rentcore")


def _cors_origins() -> list[str]:
    val = settings.cors_allow_origins
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


@asynccontextmanager
async def _lifespan(app: FastAPI):
    # no migrations: the schema is created from the models
    Base.metadata.create_all(bind=engine)
    log.info("rentcore started", extra={"role": settings.super_role})
    yield


def create_app(*, registry: Optional[RoleRegistry] = None, lifespan=_lifespan) -> FastAPI:
    configure_logging()

    app = FastAPI(title="RentCore", version=settings.app_version, lifespan=lifespan)
    app.state.registry = registry or RoleRegistry.from_settings(settings)

    # last added runs outermost
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RentCoreError)
    async def _rentcore_error(request: Request, exc: RentCoreError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.as_dict())

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(rooms_router, prefix=API_PREFIX)
    app.include_router(contracts_router, prefix=API_PREFIX)
    app.include_router(payments_router, prefix=API_PREFIX)
    app.include_router(maintenance_router, prefix=API_PREFIX)
    return app


app = create_app()
