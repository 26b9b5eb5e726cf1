from __future__ import annotations

import logging
import re
import time
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

log = logging.getLogger("rentcore.request")

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
actor_ctx: ContextVar[Optional[str]] = ContextVar("actor", default=None)

# ids we are willing to echo back; anything else gets a fresh uuid
_RID_OK = re.compile(r"^[A-Za-z0-9._\-]{1,128}$")

QUIET_PATHS = frozenset({"/api/health"})


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


def current_actor() -> Optional[str]:
    return actor_ctx.get()


def _incoming_request_id(request: Request) -> str:
    rid = request.headers.get("X-Request-ID") or ""
    return rid if _RID_OK.match(rid) else uuid.uuid4().hex


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Binds the request id and a best-effort actor hint to ContextVars for the
    duration of the request, and echoes the id as X-Request-ID.

    The actor hint is only for log correlation (dev header or "bearer"); the
    real principal is resolved by the auth dependency inside handlers.
    """

    header_out = "X-Request-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = _incoming_request_id(request)
        request.state.request_id = rid

        actor = request.headers.get("X-User-Id")
        if not actor and (request.headers.get("Authorization") or "").lower().startswith("bearer "):
            actor = "bearer"

        rid_token = request_id_ctx.set(rid)
        actor_token = actor_ctx.set(actor)
        try:
            resp = await call_next(request)
            resp.headers[self.header_out] = rid
            return resp
        finally:
            actor_ctx.reset(actor_token)
            request_id_ctx.reset(rid_token)


class AccessLogMiddleware(BaseHTTPMiddleware):
    """
    One "http_request" line per request. 5xx log at WARNING, health probes at
    DEBUG. Must sit inside RequestContextMiddleware (added before it).
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        t0 = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            if status_code >= 500:
                level = logging.WARNING
            elif request.url.path in QUIET_PATHS:
                level = logging.DEBUG
            else:
                level = logging.INFO
            log.log(
                level,
                "http_request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "latency_ms": round((time.perf_counter() - t0) * 1000.0, 2),
                },
            )
