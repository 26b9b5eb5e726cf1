"""
Process-wide logging setup.

LOG_FORMAT=json (default) writes one JSON object per line, carrying the
request id and actor from the request ContextVars plus any whitelisted
``extra=`` fields a service passed. LOG_FORMAT=text is a readable single-line
format for local runs.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from .middleware.observability import current_actor, get_request_id

# keys services pass through extra=; anything else on the record is ignored
STRUCTURED_KEYS = (
    "user_id",
    "role",
    "resource",
    "action",
    "resource_id",
    "room_id",
    "contract_id",
    "payment_id",
    "event_id",
    "method",
    "path",
    "status_code",
    "latency_ms",
    "reason",
)


def _context(record: logging.LogRecord) -> dict[str, Any]:
    out: dict[str, Any] = {}
    rid = get_request_id()
    if rid:
        out["request_id"] = rid
    actor = current_actor()
    if actor:
        out["actor"] = actor
    for k in STRUCTURED_KEYS:
        v = getattr(record, k, None)
        if v is not None:
            out[k] = v
    return out


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        ctx = _context(record)
        if ctx:
            line += " " + " ".join(f"{k}={v}" for k, v in ctx.items())
        return line


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    level = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    fmt = (fmt or os.getenv("LOG_FORMAT") or "json").strip().lower()

    root = logging.getLogger()
    root.setLevel(level)
    # uvicorn --reload re-imports the app; drop handlers from the previous load
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(TextFormatter() if fmt == "text" else JsonFormatter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel((os.getenv("SQL_LOG_LEVEL") or "WARNING").upper())
