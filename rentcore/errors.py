"""
Error kinds raised by the authorization engine and the lifecycle coordinator.

Every error is a deterministic function of current state plus input; nothing
here is retried. The HTTP layer maps each kind to a status code through
``status_code`` and renders ``{"detail": ..., "code": ...}``.
"""
from __future__ import annotations

from typing import Any, Optional


class RentCoreError(Exception):
    code = "error"
    status_code = 500

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            out["details"] = self.details
        return out


class Unauthenticated(RentCoreError):
    code = "unauthenticated"
    status_code = 401

    def __init__(self, message: str = "Authentication required", **kw: Any) -> None:
        super().__init__(message, **kw)


class AuthorizationDenied(RentCoreError):
    code = "forbidden"
    status_code = 403

    def __init__(self, message: str = "Not authorized", **kw: Any) -> None:
        super().__init__(message, **kw)


class NotFound(RentCoreError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any = None, message: Optional[str] = None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(message or f"{entity} not found")


class ValidationFailed(RentCoreError):
    code = "validation"
    status_code = 422


class Conflict(RentCoreError):
    code = "conflict"
    status_code = 409
