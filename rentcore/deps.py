from __future__ import annotations

from fastapi import Request

from .security.roles import RoleRegistry, default_registry


def get_registry(request: Request) -> RoleRegistry:
    """The registry built at startup (app.state), else the settings-backed default."""
    reg = getattr(request.app.state, "registry", None)
    return reg if reg is not None else default_registry()
