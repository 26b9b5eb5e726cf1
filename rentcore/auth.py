from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import jwt
from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .config import settings
from .db import get_db
from .models import AppUser, UserRole
from .security.roles import effective_role


@dataclass(frozen=True)
class Principal:
    """The resolved subject of a request."""

    user_id: int
    role: Optional[str]
    email: Optional[str] = None


# -------------------------
# JWT helpers (PyJWT, HS256)
# -------------------------
def jwt_sign(payload: dict[str, Any], *, secret: Optional[str] = None) -> str:
    now = datetime.now(timezone.utc)
    body = dict(payload)
    body.setdefault("iat", int(now.timestamp()))
    body.setdefault("exp", int((now + timedelta(minutes=int(settings.jwt_exp_minutes))).timestamp()))
    return jwt.encode(body, secret or settings.jwt_secret, algorithm="HS256")


def jwt_verify(token: str, *, secret: Optional[str] = None) -> dict[str, Any]:
    try:
        return dict(jwt.decode(token, secret or settings.jwt_secret, algorithms=["HS256"]))
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


# -------------------------
# Principal resolution
# -------------------------
def principal_for_user(db: Session, user_id: int) -> Optional[Principal]:
    """
    Build a Principal from the user's assigned roles.

    A user may hold several roles; effective_role() picks one deterministically.
    Returns None for an unknown user id.
    """
    user = db.scalar(
        select(AppUser)
        .where(AppUser.id == int(user_id))
        .options(selectinload(AppUser.user_roles).selectinload(UserRole.role))
    )
    if user is None:
        return None
    role = effective_role(ur.role.name for ur in user.user_roles)
    return Principal(user_id=int(user.id), role=role, email=str(user.email))


def get_optional_principal(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> Optional[Principal]:
    """
    Auth modes supported (in priority order):
      1) Authorization: Bearer <token>
      2) dev header X-User-Id (ONLY if settings.auth_mode == "dev")

    Returns None when no credentials are present; services turn that into
    Unauthenticated.
    """
    if authorization and str(authorization).lower().startswith("bearer "):
        claims = jwt_verify(str(authorization).split(" ", 1)[1].strip())
        sub = str(claims.get("sub") or "")
        if not sub.isdigit():
            raise HTTPException(status_code=401, detail="Token missing sub")
        p = principal_for_user(db, int(sub))
        if p is None:
            raise HTTPException(status_code=401, detail="Unknown user")
        return p

    if settings.auth_mode == "dev" and x_user_id:
        if not str(x_user_id).strip().isdigit():
            raise HTTPException(status_code=401, detail="X-User-Id must be numeric")
        p = principal_for_user(db, int(x_user_id))
        if p is None:
            raise HTTPException(status_code=401, detail="Unknown user")
        return p

    return None
