"""
RoleRegistry: static role -> (resource, action) grants.

Built once at process start, either from ``settings.role_permissions`` or from
the roles/permissions tables. Grants are plain ``resource:action`` strings;
``resource:*`` grants every action on a resource and ``*`` grants everything.
The super role bypasses the table entirely.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..models import Role, RolePermission

RESOURCES = (
    "property",
    "room",
    "renter",
    "contract",
    "document",
    "payment",
    "service",
    "maintenance",
    "user",
    "subscription",
)
ACTIONS = ("create", "read", "update", "delete", "list")

# Higher rank wins when a user holds several roles.
ROLE_RANK = {"RENTER": 1, "USER": 2, "PROPERTY_MANAGER": 3, "ADMIN": 4}


def role_rank(role_name: Optional[str]) -> int:
    return ROLE_RANK.get((role_name or "").strip().upper(), 0)


def effective_role(role_names: Iterable[str]) -> Optional[str]:
    """
    Pick one role out of an unordered set of assigned roles.

    Highest rank wins; roles of equal rank (including unknown ones) fall back
    to the lexicographically smallest name so the result never depends on
    list order.
    """
    names = sorted({str(n).strip().upper() for n in role_names if n and str(n).strip()})
    if not names:
        return None
    best = names[0]
    for n in names[1:]:
        if role_rank(n) > role_rank(best):
            best = n
    return best


def parse_grant(grant: str) -> tuple[str, str]:
    g = (grant or "").strip().lower()
    if g == "*":
        return "*", "*"
    resource, sep, action = g.partition(":")
    if not sep or not resource or not action:
        raise ValueError(f"grant must look like 'resource:action', got {grant!r}")
    return resource, action


@dataclass(frozen=True)
class RoleRegistry:
    super_role: str = "ADMIN"
    grants_by_role: Mapping[str, frozenset[tuple[str, str]]] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, role_permissions: Mapping[str, Iterable[str]], *, super_role: str = "ADMIN") -> "RoleRegistry":
        table: dict[str, frozenset[tuple[str, str]]] = {}
        for role, grants in role_permissions.items():
            table[str(role).strip().upper()] = frozenset(parse_grant(g) for g in grants)
        return cls(super_role=super_role.strip().upper(), grants_by_role=table)

    @classmethod
    def from_settings(cls, settings) -> "RoleRegistry":
        return cls.from_mapping(settings.role_permissions, super_role=settings.super_role)

    @classmethod
    def from_db(cls, db: Session, *, super_role: str = "ADMIN") -> "RoleRegistry":
        roles = db.scalars(
            select(Role).options(selectinload(Role.role_permissions).selectinload(RolePermission.permission))
        ).all()
        mapping = {
            r.name: [f"{rp.permission.resource}:{rp.permission.action}" for rp in r.role_permissions]
            for r in roles
        }
        return cls.from_mapping(mapping, super_role=super_role)

    def is_super(self, role_name: Optional[str]) -> bool:
        return bool(role_name) and str(role_name).strip().upper() == self.super_role

    def grants(self, role_name: Optional[str], resource: str, action: str) -> bool:
        if self.is_super(role_name):
            return True
        table = self.grants_by_role.get((role_name or "").strip().upper())
        if not table:
            return False
        r = (resource or "").strip().lower()
        a = (action or "").strip().lower()
        return (r, a) in table or (r, "*") in table or ("*", "*") in table

    def permissions_for(self, role_name: Optional[str]) -> list[str]:
        if self.is_super(role_name):
            return [f"{r}:{a}" for r in RESOURCES for a in ACTIONS]
        table = self.grants_by_role.get((role_name or "").strip().upper(), frozenset())
        out = set()
        for r, a in table:
            resources = RESOURCES if r == "*" else (r,)
            actions = ACTIONS if a == "*" else (a,)
            out.update(f"{rr}:{aa}" for rr in resources for aa in actions)
        return sorted(out)


@lru_cache(maxsize=1)
def default_registry() -> RoleRegistry:
    from ..config import settings

    return RoleRegistry.from_settings(settings)
