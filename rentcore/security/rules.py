"""
Composable permission rules.

Rules are frozen dataclasses rather than closures so a policy can be printed,
compared and asserted on in tests (``as_dict()``). Each rule evaluates against
a RuleContext and returns a Decision; nothing here writes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

from ..errors import NotFound
from .ownership import OwnershipResolver
from .roles import RoleRegistry

log = logging.getLogger("rentcore.authz")

DENY_GENERIC = "not authorized"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls, reason: str = "allowed") -> "Decision":
        return cls(True, reason)

    @classmethod
    def deny(cls, reason: str = DENY_GENERIC) -> "Decision":
        return cls(False, reason)

    def __bool__(self) -> bool:
        return self.allowed


@dataclass(frozen=True)
class RuleContext:
    """
    Everything a rule may look at.

    ``anchor_kind``/``anchor_id`` name the instance whose owner decides the
    request: the target itself for read/update/delete, or the parent (a room
    for a new contract) for create.
    """

    subject: Any  # Principal | None
    registry: RoleRegistry
    resolver: OwnershipResolver
    resource: str
    action: str
    anchor_kind: Optional[str] = None
    anchor_id: Optional[int] = None

    @property
    def user_id(self) -> Optional[int]:
        return None if self.subject is None else int(self.subject.user_id)

    @property
    def role(self) -> Optional[str]:
        return None if self.subject is None else self.subject.role


class Rule:
    name = "rule"

    def evaluate(self, ctx: RuleContext) -> Decision:  # pragma: no cover - interface
        raise NotImplementedError

    def as_dict(self) -> dict[str, Any]:
        return {"rule": self.name}


@dataclass(frozen=True)
class IsSuper(Rule):
    name = "is_super"

    def evaluate(self, ctx: RuleContext) -> Decision:
        if ctx.subject is None:
            return Decision.deny("unauthenticated")
        if ctx.registry.is_super(ctx.role):
            return Decision.allow("super role")
        return Decision.deny("not super role")


@dataclass(frozen=True)
class RoleGrant(Rule):
    """Role table lookup. Empty resource/action mean "the ones being requested"."""

    resource: Optional[str] = None
    action: Optional[str] = None
    name = "role_grant"

    def evaluate(self, ctx: RuleContext) -> Decision:
        if ctx.subject is None:
            return Decision.deny("unauthenticated")
        resource = self.resource or ctx.resource
        action = self.action or ctx.action
        if ctx.registry.grants(ctx.role, resource, action):
            return Decision.allow(f"role {ctx.role} grants {resource}:{action}")
        return Decision.deny(f"role {ctx.role} lacks {resource}:{action}")

    def as_dict(self) -> dict[str, Any]:
        return {"rule": self.name, "resource": self.resource, "action": self.action}


@dataclass(frozen=True)
class IsOwner(Rule):
    """Subject is the user at the end of the anchor's ownership chain."""

    kind: Optional[str] = None
    name = "is_owner"

    def evaluate(self, ctx: RuleContext) -> Decision:
        if ctx.subject is None:
            return Decision.deny("unauthenticated")
        kind = self.kind or ctx.anchor_kind
        if not kind or ctx.anchor_id is None:
            return Decision.deny("no resource id to check ownership")
        try:
            owner = ctx.resolver.owner_of(kind, ctx.anchor_id)
        except NotFound:
            # absent and foreign resources look the same to the caller
            log.info("ownership lookup missed", extra={"resource": kind, "resource_id": ctx.anchor_id})
            return Decision.deny(DENY_GENERIC)
        if owner == ctx.user_id:
            return Decision.allow(f"owner of {kind} {ctx.anchor_id}")
        return Decision.deny(DENY_GENERIC)

    def as_dict(self) -> dict[str, Any]:
        return {"rule": self.name, "kind": self.kind}


@dataclass(frozen=True)
class RenterAccess(Rule):
    """
    Renter-scoped ownership:
      - the subject's own linked renter record (self-service), or
      - the resolved owner of the renter, or
      - an owner of a property the renter lives in or holds a contract on.
    """

    name = "renter_access"

    def evaluate(self, ctx: RuleContext) -> Decision:
        if ctx.subject is None:
            return Decision.deny("unauthenticated")
        if ctx.anchor_id is None:
            return Decision.deny("no renter id to check access")
        try:
            if ctx.resolver.linked_user_of_renter(ctx.anchor_id) == ctx.user_id:
                return Decision.allow("own renter record")
            if ctx.user_id in ctx.resolver.managers_of_renter(ctx.anchor_id):
                return Decision.allow("manages renter's property")
            if ctx.resolver.owner_of("renter", ctx.anchor_id) == ctx.user_id:
                return Decision.allow("owner of renter")
        except NotFound:
            log.info("renter lookup missed", extra={"resource": "renter", "resource_id": ctx.anchor_id})
        return Decision.deny(DENY_GENERIC)


@dataclass(frozen=True)
class AllOf(Rule):
    rules: Tuple[Rule, ...] = field(default_factory=tuple)
    name = "all_of"

    def evaluate(self, ctx: RuleContext) -> Decision:
        last = Decision.allow("no rules")
        for rule in self.rules:
            last = rule.evaluate(ctx)
            if not last.allowed:
                return last
        return last

    def as_dict(self) -> dict[str, Any]:
        return {"rule": self.name, "rules": [r.as_dict() for r in self.rules]}


@dataclass(frozen=True)
class AnyOf(Rule):
    rules: Tuple[Rule, ...] = field(default_factory=tuple)
    name = "any_of"

    def evaluate(self, ctx: RuleContext) -> Decision:
        denial = Decision.deny("no rules")
        for rule in self.rules:
            d = rule.evaluate(ctx)
            if d.allowed:
                return d
            denial = d
        return denial

    def as_dict(self) -> dict[str, Any]:
        return {"rule": self.name, "rules": [r.as_dict() for r in self.rules]}


def all_of(*rules: Rule) -> AllOf:
    return AllOf(tuple(rules))


def any_of(*rules: Rule) -> AnyOf:
    return AnyOf(tuple(rules))
