from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from ..errors import AuthorizationDenied, Unauthenticated
from .ownership import OwnershipResolver
from .roles import RoleRegistry
from .rules import (
    DENY_GENERIC,
    Decision,
    IsOwner,
    IsSuper,
    RenterAccess,
    RoleGrant,
    Rule,
    RuleContext,
    all_of,
    any_of,
)

log = logging.getLogger("rentcore.authz")

Anchor = Tuple[str, int]


def ownership_policy(anchor_kind: str) -> Rule:
    """ADMIN, or (role grants the action AND caller owns the anchor)."""
    ownership: Rule = RenterAccess() if anchor_kind == "renter" else IsOwner()
    return any_of(IsSuper(), all_of(RoleGrant(), ownership))


ROLE_ONLY_POLICY: Rule = any_of(IsSuper(), RoleGrant())


class PermissionEvaluator:
    """
    Yes/no decisions for (subject, resource, action, instance).

    With an instance anchor whose kind has an ownership chain, the role grant
    alone is not enough: the caller must also own the anchor. Without one
    (lists, creates with no parent) the role grant decides.
    """

    def __init__(
        self,
        db: Session,
        registry: RoleRegistry,
        *,
        policies: Optional[Mapping[Tuple[str, str], Rule]] = None,
    ) -> None:
        self.db = db
        self.registry = registry
        self.resolver = OwnershipResolver(db)
        self.policies = dict(policies or {})

    def policy_for(self, resource: str, action: str, anchor: Optional[Anchor]) -> Rule:
        custom = self.policies.get((resource, action))
        if custom is not None:
            return custom
        if anchor is not None and self.resolver.supports(anchor[0]):
            return ownership_policy(anchor[0])
        return ROLE_ONLY_POLICY

    def check(self, rule: Rule, subject: Any, resource: str, action: str, anchor: Optional[Anchor] = None) -> Decision:
        ctx = RuleContext(
            subject=subject,
            registry=self.registry,
            resolver=self.resolver,
            resource=resource,
            action=action,
            anchor_kind=anchor[0] if anchor else None,
            anchor_id=int(anchor[1]) if anchor else None,
        )
        return rule.evaluate(ctx)

    def authorize(
        self,
        subject: Any,
        resource: str,
        action: str,
        resource_id: Optional[int] = None,
        *,
        via: Optional[Anchor] = None,
    ) -> Decision:
        if subject is None:
            return Decision.deny("unauthenticated")

        anchor: Optional[Anchor] = via
        if anchor is None and resource_id is not None:
            anchor = (resource, int(resource_id))

        decision = self.check(self.policy_for(resource, action, anchor), subject, resource, action, anchor)
        if not decision.allowed:
            log.info(
                "authorization denied",
                extra={
                    "user_id": subject.user_id,
                    "role": subject.role,
                    "resource": resource,
                    "action": action,
                    "resource_id": anchor[1] if anchor else None,
                    "reason": decision.reason,
                },
            )
        return decision

    def require(
        self,
        subject: Any,
        resource: str,
        action: str,
        resource_id: Optional[int] = None,
        *,
        via: Optional[Anchor] = None,
    ) -> None:
        """
        authorize() that raises instead of returning a denial. The caller only
        ever sees the generic message; the specific reason goes to the log.
        """
        if subject is None:
            raise Unauthenticated()
        decision = self.authorize(subject, resource, action, resource_id, via=via)
        if not decision.allowed:
            raise AuthorizationDenied(DENY_GENERIC)
