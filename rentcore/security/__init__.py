from .evaluator import PermissionEvaluator, ownership_policy
from .ownership import OwnershipResolver
from .roles import RoleRegistry, default_registry, effective_role
from .rules import AllOf, AnyOf, Decision, IsOwner, IsSuper, RenterAccess, RoleGrant, all_of, any_of

__all__ = [
    "AllOf",
    "AnyOf",
    "Decision",
    "IsOwner",
    "IsSuper",
    "OwnershipResolver",
    "PermissionEvaluator",
    "RenterAccess",
    "RoleGrant",
    "RoleRegistry",
    "all_of",
    "any_of",
    "default_registry",
    "effective_role",
    "ownership_policy",
]
