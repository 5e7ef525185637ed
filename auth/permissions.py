"""
auth/permissions.py -- Role hierarchy and permission evaluation.

Everything here is a pure function of its arguments: no store access, no
clock, no logging. Authorization decisions are made entirely from verified
token claims, which is what lets authorize_request() skip the credential
store on every protected call.

Role defaults grow monotonically with rank (each role includes everything the
role below it has). USER has no default permissions: any endpoint that
requires a permission is closed to USER-role callers, and USER access to
their own resources goes through authorize_ownership() instead.

Layer rule: imports auth/models.py only.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from auth.models import Permission, PermissionOverrides, Role, TokenClaims

_MODERATOR_DEFAULTS = frozenset(
    {
        Permission.LISTING_MODERATE,
        Permission.USER_VIEW,
        Permission.AUDIT_LOG_VIEW,
    }
)

_ADMIN_DEFAULTS = _MODERATOR_DEFAULTS | {
    Permission.USER_MANAGEMENT,
    Permission.SESSION_MANAGEMENT,
    Permission.LISTING_DELETE_ANY,
}

_SUPER_ADMIN_DEFAULTS = _ADMIN_DEFAULTS | {
    Permission.ROLE_MANAGEMENT,
    Permission.AUDIT_LOG_EXPORT,
    Permission.FINANCIAL,
    Permission.SYSTEM_CONFIG,
}

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.USER: frozenset(),
    Role.MODERATOR: _MODERATOR_DEFAULTS,
    Role.ADMIN: _ADMIN_DEFAULTS,
    Role.SUPER_ADMIN: _SUPER_ADMIN_DEFAULTS,
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""
    missing: tuple[str, ...] = ()


ALLOW = Decision(allowed=True)


def effective_permissions(role: Role, overrides: PermissionOverrides | None = None) -> frozenset[Permission]:
    """Role defaults, plus additions, minus removals. Removals always win."""
    granted = set(ROLE_PERMISSIONS[role])
    if overrides is not None:
        granted |= overrides.add
        granted -= overrides.remove
    return frozenset(granted)


def has_role(claims: TokenClaims, minimum: Role) -> bool:
    return claims.role.rank >= minimum.rank


def authorize(claims: TokenClaims, required: Iterable[Permission]) -> Decision:
    """Allow only if the claims' permission snapshot covers every required permission."""
    needed = frozenset(required)
    if not needed:
        return ALLOW
    if claims.role is Role.USER:
        return Decision(False, "insufficient_role", tuple(sorted(p.value for p in needed)))
    missing = needed - claims.permissions
    if missing:
        return Decision(False, "missing_permissions", tuple(sorted(p.value for p in missing)))
    return ALLOW


def authorize_ownership(claims: TokenClaims, resource_owner_id: str) -> Decision:
    """Any role above USER bypasses; a USER must own the resource."""
    if claims.role.rank > Role.USER.rank:
        return ALLOW
    if claims.subject_id == resource_owner_id:
        return ALLOW
    return Decision(False, "not_owner")


def can_assign_role(actor_role: Role, target_role: Role) -> bool:
    """An actor may hand out roles up to, and including, its own rank."""
    return target_role.rank <= actor_role.rank
