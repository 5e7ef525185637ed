"""
auth/models.py -- Domain dataclasses and closed enumerations for Warden.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; these types own the domain shape.

Roles and permissions are closed enumerations rather than loose strings so
every authorization call site names a member that actually exists. Role
carries a total order via Role.rank.

Timestamps used for expiry arithmetic (lockout_until, session issued/expiry,
token iat/exp) are float epoch seconds. Display timestamps (created_at,
last_login, audit timestamp) are ISO 8601 strings, as elsewhere in the app.

Layer rule: no imports from api/, core/, or other auth/ modules.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @property
    def rank(self) -> int:
        return _ROLE_ORDER.index(self)


_ROLE_ORDER = [Role.USER, Role.MODERATOR, Role.ADMIN, Role.SUPER_ADMIN]


class Permission(str, Enum):
    LISTING_CREATE = "listing_create"
    LISTING_MODERATE = "listing_moderate"
    LISTING_DELETE_ANY = "listing_delete_any"
    USER_VIEW = "user_view"
    USER_MANAGEMENT = "user_management"
    SESSION_MANAGEMENT = "session_management"
    ROLE_MANAGEMENT = "role_management"
    AUDIT_LOG_VIEW = "audit_log_view"
    AUDIT_LOG_EXPORT = "audit_log_export"
    FINANCIAL = "financial"
    SYSTEM_CONFIG = "system_config"


# Scopes that get the tight rate-limit ceiling whatever the caller's role.
SENSITIVE_PERMISSIONS = frozenset({Permission.FINANCIAL, Permission.AUDIT_LOG_EXPORT})


class IdentityStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    BANNED = "banned"
    PENDING_VERIFICATION = "pending_verification"


class SessionState(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass(frozen=True)
class PermissionOverrides:
    """Per-identity additions and removals layered on the role defaults.

    Removals win over both role defaults and additions (see
    auth/permissions.effective_permissions).
    """

    add: frozenset[Permission] = frozenset()
    remove: frozenset[Permission] = frozenset()

    def to_json(self) -> str:
        return json.dumps({"add": sorted(p.value for p in self.add), "remove": sorted(p.value for p in self.remove)})

    @classmethod
    def from_json(cls, raw: str | None) -> PermissionOverrides:
        if not raw:
            return cls()
        data = json.loads(raw)
        return cls(
            add=frozenset(Permission(p) for p in data.get("add", [])),
            remove=frozenset(Permission(p) for p in data.get("remove", [])),
        )


@dataclass
class Identity:
    """A user or administrator record.

    email is stored lower-cased; IdentityStore normalizes on every read and
    write so lookups are case-insensitive.

    lockout_until is None when the account has never been locked (or was
    reset by a successful login). mfa_secret may be present while
    mfa_enabled is False -- that is the pending-enrollment state between
    /mfa/enroll and /mfa/confirm.
    """

    email: str
    name: str
    password_hash: str
    id: str = ""
    role: Role = Role.USER
    overrides: PermissionOverrides = field(default_factory=PermissionOverrides)
    status: IdentityStatus = IdentityStatus.ACTIVE
    failed_attempts: int = 0
    lockout_until: float | None = None
    mfa_secret: str | None = None
    mfa_enabled: bool = False
    created_at: str = ""  # ISO 8601, set by store on insert
    last_login: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Verified access-token payload.

    permissions is the snapshot taken at issuance; it does not follow later
    role changes until the next refresh.
    """

    subject_id: str
    email: str
    name: str
    role: Role
    permissions: frozenset[Permission]
    session_id: str
    device_id: str
    issued_at: float
    expires_at: float
    jti: str = ""


@dataclass(frozen=True)
class IssuedToken:
    token: str
    jti: str
    issued_at: float
    expires_at: float


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: float
    refresh_expires_at: float
    token_type: str = "bearer"


@dataclass
class Session:
    """One authenticated device/browser instance.

    The session is the revocation authority for every token carrying its id.
    expires_at equals the refresh-token lifetime.
    """

    id: str
    identity_id: str
    device_id: str
    ip: str
    user_agent: str
    issued_at: float
    expires_at: float
    last_activity: float
    active: bool = True

    def state(self, now: float) -> SessionState:
        if not self.active:
            return SessionState.REVOKED
        if now >= self.expires_at:
            return SessionState.EXPIRED
        return SessionState.ACTIVE


@dataclass(frozen=True)
class ClientInfo:
    """Request-side facts the core needs but never trusts for decisions."""

    ip: str = "unknown"
    user_agent: str = ""


@dataclass
class AuditLogEntry:
    """Append-only audit record. timestamp is always server-assigned."""

    actor_id: str
    action: str
    resource_type: str
    outcome: str  # "success" | "failure"
    id: str = ""
    resource_id: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)
    suspicious: bool = False
    ip: str = ""
    user_agent: str = ""
    session_id: str | None = None
    timestamp: str = ""
