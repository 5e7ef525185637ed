"""
API request and response models for the Warden REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
Password hashes and MFA secrets never appear in a response model.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import AuditLogEntry, Identity, IdentityStatus, Permission, Role, Session, SessionState

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    violations: Optional[list[str]] = None
    missing: Optional[list[str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Authentication requests
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=320)
    # Complexity is checked by PasswordManager so every violation is reported at once.
    password: str = Field(min_length=1, max_length=1024)
    name: str = Field(min_length=1, max_length=255)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=1024)
    device_id: str = Field(default="default", min_length=1, max_length=128)


class MFAVerifyRequest(BaseModel):
    challenge_token: str = Field(min_length=1, max_length=4096)
    code: str = Field(min_length=1, max_length=16)


class MFACodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=16)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=1024)
    new_password: str = Field(min_length=1, max_length=1024)


# ---------------------------------------------------------------------------
# Authentication responses
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """Issued on login, MFA verification, and refresh.

    expires_in / refresh_expires_in are seconds from now, rounded down.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_in: int


class MFAChallengeResponse(BaseModel):
    """Returned by /auth/login when the account has MFA enabled."""

    model_config = ConfigDict(frozen=True)

    mfa_required: bool = True
    challenge_token: str
    expires_in: int


class MFAEnrollResponse(BaseModel):
    """Shown once. The secret is not retrievable afterwards."""

    model_config = ConfigDict(frozen=True)

    secret: str
    enrollment_uri: str


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    role: Role
    permissions: list[str]
    session_id: str
    device_id: str


class SessionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    device_id: str
    ip: str
    user_agent: str
    issued_at: str
    expires_at: str
    last_activity: str
    state: SessionState
    current: bool = False

    @classmethod
    def from_session(cls, session: Session, now: float, current_id: str = "") -> "SessionResponse":
        return cls(
            id=session.id,
            device_id=session.device_id,
            ip=session.ip,
            user_agent=session.user_agent,
            issued_at=_iso(session.issued_at),
            expires_at=_iso(session.expires_at),
            last_activity=_iso(session.last_activity),
            state=session.state(now),
            current=session.id == current_id,
        )


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an identity, returned to its owner."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    role: Role
    status: IdentityStatus
    mfa_enabled: bool

    @classmethod
    def from_identity(cls, identity: Identity) -> "AccountResponse":
        return cls(
            id=identity.id,
            email=identity.email,
            name=identity.name,
            role=identity.role,
            status=identity.status,
            mfa_enabled=identity.mfa_enabled,
        )


class IdentityResponse(AccountResponse):
    """Administrative view -- adds lockout state and permission overrides."""

    permissions_added: list[Permission]
    permissions_removed: list[Permission]
    failed_attempts: int
    locked_until: Optional[str]
    created_at: str
    last_login: Optional[str]

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(
            id=identity.id,
            email=identity.email,
            name=identity.name,
            role=identity.role,
            status=identity.status,
            mfa_enabled=identity.mfa_enabled,
            permissions_added=sorted(identity.overrides.add, key=lambda p: p.value),
            permissions_removed=sorted(identity.overrides.remove, key=lambda p: p.value),
            failed_attempts=identity.failed_attempts,
            locked_until=_iso(identity.lockout_until) if identity.lockout_until else None,
            created_at=identity.created_at,
            last_login=identity.last_login,
        )


class RolePatch(BaseModel):
    role: Role


class StatusPatch(BaseModel):
    status: IdentityStatus


class PermissionOverridesRequest(BaseModel):
    """Replace the identity's overrides. A permission may not be both added and removed."""

    add: list[Permission] = Field(default_factory=list)
    remove: list[Permission] = Field(default_factory=list)

    @field_validator("remove")
    @classmethod
    def disjoint(cls, remove: list[Permission], info) -> list[Permission]:
        overlap = set(remove) & set(info.data.get("add", []))
        if overlap:
            raise ValueError(f"permissions both added and removed: {sorted(p.value for p in overlap)}")
        return remove


class RevokedResponse(BaseModel):
    sessions_revoked: int


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: str
    actor_id: str
    action: str
    resource_type: str
    resource_id: Optional[str]
    outcome: str
    suspicious: bool
    ip: str
    user_agent: str
    session_id: Optional[str]
    detail: dict

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            timestamp=entry.timestamp,
            actor_id=entry.actor_id,
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            outcome=entry.outcome,
            suspicious=entry.suspicious,
            ip=entry.ip,
            user_agent=entry.user_agent,
            session_id=entry.session_id,
            detail=entry.detail,
        )


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()
