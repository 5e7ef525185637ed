"""
auth/errors.py -- Typed failure results for the auth core.

Expected failures (wrong password, locked account, expired token, missing
permission) are ordinary control flow, so components RETURN an AuthFailure
instead of raising. Callers branch with isinstance(result, AuthFailure).

Only infrastructure faults (store unreachable, timeouts) travel as
exceptions. api/main.py converts those to a fail-closed 503.

Each AuthErrorKind belongs to one ErrorCategory; the HTTP layer maps the
category to a status code. Authentication kinds share a single generic
client-facing message -- the precise kind goes to the audit log only.

Layer rule: no imports from api/ or other auth/ modules.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    INPUT = "input"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"


class AuthErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_INACTIVE = "account_inactive"
    INVALID_MFA = "invalid_mfa"
    CHALLENGE_EXPIRED = "challenge_expired"
    EXPIRED = "expired"
    BAD_SIGNATURE = "bad_signature"
    MALFORMED = "malformed"
    REUSE_DETECTED = "reuse_detected"
    REVOKED = "revoked"
    UNAUTHORIZED = "unauthorized"
    SESSION_REVOKED = "session_revoked"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES.get(self, ErrorCategory.AUTHENTICATION)


_CATEGORIES = {
    AuthErrorKind.INVALID_INPUT: ErrorCategory.INPUT,
    AuthErrorKind.CONFLICT: ErrorCategory.CONFLICT,
    AuthErrorKind.NOT_FOUND: ErrorCategory.NOT_FOUND,
    AuthErrorKind.FORBIDDEN: ErrorCategory.AUTHORIZATION,
    AuthErrorKind.RATE_LIMITED: ErrorCategory.RATE_LIMIT,
}


@dataclass(frozen=True)
class AuthFailure:
    """A typed, expected failure.

    reason   -- internal detail for logs and audit entries, never sent to
                unauthenticated clients.
    violations -- itemized input problems (INVALID_INPUT only).
    missing  -- permissions the caller lacked (FORBIDDEN only).
    retry_after -- seconds until the caller may retry (RATE_LIMITED only).
    session_id, identity_id -- the session a failure concerns, when known
                (REUSE_DETECTED, REVOKED); for audit entries only.
    """

    kind: AuthErrorKind
    reason: str = ""
    violations: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()
    retry_after: int | None = None
    session_id: str | None = None
    identity_id: str | None = None

    @property
    def category(self) -> ErrorCategory:
        return self.kind.category
