"""
auth/service.py -- AuthService: the single entry point the application calls.

Pattern: Facade. Routes never talk to the individual components; they call
login(), verify_mfa(), refresh(), authorize_request(), logout() and the
account/admin operations below. Each returns a success value or an
AuthFailure -- expected failures are never raised.

Login ordering (each step must stay where it is):
  1. precise rate limit on (email, source IP)
  2. identity lookup -- unknown email still burns one bcrypt verify [C1]
  3. lockout check -- BEFORE the password is looked at
  4. password verification -- failures count toward lockout
  5. status check -- after the password, so guessers learn nothing about status
  6. counter reset, then either an MFA challenge or a new session

Every decision is written to the audit log with its precise reason. The
client only ever sees the generic category (see api/ for the mapping).

Infrastructure faults (SQLAlchemyError, timeouts) propagate out of this
module untouched; api/main.py turns them into a fail-closed 503.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from auth.audit import FAILURE, SUCCESS, AuditContext, AuditLogger
from auth.errors import AuthErrorKind, AuthFailure
from auth.lockout import AccountLockoutGuard
from auth.models import (
    AuditLogEntry,
    ClientInfo,
    Identity,
    IdentityStatus,
    Permission,
    PermissionOverrides,
    Role,
    Session,
    TokenClaims,
    TokenPair,
)
from auth.passwords import PasswordManager
from auth.permissions import authorize, authorize_ownership, can_assign_role
from auth.ratelimit import RateLimitPolicy, RateLimiter, RateLimitResult
from auth.sessions import SessionManager
from auth.store import AuditStore, IdentityStore, StateStore, normalize_email
from auth.tokens import TokenIssuer
from auth.totp import TOTPEngine, TOTPEnrollment
from core.config import Settings, get_settings

logger = logging.getLogger("warden.auth")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class LoginSuccess:
    tokens: TokenPair
    identity: Identity
    session: Session


@dataclass(frozen=True)
class MFARequired:
    challenge_token: str
    expires_at: float


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()


class AuthService:
    """Facade over the auth components.

    Usage:
        service = AuthService.from_settings(get_settings())
        result = service.login("a@example.com", "pw", "device-1", ClientInfo(ip="10.0.0.1"))
        if isinstance(result, AuthFailure): ...
    """

    def __init__(
        self,
        settings: Settings,
        identities: IdentityStore,
        state: StateStore,
        audit_store: AuditStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self.identities = identities
        self.state = state
        self.audit_store = audit_store
        self.passwords = PasswordManager(settings)
        self.totp = TOTPEngine(settings)
        self.issuer = TokenIssuer(settings, clock=clock)
        self.sessions = SessionManager(state, identities, self.issuer, settings, clock=clock)
        self.limiter = RateLimiter(state)
        self.policy = RateLimitPolicy(settings)
        self.lockout = AccountLockoutGuard(identities, settings, clock=clock)
        self.audit = AuditLogger(audit_store, clock=clock)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, clock: Callable[[], float] = time.time) -> AuthService:
        settings = settings or get_settings()
        url, timeout = settings.database_url, settings.store_timeout_seconds
        return cls(
            settings,
            IdentityStore(url, timeout),
            StateStore(url, timeout, clock=clock),
            AuditStore(url, timeout),
            clock=clock,
        )

    def close(self) -> None:
        self.identities.close()
        self.state.close()
        self.audit_store.close()

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        name: str,
        client: ClientInfo = ClientInfo(),
        role: Role = Role.USER,
        status: IdentityStatus | None = None,
    ) -> Identity | AuthFailure:
        """Create a new identity after validating email and password complexity.

        status defaults to ACTIVE, or PENDING_VERIFICATION when
        REQUIRE_EMAIL_VERIFICATION is on. Operator tooling passes ACTIVE.
        """
        ctx = AuditContext.from_client(client)
        violations: list[str] = []
        if not _EMAIL_RE.match(email.strip()):
            violations.append("Email address is invalid.")
        if not name.strip():
            violations.append("Name must not be empty.")
        violations.extend(self.passwords.validate_complexity(password).violations)
        if violations:
            self.audit.record(None, "auth.register", "identity", outcome=FAILURE, detail={"reason": "invalid_input"}, context=ctx)
            return AuthFailure(AuthErrorKind.INVALID_INPUT, "registration rejected", violations=tuple(violations))

        if status is None:
            status = IdentityStatus.PENDING_VERIFICATION if self.settings.require_email_verification else IdentityStatus.ACTIVE
        identity = Identity(
            email=email,
            name=name.strip(),
            password_hash=self.passwords.hash(password),
            role=role,
            status=status,
        )
        try:
            identity = self.identities.create(identity)
        except IntegrityError:
            self.audit.record(None, "auth.register", "identity", outcome=FAILURE, detail={"reason": "email_taken"}, context=ctx)
            return AuthFailure(AuthErrorKind.CONFLICT, "email already registered")
        self.audit.record(identity.id, "auth.register", "identity", resource_id=identity.id, outcome=SUCCESS, context=ctx)
        logger.info("Registered identity %s (%s)", identity.id, identity.role.value)
        return identity

    def login(
        self,
        email: str,
        password: str,
        device_id: str,
        client: ClientInfo = ClientInfo(),
    ) -> LoginSuccess | MFARequired | AuthFailure:
        ctx = AuditContext.from_client(client)
        email = normalize_email(email)

        limited = self._check_login_rate(email, client)
        if limited is not None:
            self.audit.record(None, "auth.login", "identity", outcome=FAILURE, detail={"reason": "rate_limited", "email": email}, context=ctx)
            return limited

        identity = self.identities.get_by_email(email)
        if identity is None:
            self.passwords.verify_dummy(password)
            return self._login_failure(None, AuthErrorKind.INVALID_CREDENTIALS, "unknown_email", ctx, email=email)

        if self.lockout.is_locked(identity):
            return self._login_failure(identity.id, AuthErrorKind.ACCOUNT_LOCKED, "locked", ctx)

        if not self.passwords.verify(password, identity.password_hash):
            self._count_failure(identity.id)
            return self._login_failure(identity.id, AuthErrorKind.INVALID_CREDENTIALS, "bad_password", ctx)

        if identity.status is not IdentityStatus.ACTIVE:
            return self._login_failure(identity.id, AuthErrorKind.ACCOUNT_INACTIVE, identity.status.value, ctx)

        # The counter is left alone until the second factor also passes.
        if identity.mfa_enabled and identity.mfa_secret:
            challenge = self.issuer.issue_mfa_challenge(identity.id, device_id)
            self.audit.record(identity.id, "auth.login", "identity", resource_id=identity.id, outcome=SUCCESS, detail={"mfa": "challenge_issued"}, context=ctx)
            return MFARequired(challenge_token=challenge.token, expires_at=challenge.expires_at)

        self.lockout.record_success(identity.id)
        return self._open_session(identity, device_id, client, "auth.login")

    def _check_login_rate(self, email: str, client: ClientInfo) -> AuthFailure | None:
        result = self.limiter.hit(self.policy.login(), self.policy.login_identifier(email, client.ip))
        if result.allowed:
            return None
        return AuthFailure(AuthErrorKind.RATE_LIMITED, "login attempts exhausted", retry_after=result.retry_after)

    def _count_failure(self, identity_id: str) -> None:
        count = self.lockout.record_failed_attempt(identity_id)
        if self.lockout.should_lock(count):
            self.lockout.lock(identity_id)

    def _login_failure(
        self, identity_id: str | None, kind: AuthErrorKind, reason: str, ctx: AuditContext, **detail
    ) -> AuthFailure:
        self.audit.record(
            identity_id, "auth.login", "identity", resource_id=identity_id, outcome=FAILURE, detail={"reason": reason, **detail}, context=ctx
        )
        logger.info("Login failed (%s) for identity %s", reason, identity_id or "unknown")
        return AuthFailure(kind, reason)

    def _open_session(self, identity: Identity, device_id: str, client: ClientInfo, action: str) -> LoginSuccess:
        session, tokens = self.sessions.create_session(identity, device_id, client.ip, client.user_agent)
        self.identities.update(identity.id, last_login=_iso(self.clock()))
        self.audit.record(
            identity.id, action, "session", resource_id=session.id, outcome=SUCCESS, context=AuditContext.from_client(client, session.id)
        )
        return LoginSuccess(tokens=tokens, identity=identity, session=session)

    def verify_mfa(self, challenge_token: str, code: str, client: ClientInfo = ClientInfo()) -> LoginSuccess | AuthFailure:
        """Complete a login that returned MFARequired."""
        ctx = AuditContext.from_client(client)
        payload = self.issuer.verify_mfa_challenge(challenge_token)
        if isinstance(payload, AuthFailure):
            kind = AuthErrorKind.CHALLENGE_EXPIRED if payload.kind is AuthErrorKind.EXPIRED else AuthErrorKind.INVALID_MFA
            self.audit.record(None, "auth.mfa_verify", "identity", outcome=FAILURE, detail={"reason": payload.kind.value}, context=ctx)
            return AuthFailure(kind, payload.reason)

        identity = self.identities.get_by_id(str(payload["sub"]))
        if identity is None or not (identity.mfa_enabled and identity.mfa_secret):
            return self._mfa_failure(str(payload["sub"]), AuthErrorKind.INVALID_MFA, "mfa_not_enrolled", ctx)
        if self.lockout.is_locked(identity):
            return self._mfa_failure(identity.id, AuthErrorKind.ACCOUNT_LOCKED, "locked", ctx)
        if identity.status is not IdentityStatus.ACTIVE:
            return self._mfa_failure(identity.id, AuthErrorKind.ACCOUNT_INACTIVE, identity.status.value, ctx)
        if not self.totp.verify_code(code, identity.mfa_secret, at=self.clock()):
            self._count_failure(identity.id)
            return self._mfa_failure(identity.id, AuthErrorKind.INVALID_MFA, "bad_code", ctx)

        # Challenge tokens are single use.
        ttl = max(float(payload["exp"]) - self.clock(), 1.0)
        if not self.state.conditional_write(f"mfa:{payload['jti']}", None, "used", ttl):
            return self._mfa_failure(identity.id, AuthErrorKind.INVALID_MFA, "challenge_replayed", ctx)

        self.lockout.record_success(identity.id)
        return self._open_session(identity, str(payload["did"]), client, "auth.mfa_verify")

    def _mfa_failure(self, identity_id: str, kind: AuthErrorKind, reason: str, ctx: AuditContext) -> AuthFailure:
        self.audit.record(identity_id, "auth.mfa_verify", "identity", resource_id=identity_id, outcome=FAILURE, detail={"reason": reason}, context=ctx)
        return AuthFailure(kind, reason)

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str, client: ClientInfo = ClientInfo()) -> TokenPair | AuthFailure:
        result = self.sessions.rotate_refresh(refresh_token)
        if isinstance(result, AuthFailure):
            suspicious = result.kind is AuthErrorKind.REUSE_DETECTED
            self.audit.record(
                result.identity_id,
                "auth.refresh",
                "session",
                resource_id=result.session_id,
                outcome=FAILURE,
                detail={"reason": result.kind.value},
                context=AuditContext.from_client(client, result.session_id),
                suspicious=suspicious,
            )
            return result
        tokens, session, identity = result
        self.audit.record(
            identity.id, "auth.refresh", "session", resource_id=session.id, outcome=SUCCESS, context=AuditContext.from_client(client, session.id)
        )
        return tokens

    def authorize_request(
        self,
        access_token: str,
        required: Iterable[Permission] = (),
        resource_owner_id: str | None = None,
        client: ClientInfo = ClientInfo(),
    ) -> TokenClaims | AuthFailure:
        """The gate every protected endpoint passes through.

        Signature/expiry/shape, then session revocation, then permissions,
        then (optionally) ownership. Pure except for the revocation lookup,
        the best-effort session touch, and the audit write.
        """
        required = tuple(required)
        claims = self.issuer.verify(access_token)
        if isinstance(claims, AuthFailure):
            self._audit_authz(None, FAILURE, {"reason": claims.kind.value}, AuditContext.from_client(client))
            return AuthFailure(AuthErrorKind.UNAUTHORIZED, claims.kind.value)

        ctx = AuditContext.from_client(client, claims.session_id)
        if self.sessions.is_revoked(claims.session_id):
            self._audit_authz(claims.subject_id, FAILURE, {"reason": "session_revoked"}, ctx)
            return AuthFailure(AuthErrorKind.SESSION_REVOKED, "session revoked or expired")

        decision = authorize(claims, required)
        if decision.allowed and resource_owner_id is not None:
            decision = authorize_ownership(claims, resource_owner_id)
        if not decision.allowed:
            self._audit_authz(claims.subject_id, FAILURE, {"reason": decision.reason, "missing": list(decision.missing)}, ctx)
            return AuthFailure(AuthErrorKind.FORBIDDEN, decision.reason, missing=decision.missing)

        self.sessions.touch(claims.session_id)
        self._audit_authz(claims.subject_id, SUCCESS, {"required": [p.value for p in required]}, ctx)
        return claims

    def _audit_authz(self, actor: str | None, outcome: str, detail: dict, ctx: AuditContext) -> None:
        self.audit.record(actor, "auth.authorize", "request", outcome=outcome, detail=detail, context=ctx)

    def check_rate(self, claims: TokenClaims | None, ip: str, required: Iterable[Permission] = (), sensitive: bool = False) -> RateLimitResult:
        """API rate limit for one request: per subject when known, else per IP."""
        rule = self.policy.for_request(claims.role if claims else None, required, sensitive)
        return self.limiter.hit(rule, claims.subject_id if claims else ip)

    def logout(self, session_id: str, client: ClientInfo = ClientInfo(), actor_id: str | None = None) -> None:
        """Revoke the session. Safe to call on an already-revoked session."""
        self.sessions.revoke(session_id)
        self.audit.record(
            actor_id, "auth.logout", "session", resource_id=session_id, outcome=SUCCESS, context=AuditContext.from_client(client, session_id)
        )

    # ------------------------------------------------------------------
    # Self-service account operations
    # ------------------------------------------------------------------

    def change_password(
        self, claims: TokenClaims, current: str, new: str, client: ClientInfo = ClientInfo()
    ) -> None | AuthFailure:
        """Rotate the password hash and sign out every other session."""
        ctx = AuditContext.from_client(client, claims.session_id)
        identity = self.identities.get_by_id(claims.subject_id)
        if identity is None:
            return AuthFailure(AuthErrorKind.NOT_FOUND, "identity not found")
        if not self.passwords.verify(current, identity.password_hash):
            self._count_failure(identity.id)
            self.audit.record(identity.id, "account.password_change", "identity", resource_id=identity.id, outcome=FAILURE, detail={"reason": "bad_password"}, context=ctx)
            return AuthFailure(AuthErrorKind.INVALID_CREDENTIALS, "current password mismatch")
        complexity = self.passwords.validate_complexity(new)
        if not complexity.valid:
            return AuthFailure(AuthErrorKind.INVALID_INPUT, "weak password", violations=complexity.violations)
        self.identities.update(identity.id, password_hash=self.passwords.hash(new))
        revoked = self.sessions.revoke_all(identity.id, except_session_id=claims.session_id)
        self.audit.record(identity.id, "account.password_change", "identity", resource_id=identity.id, outcome=SUCCESS, detail={"sessions_revoked": revoked}, context=ctx)
        return None

    def begin_mfa_enrollment(self, claims: TokenClaims, client: ClientInfo = ClientInfo()) -> TOTPEnrollment | AuthFailure:
        identity = self.identities.get_by_id(claims.subject_id)
        if identity is None:
            return AuthFailure(AuthErrorKind.NOT_FOUND, "identity not found")
        if identity.mfa_enabled:
            return AuthFailure(AuthErrorKind.CONFLICT, "mfa already enabled")
        enrollment = self.totp.generate_secret(identity.email)
        self.identities.update(identity.id, mfa_secret=enrollment.secret, mfa_enabled=False)
        self.audit.record(identity.id, "account.mfa_enroll", "identity", resource_id=identity.id, outcome=SUCCESS, context=AuditContext.from_client(client, claims.session_id))
        return enrollment

    def confirm_mfa_enrollment(self, claims: TokenClaims, code: str, client: ClientInfo = ClientInfo()) -> None | AuthFailure:
        """Enable MFA once the user proves their authenticator produces valid codes."""
        ctx = AuditContext.from_client(client, claims.session_id)
        identity = self.identities.get_by_id(claims.subject_id)
        if identity is None or not identity.mfa_secret:
            return AuthFailure(AuthErrorKind.NOT_FOUND, "no pending enrollment")
        if not self.totp.verify_code(code, identity.mfa_secret, at=self.clock()):
            self.audit.record(identity.id, "account.mfa_confirm", "identity", resource_id=identity.id, outcome=FAILURE, context=ctx)
            return AuthFailure(AuthErrorKind.INVALID_MFA, "bad_code")
        self.identities.update(identity.id, mfa_enabled=True)
        self.audit.record(identity.id, "account.mfa_confirm", "identity", resource_id=identity.id, outcome=SUCCESS, context=ctx)
        return None

    def disable_mfa(self, claims: TokenClaims, code: str, client: ClientInfo = ClientInfo()) -> None | AuthFailure:
        ctx = AuditContext.from_client(client, claims.session_id)
        identity = self.identities.get_by_id(claims.subject_id)
        if identity is None or not identity.mfa_enabled or not identity.mfa_secret:
            return AuthFailure(AuthErrorKind.NOT_FOUND, "mfa not enabled")
        if not self.totp.verify_code(code, identity.mfa_secret, at=self.clock()):
            self._count_failure(identity.id)
            self.audit.record(identity.id, "account.mfa_disable", "identity", resource_id=identity.id, outcome=FAILURE, context=ctx)
            return AuthFailure(AuthErrorKind.INVALID_MFA, "bad_code")
        self.identities.update(identity.id, mfa_secret=None, mfa_enabled=False)
        self.audit.record(identity.id, "account.mfa_disable", "identity", resource_id=identity.id, outcome=SUCCESS, context=ctx)
        return None

    def list_sessions(self, claims: TokenClaims) -> list[Session]:
        return self.sessions.list_sessions(claims.subject_id)

    def revoke_own_session(self, claims: TokenClaims, session_id: str, client: ClientInfo = ClientInfo()) -> None | AuthFailure:
        """Sign out one device. Ownership-gated: USERs may only revoke their own sessions."""
        session = self.sessions.get(session_id)
        if session is None:
            return AuthFailure(AuthErrorKind.NOT_FOUND, "session not found")
        decision = authorize_ownership(claims, session.identity_id)
        if not decision.allowed:
            self.audit.record(claims.subject_id, "session.revoke", "session", resource_id=session_id, outcome=FAILURE, detail={"reason": decision.reason}, context=AuditContext.from_client(client, claims.session_id))
            return AuthFailure(AuthErrorKind.FORBIDDEN, decision.reason)
        self.sessions.revoke(session_id)
        self.audit.record(claims.subject_id, "session.revoke", "session", resource_id=session_id, outcome=SUCCESS, context=AuditContext.from_client(client, claims.session_id))
        return None

    # ------------------------------------------------------------------
    # Administration
    #
    # The HTTP layer has already checked the actor's permission. These
    # methods enforce the invariants permissions alone cannot express.
    # ------------------------------------------------------------------

    def get_identity(self, identity_id: str) -> Identity | None:
        return self.identities.get_by_id(identity_id)

    def list_identities(self, limit: int = 100, offset: int = 0) -> list[Identity]:
        return self.identities.list_identities(limit=limit, offset=offset)

    def _admin_target(self, actor: TokenClaims, target_id: str) -> Identity | AuthFailure:
        target = self.identities.get_by_id(target_id)
        if target is None:
            return AuthFailure(AuthErrorKind.NOT_FOUND, "identity not found")
        if target.role.rank > actor.role.rank:
            return AuthFailure(AuthErrorKind.FORBIDDEN, "target outranks actor")
        return target

    def _is_last_super_admin(self, target: Identity) -> bool:
        return (
            target.role is Role.SUPER_ADMIN
            and target.status is IdentityStatus.ACTIVE
            and self.identities.count_active_with_role(Role.SUPER_ADMIN) <= 1
        )

    def _admin_result(
        self, actor: TokenClaims, action: str, target_id: str, result: Identity | AuthFailure, client: ClientInfo, **detail
    ) -> Identity | AuthFailure:
        outcome = FAILURE if isinstance(result, AuthFailure) else SUCCESS
        if isinstance(result, AuthFailure):
            detail["reason"] = result.reason
        self.audit.record(actor.subject_id, action, "identity", resource_id=target_id, outcome=outcome, detail=detail, context=AuditContext.from_client(client, actor.session_id))
        return result

    def set_role(self, actor: TokenClaims, target_id: str, role: Role, client: ClientInfo = ClientInfo()) -> Identity | AuthFailure:
        """Change a role. Takes effect on the target's next refresh, not mid-token."""
        result = self._admin_target(actor, target_id)
        if not isinstance(result, AuthFailure):
            if not can_assign_role(actor.role, role):
                result = AuthFailure(AuthErrorKind.FORBIDDEN, "cannot assign a role above your own")
            elif role is not Role.SUPER_ADMIN and self._is_last_super_admin(result):
                result = AuthFailure(AuthErrorKind.CONFLICT, "cannot demote the last active super admin")
            else:
                self.identities.update(target_id, role=role)
                result = self.identities.get_by_id(target_id)
        return self._admin_result(actor, "admin.set_role", target_id, result, client, role=role.value)

    def set_status(
        self, actor: TokenClaims, target_id: str, status: IdentityStatus, client: ClientInfo = ClientInfo()
    ) -> Identity | AuthFailure:
        """Change status. Any non-active status also revokes every session of the target."""
        result = self._admin_target(actor, target_id)
        revoked = 0
        if not isinstance(result, AuthFailure):
            if status is not IdentityStatus.ACTIVE and target_id == actor.subject_id:
                result = AuthFailure(AuthErrorKind.CONFLICT, "cannot deactivate yourself")
            elif status is not IdentityStatus.ACTIVE and self._is_last_super_admin(result):
                result = AuthFailure(AuthErrorKind.CONFLICT, "cannot deactivate the last active super admin")
            else:
                self.identities.update(target_id, status=status)
                if status is not IdentityStatus.ACTIVE:
                    revoked = self.sessions.revoke_all(target_id)
                result = self.identities.get_by_id(target_id)
        return self._admin_result(actor, "admin.set_status", target_id, result, client, status=status.value, sessions_revoked=revoked)

    def set_permission_overrides(
        self, actor: TokenClaims, target_id: str, overrides: PermissionOverrides, client: ClientInfo = ClientInfo()
    ) -> Identity | AuthFailure:
        result = self._admin_target(actor, target_id)
        if not isinstance(result, AuthFailure):
            self.identities.update(target_id, overrides=overrides)
            result = self.identities.get_by_id(target_id)
        return self._admin_result(
            actor,
            "admin.set_permissions",
            target_id,
            result,
            client,
            add=sorted(p.value for p in overrides.add),
            remove=sorted(p.value for p in overrides.remove),
        )

    def unlock_account(self, actor: TokenClaims, target_id: str, client: ClientInfo = ClientInfo()) -> Identity | AuthFailure:
        result = self._admin_target(actor, target_id)
        if not isinstance(result, AuthFailure):
            self.lockout.unlock(target_id)
            result = self.identities.get_by_id(target_id)
        return self._admin_result(actor, "admin.unlock", target_id, result, client)

    def revoke_identity_sessions(self, actor: TokenClaims, target_id: str, client: ClientInfo = ClientInfo()) -> int | AuthFailure:
        result = self._admin_target(actor, target_id)
        revoked = 0
        if not isinstance(result, AuthFailure):
            revoked = self.sessions.revoke_all(target_id)
        self._admin_result(actor, "admin.revoke_sessions", target_id, result, client, sessions_revoked=revoked)
        return result if isinstance(result, AuthFailure) else revoked

    def audit_entries(self, limit: int = 100, actor_id: str | None = None, action: str | None = None) -> list[AuditLogEntry]:
        return self.audit.recent(limit=limit, actor_id=actor_id, action=action)
