"""
tests/test_service.py -- Scenario tests for auth/service.py (AuthService facade).

Each test drives the service the way a route would, with a FakeClock so
lockout windows, TOTP steps and token expiry are deterministic.

Covers:
  - registration: validation violations, duplicate email, pending verification
  - login ordering: unknown email, wrong password, lockout before password,
    inactive status after password, precise per-(email, IP) rate limit
  - MFA: challenge issued, drift window, challenge replay, expired challenge
  - authorize_request: bad token, revoked session, missing permissions,
    ownership, and the token snapshot surviving an override change
  - account operations: password change, MFA enrollment, session revocation
  - admin invariants: role ceiling, last super admin, self-deactivation
"""

from __future__ import annotations

import pyotp
import pytest

from auth.errors import AuthErrorKind
from auth.models import ClientInfo, Identity, IdentityStatus, Permission, PermissionOverrides, Role, TokenClaims
from auth.service import AuthService, LoginSuccess, MFARequired
from tests.helpers import PASSWORD, create_identity, make_settings

CLIENT = ClientInfo(ip="203.0.113.7", user_agent="pytest")
NEW_PASSWORD = "Another-Strong-Pass-42"


def _login(service: AuthService, email: str, password: str = PASSWORD, client: ClientInfo = CLIENT):
    return service.login(email, password, "device-1", client)


def _claims(service: AuthService, email: str) -> TokenClaims:
    result = _login(service, email)
    assert isinstance(result, LoginSuccess), result
    return service.issuer.verify(result.tokens.access_token)


def _enable_mfa(service: AuthService, identity: Identity) -> str:
    secret = pyotp.random_base32()
    service.identities.update(identity.id, mfa_secret=secret, mfa_enabled=True)
    return secret


def _actions(service: AuthService, action: str) -> list:
    return service.audit_entries(action=action)


def _wrong_code(service: AuthService, secret: str, now: float) -> str:
    valid = {service.totp.current_code(secret, at=now + k * 30) for k in range(-2, 3)}
    return next(c for c in ("000000", "111111", "222222", "333333", "444444", "555555") if c not in valid)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_creates_active_user(self, service):
        ident = service.register("New@Example.com", PASSWORD, "New", CLIENT)
        assert isinstance(ident, Identity)
        assert ident.email == "new@example.com"
        assert ident.role is Role.USER
        assert ident.status is IdentityStatus.ACTIVE
        assert ident.password_hash != PASSWORD

    def test_register_lists_every_violation(self, service):
        result = service.register("not-an-email", "short", " ", CLIENT)
        assert result.kind is AuthErrorKind.INVALID_INPUT
        assert any("Email" in v for v in result.violations)
        assert any("Name" in v for v in result.violations)
        assert any("at least" in v for v in result.violations)

    def test_duplicate_email_conflicts_case_insensitively(self, service):
        create_identity(service, "dup@example.com")
        result = service.register("DUP@example.com", PASSWORD, "Dup", CLIENT)
        assert result.kind is AuthErrorKind.CONFLICT

    def test_pending_verification_cannot_log_in(self, clock):
        svc = AuthService.from_settings(make_settings(require_email_verification=True), clock=clock)
        try:
            ident = create_identity(svc, "pending@example.com")
            assert ident.status is IdentityStatus.PENDING_VERIFICATION
            assert _login(svc, "pending@example.com").kind is AuthErrorKind.ACCOUNT_INACTIVE
        finally:
            svc.close()


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_successful_login_opens_session(self, service):
        ident = create_identity(service, "alice@example.com")
        result = _login(service, "ALICE@example.com")
        assert isinstance(result, LoginSuccess)
        assert result.identity.id == ident.id
        assert result.session.ip == CLIENT.ip
        assert service.identities.get_by_id(ident.id).last_login is not None
        entry = _actions(service, "auth.login")[0]
        assert entry.outcome == "success"
        assert entry.session_id == result.session.id

    def test_unknown_email_is_invalid_credentials(self, service):
        result = _login(service, "ghost@example.com")
        assert result.kind is AuthErrorKind.INVALID_CREDENTIALS
        assert _actions(service, "auth.login")[0].detail["reason"] == "unknown_email"

    def test_wrong_password_counts_failure(self, service):
        ident = create_identity(service, "bob@example.com")
        result = _login(service, "bob@example.com", "Wrong-Password-000")
        assert result.kind is AuthErrorKind.INVALID_CREDENTIALS
        assert service.identities.get_by_id(ident.id).failed_attempts == 1

    def test_sixth_attempt_locked_even_with_right_password(self, service, clock):
        """Five wrong passwords lock the account; the right one is then refused."""
        create_identity(service, "carol@example.com")
        for _ in range(5):
            assert _login(service, "carol@example.com", "Wrong-Password-000").kind is AuthErrorKind.INVALID_CREDENTIALS
        result = _login(service, "carol@example.com")
        assert result.kind is AuthErrorKind.ACCOUNT_LOCKED

        clock.advance(service.settings.lockout_duration_seconds)
        assert isinstance(_login(service, "carol@example.com"), LoginSuccess)

    def test_success_resets_failed_attempts(self, service):
        ident = create_identity(service, "dave@example.com")
        _login(service, "dave@example.com", "Wrong-Password-000")
        _login(service, "dave@example.com")
        assert service.identities.get_by_id(ident.id).failed_attempts == 0

    def test_suspended_rejected_only_after_password(self, service):
        ident = create_identity(service, "erin@example.com")
        service.identities.update(ident.id, status=IdentityStatus.SUSPENDED)
        assert _login(service, "erin@example.com", "Wrong-Password-000").kind is AuthErrorKind.INVALID_CREDENTIALS
        assert _login(service, "erin@example.com").kind is AuthErrorKind.ACCOUNT_INACTIVE

    def test_login_rate_limit_per_email_and_ip(self, clock):
        svc = AuthService.from_settings(make_settings(login_rate_limit_attempts=3, max_login_attempts=50), clock=clock)
        try:
            create_identity(svc, "frank@example.com")
            for _ in range(3):
                _login(svc, "frank@example.com", "Wrong-Password-000")
            limited = _login(svc, "frank@example.com")
            assert limited.kind is AuthErrorKind.RATE_LIMITED
            assert limited.retry_after > 0
            # A different source IP has its own budget.
            other = ClientInfo(ip="198.51.100.1")
            assert isinstance(_login(svc, "frank@example.com", client=other), LoginSuccess)
        finally:
            svc.close()


# ---------------------------------------------------------------------------
# MFA
# ---------------------------------------------------------------------------


class TestMFA:
    @pytest.fixture
    def mfa_user(self, service):
        ident = create_identity(service, "mfa@example.com")
        return ident, _enable_mfa(service, ident)

    def test_login_returns_challenge(self, service, mfa_user):
        result = _login(service, "mfa@example.com")
        assert isinstance(result, MFARequired)
        assert service.sessions.list_sessions(mfa_user[0].id) == []

    def test_code_from_previous_step_accepted(self, service, clock, mfa_user):
        _, secret = mfa_user
        challenge = _login(service, "mfa@example.com")
        code = service.totp.current_code(secret, at=clock() - 30)
        result = service.verify_mfa(challenge.challenge_token, code, CLIENT)
        assert isinstance(result, LoginSuccess)
        assert result.session.device_id == "device-1"

    def test_code_three_steps_old_rejected(self, service, clock, mfa_user):
        _, secret = mfa_user
        challenge = _login(service, "mfa@example.com")
        code = service.totp.current_code(secret, at=clock() - 90)
        if code in {service.totp.current_code(secret, at=clock() + k * 30) for k in range(-2, 3)}:
            pytest.skip("code collision inside the window")
        result = service.verify_mfa(challenge.challenge_token, code, CLIENT)
        assert result.kind is AuthErrorKind.INVALID_MFA

    def test_challenge_is_single_use(self, service, clock, mfa_user):
        _, secret = mfa_user
        challenge = _login(service, "mfa@example.com")
        code = service.totp.current_code(secret, at=clock())
        assert isinstance(service.verify_mfa(challenge.challenge_token, code, CLIENT), LoginSuccess)
        replay = service.verify_mfa(challenge.challenge_token, code, CLIENT)
        assert replay.kind is AuthErrorKind.INVALID_MFA

    def test_expired_challenge(self, service, clock, mfa_user):
        _, secret = mfa_user
        challenge = _login(service, "mfa@example.com")
        clock.advance(service.settings.mfa_challenge_ttl_seconds)
        result = service.verify_mfa(challenge.challenge_token, service.totp.current_code(secret, at=clock()), CLIENT)
        assert result.kind is AuthErrorKind.CHALLENGE_EXPIRED

    def test_bad_code_counts_toward_lockout(self, service, mfa_user):
        ident, _ = mfa_user
        challenge = _login(service, "mfa@example.com")
        service.verify_mfa(challenge.challenge_token, "000000", CLIENT)
        assert service.identities.get_by_id(ident.id).failed_attempts >= 1

    def test_bad_codes_across_logins_lock_the_account(self, service, clock, mfa_user):
        """A correct password does not clear failures piled up by wrong codes."""
        ident, secret = mfa_user
        wrong = _wrong_code(service, secret, clock())
        for _ in range(2):
            challenge = _login(service, "mfa@example.com")
            assert isinstance(challenge, MFARequired)
            for _ in range(3):
                service.verify_mfa(challenge.challenge_token, wrong, CLIENT)

        assert service.lockout.is_locked(service.identities.get_by_id(ident.id))
        assert _login(service, "mfa@example.com").kind is AuthErrorKind.ACCOUNT_LOCKED

    def test_successful_mfa_resets_counter(self, service, clock, mfa_user):
        ident, secret = mfa_user
        challenge = _login(service, "mfa@example.com")
        service.verify_mfa(challenge.challenge_token, _wrong_code(service, secret, clock()), CLIENT)
        assert service.identities.get_by_id(ident.id).failed_attempts == 1

        challenge = _login(service, "mfa@example.com")
        assert service.identities.get_by_id(ident.id).failed_attempts == 1
        result = service.verify_mfa(challenge.challenge_token, service.totp.current_code(secret, at=clock()), CLIENT)
        assert isinstance(result, LoginSuccess)
        assert service.identities.get_by_id(ident.id).failed_attempts == 0

    def test_access_token_is_not_a_challenge(self, service):
        create_identity(service, "plain@example.com")
        tokens = _login(service, "plain@example.com").tokens
        assert service.verify_mfa(tokens.access_token, "123456", CLIENT).kind is AuthErrorKind.INVALID_MFA


# ---------------------------------------------------------------------------
# authorize_request
# ---------------------------------------------------------------------------


class TestAuthorizeRequest:
    def test_valid_token_returns_claims(self, service):
        create_identity(service, "mod@example.com", Role.MODERATOR)
        token = _login(service, "mod@example.com").tokens.access_token
        claims = service.authorize_request(token, [Permission.LISTING_MODERATE], client=CLIENT)
        assert isinstance(claims, TokenClaims)
        assert _actions(service, "auth.authorize")[0].outcome == "success"

    def test_garbage_token_unauthorized(self, service):
        result = service.authorize_request("not.a.token", client=CLIENT)
        assert result.kind is AuthErrorKind.UNAUTHORIZED

    def test_expired_token_unauthorized(self, service, clock):
        create_identity(service, "exp@example.com")
        token = _login(service, "exp@example.com").tokens.access_token
        clock.advance(service.settings.access_token_ttl_seconds)
        result = service.authorize_request(token)
        assert result.kind is AuthErrorKind.UNAUTHORIZED
        assert result.reason == "expired"

    def test_logout_revokes_access_token_immediately(self, service):
        create_identity(service, "out@example.com")
        login = _login(service, "out@example.com")
        service.logout(login.session.id, CLIENT, actor_id=login.identity.id)
        result = service.authorize_request(login.tokens.access_token)
        assert result.kind is AuthErrorKind.SESSION_REVOKED

    def test_user_forbidden_on_gated_operation(self, service):
        create_identity(service, "u@example.com")
        token = _login(service, "u@example.com").tokens.access_token
        result = service.authorize_request(token, [Permission.USER_VIEW])
        assert result.kind is AuthErrorKind.FORBIDDEN
        assert result.missing == ("user_view",)

    def test_ownership_gate(self, service):
        owner = create_identity(service, "owner@example.com")
        create_identity(service, "other@example.com")
        own = _login(service, "owner@example.com").tokens.access_token
        other = _login(service, "other@example.com").tokens.access_token
        assert isinstance(service.authorize_request(own, resource_owner_id=owner.id), TokenClaims)
        assert service.authorize_request(other, resource_owner_id=owner.id).kind is AuthErrorKind.FORBIDDEN

    def test_override_removal_applies_after_refresh(self, service):
        """A live token keeps its snapshot; the refreshed one drops the removed permission."""
        admin = create_identity(service, "adm@example.com", Role.ADMIN)
        login = _login(service, "adm@example.com")
        service.identities.update(admin.id, overrides=PermissionOverrides(remove=frozenset({Permission.USER_MANAGEMENT})))

        assert isinstance(service.authorize_request(login.tokens.access_token, [Permission.USER_MANAGEMENT]), TokenClaims)
        refreshed = service.refresh(login.tokens.refresh_token, CLIENT)
        result = service.authorize_request(refreshed.access_token, [Permission.USER_MANAGEMENT])
        assert result.kind is AuthErrorKind.FORBIDDEN

    def test_refresh_reuse_is_flagged_suspicious(self, service):
        ident = create_identity(service, "reuse@example.com")
        login = _login(service, "reuse@example.com")
        tokens = login.tokens
        service.refresh(tokens.refresh_token, CLIENT)
        result = service.refresh(tokens.refresh_token, CLIENT)
        assert result.kind is AuthErrorKind.REUSE_DETECTED
        entry = next(e for e in _actions(service, "auth.refresh") if e.outcome == "failure")
        assert entry.suspicious is True
        assert entry.actor_id == ident.id
        assert entry.resource_id == login.session.id
        assert entry.session_id == login.session.id

    def test_check_rate_keys_by_subject(self, service):
        create_identity(service, "rate@example.com")
        claims = _claims(service, "rate@example.com")
        first = service.check_rate(claims, "10.0.0.1")
        second = service.check_rate(claims, "10.0.0.2")
        assert first.allowed and second.allowed
        assert second.remaining == first.remaining - 1


# ---------------------------------------------------------------------------
# Account operations
# ---------------------------------------------------------------------------


class TestAccount:
    def test_change_password_revokes_other_sessions(self, service):
        create_identity(service, "pw@example.com")
        other = _login(service, "pw@example.com")
        claims = _claims(service, "pw@example.com")

        assert service.change_password(claims, PASSWORD, NEW_PASSWORD, CLIENT) is None
        assert service.sessions.is_revoked(other.session.id)
        assert not service.sessions.is_revoked(claims.session_id)
        assert _login(service, "pw@example.com").kind is AuthErrorKind.INVALID_CREDENTIALS
        assert isinstance(_login(service, "pw@example.com", NEW_PASSWORD), LoginSuccess)

    def test_change_password_wrong_current(self, service):
        create_identity(service, "pw2@example.com")
        claims = _claims(service, "pw2@example.com")
        result = service.change_password(claims, "Wrong-Password-000", NEW_PASSWORD)
        assert result.kind is AuthErrorKind.INVALID_CREDENTIALS

    def test_change_password_weak_new(self, service):
        create_identity(service, "pw3@example.com")
        claims = _claims(service, "pw3@example.com")
        result = service.change_password(claims, PASSWORD, "weak")
        assert result.kind is AuthErrorKind.INVALID_INPUT
        assert result.violations

    def test_mfa_enrollment_flow(self, service, clock):
        create_identity(service, "enroll@example.com")
        claims = _claims(service, "enroll@example.com")
        enrollment = service.begin_mfa_enrollment(claims, CLIENT)
        assert enrollment.enrollment_uri.startswith("otpauth://")

        assert service.confirm_mfa_enrollment(claims, "abcdef").kind is AuthErrorKind.INVALID_MFA
        code = service.totp.current_code(enrollment.secret, at=clock())
        assert service.confirm_mfa_enrollment(claims, code, CLIENT) is None
        assert isinstance(_login(service, "enroll@example.com"), MFARequired)
        assert service.begin_mfa_enrollment(claims).kind is AuthErrorKind.CONFLICT

        assert service.disable_mfa(claims, code, CLIENT) is None
        assert isinstance(_login(service, "enroll@example.com"), LoginSuccess)

    def test_user_cannot_revoke_someone_elses_session(self, service):
        create_identity(service, "mine@example.com")
        create_identity(service, "theirs@example.com")
        mine = _claims(service, "mine@example.com")
        theirs = _login(service, "theirs@example.com")
        result = service.revoke_own_session(mine, theirs.session.id)
        assert result.kind is AuthErrorKind.FORBIDDEN
        assert not service.sessions.is_revoked(theirs.session.id)

    def test_revoke_own_other_device(self, service):
        create_identity(service, "two@example.com")
        phone = _login(service, "two@example.com")
        claims = _claims(service, "two@example.com")
        assert len(service.list_sessions(claims)) == 2
        assert service.revoke_own_session(claims, phone.session.id) is None
        assert [s.id for s in service.list_sessions(claims)] == [claims.session_id]


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


class TestAdmin:
    @pytest.fixture
    def root(self, service) -> TokenClaims:
        create_identity(service, "root@example.com", Role.SUPER_ADMIN)
        return _claims(service, "root@example.com")

    @pytest.fixture
    def admin(self, service) -> TokenClaims:
        create_identity(service, "admin@example.com", Role.ADMIN)
        return _claims(service, "admin@example.com")

    def test_admin_cannot_grant_super_admin(self, service, admin):
        target = create_identity(service, "t@example.com")
        result = service.set_role(admin, target.id, Role.SUPER_ADMIN, CLIENT)
        assert result.kind is AuthErrorKind.FORBIDDEN
        entry = _actions(service, "admin.set_role")[0]
        assert entry.outcome == "failure"
        assert entry.resource_id == target.id

    def test_admin_cannot_touch_super_admin(self, service, root, admin):
        result = service.set_status(admin, root.subject_id, IdentityStatus.SUSPENDED)
        assert result.kind is AuthErrorKind.FORBIDDEN

    def test_cannot_demote_last_super_admin(self, service, root):
        result = service.set_role(root, root.subject_id, Role.ADMIN)
        assert result.kind is AuthErrorKind.CONFLICT

    def test_demote_allowed_when_another_super_admin_exists(self, service, root):
        create_identity(service, "root2@example.com", Role.SUPER_ADMIN)
        result = service.set_role(root, root.subject_id, Role.ADMIN)
        assert isinstance(result, Identity)
        assert result.role is Role.ADMIN

    def test_cannot_deactivate_self(self, service, admin):
        result = service.set_status(admin, admin.subject_id, IdentityStatus.SUSPENDED)
        assert result.kind is AuthErrorKind.CONFLICT

    def test_suspend_revokes_every_session(self, service, admin):
        target = create_identity(service, "bad@example.com")
        login = _login(service, "bad@example.com")
        result = service.set_status(admin, target.id, IdentityStatus.SUSPENDED, CLIENT)
        assert result.status is IdentityStatus.SUSPENDED
        assert service.authorize_request(login.tokens.access_token).kind is AuthErrorKind.SESSION_REVOKED
        assert _actions(service, "admin.set_status")[0].detail["sessions_revoked"] == 1

    def test_unknown_target_not_found(self, service, admin):
        assert service.unlock_account(admin, "missing-id").kind is AuthErrorKind.NOT_FOUND

    def test_unlock_clears_lockout(self, service, admin):
        target = create_identity(service, "locked@example.com")
        for _ in range(5):
            _login(service, "locked@example.com", "Wrong-Password-000")
        assert _login(service, "locked@example.com").kind is AuthErrorKind.ACCOUNT_LOCKED
        unlocked = service.unlock_account(admin, target.id, CLIENT)
        assert unlocked.lockout_until is None
        assert isinstance(_login(service, "locked@example.com"), LoginSuccess)

    def test_revoke_identity_sessions_counts(self, service, admin):
        target = create_identity(service, "many@example.com")
        _login(service, "many@example.com")
        _login(service, "many@example.com")
        assert service.revoke_identity_sessions(admin, target.id, CLIENT) == 2

    def test_set_permission_overrides_persisted(self, service, root):
        target = create_identity(service, "fin@example.com", Role.MODERATOR)
        overrides = PermissionOverrides(add=frozenset({Permission.FINANCIAL}))
        result = service.set_permission_overrides(root, target.id, overrides, CLIENT)
        assert result.overrides == overrides
        claims = _claims(service, "fin@example.com")
        assert Permission.FINANCIAL in claims.permissions
