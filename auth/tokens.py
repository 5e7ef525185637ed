"""
auth/tokens.py -- Signed token issuance and verification.

Security design decisions:
  Algorithm: HS256 via python-jose, fixed as a module constant. The header's
       "alg" is never trusted -- a token whose header names any other
       algorithm is rejected as BAD_SIGNATURE before key material is used.
       This closes the classic alg=none / RS-to-HS confusion attacks.

  Keys: Settings.secret_key signs. Settings.previous_secret_keys verify only,
       so a key can be rotated without logging every session out.

  Token types: every payload carries "typ" (access | refresh | mfa). A refresh
       token presented as an access token is MALFORMED, never accepted.

  Verification order: signature, then expiry, then claim shape. Each stage
       returns a distinct AuthFailure kind (BAD_SIGNATURE, EXPIRED, MALFORMED)
       so callers can log the distinction while answering 401 uniformly.
       Nothing on this path raises on attacker-controlled input.

  Expiry: exp/iat are float epoch seconds; a token is expired once
       now >= exp. jose's own exp check is not used because it truncates to
       whole seconds.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Callable
from typing import Any

from jose import jws, jwt
from jose.exceptions import JWSError

from auth.errors import AuthErrorKind, AuthFailure
from auth.models import Identity, IssuedToken, Permission, Role, TokenClaims
from auth.permissions import effective_permissions
from core.config import Settings, get_settings

logger = logging.getLogger("warden.auth.tokens")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"
MFA_CHALLENGE = "mfa"

_REQUIRED_CLAIMS = {
    ACCESS: ("sub", "email", "name", "role", "perms", "sid", "did", "iat", "exp", "jti"),
    REFRESH: ("sid", "iat", "exp", "jti"),
    MFA_CHALLENGE: ("sub", "did", "iat", "exp", "jti"),
}


class TokenIssuer:
    """Issue and verify access, refresh, and MFA challenge tokens.

    clock is injectable so expiry boundaries can be tested to the millisecond.
    """

    def __init__(self, settings: Settings | None = None, clock: Callable[[], float] = time.time) -> None:
        self.settings = settings or get_settings()
        self.clock = clock
        self._signing_key = self.settings.secret_key
        self._verification_keys = [self.settings.secret_key, *self.settings.previous_secret_keys]

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_access_token(self, identity: Identity, session_id: str, device_id: str) -> IssuedToken:
        permissions = effective_permissions(identity.role, identity.overrides)
        return self._issue(
            ACCESS,
            self.settings.access_token_ttl_seconds,
            {
                "sub": identity.id,
                "email": identity.email,
                "name": identity.name,
                "role": identity.role.value,
                "perms": sorted(p.value for p in permissions),
                "sid": session_id,
                "did": device_id,
            },
        )

    def issue_refresh_token(self, session_id: str) -> IssuedToken:
        """Refresh tokens carry no permission data -- permissions are re-derived on rotation."""
        return self._issue(REFRESH, self.settings.refresh_token_ttl_seconds, {"sid": session_id})

    def issue_mfa_challenge(self, identity_id: str, device_id: str) -> IssuedToken:
        return self._issue(MFA_CHALLENGE, self.settings.mfa_challenge_ttl_seconds, {"sub": identity_id, "did": device_id})

    def _issue(self, token_type: str, ttl: int, claims: dict[str, Any]) -> IssuedToken:
        now = self.clock()
        jti = secrets.token_urlsafe(16)
        payload = {**claims, "typ": token_type, "iat": now, "exp": now + ttl, "jti": jti}
        token = jwt.encode(payload, self._signing_key, algorithm=_ALGORITHM)
        return IssuedToken(token=token, jti=jti, issued_at=now, expires_at=now + ttl)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def decode(self, token: str, token_type: str) -> dict[str, Any] | AuthFailure:
        """Verify signature, expiry, and shape. Returns the raw payload or a failure."""
        if not isinstance(token, str) or not token:
            return AuthFailure(AuthErrorKind.MALFORMED, "empty token")
        try:
            header = jws.get_unverified_header(token)
        except JWSError:
            return AuthFailure(AuthErrorKind.MALFORMED, "undecodable header")
        if header.get("alg") != _ALGORITHM:
            return AuthFailure(AuthErrorKind.BAD_SIGNATURE, f"unexpected alg {header.get('alg')!r}")

        raw = self._verify_signature(token)
        if raw is None:
            return AuthFailure(AuthErrorKind.BAD_SIGNATURE, "signature mismatch")

        try:
            payload = json.loads(raw)
        except ValueError:
            return AuthFailure(AuthErrorKind.MALFORMED, "payload is not JSON")
        if not isinstance(payload, dict) or not isinstance(payload.get("exp"), (int, float)):
            return AuthFailure(AuthErrorKind.MALFORMED, "missing exp")

        if self.clock() >= payload["exp"]:
            return AuthFailure(AuthErrorKind.EXPIRED, f"{token_type} token expired")

        if payload.get("typ") != token_type:
            return AuthFailure(AuthErrorKind.MALFORMED, f"expected {token_type} token, got {payload.get('typ')!r}")
        missing = [c for c in _REQUIRED_CLAIMS[token_type] if c not in payload]
        if missing:
            return AuthFailure(AuthErrorKind.MALFORMED, f"missing claims {missing}")
        return payload

    def _verify_signature(self, token: str) -> bytes | None:
        for key in self._verification_keys:
            try:
                return jws.verify(token, key, algorithms=[_ALGORITHM])
            except JWSError:
                continue
        return None

    def verify(self, token: str) -> TokenClaims | AuthFailure:
        """Verify an access token and return its typed claims."""
        payload = self.decode(token, ACCESS)
        if isinstance(payload, AuthFailure):
            return payload
        try:
            return TokenClaims(
                subject_id=str(payload["sub"]),
                email=str(payload["email"]),
                name=str(payload["name"]),
                role=Role(payload["role"]),
                permissions=frozenset(Permission(p) for p in payload["perms"]),
                session_id=str(payload["sid"]),
                device_id=str(payload["did"]),
                issued_at=float(payload["iat"]),
                expires_at=float(payload["exp"]),
                jti=str(payload["jti"]),
            )
        except (ValueError, TypeError) as exc:
            return AuthFailure(AuthErrorKind.MALFORMED, f"bad claim value: {exc}")

    def verify_refresh(self, token: str) -> dict[str, Any] | AuthFailure:
        return self.decode(token, REFRESH)

    def verify_mfa_challenge(self, token: str) -> dict[str, Any] | AuthFailure:
        return self.decode(token, MFA_CHALLENGE)
