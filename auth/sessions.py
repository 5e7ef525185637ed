"""
auth/sessions.py -- Session lifecycle, revocation gate, and refresh rotation.

A session is the revocation authority for every token that carries its id.
Access tokens are verified cryptographically first; is_revoked() is then
consulted on every authorization. That lookup is the one deliberate break
from stateless JWTs: it costs a store read per request and buys instant
revocation of a compromised session.

State machine (Session.state):
  ACTIVE -> EXPIRED  passive, once now >= expires_at
  ACTIVE -> REVOKED  logout, admin action, or refresh reuse detection
Both terminal.

Refresh rotation [single use]:
  The session's current refresh jti lives in the state store under
  refresh:<session_id>. rotate_refresh() swaps it with a conditional write
  guarded by the presented jti. Of two concurrent rotations of the same
  token exactly one wins; the loser -- and any later replay -- gets
  REUSE_DETECTED and the session is revoked.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import AuthErrorKind, AuthFailure
from auth.models import Identity, IdentityStatus, Session, SessionState, TokenPair
from auth.store import IdentityStore, StateStore
from auth.tokens import TokenIssuer
from core.config import Settings, get_settings

logger = logging.getLogger("warden.sessions")


def _refresh_key(session_id: str) -> str:
    return f"refresh:{session_id}"


class SessionManager:
    def __init__(
        self,
        state: StateStore,
        identities: IdentityStore,
        issuer: TokenIssuer,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state = state
        self.identities = identities
        self.issuer = issuer
        self.settings = settings or get_settings()
        self.clock = clock

    def create_session(self, identity: Identity, device_id: str, ip: str, user_agent: str) -> tuple[Session, TokenPair]:
        """Open a new session and issue its first access + refresh tokens."""
        now = self.clock()
        session = Session(
            id=secrets.token_urlsafe(32),
            identity_id=identity.id,
            device_id=device_id,
            ip=ip,
            user_agent=user_agent,
            issued_at=now,
            expires_at=now + self.settings.refresh_token_ttl_seconds,
            last_activity=now,
        )
        self.state.put_session(session)
        tokens, refresh_jti = self._issue_pair(identity, session)
        self.state.put_value(_refresh_key(session.id), refresh_jti, self._ttl(session))
        logger.info("Session %s opened for identity %s", session.id[:8], identity.id)
        return session, tokens

    def _issue_pair(self, identity: Identity, session: Session) -> tuple[TokenPair, str]:
        access = self.issuer.issue_access_token(identity, session.id, session.device_id)
        refresh = self.issuer.issue_refresh_token(session.id)
        pair = TokenPair(
            access_token=access.token,
            refresh_token=refresh.token,
            access_expires_at=access.expires_at,
            refresh_expires_at=refresh.expires_at,
        )
        return pair, refresh.jti

    def _ttl(self, session: Session) -> float:
        return max(session.expires_at - self.clock(), 1.0)

    def get(self, session_id: str) -> Session | None:
        return self.state.get_session(session_id)

    def is_revoked(self, session_id: str) -> bool:
        """True unless the session exists, is active, and has not expired.

        Store errors propagate: the caller must fail closed, never treat an
        unreachable store as "not revoked".
        """
        session = self.state.get_session(session_id)
        return session is None or session.state(self.clock()) is not SessionState.ACTIVE

    def revoke(self, session_id: str) -> None:
        """Mark the session inactive. Revoking twice is the same as revoking once."""
        self.state.set_session_inactive(session_id)
        self.state.delete_value(_refresh_key(session_id))

    def revoke_all(self, identity_id: str, except_session_id: str | None = None) -> int:
        revoked = 0
        for session in self.state.list_sessions(identity_id):
            if session.id == except_session_id:
                continue
            self.revoke(session.id)
            revoked += 1
        return revoked

    def list_sessions(self, identity_id: str) -> list[Session]:
        return self.state.list_sessions(identity_id)

    def touch(self, session_id: str) -> None:
        """Best-effort last-activity stamp. Never fails the surrounding request."""
        try:
            self.state.touch_session(session_id)
        except SQLAlchemyError:
            logger.warning("Could not update last activity for session %s", session_id[:8], exc_info=True)

    def rotate_refresh(self, refresh_token: str) -> tuple[TokenPair, Session, Identity] | AuthFailure:
        """Exchange a refresh token for a fresh pair; the presented token is spent.

        Permissions in the new access token are re-derived from the identity
        as it is now, so role changes take effect here.
        """
        payload = self.issuer.verify_refresh(refresh_token)
        if isinstance(payload, AuthFailure):
            return payload
        session_id, jti = str(payload["sid"]), str(payload["jti"])

        session = self.state.get_session(session_id)
        if session is None or session.state(self.clock()) is not SessionState.ACTIVE:
            return AuthFailure(AuthErrorKind.REVOKED, "session is not active", session_id=session_id)

        identity = self.identities.get_by_id(session.identity_id)
        if identity is None or identity.status is not IdentityStatus.ACTIVE:
            self.revoke(session_id)
            return AuthFailure(
                AuthErrorKind.REVOKED, "identity is no longer active", session_id=session_id, identity_id=session.identity_id
            )

        tokens, new_jti = self._issue_pair(identity, session)
        if not self.state.conditional_write(_refresh_key(session_id), jti, new_jti, self._ttl(session)):
            self.revoke(session_id)
            logger.warning("Refresh token reuse on session %s -- session revoked", session_id[:8])
            return AuthFailure(
                AuthErrorKind.REUSE_DETECTED, "refresh token already rotated", session_id=session_id, identity_id=identity.id
            )
        return tokens, session, identity
