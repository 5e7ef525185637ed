"""
auth/lockout.py -- Account lockout after repeated failed credentials.

Ordering contract: callers check is_locked() BEFORE verifying a password, so
a locked account never reveals (by timing or by answer) whether the supplied
password was right.

lock() leaves the attempt counter alone. Once the lockout window passes, the
next failure finds the counter still at or above the threshold and locks
again immediately; only a successful login (or an admin unlock) resets it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from auth.models import Identity
from auth.store import IdentityStore
from core.config import Settings, get_settings

logger = logging.getLogger("warden.auth.lockout")


class AccountLockoutGuard:
    def __init__(
        self,
        identities: IdentityStore,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.identities = identities
        settings = settings or get_settings()
        self.threshold = settings.max_login_attempts
        self.duration = settings.lockout_duration_seconds
        self.clock = clock

    def record_failed_attempt(self, identity_id: str) -> int:
        return self.identities.increment_failed_attempts(identity_id)

    def should_lock(self, attempt_count: int) -> bool:
        return attempt_count >= self.threshold

    def lock(self, identity_id: str) -> float:
        until = self.clock() + self.duration
        self.identities.set_lockout(identity_id, until)
        logger.warning("Identity %s locked until %.0f", identity_id, until)
        return until

    def is_locked(self, identity: Identity) -> bool:
        return identity.lockout_until is not None and self.clock() < identity.lockout_until

    def record_success(self, identity_id: str) -> None:
        self.identities.reset_failed_attempts(identity_id)

    def unlock(self, identity_id: str) -> None:
        self.identities.reset_failed_attempts(identity_id)
