"""
auth/passwords.py -- Password hashing, verification, and complexity rules.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects
outright. Direct usage has no compatibility shim to go stale.

Cost factor comes from Settings.bcrypt_rounds (default 12, ~250ms). Hashing
is CPU-bound; HTTP routes that call hash()/verify() are plain `def` handlers
so FastAPI runs them in its thread pool, off the event loop.

Timing equalization [C1]: verify_dummy() runs bcrypt against a hash computed
at construction with the same cost, so a login for an unknown email takes
as long as a login with a wrong password.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import bcrypt

from core.config import Settings, get_settings

# bcrypt silently ignores input beyond 72 bytes; reject it instead so two
# passwords sharing a 72-byte prefix never collide.
_BCRYPT_MAX_BYTES = 72

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")
_SYMBOL = re.compile(r"[^A-Za-z0-9\s]")


@dataclass(frozen=True)
class ComplexityResult:
    valid: bool
    violations: tuple[str, ...] = ()


class PasswordManager:
    """bcrypt hashing plus complexity validation.

    Usage:
        pm = PasswordManager(settings)
        stored = pm.hash("Correct-Horse-9")
        pm.verify("Correct-Horse-9", stored)   # True
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.rounds = self.settings.bcrypt_rounds
        self.min_length = self.settings.password_min_length
        self._dummy_hash = self.hash("warden_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a salted bcrypt hash of plaintext."""
        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plaintext: str, hashed: str) -> bool:
        """Return True if plaintext matches hashed. Malformed hashes are a mismatch."""
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    def verify_dummy(self, plaintext: str) -> None:
        """Burn one bcrypt verification. Always call this on the unknown-identity path [C1]."""
        self.verify(plaintext, self._dummy_hash)

    def validate_complexity(self, plaintext: str) -> ComplexityResult:
        """Check every rule and report all violations at once."""
        violations: list[str] = []
        if len(plaintext) < self.min_length:
            violations.append(f"Password must be at least {self.min_length} characters long.")
        if len(plaintext.encode("utf-8")) > _BCRYPT_MAX_BYTES:
            violations.append(f"Password must be at most {_BCRYPT_MAX_BYTES} bytes long.")
        if not _UPPER.search(plaintext):
            violations.append("Password must contain an uppercase letter.")
        if not _LOWER.search(plaintext):
            violations.append("Password must contain a lowercase letter.")
        if not _DIGIT.search(plaintext):
            violations.append("Password must contain a digit.")
        if not _SYMBOL.search(plaintext):
            violations.append("Password must contain a symbol.")
        return ComplexityResult(valid=not violations, violations=tuple(violations))
