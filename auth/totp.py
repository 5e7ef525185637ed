"""
auth/totp.py -- TOTP secret generation and code verification (RFC 6238).

Secrets are base32 (pyotp.random_base32), which is what authenticator apps
expect inside an otpauth:// provisioning URI. Never hex.

verify_code() accepts the current 30-second step and two steps either side
(+/-60s of clock drift). Anything that is not exactly six ASCII digits is
rejected before any HMAC work. A wrong code and an out-of-window code both
return plain False so callers cannot tell them apart.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass

import pyotp

from core.config import Settings, get_settings

_CODE_RE = re.compile(r"^[0-9]{6}$")
_DRIFT_STEPS = 2


@dataclass(frozen=True)
class TOTPEnrollment:
    secret: str
    enrollment_uri: str


class TOTPEngine:
    def __init__(self, settings: Settings | None = None) -> None:
        self.issuer = (settings or get_settings()).totp_issuer

    def generate_secret(self, account_name: str) -> TOTPEnrollment:
        secret = pyotp.random_base32()
        uri = pyotp.TOTP(secret).provisioning_uri(name=account_name, issuer_name=self.issuer)
        return TOTPEnrollment(secret=secret, enrollment_uri=uri)

    def verify_code(self, code: str, secret: str, at: float | None = None) -> bool:
        if not isinstance(code, str) or not _CODE_RE.fullmatch(code):
            return False
        for_time = time.time() if at is None else at
        return pyotp.TOTP(secret).verify(code, for_time=for_time, valid_window=_DRIFT_STEPS)

    def current_code(self, secret: str, at: float | None = None) -> str:
        return pyotp.TOTP(secret).at(time.time() if at is None else at)
