"""
tests/helpers.py -- Plain helpers shared by the test modules.

Fixtures live in conftest.py; anything a test imports by name lives here.
"""

from __future__ import annotations

import uuid

from auth.models import Identity, Role
from auth.service import AuthService
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789-abcdefghijklmnop"
PASSWORD = "Correct-Horse-Battery-9"
START = 1_700_000_000.0


def memory_url(prefix: str = "warden") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    """Settings for tests: fixed key, 4 bcrypt rounds, a brand-new database."""
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "bcrypt_rounds": 4,
        "database_url": memory_url(),
    }
    values.update(overrides)
    return Settings(**values)


class FakeClock:
    """Callable clock. Tests move time explicitly with advance()."""

    def __init__(self, start: float = START) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def create_identity(service: AuthService, email: str, role: Role = Role.USER, password: str = PASSWORD) -> Identity:
    result = service.register(email, password, email.split("@")[0].title(), role=role)
    assert isinstance(result, Identity), f"registration failed: {result}"
    return result
