"""
tests/test_lockout.py -- Unit tests for auth/lockout.py.

Covers:
  - the threshold-th failure locks; earlier failures do not
  - the lock lapses after the configured duration
  - after the lock lapses, the next failure re-locks immediately
  - record_success() and unlock() clear both counter and lock
"""

from __future__ import annotations

import pytest

from auth.lockout import AccountLockoutGuard
from auth.models import Identity
from auth.store import IdentityStore
from tests.helpers import FakeClock, make_settings, memory_url


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store():
    s = IdentityStore(memory_url("lockout"))
    yield s
    s.close()


@pytest.fixture
def guard(store, clock) -> AccountLockoutGuard:
    return AccountLockoutGuard(store, make_settings(max_login_attempts=3, lockout_duration_seconds=600), clock=clock)


@pytest.fixture
def ident(store) -> Identity:
    return store.create(Identity(email="lock@example.com", name="Lock", password_hash="x"))


def _fail(guard: AccountLockoutGuard, identity_id: str) -> None:
    count = guard.record_failed_attempt(identity_id)
    if guard.should_lock(count):
        guard.lock(identity_id)


def test_below_threshold_not_locked(guard, store, ident):
    _fail(guard, ident.id)
    _fail(guard, ident.id)
    assert not guard.is_locked(store.get_by_id(ident.id))
    assert store.get_by_id(ident.id).failed_attempts == 2


def test_threshold_failure_locks(guard, store, ident, clock):
    for _ in range(3):
        _fail(guard, ident.id)
    locked = store.get_by_id(ident.id)
    assert guard.is_locked(locked)
    assert locked.lockout_until == clock.now + 600


def test_lock_lapses_after_duration(guard, store, ident, clock):
    for _ in range(3):
        _fail(guard, ident.id)
    clock.advance(600)
    assert not guard.is_locked(store.get_by_id(ident.id))


def test_failure_after_lapse_relocks(guard, store, ident, clock):
    for _ in range(3):
        _fail(guard, ident.id)
    clock.advance(601)
    _fail(guard, ident.id)
    assert guard.is_locked(store.get_by_id(ident.id))


def test_success_resets_counter_and_lock(guard, store, ident):
    for _ in range(3):
        _fail(guard, ident.id)
    guard.record_success(ident.id)
    fresh = store.get_by_id(ident.id)
    assert fresh.failed_attempts == 0
    assert fresh.lockout_until is None


def test_unlock_clears_lock(guard, store, ident):
    for _ in range(3):
        _fail(guard, ident.id)
    guard.unlock(ident.id)
    assert not guard.is_locked(store.get_by_id(ident.id))


def test_unknown_identity_counts_zero(guard):
    assert guard.record_failed_attempt("no-such-id") == 0
