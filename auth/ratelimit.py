"""
auth/ratelimit.py -- Fixed-window rate limiting against the shared state store.

Counters live in StateStore (rate_counters table), never in process memory:
several workers behind a load balancer must see one count, and a per-process
dict silently under-counts as soon as there is more than one.

check_and_increment() is one atomic upsert. Under N concurrent callers on a
fresh key with limit L, exactly L see allowed=True. Fixed windows are a bit
bursty at window edges; that trade is accepted for a single-statement check.

RateLimitPolicy maps request context to a (limit, window) rule:
  login      -- per (email, source IP), tighter than any API tier
  api        -- per subject, ceiling scales with role
  sensitive  -- financial / audit export scopes, one tight ceiling for all roles
  anonymous  -- per source IP

Coarse per-IP limiting of public HTTP routes stays with slowapi
(api/limiter.py). This module is the precise, identity-aware layer.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

from auth.models import SENSITIVE_PERMISSIONS, Permission, Role
from auth.store import StateStore, normalize_email
from core.config import Settings, get_settings


@dataclass(frozen=True)
class RateLimitRule:
    scope: str
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int = 0


class RateLimiter:
    def __init__(self, state: StateStore) -> None:
        self.state = state

    def check_and_increment(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        count, reset_at = self.state.atomic_increment(key, window_seconds)
        allowed = count <= limit
        retry_after = 0 if allowed else max(1, math.ceil(reset_at - self.state.clock()))
        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(limit - count, 0),
            reset_at=reset_at,
            retry_after=retry_after,
        )

    def hit(self, rule: RateLimitRule, identifier: str) -> RateLimitResult:
        return self.check_and_increment(f"rl:{rule.scope}:{identifier}", rule.limit, rule.window_seconds)


class RateLimitPolicy:
    """Choose the rule for a request from settings. Pure lookups, no I/O."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def login(self) -> RateLimitRule:
        s = self.settings
        return RateLimitRule("login", s.login_rate_limit_attempts, s.login_rate_limit_window_seconds)

    @staticmethod
    def login_identifier(email: str, ip: str) -> str:
        return f"{normalize_email(email)}|{ip}"

    def for_request(self, role: Role | None, required: Iterable[Permission] = (), sensitive: bool = False) -> RateLimitRule:
        s = self.settings
        window = s.api_rate_limit_window_seconds
        if sensitive or SENSITIVE_PERMISSIONS & frozenset(required):
            return RateLimitRule("sensitive", s.sensitive_rate_limit, window)
        if role is None:
            return RateLimitRule("anonymous", s.anonymous_rate_limit, window)
        limit = s.role_rate_limits.get(role.value, s.role_rate_limits.get(Role.USER.value, s.anonymous_rate_limit))
        return RateLimitRule(f"api:{role.value}", limit, window)
