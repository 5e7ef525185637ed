"""
auth/dependencies.py -- FastAPI Depends() helpers and endpoint decorators.

Three independently attachable pieces, composed per endpoint:

  require_permissions(*perms)  -- authentication + authorization gate. Runs
                                  AuthService.authorize_request and stores the
                                  verified claims on request.state.claims.
  RateLimit(tier=None)         -- per-subject (or per-IP) API rate limit.
                                  Declare it AFTER require_permissions so it
                                  sees the caller's role.
  audited(action, resource)    -- decorator that writes an audit entry once
                                  the endpoint has finished, tagged with the
                                  outcome.

Token sources, in priority order:
  1. Authorization: Bearer <token>  -- API clients.
  2. "access_token" httpOnly cookie -- browser clients (set_auth_cookie()).

failure_to_http() is the single place an AuthFailure becomes an HTTP error.
Every authentication failure gets the same generic body; the precise reason
was already logged and audited by the service.

Layer rule: may import fastapi (this module is part of the DI system), but
nothing from api/.
"""

from __future__ import annotations

import functools
import inspect
from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.audit import FAILURE, SUCCESS, AuditContext
from auth.errors import AuthErrorKind, AuthFailure, ErrorCategory
from auth.models import ClientInfo, Permission, TokenClaims
from auth.ratelimit import RateLimitResult
from auth.service import AuthService
from core.config import get_settings

ACCESS_COOKIE = "access_token"

_STATUS = {
    ErrorCategory.INPUT: 400,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.AUTHENTICATION: 401,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.RATE_LIMIT: 429,
}

_MESSAGES = {
    ErrorCategory.INPUT: "The request was rejected.",
    ErrorCategory.NOT_FOUND: "Resource not found.",
    ErrorCategory.CONFLICT: "The request conflicts with the current state.",
    ErrorCategory.AUTHENTICATION: "Authentication failed.",
    ErrorCategory.AUTHORIZATION: "You do not have permission to perform this action.",
    ErrorCategory.RATE_LIMIT: "Too many requests.",
}


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth


def client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip=request.client.host if request.client else "unknown",
        user_agent=request.headers.get("User-Agent", "")[:512],
    )


def extract_token(request: Request) -> str:
    """Return the bearer token or access cookie, or "" when neither is present."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip()
    return request.cookies.get(ACCESS_COOKIE, "")


def failure_to_http(failure: AuthFailure) -> HTTPException:
    """Map a typed failure onto the structured HTTP error envelope.

    Authentication failures collapse to one generic message so a client
    cannot tell a wrong password from a locked or unknown account. Conflict
    and not-found reasons are safe to return and help the operator.
    """
    category = failure.category
    detail: dict = {"code": category.value, "message": _MESSAGES[category]}
    headers: dict[str, str] | None = None

    if category is ErrorCategory.INPUT:
        detail["violations"] = list(failure.violations)
    elif category is ErrorCategory.AUTHORIZATION:
        detail["missing"] = list(failure.missing)
    elif category in (ErrorCategory.CONFLICT, ErrorCategory.NOT_FOUND):
        detail["detail"] = failure.reason or None
    elif category is ErrorCategory.AUTHENTICATION:
        headers = {"WWW-Authenticate": "Bearer"}
    elif category is ErrorCategory.RATE_LIMIT:
        headers = {"Retry-After": str(failure.retry_after or 1)}

    return HTTPException(status_code=_STATUS[category], detail=detail, headers=headers)


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the access token as an httpOnly cookie.

    samesite="strict" keeps the cookie off every cross-site request, and
    max_age matches the token lifetime so both expire together.
    """
    settings = get_settings()
    response.set_cookie(
        ACCESS_COOKIE,
        value=token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=expire_seconds if expire_seconds > 0 else settings.access_token_ttl_seconds,
    )


# ---------------------------------------------------------------------------
# Authorization gate
# ---------------------------------------------------------------------------


def require_permissions(*permissions: Permission) -> Callable[[Request], TokenClaims]:
    """Build a dependency that admits only callers holding every permission.

    With no permissions it only requires a valid, unrevoked session.

    Usage:
        @router.get("/admin/users", dependencies=[Depends(require_permissions(Permission.USER_VIEW))])
        def list_users(request: Request): ...
    """
    required = tuple(permissions)

    def dependency(request: Request) -> TokenClaims:
        result = get_auth_service(request).authorize_request(extract_token(request), required, client=client_info(request))
        if isinstance(result, AuthFailure):
            raise failure_to_http(result)
        request.state.claims = result
        request.state.required_permissions = required
        return result

    return dependency


current_claims = require_permissions()


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class RateLimit:
    """Dependency enforcing the API rate-limit policy for one endpoint.

    Authenticated callers are counted per subject at their role's ceiling;
    anonymous callers per source IP. tier="sensitive" forces the tight
    ceiling used for financial and audit-export scopes.
    """

    def __init__(self, tier: str | None = None) -> None:
        self.tier = tier

    def __call__(self, request: Request) -> RateLimitResult:
        claims: TokenClaims | None = getattr(request.state, "claims", None)
        required = getattr(request.state, "required_permissions", ())
        result = get_auth_service(request).check_rate(
            claims, client_info(request).ip, required, sensitive=self.tier == "sensitive"
        )
        if not result.allowed:
            raise failure_to_http(AuthFailure(AuthErrorKind.RATE_LIMITED, "api limit", retry_after=result.retry_after))
        return result


# ---------------------------------------------------------------------------
# Audit decorator
# ---------------------------------------------------------------------------


def audited(action: str, resource_type: str, resource_id_param: str | None = None):
    """Record an audit entry after the endpoint runs.

    The endpoint must accept a `request: Request` parameter. The entry is
    written after the response value is produced (or the exception raised),
    so it carries the real outcome. Exceptions are re-raised unchanged.

    Usage:
        @router.delete("/auth/sessions/{session_id}")
        @audited("session.revoke", "session", resource_id_param="session_id")
        def revoke(request: Request, session_id: str): ...
    """

    def decorator(func):
        def _record(kwargs: dict, outcome: str, detail: dict) -> None:
            request = kwargs.get("request")
            if not isinstance(request, Request):
                return
            claims: TokenClaims | None = getattr(request.state, "claims", None)
            resource_id = kwargs.get(resource_id_param) if resource_id_param else None
            get_auth_service(request).audit.record(
                claims.subject_id if claims else None,
                action,
                resource_type,
                outcome=outcome,
                resource_id=str(resource_id) if resource_id is not None else None,
                detail=detail,
                context=AuditContext.from_client(client_info(request), claims.session_id if claims else None),
            )

        def _failure_detail(exc: Exception) -> dict:
            if isinstance(exc, HTTPException):
                return {"status": exc.status_code}
            return {"error": type(exc).__name__}

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    result = await func(*args, **kwargs)
                except Exception as exc:
                    _record(kwargs, FAILURE, _failure_detail(exc))
                    raise
                _record(kwargs, SUCCESS, {})
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                _record(kwargs, FAILURE, _failure_detail(exc))
                raise
            _record(kwargs, SUCCESS, {})
            return result

        return wrapper

    return decorator
