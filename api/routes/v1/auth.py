"""
api/routes/v1/auth.py -- Authentication, session and self-service account endpoints.

Routes:
  POST   /api/v1/auth/register            -- create an identity (public)
  POST   /api/v1/auth/login               -- password login; tokens or an MFA challenge
  POST   /api/v1/auth/mfa/verify          -- complete an MFA login
  POST   /api/v1/auth/refresh             -- rotate a refresh token (single use)
  POST   /api/v1/auth/logout              -- revoke the current session; clears cookie
  GET    /api/v1/auth/me                  -- current identity claims
  POST   /api/v1/auth/password            -- change password; other sessions revoked
  POST   /api/v1/auth/mfa/enroll          -- start TOTP enrollment
  POST   /api/v1/auth/mfa/confirm         -- prove the authenticator works; enables MFA
  POST   /api/v1/auth/mfa/disable         -- turn MFA off (needs a current code)
  GET    /api/v1/auth/sessions            -- list the caller's sessions
  DELETE /api/v1/auth/sessions/{id}       -- revoke one session (ownership checked)

Security:
  [H2] Public routes carry a coarse per-IP slowapi limit on top of the
       per-(email, IP) login limit inside AuthService.
  [C1] Unknown-email logins burn a bcrypt verify -- handled by AuthService.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Every handler is a plain def: bcrypt work runs in the thread pool, not on
  the event loop.
"""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import IP_LIMIT, limiter
from api.models import (
    AccountResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    MFAChallengeResponse,
    MFACodeRequest,
    MFAEnrollResponse,
    MFAVerifyRequest,
    PasswordChangeRequest,
    RefreshRequest,
    RegisterRequest,
    SessionResponse,
    TokenResponse,
)
from auth.dependencies import (
    ACCESS_COOKIE,
    RateLimit,
    client_info,
    current_claims,
    failure_to_http,
    get_auth_service,
    set_auth_cookie,
)
from auth.errors import AuthFailure
from auth.models import TokenClaims, TokenPair
from auth.service import MFARequired

# Auth policy:
# - register, login, mfa/verify, refresh: public (the token is the credential), per-IP limited
#   (login by its own email+IP rule, the others by the anonymous API tier)
# - logout, me, password, mfa/*, sessions: valid session required (current_claims)
router = APIRouter()

# Route-level dependencies resolve before handler parameters, in list order, and
# FastAPI caches current_claims per request, so RateLimit sees the caller.
_AUTHENTICATED = [Depends(current_claims), Depends(RateLimit())]
# No claims on public routes, so RateLimit counts the source IP at the anonymous ceiling.
_PUBLIC = [Depends(RateLimit())]


def _token_response(service, pair: TokenPair) -> JSONResponse:
    now = service.clock()
    resp = JSONResponse(
        content=TokenResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=max(math.floor(pair.access_expires_at - now), 0),
            refresh_expires_in=max(math.floor(pair.refresh_expires_at - now), 0),
        ).model_dump()
    )
    set_auth_cookie(resp, pair.access_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(IP_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=AccountResponse, status_code=201, dependencies=_PUBLIC)
def register(request: Request, body: RegisterRequest) -> AccountResponse:
    """Create an identity with the USER role."""
    result = get_auth_service(request).register(body.email, body.password, body.name, client_info(request))
    if isinstance(result, AuthFailure):
        raise failure_to_http(result)
    return AccountResponse.from_identity(result)


@limiter.limit(IP_LIMIT)  # [H2]
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Returns a token pair, or an MFA challenge (mfa_required=true) when the
    account has MFA enabled. Every credential failure looks the same to the
    client; the precise reason is in the audit log.
    """
    service = get_auth_service(request)
    result = service.login(body.email, body.password, body.device_id, client_info(request))
    if isinstance(result, AuthFailure):
        raise failure_to_http(result)
    if isinstance(result, MFARequired):
        resp = JSONResponse(
            content=MFAChallengeResponse(
                challenge_token=result.challenge_token,
                expires_in=max(math.floor(result.expires_at - service.clock()), 0),
            ).model_dump()
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp
    return _token_response(service, result.tokens)


@limiter.limit(IP_LIMIT)  # [H2]
@router.post("/auth/mfa/verify", response_model=TokenResponse, dependencies=_PUBLIC)
def verify_mfa(request: Request, body: MFAVerifyRequest) -> JSONResponse:
    service = get_auth_service(request)
    result = service.verify_mfa(body.challenge_token, body.code, client_info(request))
    if isinstance(result, AuthFailure):
        raise failure_to_http(result)
    return _token_response(service, result.tokens)


@limiter.limit(IP_LIMIT)  # [H2]
@router.post("/auth/refresh", response_model=TokenResponse, dependencies=_PUBLIC)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is spent.

    Presenting an already-spent token revokes the whole session.
    """
    service = get_auth_service(request)
    result = service.refresh(body.refresh_token, client_info(request))
    if isinstance(result, AuthFailure):
        raise failure_to_http(result)
    return _token_response(service, result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse, dependencies=_AUTHENTICATED)
def logout(request: Request, claims: TokenClaims = Depends(current_claims)) -> JSONResponse:
    """Revoke the current session and clear the access cookie."""
    get_auth_service(request).logout(claims.session_id, client_info(request), actor_id=claims.subject_id)
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie(ACCESS_COOKIE)
    return resp


@router.get("/auth/me", response_model=MeResponse, dependencies=_AUTHENTICATED)
def me(claims: TokenClaims = Depends(current_claims)) -> MeResponse:
    """Return the identity carried by the caller's access token."""
    return MeResponse(
        id=claims.subject_id,
        email=claims.email,
        name=claims.name,
        role=claims.role,
        permissions=sorted(p.value for p in claims.permissions),
        session_id=claims.session_id,
        device_id=claims.device_id,
    )


@router.post("/auth/password", response_model=MessageResponse, dependencies=_AUTHENTICATED)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    claims: TokenClaims = Depends(current_claims),
) -> MessageResponse:
    """Change the caller's password. Every other session is signed out."""
    result = get_auth_service(request).change_password(
        claims, body.current_password, body.new_password, client_info(request)
    )
    if isinstance(result, AuthFailure):
        raise failure_to_http(result)
    return MessageResponse(message="Password changed.")


@router.post("/auth/mfa/enroll", response_model=MFAEnrollResponse, dependencies=_AUTHENTICATED)
def begin_mfa_enrollment(request: Request, claims: TokenClaims = Depends(current_claims)) -> JSONResponse:
    result = get_auth_service(request).begin_mfa_enrollment(claims, client_info(request))
    if isinstance(result, AuthFailure):
        raise failure_to_http(result)
    resp = JSONResponse(content=MFAEnrollResponse(secret=result.secret, enrollment_uri=result.enrollment_uri).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/mfa/confirm", response_model=MessageResponse, dependencies=_AUTHENTICATED)
def confirm_mfa_enrollment(
    request: Request,
    body: MFACodeRequest,
    claims: TokenClaims = Depends(current_claims),
) -> MessageResponse:
    result = get_auth_service(request).confirm_mfa_enrollment(claims, body.code, client_info(request))
    if isinstance(result, AuthFailure):
        raise failure_to_http(result)
    return MessageResponse(message="MFA enabled.")


@router.post("/auth/mfa/disable", response_model=MessageResponse, dependencies=_AUTHENTICATED)
def disable_mfa(
    request: Request,
    body: MFACodeRequest,
    claims: TokenClaims = Depends(current_claims),
) -> MessageResponse:
    result = get_auth_service(request).disable_mfa(claims, body.code, client_info(request))
    if isinstance(result, AuthFailure):
        raise failure_to_http(result)
    return MessageResponse(message="MFA disabled.")


@router.get("/auth/sessions", response_model=list[SessionResponse], dependencies=_AUTHENTICATED)
def list_sessions(request: Request, claims: TokenClaims = Depends(current_claims)) -> list[SessionResponse]:
    service = get_auth_service(request)
    now = service.clock()
    return [SessionResponse.from_session(s, now, claims.session_id) for s in service.list_sessions(claims)]


@router.delete("/auth/sessions/{session_id}", status_code=204, dependencies=_AUTHENTICATED)
def revoke_session(
    request: Request,
    session_id: str,
    claims: TokenClaims = Depends(current_claims),
) -> Response:
    """Sign out one device. A USER may only revoke their own sessions [IDOR guard]."""
    result = get_auth_service(request).revoke_own_session(claims, session_id, client_info(request))
    if isinstance(result, AuthFailure):
        raise failure_to_http(result)
    return Response(status_code=204)
