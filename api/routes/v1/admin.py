"""
api/routes/v1/admin.py -- Identity administration and audit log endpoints.

Routes (permission in brackets):
  GET    /api/v1/admin/users                    [user_view]
  GET    /api/v1/admin/users/{id}               [user_view]
  PATCH  /api/v1/admin/users/{id}/role          [role_management]
  PATCH  /api/v1/admin/users/{id}/status        [user_management]
  PUT    /api/v1/admin/users/{id}/permissions   [role_management]
  POST   /api/v1/admin/users/{id}/unlock        [user_management]
  DELETE /api/v1/admin/users/{id}/sessions      [session_management]
  GET    /api/v1/admin/audit                    [audit_log_view]
  GET    /api/v1/admin/audit/export             [audit_log_export] -- sensitive rate tier

Security:
  Permission checks happen in the route dependencies (require_permissions).
  AuthService then enforces what a permission alone cannot: no acting on a
  higher-ranked identity, no assigning a role above your own, and no
  demoting or deactivating the last active super admin [M4].
  Role and permission changes reach the target's access token on its next
  refresh. Status changes away from "active" revoke every session at once.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from api.models import (
    AuditEntryResponse,
    IdentityResponse,
    PermissionOverridesRequest,
    RevokedResponse,
    RolePatch,
    StatusPatch,
)
from auth.audit import entries_to_csv
from auth.dependencies import RateLimit, audited, client_info, failure_to_http, get_auth_service, require_permissions
from auth.errors import AuthErrorKind, AuthFailure
from auth.models import Identity, Permission, PermissionOverrides, TokenClaims

router = APIRouter()


def _guard(*permissions: Permission, tier: Optional[str] = None) -> list:
    return [Depends(require_permissions(*permissions)), Depends(RateLimit(tier))]


def _actor(request: Request) -> TokenClaims:
    return request.state.claims


def _identity_or_raise(result: Identity | AuthFailure | None) -> IdentityResponse:
    if result is None:
        raise failure_to_http(AuthFailure(AuthErrorKind.NOT_FOUND, "identity not found"))
    if isinstance(result, AuthFailure):
        raise failure_to_http(result)
    return IdentityResponse.from_identity(result)


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


@router.get("/admin/users", response_model=list[IdentityResponse], dependencies=_guard(Permission.USER_VIEW))
@audited("admin.list_users", "identity")
def list_users(
    request: Request,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[IdentityResponse]:
    identities = get_auth_service(request).list_identities(limit=limit, offset=offset)
    return [IdentityResponse.from_identity(i) for i in identities]


@router.get("/admin/users/{identity_id}", response_model=IdentityResponse, dependencies=_guard(Permission.USER_VIEW))
@audited("admin.view_user", "identity", resource_id_param="identity_id")
def get_user(request: Request, identity_id: str) -> IdentityResponse:
    return _identity_or_raise(get_auth_service(request).get_identity(identity_id))


@router.patch(
    "/admin/users/{identity_id}/role",
    response_model=IdentityResponse,
    dependencies=_guard(Permission.ROLE_MANAGEMENT),
)
def set_role(request: Request, identity_id: str, body: RolePatch) -> IdentityResponse:
    """Change an identity's role. Cannot grant a role above the caller's own."""
    result = get_auth_service(request).set_role(_actor(request), identity_id, body.role, client_info(request))
    return _identity_or_raise(result)


@router.patch(
    "/admin/users/{identity_id}/status",
    response_model=IdentityResponse,
    dependencies=_guard(Permission.USER_MANAGEMENT),
)
def set_status(request: Request, identity_id: str, body: StatusPatch) -> IdentityResponse:
    """Suspend, ban, reactivate or verify an identity.

    [M4] Refuses self-deactivation and deactivating the last active super admin.
    """
    result = get_auth_service(request).set_status(_actor(request), identity_id, body.status, client_info(request))
    return _identity_or_raise(result)


@router.put(
    "/admin/users/{identity_id}/permissions",
    response_model=IdentityResponse,
    dependencies=_guard(Permission.ROLE_MANAGEMENT),
)
def set_permissions(request: Request, identity_id: str, body: PermissionOverridesRequest) -> IdentityResponse:
    overrides = PermissionOverrides(add=frozenset(body.add), remove=frozenset(body.remove))
    result = get_auth_service(request).set_permission_overrides(_actor(request), identity_id, overrides, client_info(request))
    return _identity_or_raise(result)


@router.post(
    "/admin/users/{identity_id}/unlock",
    response_model=IdentityResponse,
    dependencies=_guard(Permission.USER_MANAGEMENT),
)
def unlock(request: Request, identity_id: str) -> IdentityResponse:
    result = get_auth_service(request).unlock_account(_actor(request), identity_id, client_info(request))
    return _identity_or_raise(result)


@router.delete(
    "/admin/users/{identity_id}/sessions",
    response_model=RevokedResponse,
    dependencies=_guard(Permission.SESSION_MANAGEMENT),
)
def revoke_sessions(request: Request, identity_id: str) -> RevokedResponse:
    """Sign an identity out everywhere."""
    result = get_auth_service(request).revoke_identity_sessions(_actor(request), identity_id, client_info(request))
    if isinstance(result, AuthFailure):
        raise failure_to_http(result)
    return RevokedResponse(sessions_revoked=result)


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


@router.get("/admin/audit", response_model=list[AuditEntryResponse], dependencies=_guard(Permission.AUDIT_LOG_VIEW))
@audited("audit.view", "audit_log")
def audit_log(
    request: Request,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    actor_id: Annotated[Optional[str], Query(max_length=64)] = None,
    action: Annotated[Optional[str], Query(max_length=64)] = None,
) -> list[AuditEntryResponse]:
    """Most recent entries first."""
    entries = get_auth_service(request).audit_entries(limit=limit, actor_id=actor_id, action=action)
    return [AuditEntryResponse.from_entry(e) for e in entries]


@router.get(
    "/admin/audit/export",
    dependencies=_guard(Permission.AUDIT_LOG_EXPORT, tier="sensitive"),
    response_class=Response,
)
@audited("audit.export", "audit_log")
def export_audit_log(
    request: Request,
    limit: Annotated[int, Query(ge=1, le=10000)] = 1000,
    actor_id: Annotated[Optional[str], Query(max_length=64)] = None,
    action: Annotated[Optional[str], Query(max_length=64)] = None,
) -> Response:
    """Download entries as CSV. Cells that could run as spreadsheet formulas are neutralized."""
    entries = get_auth_service(request).audit_entries(limit=limit, actor_id=actor_id, action=action)
    return Response(
        content=entries_to_csv(entries),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="audit-log.csv"', "Cache-Control": "no-store"},
    )
