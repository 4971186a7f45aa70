"""
api/routes/v1/users.py -- Tenant-scoped principal management endpoints.

Routes:
  GET    /api/v1/users                  -- paginated list (read on principals)
  GET    /api/v1/users/stats            -- counts by status (admin)
  GET    /api/v1/users/{id}             -- one principal (self, or read on principals)
  POST   /api/v1/users                  -- create principal (admin)
  PATCH  /api/v1/users/{id}/profile     -- profile fields (self, or admin)
  PATCH  /api/v1/users/{id}/role        -- change role (admin)
  PATCH  /api/v1/users/{id}/activate    -- status -> active (admin)
  PATCH  /api/v1/users/{id}/deactivate  -- status -> inactive (admin, never self)
  PATCH  /api/v1/users/{id}/suspend     -- status -> suspended (admin, never self)
  DELETE /api/v1/users/{id}             -- soft delete (admin, never self)

Tenant isolation:
  The tenant is always scope.tenant_id. Routes accept an optional tenant_id
  query parameter only so that a mismatching one is rejected with 403 by
  TenantScopeGuard.enforce_tenant() rather than silently ignored. A principal
  id from another tenant returns 404.

The RBAC decisions themselves live in auth/principals.py and auth/policy.py;
require_roles() here is a coarse first gate for the admin-only routes.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    PrincipalCreate,
    PrincipalListResponse,
    PrincipalResponse,
    PrincipalStatsResponse,
    ProfileUpdate,
    RoleUpdate,
)
from auth.dependencies import get_scope, require_roles
from auth.models import ADMIN_ROLES, PrincipalStatus, Role, Scope
from auth.principals import PrincipalService
from auth.scope import TenantScopeGuard

router = APIRouter()

_require_admin = require_roles(*ADMIN_ROLES)


def _service(request: Request) -> PrincipalService:
    return request.app.state.principal_service


@router.get("/users", response_model=PrincipalListResponse)
def list_users(
    request: Request,
    scope: Scope = Depends(get_scope),
    tenant_id: Optional[int] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    search: Optional[str] = Query(default=None, max_length=100),
    role: Optional[Role] = Query(default=None),
    status: Optional[PrincipalStatus] = Query(default=None),
    sort_by: str = Query(default="created_at", max_length=30),
    sort_order: str = Query(default="asc", pattern="^(asc|desc)$"),
) -> PrincipalListResponse:
    """List principals of the caller's tenant with search, filters and pagination."""
    TenantScopeGuard.enforce_tenant(scope, tenant_id)
    result = _service(request).list_principals(
        scope,
        page=page,
        limit=limit,
        search=search,
        role=role,
        status=status,
        sort_by=sort_by,
        descending=sort_order == "desc",
    )
    return PrincipalListResponse(
        data=[PrincipalResponse.from_principal(p) for p in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
        has_next=result.has_next,
        has_prev=result.has_prev,
    )


@router.get("/users/stats", response_model=PrincipalStatsResponse)
def user_stats(
    request: Request,
    scope: Scope = Depends(_require_admin),
    tenant_id: Optional[int] = Query(default=None),
) -> PrincipalStatsResponse:
    TenantScopeGuard.enforce_tenant(scope, tenant_id)
    return PrincipalStatsResponse(**_service(request).stats(scope))


@router.get("/users/{principal_id}", response_model=PrincipalResponse)
def get_user(
    request: Request,
    principal_id: int,
    scope: Scope = Depends(get_scope),
    tenant_id: Optional[int] = Query(default=None),
) -> PrincipalResponse:
    TenantScopeGuard.enforce_tenant(scope, tenant_id)
    return PrincipalResponse.from_principal(_service(request).get_principal(scope, principal_id))


@router.post("/users", response_model=PrincipalResponse, status_code=201)
def create_user(
    request: Request,
    body: PrincipalCreate,
    scope: Scope = Depends(_require_admin),
) -> PrincipalResponse:
    """Create a principal in the caller's tenant. Admin only; 409 on duplicate email."""
    created = _service(request).create_principal(
        scope,
        email=body.email,
        password=body.password,
        role=body.role,
        status=body.status,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return PrincipalResponse.from_principal(created)


@router.patch("/users/{principal_id}/profile", response_model=PrincipalResponse)
def update_profile(
    request: Request,
    principal_id: int,
    body: ProfileUpdate,
    scope: Scope = Depends(get_scope),
) -> PrincipalResponse:
    updated = _service(request).update_profile(
        scope,
        principal_id,
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return PrincipalResponse.from_principal(updated)


@router.patch("/users/{principal_id}/role", response_model=PrincipalResponse)
def change_role(
    request: Request,
    principal_id: int,
    body: RoleUpdate,
    scope: Scope = Depends(_require_admin),
) -> PrincipalResponse:
    return PrincipalResponse.from_principal(_service(request).change_role(scope, principal_id, body.role))


@router.patch("/users/{principal_id}/activate", response_model=PrincipalResponse)
def activate_user(request: Request, principal_id: int, scope: Scope = Depends(_require_admin)) -> PrincipalResponse:
    return PrincipalResponse.from_principal(_service(request).activate(scope, principal_id))


@router.patch("/users/{principal_id}/deactivate", response_model=PrincipalResponse)
def deactivate_user(
    request: Request, principal_id: int, scope: Scope = Depends(_require_admin)
) -> PrincipalResponse:
    """Deactivate a principal. 403 when targeting yourself, 400 for the last admin."""
    return PrincipalResponse.from_principal(_service(request).deactivate(scope, principal_id))


@router.patch("/users/{principal_id}/suspend", response_model=PrincipalResponse)
def suspend_user(request: Request, principal_id: int, scope: Scope = Depends(_require_admin)) -> PrincipalResponse:
    return PrincipalResponse.from_principal(_service(request).suspend(scope, principal_id))


@router.delete("/users/{principal_id}", status_code=204)
def delete_user(request: Request, principal_id: int, scope: Scope = Depends(_require_admin)) -> Response:
    """Soft-delete a principal. 403 when targeting yourself."""
    _service(request).remove(scope, principal_id)
    return Response(status_code=204)
