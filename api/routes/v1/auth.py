"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create account in X-Tenant-ID; returns token pair
  POST /api/v1/auth/login            -- email/password in X-Tenant-ID; returns token pair
  POST /api/v1/auth/refresh          -- rotate refresh token; returns new pair
  POST /api/v1/auth/logout           -- end the refresh chain (requires auth)
  POST /api/v1/auth/change-password  -- verify current, set new (requires auth)
  GET  /api/v1/auth/me               -- current principal (requires auth)

Tenant context:
  register and login happen before there is a Scope, so the tenant comes from
  the X-Tenant-ID header. Every other route takes the tenant from the verified
  Scope only.

Security:
  [H2] register/login/refresh are rate-limited per IP (limits from Settings).
  [C1] AuthService.login() provides timing equalization and a single error
       shape for unknown account / wrong password / inactive account.
  [M5] Cache-Control: no-store on every response that carries tokens.

Handlers are plain `def` -- bcrypt and signing are CPU-bound and FastAPI runs
sync handlers in its thread pool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ChangePasswordRequest,
    LoginRequest,
    MessageResponse,
    PrincipalResponse,
    RefreshRequest,
    RegisterRequest,
    TokenPairResponse,
)
from auth.dependencies import get_scope
from auth.models import Scope, TokenPair
from auth.service import AuthService
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /auth/register:        public, tenant from X-Tenant-ID
# - POST /auth/login:           public, tenant from X-Tenant-ID
# - POST /auth/refresh:         public, the refresh token is the credential
# - POST /auth/logout:          requires auth (get_scope)
# - POST /auth/change-password: requires auth (get_scope)
# - GET  /auth/me:              requires auth (get_scope)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _token_response(request: Request, pair: TokenPair, status_code: int = 200) -> JSONResponse:
    body = TokenPairResponse.from_pair(pair, expires_in=request.app.state.token_issuer.access_ttl)
    resp = JSONResponse(status_code=status_code, content=body.model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.register_rate_limit)  # [H2]
@router.post("/auth/register", response_model=TokenPairResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    tenant_id: int = Header(alias="X-Tenant-ID", gt=0),
) -> JSONResponse:
    """Register a new employee account in the tenant named by X-Tenant-ID.

    Returns 409 if the email is already registered in that tenant.
    """
    pair = _service(request).register(
        tenant_id=tenant_id,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return _token_response(request, pair, status_code=201)


@limiter.limit(_settings.login_rate_limit)  # [H2]
@router.post("/auth/login", response_model=TokenPairResponse)
def login(
    request: Request,
    body: LoginRequest,
    tenant_id: int = Header(alias="X-Tenant-ID", gt=0),
) -> JSONResponse:
    """Authenticate with email and password; return a fresh token pair.

    Unknown email, wrong password and inactive account all return the same
    401 body.
    """
    pair = _service(request).login(tenant_id=tenant_id, email=body.email, password=body.password)
    return _token_response(request, pair)


@limiter.limit(_settings.refresh_rate_limit)  # [H2]
@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is retired."""
    pair = _service(request).refresh(body.refresh_token)
    return _token_response(request, pair)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, scope: Scope = Depends(get_scope)) -> MessageResponse:
    """End the caller's refresh chain. The access token stays valid until it expires."""
    _service(request).logout(scope)
    return MessageResponse(message="Logged out.")


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    scope: Scope = Depends(get_scope),
) -> MessageResponse:
    """Change the caller's own password. 400 if the current password is wrong."""
    _service(request).change_password(scope, body.current_password, body.new_password)
    return MessageResponse(message="Password changed.")


@router.get("/auth/me", response_model=PrincipalResponse)
def me(request: Request, scope: Scope = Depends(get_scope)) -> PrincipalResponse:
    """Return the currently authenticated principal."""
    return PrincipalResponse.from_principal(_service(request).current_principal(scope))
