"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as "Authorization: Bearer <token>". get_scope() hands the
token to the TenantScopeGuard wired into app.state at startup and returns the
resulting Scope. Route handlers pass that Scope explicitly into every service
call -- nothing is stashed on the request for later code to pick up.

require_roles(...) builds a dependency that additionally checks the Scope's
role against an allow-list via the RolePolicy on app.state.

Failures surface as auth.errors exceptions; api/main.py renders them.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.errors import Unauthorized
from auth.models import Role, Scope


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_scope(request: Request) -> Scope:
    """Require a valid access token. Raises Unauthorized otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(scope: Scope = Depends(get_scope)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise Unauthorized()
    return request.app.state.scope_guard.authenticate(token)


def require_roles(*roles: Role) -> Callable[[Request], Scope]:
    """Build a dependency that requires one of roles. Raises Forbidden otherwise.

        @router.get("/admin-only")
        def route(scope: Scope = Depends(require_roles(Role.ADMIN, Role.SUPER_ADMIN))): ...
    """
    allowed = frozenset(roles)

    def dependency(request: Request) -> Scope:
        scope = get_scope(request)
        request.app.state.policy.require_roles(scope, allowed)
        return scope

    return dependency
