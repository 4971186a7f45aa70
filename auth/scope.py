"""
auth/scope.py -- Tenant Scope Guard: access token -> Scope.

authenticate() is the only way to obtain a Scope. It trusts the token for
identity (principal id, tenant id) and nothing else: the principal row is
re-read on every call, so a suspended, deactivated or removed account is
locked out immediately even though its access token is still
cryptographically valid. The role also comes from the row, so a demotion takes
effect on the next request.

Tenant authority: the Scope's tenant_id is the only tenant any downstream
query may use. enforce_tenant() rejects a request whose client-supplied tenant
id disagrees with it instead of silently switching tenants.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.errors import Forbidden, Unauthorized
from auth.models import Scope
from auth.store import PrincipalStore
from auth.tokens import ACCESS, TokenIssuer

logger = logging.getLogger("stocktrack.auth.scope")


class TenantScopeGuard:
    def __init__(self, issuer: TokenIssuer, store: PrincipalStore) -> None:
        self._issuer = issuer
        self._store = store

    def authenticate(self, token: str) -> Scope:
        """Validate an access token and return the caller's Scope.

        Raises Unauthorized (InvalidToken for token-level failures) when the
        token is bad, or the principal is missing, removed, or not active.
        """
        claims = self._issuer.verify(token, expected_type=ACCESS)
        principal = self._store.get_by_id(claims.tenant_id, claims.principal_id)
        if principal is None or not principal.is_active:
            logger.info(
                "Access token for principal %s (tenant %s) rejected: account missing or not active",
                claims.principal_id,
                claims.tenant_id,
            )
            raise Unauthorized()
        return Scope(
            principal_id=principal.id,
            tenant_id=principal.tenant_id,
            role=principal.role,
            email=principal.email,
        )

    @staticmethod
    def enforce_tenant(scope: Scope, requested_tenant_id: int | None = None) -> int:
        """Return the authoritative tenant id for scope.

        A requested_tenant_id from client input is accepted only when it equals
        scope.tenant_id; anything else is Forbidden.
        """
        if requested_tenant_id is not None and requested_tenant_id != scope.tenant_id:
            logger.warning(
                "Principal %s (tenant %s) attempted cross-tenant access to tenant %s",
                scope.principal_id,
                scope.tenant_id,
                requested_tenant_id,
            )
            raise Forbidden()
        return scope.tenant_id
