"""
auth/principals.py -- Tenant-scoped principal administration.

Every operation takes the caller's Scope first and uses scope.tenant_id for
every store call, so a principal id from another tenant simply does not exist
from the caller's point of view (NotFound).

Authorization per operation:
  list / get / stats       -- read on principals
  create / change_role     -- manage on principals, plus role ceiling
  update_profile           -- self, or manage on principals
  activate                 -- manage on principals
  deactivate / suspend     -- manage on principals, self-action guard, last-admin guard
  remove (soft delete)     -- manage on principals, self-action guard, last-admin guard

[M4] The last active admin of a tenant cannot be removed, deactivated,
suspended or demoted -- otherwise the tenant has no recovery path. The count
check up front gives the common case a clear answer; the store re-checks
inside the UPDATE (keep_admin=True), so two admins disabling each other at
the same moment cannot both succeed.

Deactivate, suspend and remove also clear the target's refresh chain. Their
access tokens stop working immediately because TenantScopeGuard re-reads the
account status on every request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from auth.errors import BadRequest, Conflict, NotFound
from auth.hashing import hash_secret
from auth.models import ADMIN_ROLES, Principal, PrincipalStatus, Role, Scope
from auth.policy import Operation, Resource, RolePolicy, SelfAction
from auth.refresh import RefreshStore
from auth.store import PrincipalStore

logger = logging.getLogger("stocktrack.auth.principals")

_LAST_ADMIN = "Cannot remove the last active admin of this tenant."


@dataclass
class PrincipalPage:
    items: list[Principal]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


class PrincipalService:
    def __init__(
        self,
        store: PrincipalStore,
        refresh_store: RefreshStore,
        policy: RolePolicy,
        hash_rounds: int | None = None,
    ) -> None:
        self._store = store
        self._refresh = refresh_store
        self._policy = policy
        self._rounds = hash_rounds

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, scope: Scope, principal_id: int) -> Principal:
        target = self._store.get_by_id(scope.tenant_id, principal_id)
        if target is None:
            raise NotFound("User not found.")
        return target

    def _guard_last_admin(self, scope: Scope, target: Principal) -> None:
        """[M4] Refuse to take away the last active admin of the tenant."""
        if target.role in ADMIN_ROLES and target.is_active:
            if self._store.count_active_admins(scope.tenant_id) <= 1:
                raise BadRequest(_LAST_ADMIN)

    def _lost_update(self, scope: Scope, principal_id: int) -> BadRequest | NotFound:
        """Explain a guarded update that matched no row."""
        if self._store.get_by_id(scope.tenant_id, principal_id) is None:
            return NotFound("User not found.")
        logger.warning(
            "Principal %s lost a last-admin race on principal %s (tenant %s)",
            scope.principal_id,
            principal_id,
            scope.tenant_id,
        )
        return BadRequest(_LAST_ADMIN)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_principals(
        self,
        scope: Scope,
        *,
        page: int = 1,
        limit: int = 20,
        search: str | None = None,
        role: Role | None = None,
        status: PrincipalStatus | None = None,
        sort_by: str = "created_at",
        descending: bool = False,
    ) -> PrincipalPage:
        self._policy.require(scope, Resource.PRINCIPALS, Operation.READ)
        page = max(page, 1)
        items, total = self._store.list_principals(
            scope.tenant_id,
            search=search,
            role=role,
            status=status,
            sort_by=sort_by,
            descending=descending,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return PrincipalPage(items=items, total=total, page=page, limit=limit)

    def get_principal(self, scope: Scope, principal_id: int) -> Principal:
        if principal_id != scope.principal_id:
            self._policy.require(scope, Resource.PRINCIPALS, Operation.READ)
        return self._load(scope, principal_id)

    def stats(self, scope: Scope) -> dict[str, int]:
        self._policy.require(scope, Resource.PRINCIPALS, Operation.MANAGE)
        return self._store.count_by_status(scope.tenant_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_principal(
        self,
        scope: Scope,
        *,
        email: str,
        password: str,
        role: Role = Role.EMPLOYEE,
        status: PrincipalStatus = PrincipalStatus.ACTIVE,
        first_name: str = "",
        last_name: str = "",
    ) -> Principal:
        self._policy.require(scope, Resource.PRINCIPALS, Operation.MANAGE)
        self._policy.guard_role_assignment(scope, role)
        email = email.strip().lower()
        if self._store.email_taken(scope.tenant_id, email):
            raise Conflict("A user with this email already exists.")
        principal = Principal(
            tenant_id=scope.tenant_id,
            email=email,
            password_hash=hash_secret(password, rounds=self._rounds),
            role=Role(role),
            status=PrincipalStatus(status),
            first_name=first_name,
            last_name=last_name,
            updated_by=scope.principal_id,
        )
        try:
            principal_id = self._store.create_principal(principal)
        except IntegrityError as exc:
            raise Conflict("A user with this email already exists.") from exc
        logger.info(
            "Principal %s created principal %s (tenant %s, role %s)",
            scope.principal_id,
            principal_id,
            scope.tenant_id,
            principal.role.value,
        )
        return self._load(scope, principal_id)

    def update_profile(
        self,
        scope: Scope,
        principal_id: int,
        *,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> Principal:
        """Update profile fields. Callers may edit themselves; editing others needs manage."""
        if principal_id != scope.principal_id:
            self._policy.require(scope, Resource.PRINCIPALS, Operation.MANAGE)
        target = self._load(scope, principal_id)

        updates: dict = {}
        if email is not None and email.strip().lower() != target.email:
            email = email.strip().lower()
            if self._store.email_taken(scope.tenant_id, email):
                raise Conflict("A user with this email already exists.")
            updates["email"] = email
        if first_name is not None:
            updates["first_name"] = first_name
        if last_name is not None:
            updates["last_name"] = last_name
        if not updates:
            return target

        try:
            self._store.update_principal(scope.tenant_id, principal_id, updated_by=scope.principal_id, **updates)
        except IntegrityError as exc:
            raise Conflict("A user with this email already exists.") from exc
        return self._load(scope, principal_id)

    def change_role(self, scope: Scope, principal_id: int, role: Role) -> Principal:
        self._policy.require(scope, Resource.PRINCIPALS, Operation.MANAGE)
        role = Role(role)
        self._policy.guard_role_assignment(scope, role)
        target = self._load(scope, principal_id)
        # Demoting someone who outranks you is as much an escalation as promoting past yourself.
        self._policy.guard_role_assignment(scope, target.role)
        if target.role == role:
            return target
        demoting = role not in ADMIN_ROLES
        if demoting:
            self._guard_last_admin(scope, target)
        if not self._store.update_principal(
            scope.tenant_id, principal_id, updated_by=scope.principal_id, keep_admin=demoting, role=role
        ):
            raise self._lost_update(scope, principal_id)
        logger.info(
            "Principal %s changed role of %s from %s to %s (tenant %s)",
            scope.principal_id,
            principal_id,
            target.role.value,
            role.value,
            scope.tenant_id,
        )
        return self._load(scope, principal_id)

    def activate(self, scope: Scope, principal_id: int) -> Principal:
        self._policy.require(scope, Resource.PRINCIPALS, Operation.MANAGE)
        return self._set_status(scope, self._load(scope, principal_id), PrincipalStatus.ACTIVE)

    def deactivate(self, scope: Scope, principal_id: int) -> Principal:
        return self._disable(scope, principal_id, PrincipalStatus.INACTIVE, SelfAction.DEACTIVATE)

    def suspend(self, scope: Scope, principal_id: int) -> Principal:
        return self._disable(scope, principal_id, PrincipalStatus.SUSPENDED, SelfAction.SUSPEND)

    def _disable(self, scope: Scope, principal_id: int, status: PrincipalStatus, action: SelfAction) -> Principal:
        self._policy.guard_self_action(scope, principal_id, action)
        self._policy.require(scope, Resource.PRINCIPALS, Operation.MANAGE)
        target = self._load(scope, principal_id)
        self._policy.guard_role_assignment(scope, target.role)
        self._guard_last_admin(scope, target)
        updated = self._set_status(scope, target, status, keep_admin=True)
        self._refresh.clear(scope.tenant_id, principal_id)
        return updated

    def _set_status(
        self, scope: Scope, target: Principal, status: PrincipalStatus, keep_admin: bool = False
    ) -> Principal:
        if target.status != status:
            if not self._store.update_principal(
                scope.tenant_id, target.id, updated_by=scope.principal_id, keep_admin=keep_admin, status=status
            ):
                raise self._lost_update(scope, target.id)
            logger.info(
                "Principal %s set status of %s to %s (tenant %s)",
                scope.principal_id,
                target.id,
                status.value,
                scope.tenant_id,
            )
        return self._load(scope, target.id)

    def remove(self, scope: Scope, principal_id: int) -> None:
        """Soft-delete a principal and end its refresh chain."""
        self._policy.guard_self_action(scope, principal_id, SelfAction.DELETE)
        self._policy.require(scope, Resource.PRINCIPALS, Operation.MANAGE)
        target = self._load(scope, principal_id)
        self._policy.guard_role_assignment(scope, target.role)
        self._guard_last_admin(scope, target)
        if not self._store.remove(scope.tenant_id, principal_id, updated_by=scope.principal_id, keep_admin=True):
            raise self._lost_update(scope, principal_id)
        self._refresh.clear(scope.tenant_id, principal_id)
        logger.info("Principal %s removed principal %s (tenant %s)", scope.principal_id, principal_id, scope.tenant_id)
