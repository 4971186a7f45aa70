"""
auth/policy.py -- Role-based authorization decisions.

Pattern: static capability table. Each Role maps to the Operations it may
perform on each Resource class. Anything not listed is denied
(deny-by-default). The table must cover every member of Role; a role added to
auth/models.py without a row here fails at import time, and
tests/test_policy.py walks the full Role x Resource grid.

Self-action guard: destructive actions (delete, deactivate, suspend) on one's
own principal are forbidden for every role, super_admin included.

Role ceiling: nobody may grant a role ranked above their own.

All decisions take an explicit Scope. There is no ambient "current user".

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum

from auth.errors import Forbidden
from auth.models import Role, Scope

logger = logging.getLogger("stocktrack.auth.policy")


class Operation(str, Enum):
    READ = "read"
    WRITE = "write"
    MANAGE = "manage"


class Resource(str, Enum):
    PRINCIPALS = "principals"
    INVENTORY = "inventory"
    REPORTS = "reports"


class SelfAction(str, Enum):
    DELETE = "delete"
    DEACTIVATE = "deactivate"
    SUSPEND = "suspend"


_R = frozenset({Operation.READ})
_RW = frozenset({Operation.READ, Operation.WRITE})
_RWM = frozenset({Operation.READ, Operation.WRITE, Operation.MANAGE})
_NONE: frozenset[Operation] = frozenset()

CAPABILITIES: dict[Role, dict[Resource, frozenset[Operation]]] = {
    Role.SUPER_ADMIN: {
        Resource.PRINCIPALS: _RWM,
        Resource.INVENTORY: _RWM,
        Resource.REPORTS: _RWM,
    },
    Role.ADMIN: {
        Resource.PRINCIPALS: _RWM,
        Resource.INVENTORY: _RWM,
        Resource.REPORTS: _RWM,
    },
    Role.MANAGER: {
        Resource.PRINCIPALS: _R,
        Resource.INVENTORY: _RWM,
        Resource.REPORTS: _RW,
    },
    Role.EMPLOYEE: {
        Resource.PRINCIPALS: _R,
        Resource.INVENTORY: _RW,
        Resource.REPORTS: _R,
    },
    Role.VIEWER: {
        Resource.PRINCIPALS: _NONE,
        Resource.INVENTORY: _R,
        Resource.REPORTS: _R,
    },
}

_missing = [r.value for r in Role if r not in CAPABILITIES or set(CAPABILITIES[r]) != set(Resource)]
if _missing:
    raise RuntimeError(f"Capability table incomplete for roles: {_missing}")


class RolePolicy:
    """Authorize/deny decisions for an authenticated Scope."""

    def __init__(self, capabilities: dict[Role, dict[Resource, frozenset[Operation]]] = CAPABILITIES) -> None:
        self._capabilities = capabilities

    def authorize(self, scope: Scope, required_roles: Iterable[Role]) -> bool:
        """True iff scope.role is one of required_roles. An empty set allows nobody."""
        return scope.role in frozenset(required_roles)

    def require_roles(self, scope: Scope, required_roles: Iterable[Role]) -> None:
        roles = frozenset(required_roles)
        if not self.authorize(scope, roles):
            logger.info(
                "Denied principal %s (tenant %s, role %s): requires one of %s",
                scope.principal_id,
                scope.tenant_id,
                scope.role.value,
                sorted(r.value for r in roles),
            )
            raise Forbidden()

    def can(self, scope: Scope, resource: Resource, operation: Operation) -> bool:
        return operation in self._capabilities.get(scope.role, {}).get(resource, _NONE)

    def require(self, scope: Scope, resource: Resource, operation: Operation) -> None:
        if not self.can(scope, resource, operation):
            logger.info(
                "Denied principal %s (tenant %s, role %s): %s on %s",
                scope.principal_id,
                scope.tenant_id,
                scope.role.value,
                operation.value,
                resource.value,
            )
            raise Forbidden()

    def guard_self_action(self, scope: Scope, target_principal_id: int, action: SelfAction) -> None:
        """Reject destructive actions aimed at the caller's own principal, whatever the role."""
        if target_principal_id == scope.principal_id:
            raise Forbidden(f"You cannot {action.value} your own account.")

    def guard_role_assignment(self, scope: Scope, role: Role) -> None:
        """Reject granting a role that outranks the caller's."""
        if Role(role).outranks(scope.role):
            raise Forbidden("You cannot assign a role above your own.")
