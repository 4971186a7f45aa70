"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, minimal logic). Stores, the token
issuer and the services do the work; these types only own the domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed, ordered role enumeration. Declaration order is rank order, highest first."""

    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"
    VIEWER = "viewer"

    @property
    def rank(self) -> int:
        """Higher is more privileged. viewer == 0."""
        members = list(Role)
        return len(members) - 1 - members.index(self)

    def outranks(self, other: Role) -> bool:
        return self.rank > other.rank


ADMIN_ROLES: frozenset[Role] = frozenset({Role.SUPER_ADMIN, Role.ADMIN})


class PrincipalStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"
    SUSPENDED = "suspended"


@dataclass
class Principal:
    """An account within a tenant.

    password_hash is always a bcrypt digest -- PrincipalStore.create_principal()
    refuses anything that does not look like one. deleted_at is the soft-delete
    flag; stores never return rows where it is set.
    """

    tenant_id: int
    email: str
    password_hash: str
    role: Role = Role.EMPLOYEE
    status: PrincipalStatus = PrincipalStatus.ACTIVE
    first_name: str = ""
    last_name: str = ""
    id: int | None = None
    last_login_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    updated_by: int | None = None
    deleted_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == PrincipalStatus.ACTIVE and self.deleted_at is None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class TokenPair:
    """Opaque credentials handed to callers. Never log either field."""

    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class TokenClaims:
    """Verified claim set of an access or refresh token."""

    principal_id: int
    tenant_id: int
    email: str
    token_type: str  # "access" or "refresh"
    issued_at: int
    expires_at: int
    jti: str


@dataclass(frozen=True)
class Scope:
    """Authenticated (principal, tenant, role) tuple for one request.

    Built only by TenantScopeGuard.authenticate(). Every tenant-data operation
    takes a Scope (or its tenant_id) as an explicit parameter; there is no
    ambient request context.
    """

    principal_id: int
    tenant_id: int
    role: Role
    email: str = ""
