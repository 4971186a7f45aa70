"""
auth/store.py -- SQLAlchemy Core persistence layer for principals.

Pattern: Repository + Data Mapper.
PrincipalStore is the repository; _row_to_principal is the mapper.
Service and dependency code never touches SQL directly.

Tenant isolation:
  Every PrincipalStore method takes tenant_id as its first argument and every
  statement it builds goes through tenant_predicate(). There is no method that
  reads or writes a principal row without a tenant predicate. Callers pass
  scope.tenant_id once a request is authenticated; only the pre-auth flows
  (register, login) pass a tenant id taken from request context.

Soft delete:
  remove() stamps deleted_at. _live() excludes those rows from every read and
  write, so a removed principal is invisible and cannot authenticate.

Security:
  All queries use bound parameters. Sort columns come from a whitelist.
  create_principal() and set_password_hash() refuse values that are not bcrypt
  digests, so plaintext never reaches the password_hash column.

Schema:
  refresh_records lives on the same MetaData (see auth/refresh.py). One row per
  principal, keyed by principal_id.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine

from auth.hashing import looks_hashed
from auth.models import ADMIN_ROLES, Principal, PrincipalStatus, Role
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

principals = Table(
    "principals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_id", Integer, nullable=False, index=True),
    Column("email", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("role", String(30), nullable=False, server_default=Role.EMPLOYEE.value),
    Column("status", String(20), nullable=False, server_default=PrincipalStatus.ACTIVE.value),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
    Column("updated_by", Integer),
    Column("deleted_at", String(32)),
    UniqueConstraint("tenant_id", "email", name="uq_principals_tenant_email"),
)

refresh_records = Table(
    "refresh_records",
    metadata,
    Column("principal_id", Integer, ForeignKey("principals.id"), primary_key=True),
    Column("tenant_id", Integer, nullable=False),
    Column("token_digest", Text),  # NULL = no active session
    Column("version", Integer, nullable=False),  # compare-and-swap key, never decreases
    Column("updated_at", String(32), nullable=False),
)

_SORT_FIELDS = {"first_name", "last_name", "email", "created_at", "last_login_at"}


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_auth_engine(db_url: str) -> Engine:
    """Create an Engine for db_url and make sure both auth tables exist."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


def require_tenant(tenant_id: int | None) -> int:
    """Return tenant_id, refusing a missing one. A missing tenant is a bug, not an empty filter."""
    if tenant_id is None:
        raise ValueError("tenant_id is required for every tenant-data query")
    return tenant_id


def tenant_predicate(table: Table, tenant_id: int):
    """Return the mandatory tenant_id = :tenant_id clause for table.

    Every tenant-data query is built through this function.
    """
    return table.c.tenant_id == require_tenant(tenant_id)


def _live(tenant_id: int):
    return tenant_predicate(principals, tenant_id) & principals.c.deleted_at.is_(None)


def _admin_survives(tenant_id: int, principal_id: int):
    """Clause that holds unless principal_id is the tenant's last active admin.

    Evaluated inside the UPDATE itself, so two admins disabling each other
    cannot both pass: SQLite serializes writers and the second statement sees
    the first one's change.
    """
    other = principals.alias("other")
    admin_values = [r.value for r in ADMIN_ROLES]
    others = (
        select(func.count())
        .select_from(other)
        .where(
            (other.c.tenant_id == require_tenant(tenant_id))
            & other.c.deleted_at.is_(None)
            & (other.c.status == PrincipalStatus.ACTIVE.value)
            & other.c.role.in_(admin_values)
            & (other.c.id != principal_id)
        )
        .scalar_subquery()
    )
    return or_(
        principals.c.status != PrincipalStatus.ACTIVE.value,
        principals.c.role.not_in(admin_values),
        others >= 1,
    )


def _target(tenant_id: int, principal_id: int, keep_admin: bool = False):
    where = _live(tenant_id) & (principals.c.id == principal_id)
    if keep_admin:
        where = where & _admin_survives(tenant_id, principal_id)
    return where


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PrincipalStore:
    """Repository for Principal entities.

    Usage:
        store = PrincipalStore("sqlite:///:memory:")
        pid = store.create_principal(Principal(tenant_id=1, email="a@b.c", password_hash=hash_secret("pw")))
        principal = store.get_by_email(1, "a@b.c")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = create_auth_engine(db_url or get_settings().database_url)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, tenant_id: int, principal_id: int) -> Principal | None:
        """Look up a live principal by id within tenant_id. None if absent or in another tenant."""
        with self.engine.connect() as conn:
            row = conn.execute(
                principals.select().where(_live(tenant_id) & (principals.c.id == principal_id))
            ).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_email(self, tenant_id: int, email: str) -> Principal | None:
        """Look up a live principal by (tenant_id, email). Email comparison is case-insensitive."""
        with self.engine.connect() as conn:
            row = conn.execute(
                principals.select().where(_live(tenant_id) & (principals.c.email == email.lower()))
            ).fetchone()
        return _row_to_principal(row) if row is not None else None

    def email_taken(self, tenant_id: int, email: str) -> bool:
        """True if any row -- soft-deleted included -- holds (tenant_id, email)."""
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count())
                .select_from(principals)
                .where(tenant_predicate(principals, tenant_id) & (principals.c.email == email.lower()))
            ).scalar()
        return (count or 0) > 0

    def list_principals(
        self,
        tenant_id: int,
        *,
        search: str | None = None,
        role: Role | None = None,
        status: PrincipalStatus | None = None,
        sort_by: str = "created_at",
        descending: bool = False,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Principal], int]:
        """Return one page of live principals in tenant_id and the total match count.

        sort_by falls back to created_at when it is not in the whitelist.
        """
        where = _live(tenant_id)
        if search:
            pattern = f"%{search.lower()}%"
            where = where & or_(
                func.lower(principals.c.first_name).like(pattern),
                func.lower(principals.c.last_name).like(pattern),
                principals.c.email.like(pattern),
            )
        if role is not None:
            where = where & (principals.c.role == role.value)
        if status is not None:
            where = where & (principals.c.status == status.value)

        column = principals.c[sort_by if sort_by in _SORT_FIELDS else "created_at"]
        order = column.desc() if descending else column.asc()

        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(principals).where(where)).scalar() or 0
            rows = conn.execute(
                principals.select().where(where).order_by(order, principals.c.id).offset(offset).limit(limit)
            ).fetchall()
        return [_row_to_principal(r) for r in rows], total

    def count_by_status(self, tenant_id: int) -> dict[str, int]:
        """Return {status: count} for every PrincipalStatus, plus "total"."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(principals.c.status, func.count())
                .where(_live(tenant_id))
                .group_by(principals.c.status)
            ).fetchall()
        counts = {s.value: 0 for s in PrincipalStatus}
        for status, count in rows:
            counts[status] = count
        counts["total"] = sum(counts.values())
        return counts

    def count_active_admins(self, tenant_id: int) -> int:
        """Return the number of active admin/super_admin principals in tenant_id.

        Used to prevent removing, demoting or deactivating the last admin [M4].
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(principals)
                .where(
                    _live(tenant_id)
                    & (principals.c.status == PrincipalStatus.ACTIVE.value)
                    & principals.c.role.in_([r.value for r in ADMIN_ROLES])
                )
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_principal(self, principal: Principal) -> int:
        """Insert a new principal and return its id.

        Raises ValueError if password_hash is not a bcrypt digest.
        Raises sqlalchemy.exc.IntegrityError if (tenant_id, email) already
        exists; callers map that to Conflict.
        """
        if not looks_hashed(principal.password_hash):
            raise ValueError("password_hash must be a bcrypt digest, never plaintext")
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                principals.insert().values(
                    tenant_id=require_tenant(principal.tenant_id),
                    email=principal.email.lower(),
                    password_hash=principal.password_hash,
                    first_name=principal.first_name,
                    last_name=principal.last_name,
                    role=Role(principal.role).value,
                    status=PrincipalStatus(principal.status).value,
                    created_at=now,
                    updated_at=now,
                    updated_by=principal.updated_by,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_principal(
        self,
        tenant_id: int,
        principal_id: int,
        updated_by: int | None = None,
        *,
        keep_admin: bool = False,
        **fields,
    ) -> bool:
        """Update mutable fields on a live principal in tenant_id.

        Accepted fields: email, first_name, last_name, role, status.
        Enums are stored by value. Returns True if a row was updated.

        keep_admin=True makes the update a no-op (False) when the target is the
        tenant's last active admin.
        """
        allowed = {"email", "first_name", "last_name", "role", "status"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown principal fields: {unknown!r}")
        values = {k: (v.value if isinstance(v, (Role, PrincipalStatus)) else v) for k, v in fields.items()}
        if "email" in values:
            values["email"] = values["email"].lower()
        values["updated_at"] = _now_iso()
        values["updated_by"] = updated_by
        with self.engine.connect() as conn:
            result = conn.execute(
                principals.update().where(_target(tenant_id, principal_id, keep_admin)).values(**values)
            )
            conn.commit()
        return result.rowcount > 0

    def set_password_hash(
        self, tenant_id: int, principal_id: int, password_hash: str, updated_by: int | None = None
    ) -> bool:
        """Replace the stored digest. Refuses anything that is not a bcrypt digest."""
        if not looks_hashed(password_hash):
            raise ValueError("password_hash must be a bcrypt digest, never plaintext")
        with self.engine.connect() as conn:
            result = conn.execute(
                principals.update()
                .where(_live(tenant_id) & (principals.c.id == principal_id))
                .values(password_hash=password_hash, updated_at=_now_iso(), updated_by=updated_by)
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, tenant_id: int, principal_id: int) -> None:
        """Stamp the current UTC timestamp as last_login_at."""
        with self.engine.connect() as conn:
            conn.execute(
                principals.update()
                .where(_live(tenant_id) & (principals.c.id == principal_id))
                .values(last_login_at=_now_iso())
            )
            conn.commit()

    def remove(
        self, tenant_id: int, principal_id: int, updated_by: int | None = None, keep_admin: bool = False
    ) -> bool:
        """Soft-delete a principal. Returns True if a live row was removed.

        keep_admin has the same meaning as in update_principal().
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                principals.update()
                .where(_target(tenant_id, principal_id, keep_admin))
                .values(deleted_at=now, updated_at=now, updated_by=updated_by)
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        tenant_id=row.tenant_id,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        role=Role(row.role),
        status=PrincipalStatus(row.status),
        last_login_at=row.last_login_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        updated_by=row.updated_by,
        deleted_at=row.deleted_at,
    )
