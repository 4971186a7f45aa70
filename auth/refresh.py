"""
auth/refresh.py -- Server-side record of each principal's active refresh token.

One row per principal in refresh_records (schema in auth/store.py):
  token_digest -- bcrypt digest of the current refresh token, NULL after logout.
  version      -- bumped by every rotate() and clear(); never decreases.

Rotation protocol (refresh flow):
  1. lease = verify_and_consume(tenant, principal, presented)
       reads (digest, version), checks presented against digest. No write.
  2. new tokens are minted.
  3. rotate(tenant, principal, new_refresh, expected_version=lease.version)
       UPDATE ... SET digest=:new, version=version+1
       WHERE principal_id=:p AND version=:expected
     Zero rows updated means another request rotated (or a logout cleared)
     the record first -- raise Unauthorized.

  Two concurrent refreshes with the same token both pass step 1 but only one
  UPDATE can match the observed version, so exactly one succeeds. Step 3 is
  the commit point: tokens minted in step 2 are worthless until their digest
  is stored, so a crash between 2 and 3 leaves nothing usable behind.

clear() nulls the digest AND bumps the version, so a lease taken just before
logout cannot be redeemed after it, even if a new login re-creates a session.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import Unauthorized
from auth.hashing import hash_secret, verify_secret
from auth.store import refresh_records, require_tenant, tenant_predicate

logger = logging.getLogger("stocktrack.auth.refresh")


@dataclass(frozen=True)
class RefreshLease:
    """Proof that a presented refresh token matched the stored digest at `version`."""

    tenant_id: int
    principal_id: int
    version: int


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RefreshStore:
    """Rotation, verification and invalidation of per-principal refresh records.

    Shares the engine of a PrincipalStore:
        refresh_store = RefreshStore(principal_store.engine)
    """

    def __init__(self, engine: Engine, rounds: int | None = None) -> None:
        self.engine = engine
        self._rounds = rounds

    def _key(self, tenant_id: int, principal_id: int):
        return tenant_predicate(refresh_records, tenant_id) & (refresh_records.c.principal_id == principal_id)

    def rotate(
        self,
        tenant_id: int,
        principal_id: int,
        new_refresh_token: str,
        expected_version: int | None = None,
    ) -> int:
        """Store the digest of new_refresh_token as the only valid one. Returns the new version.

        expected_version=None: unconditional overwrite (login, register).
        expected_version=N:    compare-and-swap; raises Unauthorized if the
                               record moved past N since it was verified.
        """
        digest = hash_secret(new_refresh_token, rounds=self._rounds)
        if expected_version is not None:
            return self._compare_and_swap(tenant_id, principal_id, digest, expected_version)
        return self._overwrite(tenant_id, principal_id, digest)

    def _compare_and_swap(self, tenant_id: int, principal_id: int, digest: str, expected_version: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                refresh_records.update()
                .where(self._key(tenant_id, principal_id) & (refresh_records.c.version == expected_version))
                .values(token_digest=digest, version=expected_version + 1, updated_at=_now_iso())
            )
            conn.commit()
        if result.rowcount != 1:
            logger.warning(
                "Refresh rotation lost for principal %s (tenant %s): record moved past version %s",
                principal_id,
                tenant_id,
                expected_version,
            )
            raise Unauthorized()
        return expected_version + 1

    def _overwrite(self, tenant_id: int, principal_id: int, digest: str) -> int:
        """Update the record or create it. Raises IntegrityError if the insert keeps colliding."""
        attempts = 0
        while True:
            attempts += 1
            with self.engine.connect() as conn:
                result = conn.execute(
                    refresh_records.update()
                    .where(self._key(tenant_id, principal_id))
                    .values(
                        token_digest=digest,
                        version=refresh_records.c.version + 1,
                        updated_at=_now_iso(),
                    )
                )
                if result.rowcount == 1:
                    version = conn.execute(
                        select(refresh_records.c.version).where(self._key(tenant_id, principal_id))
                    ).scalar_one()
                    conn.commit()
                    return version
                try:
                    conn.execute(
                        refresh_records.insert().values(
                            principal_id=principal_id,
                            tenant_id=require_tenant(tenant_id),
                            token_digest=digest,
                            version=1,
                            updated_at=_now_iso(),
                        )
                    )
                    conn.commit()
                    return 1
                except IntegrityError:
                    # A concurrent login inserted first; retry as an update.
                    conn.rollback()
                    if attempts == 2:
                        logger.error(
                            "Refresh record for principal %s (tenant %s) collides with a row this tenant cannot see",
                            principal_id,
                            tenant_id,
                        )
                        raise

    def verify_and_consume(self, tenant_id: int, principal_id: int, presented_refresh_token: str) -> RefreshLease:
        """Check presented_refresh_token against the stored digest.

        Returns a RefreshLease on match. Does not modify the record: the caller
        must rotate(..., expected_version=lease.version) to advance the chain.
        Raises Unauthorized when there is no record, the session was cleared,
        or the digest does not match.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                select(refresh_records.c.token_digest, refresh_records.c.version).where(
                    self._key(tenant_id, principal_id)
                )
            ).fetchone()
        if row is None or row.token_digest is None:
            raise Unauthorized()
        if not verify_secret(presented_refresh_token, row.token_digest):
            logger.warning(
                "Stale or unknown refresh token presented for principal %s (tenant %s)", principal_id, tenant_id
            )
            raise Unauthorized()
        return RefreshLease(tenant_id=tenant_id, principal_id=principal_id, version=row.version)

    def clear(self, tenant_id: int, principal_id: int) -> None:
        """Invalidate the principal's refresh chain (logout, deactivation, removal)."""
        with self.engine.connect() as conn:
            conn.execute(
                refresh_records.update()
                .where(self._key(tenant_id, principal_id))
                .values(token_digest=None, version=refresh_records.c.version + 1, updated_at=_now_iso())
            )
            conn.commit()

    def has_session(self, tenant_id: int, principal_id: int) -> bool:
        with self.engine.connect() as conn:
            digest = conn.execute(
                select(refresh_records.c.token_digest).where(self._key(tenant_id, principal_id))
            ).scalar()
        return digest is not None
