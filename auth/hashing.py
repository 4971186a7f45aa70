"""
auth/hashing.py -- One-way hashing for passwords and refresh tokens.

Security design decisions:
  bcrypt directly, no passlib wrapper. passlib's wrap-bug detection builds a
  password longer than 72 bytes, which bcrypt 4.x+ rejects outright.

  SHA-256 pre-hash. bcrypt only reads the first 72 bytes of its input. Refresh
  tokens are JWTs whose first 72 bytes are the shared header plus the start of
  the payload, so two different refresh tokens would verify against each
  other's digest. Every secret is therefore reduced to base64(sha256(secret))
  (44 bytes) before bcrypt sees it. The digest stays self-describing
  ($2b$<cost>$<salt><hash>).

  Cost factor comes from Settings.password_hash_rounds unless the caller passes
  rounds explicitly.

  verify_secret() never raises: a malformed digest is simply "no match".

  Timing equalization [C1]: burn_verification() runs a full bcrypt check
  against a dummy digest so "unknown account" costs the same as "wrong
  password".

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import hashlib
import re
from functools import lru_cache

import bcrypt

from core.config import get_settings

_BCRYPT_DIGEST_RE = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")


def _prehash(secret: str) -> bytes:
    return base64.b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


def looks_hashed(value: str | None) -> bool:
    """Return True if value is already a bcrypt digest.

    PrincipalStore checks this before persisting so plaintext never lands in
    password_hash. It says nothing about what a user may choose as a password.
    """
    return bool(value) and _BCRYPT_DIGEST_RE.match(value) is not None


def hash_secret(secret: str, rounds: int | None = None) -> str:
    """Return a salted bcrypt digest of secret. Any string is accepted, digest-shaped ones included."""
    cost = rounds if rounds is not None else get_settings().password_hash_rounds
    return bcrypt.hashpw(_prehash(secret), bcrypt.gensalt(rounds=cost)).decode("utf-8")


def verify_secret(secret: str, digest: str | None) -> bool:
    """Constant-time check of secret against digest. False on any failure."""
    if not digest:
        return False
    try:
        return bcrypt.checkpw(_prehash(secret), digest.encode("utf-8"))
    except (ValueError, TypeError):
        return False


@lru_cache(maxsize=1)
def _dummy_digest() -> str:
    return hash_secret("stocktrack_timing_dummy")


def burn_verification(secret: str) -> None:
    """Spend one bcrypt verification on a dummy digest [C1]."""
    verify_secret(secret, _dummy_digest())
