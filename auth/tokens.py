"""
auth/tokens.py -- JWT access/refresh token issuance and verification.

Security design decisions:
  JWT: python-jose with an HMAC algorithm (HS256 by default). Both token types
       carry {sub, tenant_id, email, iat, exp} plus:
         typ -- "access" or "refresh". verify() checks it so a refresh token
                can never be presented as an access token or vice versa.
         jti -- 128 random bits. Two tokens minted for the same principal in
                the same second must still differ, otherwise a rotation could
                re-issue the exact refresh token it was meant to retire.

  Stateless verification: verify() checks signature, structure, type and
       expiry only. It never consults the refresh store. Consequence: an access
       token stays valid until exp even after logout -- keep
       ACCESS_TOKEN_EXPIRE_SECONDS short. Refresh tokens are revocable one
       layer up via auth/refresh.py.

  Clock skew: expiry is checked with a small leeway (TOKEN_CLOCK_SKEW_SECONDS).

  Failure mode: verify() raises InvalidToken on every failure. The message
       never says which check failed.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from jose import JWTError, jwt

from auth.errors import InvalidToken
from auth.models import Principal, TokenClaims, TokenPair
from core.config import get_settings

logger = logging.getLogger("stocktrack.auth.tokens")

ACCESS = "access"
REFRESH = "refresh"

_REQUIRED_CLAIMS = ("sub", "tenant_id", "email", "iat", "exp", "typ", "jti")


class TokenIssuer:
    """Mints and verifies signed access and refresh tokens.

    Usage:
        issuer = TokenIssuer(secret_key, access_ttl=900, refresh_ttl=604800)
        pair = issuer.issue_pair(principal)
        claims = issuer.verify(pair.access_token)
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl: int,
        refresh_ttl: int,
        leeway: int = 5,
        algorithm: str = "HS256",
    ) -> None:
        if refresh_ttl <= access_ttl:
            raise ValueError("refresh_ttl must exceed access_ttl")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.leeway = leeway

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def _encode(self, principal: Principal, token_type: str, ttl: int) -> str:
        if principal.id is None:
            raise ValueError("Cannot issue a token for an unsaved principal")
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(principal.id),
            "tenant_id": principal.tenant_id,
            "email": principal.email,
            "typ": token_type,
            "jti": secrets.token_hex(16),
            "iat": now,
            "exp": now + timedelta(seconds=ttl),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def issue_access_token(self, principal: Principal) -> str:
        return self._encode(principal, ACCESS, self.access_ttl)

    def issue_refresh_token(self, principal: Principal) -> str:
        return self._encode(principal, REFRESH, self.refresh_ttl)

    def issue_pair(self, principal: Principal) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(principal),
            refresh_token=self.issue_refresh_token(principal),
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, token: str, expected_type: str = ACCESS) -> TokenClaims:
        """Decode and verify token. Returns its claims or raises InvalidToken.

        Fails on bad signature, malformed structure, missing claims, a typ
        other than expected_type, and exp in the past beyond the leeway.
        """
        if not token:
            raise InvalidToken()
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"leeway": self.leeway, "require_exp": True, "require_iat": True},
            )
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc.__class__.__name__)
            raise InvalidToken() from exc

        if any(claim not in payload for claim in _REQUIRED_CLAIMS):
            raise InvalidToken()
        if payload["typ"] != expected_type:
            raise InvalidToken()
        try:
            return TokenClaims(
                principal_id=int(payload["sub"]),
                tenant_id=int(payload["tenant_id"]),
                email=str(payload["email"]),
                token_type=payload["typ"],
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
                jti=str(payload["jti"]),
            )
        except (TypeError, ValueError) as exc:
            raise InvalidToken() from exc


@lru_cache
def get_token_issuer() -> TokenIssuer:
    """Return a TokenIssuer configured from Settings (cached singleton)."""
    settings = get_settings()
    return TokenIssuer(
        secret_key=settings.secret_key,
        access_ttl=settings.access_token_expire_seconds,
        refresh_ttl=settings.refresh_token_expire_seconds,
        leeway=settings.token_clock_skew_seconds,
        algorithm=settings.jwt_algorithm,
    )
