"""
auth/service.py -- Auth Orchestrator: register, login, refresh, logout, change password.

Each flow is a fixed sequence of checks followed by one commit:

  register: (tenant, email) free? -> hash password -> insert principal
            -> mint pair -> RefreshStore.rotate -> pair
  login:    lookup (tenant, email) -> verify password -> status active?
            -> mint pair -> RefreshStore.rotate -> stamp last_login_at -> pair
  refresh:  verify refresh JWT -> principal still active?
            -> RefreshStore.verify_and_consume -> mint pair
            -> RefreshStore.rotate(expected_version) -> pair
  logout:   RefreshStore.clear
  change_password: verify current -> store new digest
                   (-> RefreshStore.clear if configured)

Security:
  [C1] login() always spends one bcrypt verification, on the real digest or on
       a dummy one, so response time does not reveal whether the account
       exists. Unknown account, wrong password and non-active account raise
       the same Unauthorized with the same message.

  Rotation on every use: a refresh token is good for exactly one refresh.
  Presenting it again (replay, or a thief racing the owner) fails, and the
  concurrent-refresh race is settled by the CAS in RefreshStore.rotate().

  Access tokens are not revoked by logout -- they expire naturally.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import BadRequest, Conflict, NotFound, Unauthorized
from auth.hashing import burn_verification, hash_secret, verify_secret
from auth.models import Principal, PrincipalStatus, Role, Scope, TokenPair
from auth.refresh import RefreshStore
from auth.store import PrincipalStore
from auth.tokens import REFRESH, TokenIssuer

logger = logging.getLogger("stocktrack.auth")

_BAD_CREDENTIALS = "Invalid email or password."
_BAD_REFRESH = "Invalid or expired refresh token."


class AuthService:
    """Composes hasher, issuer, refresh store and principal store into auth flows.

    Usage:
        service = AuthService(store, RefreshStore(store.engine), get_token_issuer())
        pair = service.login(tenant_id=1, email="a@b.c", password="secret")
    """

    def __init__(
        self,
        store: PrincipalStore,
        refresh_store: RefreshStore,
        issuer: TokenIssuer,
        *,
        registration_status: PrincipalStatus = PrincipalStatus.ACTIVE,
        revoke_sessions_on_password_change: bool = False,
        hash_rounds: int | None = None,
    ) -> None:
        self._store = store
        self._refresh = refresh_store
        self._issuer = issuer
        self._registration_status = PrincipalStatus(registration_status)
        self._revoke_on_password_change = revoke_sessions_on_password_change
        self._rounds = hash_rounds

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _start_session(self, principal: Principal) -> TokenPair:
        pair = self._issuer.issue_pair(principal)
        self._refresh.rotate(principal.tenant_id, principal.id, pair.refresh_token)
        return pair

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def register(
        self,
        tenant_id: int,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
    ) -> TokenPair:
        """Create a principal in tenant_id and start its first session.

        Self-registration always yields the employee role; higher roles are
        granted by an admin through PrincipalService.
        Raises Conflict if (tenant_id, email) is already taken.
        """
        email = email.strip().lower()
        if self._store.email_taken(tenant_id, email):
            raise Conflict("A user with this email already exists.")

        principal = Principal(
            tenant_id=tenant_id,
            email=email,
            password_hash=hash_secret(password, rounds=self._rounds),
            first_name=first_name,
            last_name=last_name,
            role=Role.EMPLOYEE,
            status=self._registration_status,
        )
        try:
            principal.id = self._store.create_principal(principal)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration of the same email.
            raise Conflict("A user with this email already exists.") from exc

        logger.info("Registered principal %s in tenant %s (status=%s)", principal.id, tenant_id, principal.status.value)
        return self._start_session(principal)

    def login(self, tenant_id: int, email: str, password: str) -> TokenPair:
        """Authenticate by (tenant_id, email, password) and start a new session.

        Any new login replaces the previous refresh chain.
        """
        principal = self._store.get_by_email(tenant_id, email.strip())
        if principal is None:
            burn_verification(password)  # [C1]
            logger.warning("Failed login in tenant %s: unknown account", tenant_id)
            raise Unauthorized(_BAD_CREDENTIALS)
        if not verify_secret(password, principal.password_hash):
            logger.warning("Failed login in tenant %s: bad password for principal %s", tenant_id, principal.id)
            raise Unauthorized(_BAD_CREDENTIALS)
        if not principal.is_active:
            logger.warning(
                "Failed login in tenant %s: principal %s is %s", tenant_id, principal.id, principal.status.value
            )
            raise Unauthorized(_BAD_CREDENTIALS)

        pair = self._start_session(principal)
        self._store.update_last_login(tenant_id, principal.id)
        logger.info("Principal %s logged in (tenant %s)", principal.id, tenant_id)
        return pair

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair; the presented token is retired.

        Raises Unauthorized on an invalid/expired token, an inactive or missing
        principal, a token that is not the current one, or a lost race.
        """
        try:
            claims = self._issuer.verify(refresh_token, expected_type=REFRESH)
        except Unauthorized as exc:
            raise Unauthorized(_BAD_REFRESH) from exc

        principal = self._store.get_by_id(claims.tenant_id, claims.principal_id)
        if principal is None or not principal.is_active:
            raise Unauthorized(_BAD_REFRESH)

        try:
            lease = self._refresh.verify_and_consume(principal.tenant_id, principal.id, refresh_token)
            pair = self._issuer.issue_pair(principal)
            self._refresh.rotate(
                principal.tenant_id, principal.id, pair.refresh_token, expected_version=lease.version
            )
        except Unauthorized as exc:
            raise Unauthorized(_BAD_REFRESH) from exc
        return pair

    def logout(self, scope: Scope) -> None:
        """End the caller's refresh chain. The current access token lives until it expires."""
        self._refresh.clear(scope.tenant_id, scope.principal_id)
        logger.info("Principal %s logged out (tenant %s)", scope.principal_id, scope.tenant_id)

    def change_password(self, scope: Scope, current_password: str, new_password: str) -> None:
        """Replace the caller's password after verifying the current one.

        Raises BadRequest if current_password is wrong or equals new_password.
        Refresh sessions survive unless the service was built with
        revoke_sessions_on_password_change=True.
        """
        principal = self._store.get_by_id(scope.tenant_id, scope.principal_id)
        if principal is None:
            raise NotFound("User not found.")
        if not verify_secret(current_password, principal.password_hash):
            raise BadRequest("Current password is incorrect.")
        if current_password == new_password:
            raise BadRequest("New password must differ from the current password.")

        self._store.set_password_hash(
            scope.tenant_id,
            scope.principal_id,
            hash_secret(new_password, rounds=self._rounds),
            updated_by=scope.principal_id,
        )
        if self._revoke_on_password_change:
            self._refresh.clear(scope.tenant_id, scope.principal_id)
        logger.info("Principal %s changed password (tenant %s)", scope.principal_id, scope.tenant_id)

    def current_principal(self, scope: Scope) -> Principal:
        principal = self._store.get_by_id(scope.tenant_id, scope.principal_id)
        if principal is None:
            raise NotFound("User not found.")
        return principal
