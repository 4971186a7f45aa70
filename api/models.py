"""
API request and response models for the stocktrack auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

password_hash never appears in any response model.
"""

from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from auth.models import Principal, PrincipalStatus, Role, TokenPair

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@" with something on both sides. Deliverability is
# not this layer's problem; uniqueness per tenant is enforced by the store.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt work is bounded by the SHA-256 pre-hash, but a ceiling keeps request
# bodies sane.
_PASSWORD_MAX = 255


def _normalize_email(value: str) -> str:
    return value.strip().lower()


# Annotated type so every email field shares the same pattern and normalization.
_Email = Annotated[str, Field(max_length=255, pattern=EMAIL_PATTERN), AfterValidator(_normalize_email)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register. Tenant comes from X-Tenant-ID."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: _Email
    password: str = Field(min_length=8, max_length=_PASSWORD_MAX)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. Tenant comes from X-Tenant-ID."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    new_password: str = Field(min_length=8, max_length=_PASSWORD_MAX)


class PrincipalCreate(BaseModel):
    """Request body for POST /api/v1/users (admin only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: _Email
    password: str = Field(min_length=8, max_length=_PASSWORD_MAX)
    role: Role = Role.EMPLOYEE
    status: PrincipalStatus = PrincipalStatus.ACTIVE
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)


class ProfileUpdate(BaseModel):
    """Request body for PATCH /api/v1/users/{id}/profile. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[_Email] = None
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class RoleUpdate(BaseModel):
    role: Role


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenPairResponse(BaseModel):
    """Access/refresh pair. Both tokens are opaque to the client."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair, expires_in: int) -> "TokenPairResponse":
        return cls(access_token=pair.access_token, refresh_token=pair.refresh_token, expires_in=expires_in)


class PrincipalResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    tenant_id: int
    email: str
    first_name: str
    last_name: str
    full_name: str
    role: Role
    status: PrincipalStatus
    is_active: bool
    last_login_at: Optional[str] = None
    created_at: str = ""
    updated_at: Optional[str] = None

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalResponse":
        """Factory Method: the domain -> transport mapping lives beside the output model."""
        return cls(
            id=principal.id,
            tenant_id=principal.tenant_id,
            email=principal.email,
            first_name=principal.first_name,
            last_name=principal.last_name,
            full_name=principal.full_name,
            role=principal.role,
            status=principal.status,
            is_active=principal.is_active,
            last_login_at=principal.last_login_at,
            created_at=principal.created_at or "",
            updated_at=principal.updated_at,
        )


class PrincipalListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: list[PrincipalResponse]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool


class PrincipalStatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    active: int
    inactive: int
    pending: int
    suspended: int


class MessageResponse(BaseModel):
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
