"""
API request and response models for the tenantauth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the internal
domain representation. Route handlers map between the two.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class TokenRequest(BaseModel):
    """Request body for POST /api/v1/tokens.

    Exactly one of email / username identifies the account.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255)
    username: Optional[str] = Field(default=None, max_length=255)
    password: str = Field(min_length=1, max_length=255)

    @model_validator(mode="after")
    def exactly_one_identity(self) -> "TokenRequest":
        if bool(self.email) == bool(self.username):
            raise ValueError("Supply exactly one of email or username.")
        return self


class LoginLdapRequest(BaseModel):
    """Request body for POST /api/v1/tokens/ldap."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class RefreshTokenRequest(BaseModel):
    """Request body for POST /api/v1/tokens/refresh."""

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=8192)
    refresh_token: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponseModel(BaseModel):
    """Login / refresh outcome. Token fields are null when a second factor is required."""

    model_config = ConfigDict(frozen=True)

    token: Optional[str] = None
    refresh_token: Optional[str] = None
    refresh_token_expiry_time: Optional[datetime] = None
    is_auth_successful: bool
    is_tfa_enabled: bool


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
