"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
coordinator do the work; these define the shape.

LocalCredentials and DirectoryCredentials form a tagged variant: the
credential verifier dispatches on the concrete type, so each login source
keeps its own code path.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """A local account inside one tenant.

    refresh_token / refresh_token_expiry_time hold the single live refresh
    token. Writing a new value supersedes the old one; see
    UserStore.update_refresh_token() for the compare-and-swap contract.

    hashed_password is None for directory-only accounts.
    """

    tenant_id: str
    username: str
    email: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    hashed_password: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone_number: str | None = None
    image_url: str | None = None
    is_active: bool = True
    email_confirmed: bool = False
    two_factor_enabled: bool = False
    refresh_token: str | None = None
    refresh_token_expiry_time: datetime | None = None  # aware UTC


@dataclass
class Tenant:
    """An isolated organizational scope. Read-only to the auth core."""

    id: str
    name: str = ""
    is_active: bool = True
    valid_upto: datetime | None = None  # aware UTC; None = no end date


@dataclass(frozen=True)
class LocalCredentials:
    """Password login by email or username -- exactly one must be given."""

    password: str = field(repr=False)
    email: str | None = None
    username: str | None = None

    def __post_init__(self) -> None:
        has_email = bool(self.email and self.email.strip())
        has_username = bool(self.username and self.username.strip())
        if has_email == has_username:
            raise ValueError("Exactly one of email or username must be supplied.")


@dataclass(frozen=True)
class DirectoryCredentials:
    """Directory login: the pair is used as the LDAP bind identity."""

    username: str
    password: str = field(repr=False)


@dataclass
class DirectoryEntry:
    """One search result from the directory.

    Only object_guid and account_name drive authentication today; the other
    attributes are requested and kept for callers that want them.
    """

    account_name: str
    object_guid: uuid.UUID | None = None
    display_name: str | None = None
    mail: str | None = None
    when_created: datetime | None = None
    member_of: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class IssuedTokens:
    """Fresh access + refresh token pair produced by TokenIssuer.issue()."""

    access_token: str
    refresh_token: str
    refresh_token_expiry_time: datetime


@dataclass(frozen=True)
class TokenResponse:
    """Outcome of a login or refresh.

    A deferred (second factor required) login carries no tokens:
    TokenResponse(None, None, None, True, True).
    """

    token: str | None
    refresh_token: str | None
    refresh_token_expiry_time: datetime | None
    is_auth_successful: bool
    is_tfa_enabled: bool

    @classmethod
    def issued(cls, tokens: IssuedTokens) -> "TokenResponse":
        return cls(tokens.access_token, tokens.refresh_token, tokens.refresh_token_expiry_time, True, False)

    @classmethod
    def tfa_required(cls) -> "TokenResponse":
        return cls(None, None, None, True, True)
