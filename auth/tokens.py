"""
auth/tokens.py -- Password hashing, JWT issuance/decoding, refresh tokens.

Security design decisions:
  JWT: python-jose with HS256 only. SigningKey is built once from Settings and
       injected; it is immutable for the life of the process and never rotated
       here. The key is excluded from repr() so it cannot leak into logs.

  Algorithm pinning: decode_expired() checks the unverified header's alg
       against HS256 BEFORE handing the token to jose, and jose is also told
       algorithms=[HS256]. A token claiming "none", RS256 (key-confusion) or
       any other HMAC size is InvalidToken.

  Passwords: bcrypt directly (no passlib wrapper). _DUMMY_HASH lets the
       credential verifier burn the same bcrypt cost for unknown accounts so
       response time does not reveal whether a user exists [C1].

  Refresh tokens: 32 bytes from secrets.token_bytes(), standard base64. They
       are opaque; only equality with the stored value matters.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.errors import InvalidToken
from auth.models import IssuedTokens, User
from core.config import Settings

logger = logging.getLogger("tenantauth.auth.tokens")

ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is a failed check, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at import so the first login is not measurably slower.
_DUMMY_HASH: str = hash_password("tenantauth_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt check against a throwaway hash [C1]."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Signing key
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SigningKey:
    """Symmetric HMAC key plus its algorithm identifier."""

    secret: str = field(repr=False)
    algorithm: str = ALGORITHM

    @classmethod
    def from_settings(cls, settings: Settings) -> "SigningKey":
        return cls(secret=settings.secret_key)


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


def build_claims(user: User, tenant_id: str, ip_address: str) -> dict[str, str]:
    """Return the claim set for an access token.

    Deterministic for (user, tenant_id, ip_address); carries exactly one
    tenant claim and no secrets. exp is added by the signer.
    """
    first = user.first_name or ""
    last = user.last_name or ""
    return {
        "sub": user.id,
        "email": user.email or "",
        "fullname": f"{first} {last}",
        "given_name": first,
        "family_name": last,
        "ip_address": ip_address,
        "tenant": tenant_id,
        "image_url": user.image_url or "",
        "phone_number": user.phone_number or "",
    }


def generate_refresh_token() -> str:
    """32 random bytes, base64-encoded (44 chars)."""
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints access/refresh token pairs and decodes expired access tokens.

    Usage:
        issuer = TokenIssuer(SigningKey.from_settings(settings),
                             access_lifetime=timedelta(minutes=60),
                             refresh_lifetime=timedelta(days=7))
        tokens = issuer.issue(user, tenant.id, "203.0.113.7")
        claims = issuer.decode_expired(tokens.access_token)

    clock is injectable so tests can mint already-expired tokens.
    """

    def __init__(
        self,
        key: SigningKey,
        *,
        access_lifetime: timedelta,
        refresh_lifetime: timedelta,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._key = key
        self.access_lifetime = access_lifetime
        self.refresh_lifetime = refresh_lifetime
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "TokenIssuer":
        return cls(
            SigningKey.from_settings(settings),
            access_lifetime=timedelta(minutes=settings.token_expiration_minutes),
            refresh_lifetime=timedelta(days=settings.refresh_token_expiration_days),
            **kwargs,
        )

    def create_access_token(self, user: User, tenant_id: str, ip_address: str) -> str:
        payload: dict = build_claims(user, tenant_id, ip_address)
        payload["exp"] = self.clock() + self.access_lifetime
        return jwt.encode(payload, self._key.secret, algorithm=self._key.algorithm)

    def issue(self, user: User, tenant_id: str, ip_address: str) -> IssuedTokens:
        """Return a new signed access token and a new refresh token with expiry."""
        return IssuedTokens(
            access_token=self.create_access_token(user, tenant_id, ip_address),
            refresh_token=generate_refresh_token(),
            refresh_token_expiry_time=self.clock() + self.refresh_lifetime,
        )

    def decode_expired(self, token: str) -> dict:
        """Verify signature and algorithm of an access token, ignoring its expiry.

        Only used by the refresh flow, where the caller asserts the token has
        already expired. Issuer and audience are not checked (single issuer).
        Raises InvalidToken on any failure.
        """
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise InvalidToken() from exc

        alg = header.get("alg")
        if not isinstance(alg, str) or alg.upper() != self._key.algorithm.upper():
            logger.warning("Rejected access token with unexpected alg header %r", alg)
            raise InvalidToken()

        try:
            claims = jwt.decode(
                token,
                self._key.secret,
                algorithms=[self._key.algorithm],
                options={
                    "verify_exp": False,
                    "verify_aud": False,
                    "verify_iss": False,
                    "leeway": 0,
                },
            )
        except JWTError as exc:
            raise InvalidToken() from exc

        if not isinstance(claims, dict):
            raise InvalidToken()
        return claims
