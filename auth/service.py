"""
auth/service.py -- AuthenticationCoordinator: the login and refresh flows.

This is the only auth entry point the HTTP layer calls.

Login stages:

  CREDENTIALS_RECEIVED -> TENANT_CHECKED -> TFA_DECISION -> ISSUED | DEFERRED

  1. CredentialVerifier resolves the user (local password or directory).
  2. Account state: inactive user, unconfirmed email (when required).
  3. TenantGate: inactive / expired tenant (root exempt).
  4. Two-factor enabled -> DEFERRED, no tokens.
  5. ISSUED: mint tokens, overwrite the stored refresh token unconditionally.

Refresh:
  decode_expired(access token) -> email + tenant claims -> user lookup ->
  constant-time refresh token compare + expiry -> TenantGate -> mint ->
  compare-and-swap the stored token. Losing the swap to a concurrent refresh
  is InvalidRefreshToken, so one presented token buys at most one new pair.

Cancellation:
  Both flows take an optional threading.Event. It is checked before the slow
  steps and immediately before the refresh-token write; once set, the flow
  raises RequestCancelled without writing anything.
"""

from __future__ import annotations

import enum
import hmac
import logging
import threading
from datetime import datetime, timezone

from auth.credentials import CredentialVerifier
from auth.errors import (
    AuthError,
    AuthenticationFailed,
    EmailNotConfirmed,
    InvalidRefreshToken,
    InvalidToken,
    RequestCancelled,
    UserInactive,
)
from auth.models import DirectoryCredentials, LocalCredentials, Tenant, TokenResponse, User
from auth.store import ANY, UserStore
from auth.tenancy import TenantGate
from auth.tokens import TokenIssuer
from core.config import Settings

logger = logging.getLogger("tenantauth.auth.service")


class LoginStage(str, enum.Enum):
    CREDENTIALS_RECEIVED = "credentials_received"
    TENANT_CHECKED = "tenant_checked"
    TFA_DECISION = "tfa_decision"
    ISSUED = "issued"
    DEFERRED = "deferred"


def _check_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise RequestCancelled()


class AuthenticationCoordinator:
    """Orchestrates credential verification, tenant gating and token issuance.

    Usage:
        coordinator = AuthenticationCoordinator.from_settings(settings, user_store)
        response = coordinator.get_token(LocalCredentials(email="a@b.c", password="pw"), tenant, "10.0.0.1")
    """

    def __init__(
        self,
        users: UserStore,
        issuer: TokenIssuer,
        verifier: CredentialVerifier,
        gate: TenantGate,
        *,
        require_confirmed_account: bool = False,
    ) -> None:
        self.users = users
        self.issuer = issuer
        self.verifier = verifier
        self.gate = gate
        self.require_confirmed_account = require_confirmed_account

    @classmethod
    def from_settings(cls, settings: Settings, users: UserStore, **verifier_kwargs) -> "AuthenticationCoordinator":
        return cls(
            users,
            TokenIssuer.from_settings(settings),
            CredentialVerifier(users, settings, **verifier_kwargs),
            TenantGate(settings.root_tenant_id),
            require_confirmed_account=settings.require_confirmed_account,
        )

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def get_token(
        self,
        credentials: LocalCredentials | DirectoryCredentials,
        tenant: Tenant | None,
        ip_address: str,
        *,
        cancel: threading.Event | None = None,
    ) -> TokenResponse:
        stage = LoginStage.CREDENTIALS_RECEIVED
        try:
            _check_cancelled(cancel)
            user = self.verifier.verify(credentials, tenant)
            _check_cancelled(cancel)
            self._check_account(user)

            stage = LoginStage.TENANT_CHECKED
            self.gate.check(tenant)

            stage = LoginStage.TFA_DECISION
            if user.two_factor_enabled:
                logger.info("Login for %s deferred: second factor required", user.username)
                return TokenResponse.tfa_required()

            stage = LoginStage.ISSUED
            response = self._issue_and_store(user, tenant.id, ip_address, expected=ANY, cancel=cancel)
        except AuthError as exc:
            logger.info("Login rejected at stage %s: %s", stage.value, exc.error_code)
            raise
        logger.info("Issued tokens for %s in tenant %s", user.username, tenant.id)
        return response

    def _check_account(self, user: User) -> None:
        if not user.is_active:
            raise UserInactive()
        if self.require_confirmed_account and not user.email_confirmed:
            raise EmailNotConfirmed()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh_token(
        self,
        token: str,
        refresh_token: str,
        tenant: Tenant | None,
        ip_address: str,
        *,
        cancel: threading.Event | None = None,
    ) -> TokenResponse:
        claims = self.issuer.decode_expired(token)
        email = claims.get("email")
        if not email:
            raise InvalidToken()
        if tenant is None or not tenant.id:
            raise AuthenticationFailed()
        if claims.get("tenant") != tenant.id:
            logger.warning("Refresh rejected: token tenant does not match request tenant %s", tenant.id)
            raise InvalidToken()

        _check_cancelled(cancel)
        user = self.users.find_by_email(email, tenant.id)
        _check_cancelled(cancel)
        if user is None:
            raise AuthenticationFailed()

        stored = user.refresh_token
        now = datetime.now(timezone.utc)
        if (
            stored is None
            or not hmac.compare_digest(stored.encode("utf-8"), refresh_token.encode("utf-8"))
            or user.refresh_token_expiry_time is None
            or user.refresh_token_expiry_time <= now
        ):
            logger.info("Refresh rejected for %s: token mismatch or expired", user.username)
            raise InvalidRefreshToken()

        self.gate.check(tenant, now)
        response = self._issue_and_store(user, tenant.id, ip_address, expected=stored, cancel=cancel)
        logger.info("Rotated refresh token for %s in tenant %s", user.username, tenant.id)
        return response

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def _issue_and_store(
        self,
        user: User,
        tenant_id: str,
        ip_address: str,
        *,
        expected: object,
        cancel: threading.Event | None,
    ) -> TokenResponse:
        tokens = self.issuer.issue(user, tenant_id, ip_address)
        _check_cancelled(cancel)
        if not self.users.update_refresh_token(
            user.id, tokens.refresh_token, tokens.refresh_token_expiry_time, expected=expected
        ):
            # Lost the compare-and-swap to a concurrent rotation, or the row is gone.
            logger.warning("Refresh token for %s was rotated concurrently", user.username)
            raise InvalidRefreshToken()
        user.refresh_token = tokens.refresh_token
        user.refresh_token_expiry_time = tokens.refresh_token_expiry_time
        return TokenResponse.issued(tokens)
