"""
auth/credentials.py -- Resolve login credentials to exactly one local User.

Two login sources, one contract: verify(credentials, tenant) returns a User or
raises. The concrete credential type selects the path:

  LocalCredentials     -> tenant-scoped lookup by email (else username) +
                          bcrypt check against the stored hash.
  DirectoryCredentials -> LDAP bind with the supplied pair, account search,
                          then map sAMAccountName to a local username.

Every "no" on these paths is AuthenticationFailed -- missing tenant, unknown
user, wrong password, refused bind, no local account for a directory identity.
Only a directory outage is reported differently (DirectoryUnavailable).

[C1] An unknown local user still costs one bcrypt check (burn_password_check)
so response time does not reveal which accounts exist.

Local accounts are never created from directory results.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from auth.directory import ACCOUNT_ATTRIBUTES, DirectoryClient, LdapDirectoryClient, build_account_filter
from auth.errors import AuthenticationFailed
from auth.models import DirectoryCredentials, LocalCredentials, Tenant, User
from auth.store import UserStore
from auth.tokens import burn_password_check, verify_password
from core.config import Settings

logger = logging.getLogger("tenantauth.auth.credentials")


class CredentialVerifier:
    """Turns LocalCredentials / DirectoryCredentials into a User."""

    def __init__(
        self,
        users: UserStore,
        settings: Settings,
        directory_factory: Callable[[], DirectoryClient] | None = None,
    ) -> None:
        self.users = users
        self.settings = settings
        self.directory_factory = directory_factory or (
            lambda: LdapDirectoryClient(timeout=settings.ldap_timeout_seconds)
        )

    def verify(self, credentials: LocalCredentials | DirectoryCredentials, tenant: Tenant | None) -> User:
        if tenant is None or not tenant.id or not tenant.id.strip():
            # Same outcome as bad credentials; tenant existence is not revealed.
            logger.info("Login rejected: no tenant context")
            raise AuthenticationFailed()
        if isinstance(credentials, LocalCredentials):
            return self._verify_local(credentials, tenant)
        if isinstance(credentials, DirectoryCredentials):
            return self._verify_directory(credentials, tenant)
        raise TypeError(f"Unsupported credentials type: {type(credentials).__name__}")

    def _verify_local(self, credentials: LocalCredentials, tenant: Tenant) -> User:
        if credentials.email:
            user = self.users.find_by_email(credentials.email, tenant.id)
        else:
            user = self.users.find_by_username(credentials.username or "", tenant.id)

        if user is None or user.hashed_password is None:
            burn_password_check(credentials.password)
            logger.info("Login rejected for tenant %s: unknown account", tenant.id)
            raise AuthenticationFailed()
        if not verify_password(credentials.password, user.hashed_password):
            logger.info("Login rejected for %s in tenant %s: bad password", user.username, tenant.id)
            raise AuthenticationFailed()
        return user

    def _verify_directory(self, credentials: DirectoryCredentials, tenant: Tenant) -> User:
        cfg = self.settings
        if not cfg.ldap_enabled:
            logger.info("Directory login attempted but no directory is configured")
            raise AuthenticationFailed()

        client = self.directory_factory()
        try:
            client.bind(cfg.ldap_server, cfg.ldap_port, cfg.ldap_domain, credentials.username, credentials.password)
            entries = client.search(
                cfg.ldap_query_base,
                build_account_filter(credentials.username),
                attributes=ACCOUNT_ATTRIBUTES,
            )
        finally:
            client.close()

        if not entries:
            logger.info("Directory search found no entry for %s", credentials.username)
            raise AuthenticationFailed()
        if len(entries) > 1:
            # First result wins (server order); ambiguity is logged, not resolved.
            logger.warning(
                "Directory search for %s matched %d entries; using %s",
                credentials.username,
                len(entries),
                entries[0].account_name,
            )

        entry = entries[0]
        user = self.users.find_by_username(entry.account_name, tenant.id)
        if user is None:
            logger.info("Directory account %s has no local user in tenant %s", entry.account_name, tenant.id)
            raise AuthenticationFailed()
        return user
