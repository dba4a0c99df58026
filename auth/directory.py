"""
auth/directory.py -- LDAP / Active Directory bind and search.

DirectoryClient is the capability the credential verifier depends on. It
has three calls, bind, search and close, so tests can swap in a fake without
a real directory server. LdapDirectoryClient is the ldap3 implementation.

Identity format:
  Binds use SIMPLE authentication over LDAP v3. Active Directory accepts a
  down-level logon name for simple binds, so a bare username is qualified
  as DOMAIN\\username. A username that already carries a domain
  (DOMAIN\\user or user@domain) is used as-is.

Failure kinds:
  invalid credentials / refused bind   -> AuthenticationFailed
  socket error, connect/receive timeout -> DirectoryUnavailable

Both connect and receive are bounded by the configured timeout. There is no
retry. An empty password is rejected before binding because many servers
treat it as an unauthenticated bind and report success.

Security: the bind password is never logged. Filter values are escaped with
ldap3.utils.conv.escape_filter_chars.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Protocol

from ldap3 import NONE, SIMPLE, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPCommunicationError, LDAPException
from ldap3.utils.conv import escape_filter_chars

from auth.errors import AuthenticationFailed, DirectoryUnavailable
from auth.models import DirectoryEntry

logger = logging.getLogger("tenantauth.auth.directory")

# Attributes requested on every account search. Only objectGUID and
# sAMAccountName are consumed by authentication.
ACCOUNT_ATTRIBUTES = ["objectGUID", "sAMAccountName", "displayName", "mail", "whenCreated", "memberOf"]


class DirectoryClient(Protocol):
    def bind(self, server: str, port: int, domain: str, username: str, password: str) -> None: ...

    def search(
        self, base: str, search_filter: str, scope: str = SUBTREE, attributes: list[str] | None = None
    ) -> list[DirectoryEntry]: ...

    def close(self) -> None: ...


def bind_identity(username: str, domain: str) -> str:
    """Return the bind DN/login name for a username."""
    if not domain or "\\" in username or "@" in username:
        return username
    return f"{domain}\\{username}"


def build_account_filter(username: str) -> str:
    """(|(sAMAccountName=u)(userPrincipalName=u)) with u escaped."""
    value = escape_filter_chars(username)
    return f"(|(sAMAccountName={value})(userPrincipalName={value}))"


class LdapDirectoryClient:
    """One directory session: bind once, search, close.

    Usage:
        with LdapDirectoryClient(timeout=10) as client:
            client.bind("dc1.example.com", 389, "EXAMPLE", "jdoe", "secret")
            entries = client.search("DC=example,DC=com", build_account_filter("jdoe"))
    """

    def __init__(self, timeout: int = 10) -> None:
        self.timeout = timeout
        self._conn: Connection | None = None

    def __enter__(self) -> "LdapDirectoryClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def bind(self, server: str, port: int, domain: str, username: str, password: str) -> None:
        if not password:
            raise AuthenticationFailed()

        identity = bind_identity(username, domain)
        conn = Connection(
            Server(server, port=port, get_info=NONE, connect_timeout=self.timeout),
            user=identity,
            password=password,
            authentication=SIMPLE,
            version=3,
            read_only=True,
            receive_timeout=self.timeout,
            raise_exceptions=False,
        )
        try:
            bound = conn.bind()
        except LDAPCommunicationError as exc:
            logger.warning("Directory %s:%d unreachable: %s", server, port, type(exc).__name__)
            raise DirectoryUnavailable() from exc
        except LDAPException as exc:
            logger.info("Directory bind for %s failed: %s", identity, type(exc).__name__)
            raise AuthenticationFailed() from exc

        if not bound:
            logger.info(
                "Directory bind for %s rejected: %s",
                identity,
                (conn.result or {}).get("description", "unknown"),
            )
            conn.unbind()
            raise AuthenticationFailed()

        self._conn = conn

    def search(
        self, base: str, search_filter: str, scope: str = SUBTREE, attributes: list[str] | None = None
    ) -> list[DirectoryEntry]:
        """Return every entry matching search_filter under base, in server order."""
        if self._conn is None:
            raise RuntimeError("search() called before a successful bind()")
        try:
            self._conn.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=scope,
                attributes=attributes or ACCOUNT_ATTRIBUTES,
            )
        except LDAPCommunicationError as exc:
            logger.warning("Directory search under %s failed: %s", base, type(exc).__name__)
            raise DirectoryUnavailable() from exc

        entries: list[DirectoryEntry] = []
        for item in self._conn.response or []:
            if item.get("type") != "searchResEntry":
                continue
            entry = _entry_from_raw(item.get("raw_attributes") or {})
            if entry is not None:
                entries.append(entry)
        return entries

    def close(self) -> None:
        if self._conn is not None:
            try:
                self._conn.unbind()
            except LDAPException:
                logger.debug("Ignoring error while unbinding directory connection")
            self._conn = None


# ---------------------------------------------------------------------------
# Attribute decoding
# ---------------------------------------------------------------------------


def _values(raw: dict, name: str) -> list[bytes]:
    lowered = name.lower()
    for key, values in raw.items():
        if key.lower() == lowered:
            return list(values or [])
    return []


def _text(raw: dict, name: str) -> str | None:
    values = _values(raw, name)
    if not values:
        return None
    value = values[0]
    return value.decode("utf-8", errors="replace") if isinstance(value, bytes) else str(value)


def _guid(raw: dict) -> uuid.UUID | None:
    values = _values(raw, "objectGUID")
    if not values or not isinstance(values[0], bytes) or len(values[0]) != 16:
        return None
    # AD stores GUIDs with the first three fields little-endian.
    return uuid.UUID(bytes_le=values[0])


def _generalized_time(value: str | None) -> datetime | None:
    # e.g. "20240131093000.0Z"
    if not value or len(value) < 14:
        return None
    try:
        return datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def _entry_from_raw(raw: dict) -> DirectoryEntry | None:
    account_name = _text(raw, "sAMAccountName")
    if not account_name:
        return None
    return DirectoryEntry(
        account_name=account_name,
        object_guid=_guid(raw),
        display_name=_text(raw, "displayName"),
        mail=_text(raw, "mail"),
        when_created=_generalized_time(_text(raw, "whenCreated")),
        member_of=[v.decode("utf-8", errors="replace") if isinstance(v, bytes) else str(v) for v in _values(raw, "memberOf")],
    )
