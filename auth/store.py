"""
auth/store.py -- SQLAlchemy Core persistence for users and tenants.

Pattern: Repository + Data Mapper. UserStore / TenantStore are the
repositories; _row_to_user / _row_to_tenant are the mappers. The auth core
never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Concurrency:
  update_refresh_token() is the only write on the login/refresh path. With
  expected= it becomes a compare-and-swap:

      UPDATE users SET refresh_token = :new, refresh_token_expiry_time = :exp
      WHERE id = :id AND refresh_token = :expected

  The database serialises the two writers; the loser matches zero rows and
  gets False back. That is what keeps "at most one live refresh token per
  user" true when two refreshes race with the same token.

Lookups are tenant-scoped: the same email may exist in two tenants.
Email and username are matched on normalized_* columns (see normalize()).

Timestamps are stored as ISO 8601 UTC strings.
"""

from __future__ import annotations

import unicodedata
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import Tenant, User

_DEFAULT_DB_URL = "sqlite:///tenantauth.db"

# Sentinel for update_refresh_token(): "overwrite whatever is stored".
ANY = object()

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("tenant_id", String(64), nullable=False, index=True),
    Column("username", String(255), nullable=False),
    Column("normalized_username", String(255), nullable=False),
    Column("email", String(255), nullable=False),
    Column("normalized_email", String(255), nullable=False),
    Column("hashed_password", Text),  # NULL for directory-only accounts
    Column("first_name", String(255)),
    Column("last_name", String(255)),
    Column("phone_number", String(64)),
    Column("image_url", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("email_confirmed", Integer, nullable=False, server_default="0"),
    Column("two_factor_enabled", Integer, nullable=False, server_default="0"),
    Column("refresh_token", String(64)),
    Column("refresh_token_expiry_time", String(32)),
)

_tenants = Table(
    "tenants",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("valid_upto", String(32)),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block on the refresh-token writer."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _make_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def normalize(value: str) -> str:
    """Trim, NFKC-normalize and casefold an email or username for lookup."""
    return unicodedata.normalize("NFKC", value.strip()).casefold()


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        store.create_user(User(tenant_id="root", username="admin", email="admin@example.com",
                               hashed_password=hash_password("secret")))
        user = store.find_by_email("ADMIN@example.com ", "root")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = _make_engine(db_url)

    def create_user(self, user: User) -> str:
        """Insert a user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the id already exists.
        """
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user.id,
                    tenant_id=user.tenant_id,
                    username=user.username,
                    normalized_username=normalize(user.username),
                    email=user.email,
                    normalized_email=normalize(user.email),
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    phone_number=user.phone_number,
                    image_url=user.image_url,
                    is_active=1 if user.is_active else 0,
                    email_confirmed=1 if user.email_confirmed else 0,
                    two_factor_enabled=1 if user.two_factor_enabled else 0,
                    refresh_token=user.refresh_token,
                    refresh_token_expiry_time=_to_iso(user.refresh_token_expiry_time),
                )
            )
            conn.commit()
        return user.id

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_email(self, email: str, tenant_id: str) -> User | None:
        """Look up a user by normalized email within one tenant."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.normalized_email == normalize(email)) & (_users.c.tenant_id == tenant_id)
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_username(self, username: str, tenant_id: str) -> User | None:
        """Look up a user by normalized username within one tenant."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.normalized_username == normalize(username)) & (_users.c.tenant_id == tenant_id)
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_refresh_token(
        self,
        user_id: str,
        token: str,
        expiry: datetime,
        *,
        expected: object = ANY,
    ) -> bool:
        """Store a new refresh token; return False on conflict.

        expected=ANY overwrites unconditionally (login rotation). Passing the
        token the caller read earlier (or None) makes this a compare-and-swap:
        the row is only updated if it still holds that value.
        """
        condition = _users.c.id == user_id
        if expected is not ANY:
            if expected is None:
                condition = condition & _users.c.refresh_token.is_(None)
            else:
                condition = condition & (_users.c.refresh_token == expected)
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(condition)
                .values(refresh_token=token, refresh_token_expiry_time=_to_iso(expiry))
            )
            conn.commit()
        return result.rowcount == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Tenants
# ---------------------------------------------------------------------------


class TenantStore:
    """Read-mostly repository for tenants. Shares the schema with UserStore."""

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = _make_engine(db_url)

    def create_tenant(self, tenant: Tenant) -> str:
        with self.engine.connect() as conn:
            conn.execute(
                _tenants.insert().values(
                    id=tenant.id,
                    name=tenant.name,
                    is_active=1 if tenant.is_active else 0,
                    valid_upto=_to_iso(tenant.valid_upto),
                )
            )
            conn.commit()
        return tenant.id

    def get(self, tenant_id: str) -> Tenant | None:
        with self.engine.connect() as conn:
            row = conn.execute(_tenants.select().where(_tenants.c.id == tenant_id)).fetchone()
        return _row_to_tenant(row) if row is not None else None

    def ensure_root(self, root_id: str) -> Tenant:
        """Create the root tenant on first startup; idempotent."""
        existing = self.get(root_id)
        if existing is not None:
            return existing
        tenant = Tenant(id=root_id, name="Root", is_active=True)
        self.create_tenant(tenant)
        return tenant

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        tenant_id=row.tenant_id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        phone_number=row.phone_number,
        image_url=row.image_url,
        is_active=bool(row.is_active),
        email_confirmed=bool(row.email_confirmed),
        two_factor_enabled=bool(row.two_factor_enabled),
        refresh_token=row.refresh_token,
        refresh_token_expiry_time=_from_iso(row.refresh_token_expiry_time),
    )


def _row_to_tenant(row) -> Tenant:
    return Tenant(
        id=row.id,
        name=row.name,
        is_active=bool(row.is_active),
        valid_upto=_from_iso(row.valid_upto),
    )
