"""
identity/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper. IdentityStore is the repository and
implements the contract in identity/repository.py; the _row_to_* functions are
the mappers. Service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness:
  There is deliberately no UNIQUE(provider, provider_user_id) on
  external_accounts and no UNIQUE on users.email_address. The identity core
  must not rely on the database for these invariants (the production store is
  a document database without cross-document constraints); the linking engine
  and signup enforce them in code.

  The one constraint we do use is the single-row bootstrap table
  (CHECK id = 1). reserve_first_user() inserts that row only while the users
  table is empty, so at most one caller holds the first-user slot at a time,
  across threads and processes. release_first_user() deletes the row again
  when the claimed account could not be saved.

Atomicity:
  Each save_* runs in one transaction covering the record and its child rows
  (external accounts, invites). Nothing spans two records.

Errors:
  Every SQLAlchemyError is logged and re-raised as core.errors.PersistenceError.
  Lookups that match nothing return None.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.config import DEFAULT_DATABASE_URL
from core.errors import PersistenceError
from identity.accounts import normalize_email
from identity.models import ExternalAccount, Invite, Organization, Token, User
from identity.repository import IdentityRepository

logger = logging.getLogger("identity.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("full_name", String(255), nullable=False),
    Column("email_address", String(255)),  # stored trimmed + lower-cased
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_email_address_verified", Integer, nullable=False, server_default="0"),
    Column("salt", Text),  # NULL for external-login-only users
    Column("hashed_password", Text),
    Column("verify_email_address_token", String(64)),
    Column("verify_email_address_token_expiration", String(32)),
    Column("password_reset_token", String(64)),
    Column("password_reset_token_expiration", String(32)),
    Column("roles", Text, nullable=False, server_default="[]"),  # JSON array
    Column("organization_ids", Text, nullable=False, server_default="[]"),  # JSON array
    Column("created_at", String(32), nullable=False),
)
Index("ix_users_email_address", _users.c.email_address)
Index("ix_users_verify_token", _users.c.verify_email_address_token)
Index("ix_users_reset_token", _users.c.password_reset_token)

_external_accounts = Table(
    "external_accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("position", Integer, nullable=False),  # preserves link order
    Column("provider", String(30), nullable=False),
    Column("provider_user_id", String(255), nullable=False),
    Column("email_address", String(255)),
)
# Not unique -- see module docstring.
Index("ix_external_accounts_identity", _external_accounts.c.provider, _external_accounts.c.provider_user_id)

_organizations = Table(
    "organizations",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_invites = Table(
    "invites",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("organization_id", Integer, nullable=False),
    Column("token", String(64), nullable=False, index=True),
    Column("email_address", String(255), nullable=False),
    Column("date_added", String(32)),
)

_tokens = Table(
    "tokens",
    _metadata,
    Column("id", String(128), primary_key=True),
    Column("user_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_bootstrap = Table(
    "bootstrap",
    _metadata,
    Column("id", Integer, primary_key=True),
    Column("reserved_at", String(32), nullable=False),
    CheckConstraint("id = 1", name="ck_bootstrap_single_row"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _str_to_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore(IdentityRepository):
    """Repository for User, Organization, and Token records.

    Usage:
        store = IdentityStore()                                # SQLite default
        store = IdentityStore("postgresql://user:pw@host/db")  # PostgreSQL
        user = store.save_user(User(full_name="Ada", email_address="ada@example.com"))
        same = store.get_user_by_email("ADA@example.com")
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DATABASE_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    @contextmanager
    def _begin(self, action: str) -> Iterator[Connection]:
        """Run a block in one transaction, translating driver errors to PersistenceError."""
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.error("Identity store could not %s: %s", action, exc)
            raise PersistenceError(f"Unable to {action}.") from exc

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user_by_id(self, user_id: int) -> User | None:
        with self._begin("load user") as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            return self._load_user(conn, row)

    def get_user_by_email(self, email_address: str) -> User | None:
        """Case-insensitive lookup. With duplicates (possible under races) the oldest wins."""
        normalized = normalize_email(email_address)
        if normalized is None:
            return None
        with self._begin("load user") as conn:
            row = conn.execute(
                _users.select()
                .where(func.lower(_users.c.email_address) == normalized)
                .order_by(_users.c.id)
                .limit(1)
            ).fetchone()
            return self._load_user(conn, row)

    def get_user_by_external_account(self, provider: str, provider_user_id: str) -> User | None:
        with self._begin("load user") as conn:
            row = conn.execute(
                select(_users)
                .join(_external_accounts, _external_accounts.c.user_id == _users.c.id)
                .where(
                    (_external_accounts.c.provider == provider)
                    & (_external_accounts.c.provider_user_id == provider_user_id)
                )
                .order_by(_users.c.id)
                .limit(1)
            ).fetchone()
            return self._load_user(conn, row)

    def get_user_by_verify_token(self, token: str) -> User | None:
        with self._begin("load user") as conn:
            row = conn.execute(_users.select().where(_users.c.verify_email_address_token == token)).fetchone()
            return self._load_user(conn, row)

    def get_user_by_reset_token(self, token: str) -> User | None:
        with self._begin("load user") as conn:
            row = conn.execute(_users.select().where(_users.c.password_reset_token == token)).fetchone()
            return self._load_user(conn, row)

    def count_users(self) -> int:
        with self._begin("count users") as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar_one()

    def save_user(self, user: User) -> User:
        """Insert or update a user and replace its external account rows."""
        values = _user_to_values(user)
        created_at = user.created_at or _now_iso()
        with self._begin("save user") as conn:
            user_id = user.id
            if user_id is None:
                result = conn.execute(_users.insert().values(created_at=created_at, **values))
                user_id = result.inserted_primary_key[0]
            else:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
                if result.rowcount == 0:
                    conn.execute(_users.insert().values(id=user_id, created_at=created_at, **values))

            conn.execute(_external_accounts.delete().where(_external_accounts.c.user_id == user_id))
            if user.external_accounts:
                conn.execute(
                    _external_accounts.insert(),
                    [
                        {
                            "user_id": user_id,
                            "position": position,
                            "provider": account.provider,
                            "provider_user_id": account.provider_user_id,
                            "email_address": account.email_address,
                        }
                        for position, account in enumerate(user.external_accounts)
                    ],
                )
        user.id = user_id
        user.created_at = user.created_at or created_at
        user.email_address = values["email_address"]
        return user

    def reserve_first_user(self) -> bool:
        """Insert the bootstrap row if, and only if, no user exists yet.

        A concurrent reservation that loses the race hits the primary key on
        the single bootstrap row and gets False, not an error.
        """
        try:
            with self.engine.begin() as conn:
                if conn.execute(select(func.count()).select_from(_users)).scalar_one():
                    return False
                conn.execute(_bootstrap.insert().values(id=1, reserved_at=_now_iso()))
                return True
        except IntegrityError:
            return False
        except SQLAlchemyError as exc:
            logger.error("Identity store could not reserve first user: %s", exc)
            raise PersistenceError("Unable to reserve first user.") from exc

    def release_first_user(self) -> None:
        """Delete the bootstrap row so the next reservation can succeed.

        Only clears the claim while the users table is still empty; once an
        account exists the reservation is spent for good.
        """
        with self._begin("release first user") as conn:
            if conn.execute(select(func.count()).select_from(_users)).scalar_one():
                return
            conn.execute(_bootstrap.delete().where(_bootstrap.c.id == 1))

    def _load_user(self, conn: Connection, row) -> User | None:
        if row is None:
            return None
        account_rows = conn.execute(
            _external_accounts.select()
            .where(_external_accounts.c.user_id == row.id)
            .order_by(_external_accounts.c.position)
        ).fetchall()
        return _row_to_user(row, account_rows)

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def get_organization_by_id(self, organization_id: int) -> Organization | None:
        with self._begin("load organization") as conn:
            row = conn.execute(_organizations.select().where(_organizations.c.id == organization_id)).fetchone()
            return self._load_organization(conn, row)

    def get_organization_by_invite_token(self, token: str) -> tuple[Organization, Invite] | None:
        with self._begin("load organization") as conn:
            invite_row = conn.execute(_invites.select().where(_invites.c.token == token).limit(1)).fetchone()
            if invite_row is None:
                return None
            row = conn.execute(
                _organizations.select().where(_organizations.c.id == invite_row.organization_id)
            ).fetchone()
            organization = self._load_organization(conn, row)
        if organization is None:
            return None
        invite = next((i for i in organization.invites if i.token == token), None)
        if invite is None:
            return None
        return organization, invite

    def save_organization(self, organization: Organization) -> Organization:
        """Insert or update an organization and replace its invite rows."""
        created_at = organization.created_at or _now_iso()
        with self._begin("save organization") as conn:
            org_id = organization.id
            if org_id is None:
                result = conn.execute(_organizations.insert().values(name=organization.name, created_at=created_at))
                org_id = result.inserted_primary_key[0]
            else:
                result = conn.execute(
                    _organizations.update().where(_organizations.c.id == org_id).values(name=organization.name)
                )
                if result.rowcount == 0:
                    conn.execute(
                        _organizations.insert().values(id=org_id, name=organization.name, created_at=created_at)
                    )

            conn.execute(_invites.delete().where(_invites.c.organization_id == org_id))
            if organization.invites:
                conn.execute(
                    _invites.insert(),
                    [
                        {
                            "organization_id": org_id,
                            "token": invite.token,
                            "email_address": invite.email_address,
                            "date_added": invite.date_added or created_at,
                        }
                        for invite in organization.invites
                    ],
                )
        organization.id = org_id
        organization.created_at = organization.created_at or created_at
        return organization

    def _load_organization(self, conn: Connection, row) -> Organization | None:
        if row is None:
            return None
        invite_rows = conn.execute(
            _invites.select().where(_invites.c.organization_id == row.id).order_by(_invites.c.id)
        ).fetchall()
        return _row_to_organization(row, invite_rows)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def save_token(self, token: Token) -> Token:
        token.created_at = token.created_at or _now_iso()
        with self._begin("save token") as conn:
            conn.execute(_tokens.insert().values(id=token.id, user_id=token.user_id, created_at=token.created_at))
        return token

    def get_token(self, token_id: str) -> Token | None:
        with self._begin("load token") as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.id == token_id)).fetchone()
        return _row_to_token(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _user_to_values(user: User) -> dict:
    return {
        "full_name": user.full_name,
        "email_address": normalize_email(user.email_address),
        "is_active": 1 if user.is_active else 0,
        "is_email_address_verified": 1 if user.is_email_address_verified else 0,
        "salt": user.salt,
        "hashed_password": user.hashed_password,
        "verify_email_address_token": user.verify_email_address_token,
        "verify_email_address_token_expiration": _dt_to_str(user.verify_email_address_token_expiration),
        "password_reset_token": user.password_reset_token,
        "password_reset_token_expiration": _dt_to_str(user.password_reset_token_expiration),
        "roles": json.dumps(sorted(user.roles)),
        "organization_ids": json.dumps(sorted(user.organization_ids)),
    }


def _row_to_user(row, account_rows) -> User:
    return User(
        id=row.id,
        full_name=row.full_name,
        email_address=row.email_address,
        is_active=bool(row.is_active),
        is_email_address_verified=bool(row.is_email_address_verified),
        salt=row.salt,
        hashed_password=row.hashed_password,
        verify_email_address_token=row.verify_email_address_token,
        verify_email_address_token_expiration=_str_to_dt(row.verify_email_address_token_expiration),
        password_reset_token=row.password_reset_token,
        password_reset_token_expiration=_str_to_dt(row.password_reset_token_expiration),
        roles=set(json.loads(row.roles or "[]")),
        external_accounts=[ExternalAccount(a.provider, a.provider_user_id, a.email_address) for a in account_rows],
        organization_ids=set(json.loads(row.organization_ids or "[]")),
        created_at=row.created_at,
    )


def _row_to_organization(row, invite_rows) -> Organization:
    return Organization(
        id=row.id,
        name=row.name,
        created_at=row.created_at,
        invites=[Invite(token=i.token, email_address=i.email_address, date_added=i.date_added) for i in invite_rows],
    )


def _row_to_token(row) -> Token:
    return Token(id=row.id, user_id=row.user_id, created_at=row.created_at)
