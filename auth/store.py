"""
auth/store.py -- SQLAlchemy Core persistence layer for principals.

Pattern: Repository + Data Mapper (same as workspace/store.py).
PrincipalStore is the repository; _row_to_principal is the mapper.
The lifecycle manager and route code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Uniqueness of email and username holds among live rows only. Both are
  partial unique indexes (WHERE deleted_at IS NULL), so a soft-deleted
  account does not block a new signup with the same address.

Concurrency:
  Every write is a single-row UPDATE that either applies fully or not at all.
  The three secret-bearing slots are updated with compare-and-swap:

    rotate_refresh_hash()  -- WHERE refresh_token_hash = <presented digest>
    consume_verification() -- WHERE verification_token_hash = <digest>
    consume_reset_token()  -- WHERE reset_token_hash = <digest> AND not expired

  Two concurrent requests presenting the same token race on the same WHERE
  clause; the database serializes the row update, exactly one sees
  rowcount == 1 and the other gets False. There is no read-then-overwrite
  window in which a newer refresh hash can be lost.

Layer rule: no imports from api/, workspace/, or audit/.
"""

from __future__ import annotations

import logging

from sqlalchemy import Boolean, Column, Index, Integer, MetaData, String, Table, Text, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Principal
from core.config import get_settings
from core.db import create_db_engine, now_iso

logger = logging.getLogger("tasknest.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("username", String(50), nullable=False),
    Column("password_hash", Text),  # NULL for external-identity principals
    Column("auth_provider", String(20), nullable=False, server_default="email"),
    Column("auth_provider_id", String(255)),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("is_email_verified", Boolean, nullable=False, server_default="0"),
    Column("verification_token_hash", String(64)),
    Column("verification_expires_at", String(32)),
    Column("reset_token_hash", String(64)),
    Column("reset_expires_at", String(32)),
    Column("refresh_token_hash", String(64)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

Index(
    "uq_users_email_live",
    _users.c.email,
    unique=True,
    sqlite_where=_users.c.deleted_at.is_(None),
    postgresql_where=_users.c.deleted_at.is_(None),
)
Index(
    "uq_users_username_live",
    _users.c.username,
    unique=True,
    sqlite_where=_users.c.deleted_at.is_(None),
    postgresql_where=_users.c.deleted_at.is_(None),
)
Index("ix_users_verification_token_hash", _users.c.verification_token_hash)
Index("ix_users_reset_token_hash", _users.c.reset_token_hash)

_live = _users.c.deleted_at.is_(None)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PrincipalStore:
    """Repository for Principal records.

    Usage:
        store = PrincipalStore()
        pid = store.create_principal(Principal(email="a@x.com", username="alice"))
        principal = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = create_db_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    def create_principal(self, principal: Principal) -> int:
        """Insert a new principal and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the email or username is
        already taken by a live principal. Callers translate that to Conflict;
        a concurrent signup can pass any pre-check and still lose here.
        """
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=principal.email,
                    username=principal.username,
                    password_hash=principal.password_hash,
                    auth_provider=principal.auth_provider,
                    auth_provider_id=principal.auth_provider_id,
                    role=principal.role,
                    status=principal.status,
                    is_email_verified=principal.is_email_verified,
                    verification_token_hash=principal.verification_token_hash,
                    verification_expires_at=principal.verification_expires_at,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, principal_id: int, include_deleted: bool = False) -> Principal | None:
        query = _users.select().where(_users.c.id == principal_id)
        if not include_deleted:
            query = query.where(_live)
        return self._fetch_one(query)

    def get_by_email(self, email: str) -> Principal | None:
        """Live principal with this exact email, or None."""
        return self._fetch_one(_users.select().where((_users.c.email == email) & _live))

    def get_by_username(self, username: str) -> Principal | None:
        return self._fetch_one(_users.select().where((_users.c.username == username) & _live))

    def identity_taken(self, email: str, username: str) -> bool:
        """True if a live principal already uses this email or username."""
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count())
                .select_from(_users)
                .where(((_users.c.email == email) | (_users.c.username == username)) & _live)
            ).scalar()
        return (count or 0) > 0

    def get_by_verification_hash(self, token_hash: str) -> Principal | None:
        return self._fetch_one(_users.select().where((_users.c.verification_token_hash == token_hash) & _live))

    def get_by_reset_hash(self, token_hash: str) -> Principal | None:
        """Principal holding this reset digest, expired or not.

        Expiry is judged by the caller so an expired token can be cleared
        rather than merely ignored.
        """
        return self._fetch_one(_users.select().where((_users.c.reset_token_hash == token_hash) & _live))

    def list_principals(self, offset: int = 0, limit: int = 10) -> tuple[list[Principal], int]:
        """Return one page of live principals ordered by id, plus the live total."""
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_users).where(_live)).scalar() or 0
            rows = conn.execute(
                _users.select().where(_live).order_by(_users.c.id).offset(offset).limit(limit)
            ).fetchall()
        return [_row_to_principal(r) for r in rows], total

    # ------------------------------------------------------------------
    # Refresh slot
    # ------------------------------------------------------------------

    def set_refresh_hash(self, principal_id: int, token_hash: str | None) -> bool:
        """Overwrite the refresh slot unconditionally (login) or clear it (logout)."""
        return self._update(principal_id, refresh_token_hash=token_hash)

    def rotate_refresh_hash(self, principal_id: int, expected_hash: str, new_hash: str) -> bool:
        """Swap the refresh slot from expected_hash to new_hash atomically.

        Returns False when the slot no longer holds expected_hash -- another
        rotation or a logout got there first.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == principal_id) & (_users.c.refresh_token_hash == expected_hash) & _live)
                .values(refresh_token_hash=new_hash, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def consume_verification(self, principal_id: int, token_hash: str) -> bool:
        """Mark verified and clear the token, only if the token is still current."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == principal_id) & (_users.c.verification_token_hash == token_hash) & _live)
                .values(
                    is_email_verified=True,
                    verification_token_hash=None,
                    verification_expires_at=None,
                    updated_at=now_iso(),
                )
            )
            conn.commit()
        return result.rowcount == 1

    def clear_verification(self, principal_id: int) -> bool:
        return self._update(principal_id, verification_token_hash=None, verification_expires_at=None)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def set_reset_token(self, principal_id: int, token_hash: str, expires_at: str) -> bool:
        """Store a reset digest and its expiry. Replaces any earlier pending reset."""
        return self._update(principal_id, reset_token_hash=token_hash, reset_expires_at=expires_at)

    def clear_reset_token(self, principal_id: int) -> bool:
        return self._update(principal_id, reset_token_hash=None, reset_expires_at=None)

    def consume_reset_token(self, principal_id: int, token_hash: str, password_hash: str, now: str) -> bool:
        """Set a new password and clear the reset pair in one row update.

        Matches only while the digest is current and unexpired. The refresh
        slot is cleared too: sessions minted before the reset stop refreshing.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == principal_id)
                    & (_users.c.reset_token_hash == token_hash)
                    & (_users.c.reset_expires_at > now)
                    & _live
                )
                .values(
                    password_hash=password_hash,
                    reset_token_hash=None,
                    reset_expires_at=None,
                    refresh_token_hash=None,
                    updated_at=now_iso(),
                )
            )
            conn.commit()
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def update_username(self, principal_id: int, username: str) -> bool:
        """Raises IntegrityError if the username is taken by another live principal."""
        return self._update(principal_id, username=username)

    def soft_delete(self, principal_id: int) -> bool:
        """Mark the principal deleted and drop its refresh slot. Returns False if absent."""
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == principal_id) & _live)
                .values(deleted_at=now, refresh_token_hash=None, updated_at=now)
            )
            conn.commit()
        return result.rowcount == 1

    def ping(self) -> bool:
        """Round-trip a trivial query. Used by the health endpoint."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch_one(self, query) -> Principal | None:
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_principal(row) if row is not None else None

    def _update(self, principal_id: int, **values) -> bool:
        # Column names come from the call sites above, never from request input.
        values["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where((_users.c.id == principal_id) & _live).values(**values))
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        email=row.email,
        username=row.username,
        password_hash=row.password_hash,
        auth_provider=row.auth_provider,
        auth_provider_id=row.auth_provider_id,
        role=row.role,
        status=row.status,
        is_email_verified=bool(row.is_email_verified),
        verification_token_hash=row.verification_token_hash,
        verification_expires_at=row.verification_expires_at,
        reset_token_hash=row.reset_token_hash,
        reset_expires_at=row.reset_expires_at,
        refresh_token_hash=row.refresh_token_hash,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )
