"""
core/db.py -- Engine construction shared by every SQLAlchemy Core store.

PrincipalStore, WorkspaceStore and AuditStore each own their tables but can
point at the same database. They all build their engine here so SQLite gets the
same connection arguments and PRAGMAs everywhere.

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond precision,
so lexical comparison in SQL matches chronological order.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and a busy timeout on every new SQLite connection.

    WAL lets readers proceed while a writer holds the lock. The busy timeout
    makes concurrent single-row updates wait for the lock instead of failing
    with "database is locked". PRAGMAs are per-connection, so this runs on
    each connect.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def to_iso(moment: datetime) -> str:
    """Render as UTC ISO 8601. Naive datetimes are taken to already be UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))
