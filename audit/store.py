"""
audit/store.py -- SQLAlchemy Core persistence for audit entries.

Append-only: the repository exposes insert and read methods and nothing that
updates or deletes. details is a JSON object serialized as text.
"""

from __future__ import annotations

import json

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from audit.models import AuditEntry
from core.config import get_settings
from core.db import create_db_engine, now_iso

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("principal_id", Integer, nullable=False),
    Column("action", String(50), nullable=False),
    Column("entity_type", String(50), nullable=False),
    Column("entity_id", Integer, nullable=False),
    Column("details", Text),  # JSON object
    Column("timestamp", String(32), nullable=False),
)

Index("ix_audit_logs_entity", _audit_logs.c.entity_type, _audit_logs.c.entity_id)


class AuditStore:
    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = create_db_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    def append(self, entry: AuditEntry) -> int:
        """Insert one entry and return its ID. Durable once this returns."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _audit_logs.insert().values(
                    principal_id=entry.principal_id,
                    action=entry.action,
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    details=json.dumps(entry.details, default=str),
                    timestamp=entry.timestamp or now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_for_entity(self, entity_type: str, entity_id: int) -> list[AuditEntry]:
        """All entries for one entity, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _audit_logs.select()
                .where((_audit_logs.c.entity_type == entity_type) & (_audit_logs.c.entity_id == entity_id))
                .order_by(_audit_logs.c.id)
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def list_for_principal(self, principal_id: int, limit: int = 100) -> list[AuditEntry]:
        """Most recent entries written by one principal, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _audit_logs.select()
                .where(_audit_logs.c.principal_id == principal_id)
                .order_by(_audit_logs.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def _row_to_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        principal_id=row.principal_id,
        action=row.action,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        details=json.loads(row.details) if row.details else {},
        timestamp=row.timestamp,
    )
