"""
audit/models.py -- The append-only audit entry.

Pattern: Data class (pure data container, zero logic). Entries are only ever
inserted, never updated or deleted.

id is None before the record is written to the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class AuditEntry:
    principal_id: int
    action: str  # "create" | "update" | "delete" | "password_reset" | ...
    entity_type: str  # "organization" | "list" | "task" | "user"
    entity_id: int
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""  # ISO 8601, set by store on insert
    id: int | None = None
