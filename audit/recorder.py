"""
audit/recorder.py -- Fire-and-forget audit logging of privileged actions.

The recorder is advisory telemetry, not part of any authorization decision.
record() never raises: a failed write is reported on the "tasknest.audit"
logger and the primary operation it describes stands. Routes schedule it as a
background task after the response is produced, so an audit write never
delays or reverts a request.

Secret-bearing keys in the request payload are replaced before the entry is
stored -- a password-reset body must not land in the audit table verbatim.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from audit.models import AuditEntry
from audit.store import AuditStore

logger = logging.getLogger("tasknest.audit")

_REDACTED = "[redacted]"
_SECRET_KEYS = frozenset({"password", "new_password", "token", "refresh_token", "access_token"})


def redact(details: Any) -> Any:
    """Return a copy of details with secret-bearing keys masked, recursively."""
    if isinstance(details, dict):
        return {k: (_REDACTED if k.lower() in _SECRET_KEYS else redact(v)) for k, v in details.items()}
    if isinstance(details, list):
        return [redact(v) for v in details]
    return details


class AuditRecorder:
    def __init__(self, store: AuditStore) -> None:
        self.store = store

    def record(
        self,
        principal_id: int,
        action: str,
        entity_type: str,
        entity_id: int,
        details: dict[str, Any] | None = None,
    ) -> int | None:
        """Append one entry. Returns its id, or None if the write failed."""
        entry = AuditEntry(
            principal_id=principal_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=redact(details or {}),
        )
        try:
            return self.store.append(entry)
        except (SQLAlchemyError, TypeError, ValueError):
            logger.exception(
                "Audit write failed: principal=%s action=%s %s#%s",
                principal_id,
                action,
                entity_type,
                entity_id,
            )
            return None
