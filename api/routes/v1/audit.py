"""
api/routes/v1/audit.py -- Read access to the audit log (admin only).

Routes:
  GET /audit/{entity_type}/{entity_id}  -- entries for one entity, oldest first
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import AuditEntryResponse
from audit.store import AuditStore
from auth.dependencies import require_admin

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/audit/{entity_type}/{entity_id}", response_model=list[AuditEntryResponse])
def list_entity_audit(request: Request, entity_type: str, entity_id: int) -> list[AuditEntryResponse]:
    store: AuditStore = request.app.state.audit_store
    return [
        AuditEntryResponse(
            id=e.id,
            principal_id=e.principal_id,
            action=e.action,
            entity_type=e.entity_type,
            entity_id=e.entity_id,
            details=e.details,
            timestamp=e.timestamp,
        )
        for e in store.list_for_entity(entity_type, entity_id)
    ]
