"""
api/routes/v1/organizations.py -- Organization CRUD for the TaskNest REST API.

Routes:
  POST   /organizations       -- create (caller becomes owner)
  GET    /organizations       -- caller's live organizations
  GET    /organizations/{id}  -- owner only
  PATCH  /organizations/{id}  -- owner only, allow-listed fields
  DELETE /organizations/{id}  -- owner only, soft delete

Absent or deleted ids return 404 before the ownership check, so a stranger
cannot distinguish "not yours" from "does not exist" once it is gone.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from api.models import MessageResponse, OrganizationCreate, OrganizationPatch, OrganizationResponse
from auth.dependencies import get_current_principal
from auth.models import Principal
from workspace.models import ORGANIZATION, OrganizationUpdate
from workspace.service import WorkspaceService

router = APIRouter()


def _workspace(request: Request) -> WorkspaceService:
    return request.app.state.workspace


@router.post("/organizations", response_model=OrganizationResponse, status_code=201)
def create_organization(
    request: Request,
    body: OrganizationCreate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
) -> OrganizationResponse:
    org = _workspace(request).create_organization(principal.id, body.name)
    background_tasks.add_task(
        request.app.state.audit.record, principal.id, "create", ORGANIZATION, org.id, body.model_dump(mode="json")
    )
    return OrganizationResponse.from_organization(org)


@router.get("/organizations", response_model=list[OrganizationResponse])
def list_organizations(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> list[OrganizationResponse]:
    return [OrganizationResponse.from_organization(o) for o in _workspace(request).list_organizations(principal.id)]


@router.get("/organizations/{org_id}", response_model=OrganizationResponse)
def get_organization(
    request: Request,
    org_id: int,
    principal: Principal = Depends(get_current_principal),
) -> OrganizationResponse:
    return OrganizationResponse.from_organization(_workspace(request).get_organization(principal.id, org_id))


@router.patch("/organizations/{org_id}", response_model=OrganizationResponse)
def update_organization(
    request: Request,
    org_id: int,
    body: OrganizationPatch,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
) -> OrganizationResponse:
    changes = body.changes()
    org = _workspace(request).update_organization(principal.id, org_id, OrganizationUpdate(**changes))
    background_tasks.add_task(request.app.state.audit.record, principal.id, "update", ORGANIZATION, org_id, changes)
    return OrganizationResponse.from_organization(org)


@router.delete("/organizations/{org_id}", response_model=MessageResponse)
def delete_organization(
    request: Request,
    org_id: int,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    _workspace(request).delete_organization(principal.id, org_id)
    background_tasks.add_task(request.app.state.audit.record, principal.id, "delete", ORGANIZATION, org_id)
    return MessageResponse(message="Organization deleted.")
