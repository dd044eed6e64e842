"""
api/routes/v1/lists.py -- Task list CRUD for the TaskNest REST API.

Routes:
  POST   /lists             -- create; optional organization_id must be caller's
  GET    /lists             -- caller's live lists
  GET    /lists/{id}        -- owner only
  GET    /lists/{id}/tasks  -- live tasks of a list, owner only
  PATCH  /lists/{id}        -- owner only, allow-listed fields
  DELETE /lists/{id}        -- owner only, soft delete (hides its tasks)
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from api.models import ListCreate, ListPatch, ListResponse, MessageResponse, TaskResponse
from auth.dependencies import get_current_principal
from auth.models import Principal
from workspace.models import LIST, ListUpdate
from workspace.service import WorkspaceService

router = APIRouter()


def _workspace(request: Request) -> WorkspaceService:
    return request.app.state.workspace


@router.post("/lists", response_model=ListResponse, status_code=201)
def create_list(
    request: Request,
    body: ListCreate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
) -> ListResponse:
    task_list = _workspace(request).create_list(
        principal.id,
        body.name,
        organization_id=body.organization_id,
        visibility=body.visibility.value,
        is_default=body.is_default,
    )
    background_tasks.add_task(
        request.app.state.audit.record, principal.id, "create", LIST, task_list.id, body.model_dump(mode="json")
    )
    return ListResponse.from_list(task_list)


@router.get("/lists", response_model=list[ListResponse])
def list_lists(request: Request, principal: Principal = Depends(get_current_principal)) -> list[ListResponse]:
    return [ListResponse.from_list(tl) for tl in _workspace(request).list_lists(principal.id)]


@router.get("/lists/{list_id}", response_model=ListResponse)
def get_list(
    request: Request,
    list_id: int,
    principal: Principal = Depends(get_current_principal),
) -> ListResponse:
    return ListResponse.from_list(_workspace(request).get_list(principal.id, list_id))


@router.get("/lists/{list_id}/tasks", response_model=list[TaskResponse])
def list_tasks(
    request: Request,
    list_id: int,
    principal: Principal = Depends(get_current_principal),
) -> list[TaskResponse]:
    return [TaskResponse.from_task(t) for t in _workspace(request).list_tasks(principal.id, list_id)]


@router.patch("/lists/{list_id}", response_model=ListResponse)
def update_list(
    request: Request,
    list_id: int,
    body: ListPatch,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
) -> ListResponse:
    changes = body.changes()
    task_list = _workspace(request).update_list(principal.id, list_id, ListUpdate(**changes))
    background_tasks.add_task(request.app.state.audit.record, principal.id, "update", LIST, list_id, changes)
    return ListResponse.from_list(task_list)


@router.delete("/lists/{list_id}", response_model=MessageResponse)
def delete_list(
    request: Request,
    list_id: int,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    _workspace(request).delete_list(principal.id, list_id)
    background_tasks.add_task(request.app.state.audit.record, principal.id, "delete", LIST, list_id)
    return MessageResponse(message="List deleted.")
