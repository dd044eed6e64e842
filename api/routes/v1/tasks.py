"""
api/routes/v1/tasks.py -- Task CRUD for the TaskNest REST API.

Routes:
  POST   /tasks       -- create in a list the caller owns
  GET    /tasks/{id}  -- owner of the containing list only
  PATCH  /tasks/{id}  -- allow-listed fields; stamps updated_by
  DELETE /tasks/{id}  -- soft delete

A task has no owner column of its own: access follows its list.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from api.models import MessageResponse, TaskCreate, TaskPatch, TaskResponse
from auth.dependencies import get_current_principal
from auth.models import Principal
from core.db import to_iso
from workspace.models import TASK, TaskUpdate
from workspace.service import WorkspaceService

router = APIRouter()


def _workspace(request: Request) -> WorkspaceService:
    return request.app.state.workspace


@router.post("/tasks", response_model=TaskResponse, status_code=201)
def create_task(
    request: Request,
    body: TaskCreate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    task = _workspace(request).create_task(
        principal.id,
        body.list_id,
        body.title,
        description=body.description,
        parent_task_id=body.parent_task_id,
        importance=body.importance.value,
        due_date=to_iso(body.due_date) if body.due_date else None,
    )
    background_tasks.add_task(
        request.app.state.audit.record, principal.id, "create", TASK, task.id, body.model_dump(mode="json")
    )
    return TaskResponse.from_task(task)


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(
    request: Request,
    task_id: int,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    return TaskResponse.from_task(_workspace(request).get_task(principal.id, task_id))


@router.patch("/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    request: Request,
    task_id: int,
    body: TaskPatch,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
) -> TaskResponse:
    changes = body.changes()
    task = _workspace(request).update_task(principal.id, task_id, TaskUpdate(**changes))
    background_tasks.add_task(request.app.state.audit.record, principal.id, "update", TASK, task_id, changes)
    return TaskResponse.from_task(task)


@router.delete("/tasks/{task_id}", response_model=MessageResponse)
def delete_task(
    request: Request,
    task_id: int,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    _workspace(request).delete_task(principal.id, task_id)
    background_tasks.add_task(request.app.state.audit.record, principal.id, "delete", TASK, task_id)
    return MessageResponse(message="Task deleted.")
