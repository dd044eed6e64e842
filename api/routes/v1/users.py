"""
api/routes/v1/users.py -- Principal profile and administration endpoints.

Routes:
  GET    /api/v1/users       -- paginated principal listing (admin only)
  GET    /api/v1/users/{id}  -- one principal's public profile (requires auth)
  PATCH  /api/v1/users/{id}  -- change own username (self only)
  DELETE /api/v1/users/{id}  -- soft-delete own account (self only)

Self-only rules live in AccountService so they hold for any caller, not just
HTTP. Profile changes are written to the audit log after the response.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request

from api.models import MessageResponse, PageMeta, PrincipalPage, PrincipalResponse, ProfilePatch
from auth.accounts import AccountService, ProfileUpdate
from auth.dependencies import get_current_principal, require_admin
from auth.models import Principal

router = APIRouter()


def _accounts(request: Request) -> AccountService:
    return request.app.state.accounts


@router.get("/users", response_model=PrincipalPage)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    admin: Principal = Depends(require_admin),
) -> PrincipalPage:
    result = _accounts(request).list_principals(page=page, limit=limit)
    return PrincipalPage(
        data=[PrincipalResponse.from_principal(p) for p in result.items],
        meta=PageMeta(
            total_items=result.total_items,
            item_count=len(result.items),
            items_per_page=result.items_per_page,
            total_pages=result.total_pages,
            current_page=result.current_page,
        ),
    )


@router.get("/users/{user_id}", response_model=PrincipalResponse)
def get_user(
    request: Request,
    user_id: int,
    principal: Principal = Depends(get_current_principal),
) -> PrincipalResponse:
    return PrincipalResponse.from_principal(_accounts(request).get_principal(user_id))


@router.patch("/users/{user_id}", response_model=PrincipalResponse)
def update_user(
    request: Request,
    user_id: int,
    body: ProfilePatch,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
) -> PrincipalResponse:
    """Update the caller's own profile. Only username is accepted."""
    changes = body.changes()
    updated = _accounts(request).update_profile(principal, user_id, ProfileUpdate(**changes))
    background_tasks.add_task(request.app.state.audit.record, principal.id, "update", "user", user_id, changes)
    return PrincipalResponse.from_principal(updated)


@router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_user(
    request: Request,
    user_id: int,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    """Soft-delete the caller's own account. Its tokens stop working immediately."""
    _accounts(request).delete_account(principal, user_id)
    background_tasks.add_task(request.app.state.audit.record, principal.id, "delete", "user", user_id)
    return MessageResponse(message="Account deleted.")
