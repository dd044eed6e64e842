"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The access token travels in the Authorization: Bearer <token> header. Refresh
tokens are never accepted here; they only go to POST /auth/refresh in the body.

get_current_principal() raises HTTP 401 if the request is not authenticated.
require_admin() wraps get_current_principal() and raises HTTP 403 if not admin.

A token whose principal has since been soft-deleted is treated as
unauthenticated even though the token itself is still within its lifetime.

Layer rule: no imports from workspace/ or audit/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Principal, Role
from auth.store import PrincipalStore
from auth.tokens import ACCESS, verify_token
from core.errors import Unauthorized


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    token = _bearer_token(request)
    if not token:
        raise _unauthorized("Authentication required.")
    try:
        payload = verify_token(token, ACCESS)
    except Unauthorized as exc:
        raise _unauthorized(exc.message) from exc
    store: PrincipalStore = request.app.state.principal_store
    principal = store.get_by_id(payload["principal_id"])
    if principal is None:
        raise _unauthorized("Authentication required.")
    return principal


def require_admin(request: Request) -> Principal:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    principal = get_current_principal(request)
    if principal.role != Role.admin.value:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return principal
