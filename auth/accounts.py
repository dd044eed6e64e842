"""
auth/accounts.py -- Principal profile and administration operations.

Self-service rules: a principal may change or delete only its own record.
Everyone else gets Forbidden; an id that is absent or soft-deleted gets
NotFound. Admin-only listing is gated at the route (require_admin).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from auth.models import Principal
from auth.store import PrincipalStore
from core.errors import Conflict, Forbidden, NotFound

logger = logging.getLogger("tasknest.auth.accounts")


@dataclass(frozen=True)
class ProfileUpdate:
    """The only fields a principal may change on its own record."""

    username: str | None = None


@dataclass(frozen=True)
class Page:
    items: list[Principal]
    total_items: int
    items_per_page: int
    current_page: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_items / self.items_per_page) if self.items_per_page else 0


class AccountService:
    def __init__(self, store: PrincipalStore) -> None:
        self.store = store

    def get_principal(self, principal_id: int) -> Principal:
        principal = self.store.get_by_id(principal_id)
        if principal is None:
            raise NotFound(f"User with ID #{principal_id} not found.")
        return principal

    def list_principals(self, page: int = 1, limit: int = 10) -> Page:
        page = max(page, 1)
        limit = max(limit, 1)
        items, total = self.store.list_principals(offset=(page - 1) * limit, limit=limit)
        return Page(items=items, total_items=total, items_per_page=limit, current_page=page)

    def update_profile(self, actor: Principal, principal_id: int, update: ProfileUpdate) -> Principal:
        if actor.id != principal_id:
            raise Forbidden("You are only allowed to update your own profile.")
        current = self.get_principal(principal_id)
        if update.username is not None and update.username != current.username:
            try:
                self.store.update_username(principal_id, update.username)
            except IntegrityError as exc:
                raise Conflict("Username already exists.") from exc
            logger.info("Principal %d changed username", principal_id)
        return self.get_principal(principal_id)

    def delete_account(self, actor: Principal, principal_id: int) -> Principal:
        if actor.id != principal_id:
            raise Forbidden("You are only allowed to delete your own profile.")
        principal = self.get_principal(principal_id)
        self.store.soft_delete(principal_id)
        logger.info("Principal %d soft-deleted", principal_id)
        return principal
