"""
workspace/service.py -- Ownership-gated operations on organizations, lists and tasks.

Every read, update and delete goes through OwnershipResolver.authorize(), so
the three resource kinds share one access rule. Creation checks the container
instead: a list under an organization needs the caller to own that
organization, a task needs the caller to own its list.

Ownership is fixed at creation (the caller becomes owner) and no operation
here changes it.
"""

from __future__ import annotations

import logging

from core.errors import NotFound
from workspace.models import (
    LIST,
    ORGANIZATION,
    TASK,
    ListUpdate,
    Organization,
    OrganizationUpdate,
    Task,
    TaskList,
    TaskUpdate,
)
from workspace.ownership import OwnershipResolver
from workspace.store import WorkspaceStore

logger = logging.getLogger("tasknest.workspace")


class WorkspaceService:
    def __init__(self, store: WorkspaceStore, resolver: OwnershipResolver | None = None) -> None:
        self.store = store
        self.resolver = resolver or OwnershipResolver(store)

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def create_organization(self, principal_id: int, name: str) -> Organization:
        org_id = self.store.create_organization(Organization(name=name, owner_id=principal_id))
        logger.info("Principal %d created organization %d", principal_id, org_id)
        return self.store.get_organization(org_id)

    def list_organizations(self, principal_id: int) -> list[Organization]:
        return self.store.list_organizations(principal_id)

    def get_organization(self, principal_id: int, org_id: int) -> Organization:
        return self.resolver.authorize(
            principal_id, ORGANIZATION, org_id, "You are not allowed to view this organization."
        )

    def update_organization(self, principal_id: int, org_id: int, update: OrganizationUpdate) -> Organization:
        self.resolver.authorize(principal_id, ORGANIZATION, org_id, "You are not allowed to update this organization.")
        return self._apply(ORGANIZATION, org_id, update.changes())

    def delete_organization(self, principal_id: int, org_id: int) -> Organization:
        org = self.resolver.authorize(
            principal_id, ORGANIZATION, org_id, "You are not allowed to delete this organization."
        )
        self._soft_delete(ORGANIZATION, org_id)
        return org

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def create_list(
        self,
        principal_id: int,
        name: str,
        organization_id: int | None = None,
        visibility: str = "private",
        is_default: bool = False,
    ) -> TaskList:
        """Create a list owned by the caller.

        Raises:
            NotFound:  organization_id does not resolve to a live organization.
            Forbidden: the caller does not own that organization.
        """
        if organization_id is not None:
            self.resolver.authorize(
                principal_id,
                ORGANIZATION,
                organization_id,
                "You are not allowed to add lists to this organization.",
            )
        list_id = self.store.create_list(
            TaskList(
                name=name,
                owner_id=principal_id,
                organization_id=organization_id,
                visibility=visibility,
                is_default=is_default,
            )
        )
        logger.info("Principal %d created list %d", principal_id, list_id)
        return self.store.get_list(list_id)

    def list_lists(self, principal_id: int) -> list[TaskList]:
        return self.store.list_lists(principal_id)

    def get_list(self, principal_id: int, list_id: int) -> TaskList:
        return self.resolver.authorize(principal_id, LIST, list_id, "You are not allowed to view this list.")

    def update_list(self, principal_id: int, list_id: int, update: ListUpdate) -> TaskList:
        self.resolver.authorize(principal_id, LIST, list_id, "You are not allowed to update this list.")
        return self._apply(LIST, list_id, update.changes())

    def delete_list(self, principal_id: int, list_id: int) -> TaskList:
        task_list = self.resolver.authorize(principal_id, LIST, list_id, "You are not allowed to delete this list.")
        self._soft_delete(LIST, list_id)
        return task_list

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(
        self,
        principal_id: int,
        list_id: int,
        title: str,
        description: str | None = None,
        parent_task_id: int | None = None,
        importance: str = "normal",
        due_date: str | None = None,
    ) -> Task:
        """Create a task in a list the caller owns.

        A parent task must be live and belong to the same list.
        """
        self.resolver.authorize(principal_id, LIST, list_id, "You can only add tasks to your own lists.")
        if parent_task_id is not None:
            parent = self.store.get_task(parent_task_id)
            if parent is None or parent.list_id != list_id:
                raise NotFound(f"Parent task with ID #{parent_task_id} not found.")
        task_id = self.store.create_task(
            Task(
                title=title,
                description=description,
                list_id=list_id,
                created_by=principal_id,
                updated_by=principal_id,
                parent_task_id=parent_task_id,
                importance=importance,
                due_date=due_date,
            )
        )
        logger.info("Principal %d created task %d in list %d", principal_id, task_id, list_id)
        return self.store.get_task(task_id)

    def list_tasks(self, principal_id: int, list_id: int) -> list[Task]:
        self.resolver.authorize(principal_id, LIST, list_id, "You are not allowed to view tasks from this list.")
        return self.store.list_tasks(list_id)

    def get_task(self, principal_id: int, task_id: int) -> Task:
        return self.resolver.authorize(principal_id, TASK, task_id, "You are not allowed to view this task.")

    def update_task(self, principal_id: int, task_id: int, update: TaskUpdate) -> Task:
        self.resolver.authorize(principal_id, TASK, task_id, "You are not allowed to update this task.")
        changes = update.changes()
        changes["updated_by"] = principal_id
        return self._apply(TASK, task_id, changes)

    def delete_task(self, principal_id: int, task_id: int) -> Task:
        task = self.resolver.authorize(principal_id, TASK, task_id, "You are not allowed to delete this task.")
        self._soft_delete(TASK, task_id)
        return task

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply(self, kind: str, resource_id: int, changes: dict):
        # A concurrent delete between authorize() and the write leaves nothing to update.
        if changes and not self.store.update(kind, resource_id, changes):
            raise NotFound()
        return self.resolver.fetch(kind, resource_id)

    def _soft_delete(self, kind: str, resource_id: int) -> None:
        if not self.store.soft_delete(kind, resource_id):
            raise NotFound()
        logger.info("Soft-deleted %s %d", kind, resource_id)
