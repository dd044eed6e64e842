"""
workspace/models.py -- Domain dataclasses for organizations, lists and tasks.

These are pure data containers. Ownership is expressed through two small
capabilities the resolver in workspace/ownership.py understands:

  owner_id   -- the resource names its owning principal directly
                (Organization, TaskList).
  parent_ref -- the resource defers to a parent resource (Task -> its list).

Update structs are explicit allow-lists. Only the fields declared on them can
ever reach the store; anything else in a request payload has nowhere to go.
Fields left as UNSET are not touched, so None can still mean "clear".

id is None before the record is written to the database.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

ORGANIZATION = "organization"
LIST = "list"
TASK = "task"


@dataclass
class Organization:
    name: str
    owner_id: int
    id: int | None = None
    created_at: str = ""
    updated_at: str = ""
    deleted_at: str | None = None


@dataclass
class TaskList:
    """A list of tasks. Owned by its creator, independent of any organization."""

    name: str
    owner_id: int
    organization_id: int | None = None
    visibility: str = "private"
    is_default: bool = False
    id: int | None = None
    created_at: str = ""
    updated_at: str = ""
    deleted_at: str | None = None


@dataclass
class Task:
    """A task in exactly one list. parent_task_id forms an unbounded subtask tree."""

    title: str
    list_id: int
    created_by: int
    updated_by: int
    description: str | None = None
    status: str = "pending"
    importance: str = "normal"
    due_date: str | None = None
    completed_at: str | None = None
    parent_task_id: int | None = None
    id: int | None = None
    created_at: str = ""
    updated_at: str = ""
    deleted_at: str | None = None

    @property
    def parent_ref(self) -> tuple[str, int]:
        return LIST, self.list_id


class _FieldUpdate:
    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller actually set."""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not UNSET}


@dataclass(frozen=True)
class OrganizationUpdate(_FieldUpdate):
    name: str = UNSET


@dataclass(frozen=True)
class ListUpdate(_FieldUpdate):
    name: str = UNSET
    visibility: str = UNSET
    is_default: bool = UNSET


@dataclass(frozen=True)
class TaskUpdate(_FieldUpdate):
    title: str = UNSET
    description: str | None = UNSET
    status: str = UNSET
    importance: str = UNSET
    due_date: str | None = UNSET
    completed_at: str | None = UNSET
