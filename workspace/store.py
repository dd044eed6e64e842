"""
workspace/store.py -- SQLAlchemy Core persistence for organizations, lists and tasks.

Uses SQLAlchemy Core (not ORM) so the dataclasses in workspace/models.py stay
the authoritative domain representation.

Pattern: Repository + Data Mapper. WorkspaceStore is the repository; the
_row_to_* functions are the mappers. Services never touch SQL directly.

Soft delete: every getter hides rows whose deleted_at is set unless
include_deleted=True is passed. Deleting stamps deleted_at; nothing is ever
physically removed.

Owner references are plain integer columns; the principal table may live in
the same database or not.

Security: all queries use bound parameters. Update column names come from the
allow-listed update dataclasses, never from request input.

Usage:
    store = WorkspaceStore()
    org_id = store.create_organization(Organization(name="Acme", owner_id=1))
    list_id = store.create_list(TaskList(name="Inbox", owner_id=1, organization_id=org_id))
    store.close()
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Boolean, Column, Index, Integer, MetaData, String, Table, Text, select
from sqlalchemy.engine import Engine

from core.config import get_settings
from core.db import create_db_engine, now_iso
from workspace.models import LIST, ORGANIZATION, TASK, Organization, Task, TaskList

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_organizations = Table(
    "organizations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("owner_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

_lists = Table(
    "lists",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("visibility", String(20), nullable=False, server_default="private"),
    Column("is_default", Boolean, nullable=False, server_default="0"),
    Column("owner_id", Integer, nullable=False),
    Column("organization_id", Integer),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

_tasks = Table(
    "tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("importance", String(20), nullable=False, server_default="normal"),
    Column("due_date", String(32)),
    Column("completed_at", String(32)),
    Column("list_id", Integer, nullable=False),
    Column("created_by", Integer, nullable=False),
    Column("updated_by", Integer, nullable=False),
    Column("parent_task_id", Integer),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

Index("ix_organizations_owner", _organizations.c.owner_id)
Index("ix_lists_owner", _lists.c.owner_id)
Index("ix_tasks_list", _tasks.c.list_id)

_TABLES: dict[str, Table] = {ORGANIZATION: _organizations, LIST: _lists, TASK: _tasks}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class WorkspaceStore:
    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = create_db_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Generic access (used by the ownership resolver)
    # ------------------------------------------------------------------

    def get(self, kind: str, resource_id: int, include_deleted: bool = False) -> Any | None:
        """Fetch an organization, list or task by kind name."""
        table = _TABLES.get(kind)
        if table is None:
            raise ValueError(f"Unknown resource kind: {kind!r}")
        query = table.select().where(table.c.id == resource_id)
        if not include_deleted:
            query = query.where(table.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _MAPPERS[kind](row) if row is not None else None

    def update(self, kind: str, resource_id: int, changes: dict[str, Any]) -> bool:
        """Apply allow-listed changes to a live row. Returns False if absent or deleted."""
        table = _TABLES[kind]
        values = dict(changes)
        values["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                table.update().where((table.c.id == resource_id) & table.c.deleted_at.is_(None)).values(**values)
            )
            conn.commit()
        return result.rowcount > 0

    def soft_delete(self, kind: str, resource_id: int) -> bool:
        table = _TABLES[kind]
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                table.update()
                .where((table.c.id == resource_id) & table.c.deleted_at.is_(None))
                .values(deleted_at=now, updated_at=now)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def create_organization(self, org: Organization) -> int:
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _organizations.insert().values(name=org.name, owner_id=org.owner_id, created_at=now, updated_at=now)
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_organization(self, org_id: int, include_deleted: bool = False) -> Organization | None:
        return self.get(ORGANIZATION, org_id, include_deleted)

    def list_organizations(self, owner_id: int) -> list[Organization]:
        """Live organizations owned by owner_id, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _organizations.select()
                .where((_organizations.c.owner_id == owner_id) & _organizations.c.deleted_at.is_(None))
                .order_by(_organizations.c.id)
            ).fetchall()
        return [_row_to_organization(r) for r in rows]

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def create_list(self, task_list: TaskList) -> int:
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _lists.insert().values(
                    name=task_list.name,
                    visibility=task_list.visibility,
                    is_default=task_list.is_default,
                    owner_id=task_list.owner_id,
                    organization_id=task_list.organization_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_list(self, list_id: int, include_deleted: bool = False) -> TaskList | None:
        return self.get(LIST, list_id, include_deleted)

    def list_lists(self, owner_id: int) -> list[TaskList]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _lists.select()
                .where((_lists.c.owner_id == owner_id) & _lists.c.deleted_at.is_(None))
                .order_by(_lists.c.id)
            ).fetchall()
        return [_row_to_list(r) for r in rows]

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, task: Task) -> int:
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _tasks.insert().values(
                    title=task.title,
                    description=task.description,
                    status=task.status,
                    importance=task.importance,
                    due_date=task.due_date,
                    completed_at=task.completed_at,
                    list_id=task.list_id,
                    created_by=task.created_by,
                    updated_by=task.updated_by,
                    parent_task_id=task.parent_task_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_task(self, task_id: int, include_deleted: bool = False) -> Task | None:
        return self.get(TASK, task_id, include_deleted)

    def list_tasks(self, list_id: int) -> list[Task]:
        """Live tasks of a live list. A soft-deleted list yields no tasks."""
        query = (
            select(_tasks)
            .select_from(_tasks.join(_lists, _tasks.c.list_id == _lists.c.id))
            .where(
                (_tasks.c.list_id == list_id) & _tasks.c.deleted_at.is_(None) & _lists.c.deleted_at.is_(None)
            )
            .order_by(_tasks.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_task(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_organization(row) -> Organization:
    return Organization(
        id=row.id,
        name=row.name,
        owner_id=row.owner_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


def _row_to_list(row) -> TaskList:
    return TaskList(
        id=row.id,
        name=row.name,
        visibility=row.visibility,
        is_default=bool(row.is_default),
        owner_id=row.owner_id,
        organization_id=row.organization_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


def _row_to_task(row) -> Task:
    return Task(
        id=row.id,
        title=row.title,
        description=row.description,
        status=row.status,
        importance=row.importance,
        due_date=row.due_date,
        completed_at=row.completed_at,
        list_id=row.list_id,
        created_by=row.created_by,
        updated_by=row.updated_by,
        parent_task_id=row.parent_task_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


_MAPPERS = {ORGANIZATION: _row_to_organization, LIST: _row_to_list, TASK: _row_to_task}
