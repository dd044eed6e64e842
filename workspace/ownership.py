"""
workspace/ownership.py -- Ownership-chain authorization for workspace resources.

One resolver for every resource kind. A resource either names its owner
(HasOwner) or points at a parent resource (HasParentRef); the resolver walks
parent references until it reaches an owner:

    organization -> owner
    list         -> owner              (the organization plays no part)
    task         -> list -> owner

Policy: the root owner may read and mutate; nobody else may do either. There
is no separate read grant.

Existence is evaluated before ownership. A missing or soft-deleted resource --
or a soft-deleted link anywhere in its chain -- is NotFound for every caller,
so a task in a deleted list disappears along with the list.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from core.errors import Forbidden, NotFound
from workspace.models import LIST, ORGANIZATION, TASK
from workspace.store import WorkspaceStore

_LABELS = {ORGANIZATION: "Organization", LIST: "List", TASK: "Task"}

# Deepest chain today is task -> list. The bound only guards against a
# malformed parent_ref loop.
_MAX_CHAIN = 8


@runtime_checkable
class HasOwner(Protocol):
    owner_id: int


@runtime_checkable
class HasParentRef(Protocol):
    @property
    def parent_ref(self) -> tuple[str, int]: ...


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""


ALLOW = Decision(True)


class OwnershipResolver:
    def __init__(self, store: WorkspaceStore) -> None:
        self.store = store

    def fetch(self, kind: str, resource_id: int) -> Any:
        """Return a live resource or raise NotFound."""
        resource = self.store.get(kind, resource_id)
        if resource is None:
            raise NotFound(f"{_LABELS[kind]} with ID #{resource_id} not found.")
        return resource

    def owner_of(self, resource: Any) -> int:
        """Walk the chain to the owning principal id. NotFound if a link is gone."""
        current = resource
        for _ in range(_MAX_CHAIN):
            if isinstance(current, HasOwner):
                return current.owner_id
            if not isinstance(current, HasParentRef):
                raise TypeError(f"{type(current).__name__} has neither owner_id nor parent_ref")
            parent_kind, parent_id = current.parent_ref
            current = self.fetch(parent_kind, parent_id)
        raise RuntimeError("Ownership chain exceeds maximum depth")

    def can_access(self, principal_id: int, resource: Any) -> Decision:
        """Allow iff principal_id owns the root of the resource's chain.

        Raises NotFound for a soft-deleted resource or chain link instead of
        returning Deny, so absence and denial are never confused.
        """
        if getattr(resource, "deleted_at", None) is not None:
            raise NotFound()
        if self.owner_of(resource) == principal_id:
            return ALLOW
        return Decision(False, "not the owner")

    def authorize(self, principal_id: int, kind: str, resource_id: int, denied_message: str | None = None) -> Any:
        """Fetch a resource the principal owns, for read or mutation alike.

        Raises:
            NotFound:  absent or soft-deleted (checked first).
            Forbidden: live but owned by someone else.
        """
        resource = self.fetch(kind, resource_id)
        decision = self.can_access(principal_id, resource)
        if not decision.allowed:
            raise Forbidden(denied_message or f"You are not allowed to access this {kind}.")
        return resource
