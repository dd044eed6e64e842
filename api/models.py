"""
API request and response models for TaskNest REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
workspace/models.py, which own the internal domain representation. Route
handlers map between the two.

Patch models use extra="forbid": a payload naming any field outside the
allow-list is rejected with 422 instead of being silently merged.

Response models never carry password, token or digest fields.
"""

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from auth.models import Principal
from core.db import to_iso
from workspace.models import Organization, Task, TaskList

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class VisibilityEnum(str, Enum):
    private = "private"
    public = "public"


class TaskStatusEnum(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"


class ImportanceEnum(str, Enum):
    low = "low"
    normal = "normal"
    high = "high"


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class PatchModel(BaseModel):
    """Base for PATCH bodies. Unknown fields are rejected."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    nullable_fields: ClassVar[frozenset[str]] = frozenset()

    def changes(self) -> dict:
        """Fields the client sent. An explicit null is kept only where the column allows it."""
        data = self.model_dump(mode="json", exclude_unset=True)
        return {k: v for k, v in data.items() if v is not None or k in self.nullable_fields}


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup. Password is optional."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    password: Optional[str] = Field(default=None, min_length=8, max_length=72)


class LoginRequest(BaseModel):
    email: str = Field(max_length=255)
    password: str = Field(max_length=72)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=72)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_in: int


class PrincipalResponse(BaseModel):
    """Public view of a principal. No hash or token fields."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    username: str
    role: str
    status: str
    auth_provider: str
    is_email_verified: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalResponse":
        return cls(
            id=principal.id,
            email=principal.email,
            username=principal.username,
            role=principal.role,
            status=principal.status,
            auth_provider=principal.auth_provider,
            is_email_verified=principal.is_email_verified,
            created_at=principal.created_at or "",
            updated_at=principal.updated_at or "",
        )


class SignupResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user: PrincipalResponse


class PageMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_items: int
    item_count: int
    items_per_page: int
    total_pages: int
    current_page: int


class PrincipalPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: list[PrincipalResponse]
    meta: PageMeta


class ProfilePatch(PatchModel):
    username: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=USERNAME_PATTERN)


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    principal_id: int
    action: str
    entity_type: str
    entity_id: int
    details: dict
    timestamp: str


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------


class OrganizationCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)


class OrganizationPatch(PatchModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)


class OrganizationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    owner_id: int
    created_at: str
    updated_at: str

    @classmethod
    def from_organization(cls, org: Organization) -> "OrganizationResponse":
        return cls(
            id=org.id,
            name=org.name,
            owner_id=org.owner_id,
            created_at=org.created_at,
            updated_at=org.updated_at,
        )


# ---------------------------------------------------------------------------
# Lists
# ---------------------------------------------------------------------------


class ListCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    organization_id: Optional[int] = None
    visibility: VisibilityEnum = VisibilityEnum.private
    is_default: bool = False


class ListPatch(PatchModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    visibility: Optional[VisibilityEnum] = None
    is_default: Optional[bool] = None


class ListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    visibility: str
    is_default: bool
    owner_id: int
    organization_id: Optional[int]
    created_at: str
    updated_at: str

    @classmethod
    def from_list(cls, task_list: TaskList) -> "ListResponse":
        return cls(
            id=task_list.id,
            name=task_list.name,
            visibility=task_list.visibility,
            is_default=task_list.is_default,
            owner_id=task_list.owner_id,
            organization_id=task_list.organization_id,
            created_at=task_list.created_at,
            updated_at=task_list.updated_at,
        )


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    list_id: int
    parent_task_id: Optional[int] = None
    importance: ImportanceEnum = ImportanceEnum.normal
    due_date: Optional[datetime] = None


class TaskPatch(PatchModel):
    nullable_fields: ClassVar[frozenset[str]] = frozenset({"description", "due_date", "completed_at"})

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    status: Optional[TaskStatusEnum] = None
    importance: Optional[ImportanceEnum] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_serializer("due_date", "completed_at")
    def serialize_moment(self, value: Optional[datetime]) -> Optional[str]:
        return to_iso(value) if value is not None else None


class TaskResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    description: Optional[str]
    status: str
    importance: str
    due_date: Optional[str]
    completed_at: Optional[str]
    list_id: int
    parent_task_id: Optional[int]
    created_by: int
    updated_by: int
    created_at: str
    updated_at: str

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            title=task.title,
            description=task.description,
            status=task.status,
            importance=task.importance,
            due_date=task.due_date,
            completed_at=task.completed_at,
            list_id=task.list_id,
            parent_task_id=task.parent_task_id,
            created_by=task.created_by,
            updated_by=task.updated_by,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )
