"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in workspace/models.py and audit/models.py -- dataclasses own domain shape;
stores and the lifecycle manager do the work.

Role, status and provider are plain tagged enumerations. No transition table
exists between statuses; only the values themselves are stored and reported.

Layer rule: no imports from api/, workspace/, or audit/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    admin = "admin"
    user = "user"


class PrincipalStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


class AuthProvider(str, Enum):
    email = "email"
    google = "google"
    microsoft = "microsoft"


@dataclass
class Principal:
    """An authenticated identity (the "user").

    password_hash is None for principals created from an external identity
    provider -- they cannot log in with a password.

    Every *_hash field holds a digest, never the raw secret:
      refresh_token_hash      -- single slot; at most one live refresh token.
      verification_token_hash -- cleared once the email is verified.
      reset_token_hash        -- cleared once consumed or found expired.

    deleted_at is None for live principals (soft delete marker).
    """

    email: str
    username: str
    id: int | None = None
    password_hash: str | None = None
    auth_provider: str = AuthProvider.email.value
    auth_provider_id: str | None = None
    role: str = Role.user.value
    status: str = PrincipalStatus.active.value
    is_email_verified: bool = False
    verification_token_hash: str | None = None
    verification_expires_at: str | None = None
    reset_token_hash: str | None = None
    reset_expires_at: str | None = None
    refresh_token_hash: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class TokenPair:
    """Access + refresh tokens returned by login, refresh and OAuth callback."""

    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int
    token_type: str = "bearer"  # noqa: S105 -- OAuth token type, not a password


@dataclass(frozen=True)
class ExternalIdentity:
    """A claim already verified by an external identity provider."""

    email: str
    given_name: str = ""
    family_name: str = ""
    provider: str = AuthProvider.google.value
    subject: str | None = None
