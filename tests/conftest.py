"""
tests/conftest.py -- Shared test fixtures for TaskNest.

This module provides:
  - memory_url(): named shared-memory SQLite URIs for isolated stores
  - principal_store / workspace_store / audit_store: unit-test stores
  - credentials: CredentialManager over a log-only mailer and a movable clock
  - api: TestClient with a patched lifespan plus helpers to sign up and log in

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

DEBUG, BCRYPT_ROUNDS and LOGIN_RATE_LIMIT must be set before any project
import: get_settings() is cached on first call and the hashing cost and the
login limit are read at module load.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("DATABASE_URL", "sqlite:///file:tasknest_default?mode=memory&cache=shared&uri=true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, attach_services
from audit.store import AuditStore
from auth.lifecycle import CredentialManager
from auth.store import PrincipalStore
from core.mailer import LogMailSender
from workspace.store import WorkspaceStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_TOKEN_IN_LINK = re.compile(r"token=([0-9a-f]+)")


def memory_url(name: str) -> str:
    """A fresh named shared-memory SQLite URL. The uuid keeps tests isolated."""
    return f"sqlite:///file:{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


class MovableClock:
    """Callable clock for CredentialManager. advance() moves it forward."""

    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class CapturingMailer:
    """Records full messages so tests can pull tokens out of the links."""

    messages: list[tuple[str, str, str]] = field(default_factory=list)

    def send(self, to_address: str, subject: str, body: str) -> bool:
        self.messages.append((to_address, subject, body))
        return True

    def last_token(self, to_address: str) -> str:
        for address, _, body in reversed(self.messages):
            if address == to_address:
                return _TOKEN_IN_LINK.search(body).group(1)
        raise AssertionError(f"No mail sent to {to_address}")


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def principal_store() -> Generator[PrincipalStore, None, None]:
    store = PrincipalStore(db_url=memory_url("principals"))
    yield store
    store.close()


@pytest.fixture
def workspace_store() -> Generator[WorkspaceStore, None, None]:
    store = WorkspaceStore(db_url=memory_url("workspace"))
    yield store
    store.close()


@pytest.fixture
def audit_store() -> Generator[AuditStore, None, None]:
    store = AuditStore(db_url=memory_url("audit"))
    yield store
    store.close()


@pytest.fixture
def mailer() -> CapturingMailer:
    return CapturingMailer()


@pytest.fixture
def clock() -> MovableClock:
    return MovableClock()


@pytest.fixture
def credentials(principal_store, mailer, clock) -> CredentialManager:
    return CredentialManager(principal_store, mailer, clock=clock)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(principal_store, workspace_store, audit_store, mail_sender):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the production database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_services(app, principal_store, workspace_store, audit_store, mail_sender)
        yield

    return test_lifespan


class ApiHarness:
    """TestClient plus shortcuts for the account setup most API tests need."""

    def __init__(self, client: TestClient, mailer: CapturingMailer, principal_store: PrincipalStore) -> None:
        self.client = client
        self.mailer = mailer
        self.principal_store = principal_store

    def signup(self, username: str, password: str = "correct-horse-9") -> dict:
        resp = self.client.post(
            "/api/v1/auth/signup",
            json={"email": f"{username}@example.com", "username": username, "password": password},
        )
        assert resp.status_code == 201, resp.text
        return resp.json()["user"]

    def login(self, username: str, password: str = "correct-horse-9") -> dict:
        resp = self.client.post(
            "/api/v1/auth/login",
            json={"email": f"{username}@example.com", "password": password},
        )
        assert resp.status_code == 200, resp.text
        return resp.json()

    def headers_for(self, username: str) -> dict[str, str]:
        """Sign up (once) and log in; return a bearer header."""
        if self.principal_store.get_by_username(username) is None:
            self.signup(username)
        return {"Authorization": f"Bearer {self.login(username)['access_token']}"}

    def make_admin(self, username: str) -> dict[str, str]:
        headers = self.headers_for(username)
        principal = self.principal_store.get_by_username(username)
        with self.principal_store.engine.connect() as conn:
            conn.exec_driver_sql("UPDATE users SET role = 'admin' WHERE id = ?", (principal.id,))
            conn.commit()
        return headers


@pytest.fixture
def api() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness over fresh in-memory stores.

    Function-scoped: every test starts with empty tables and a reset limiter.
    """
    principal_store = PrincipalStore(db_url=memory_url("api_principals"))
    workspace_store = WorkspaceStore(db_url=memory_url("api_workspace"))
    audit_store = AuditStore(db_url=memory_url("api_audit"))
    capturing = CapturingMailer()

    app.router.lifespan_context = _patch_lifespan(principal_store, workspace_store, audit_store, capturing)
    limiter.reset()

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client, capturing, principal_store)

    principal_store.close()
    workspace_store.close()
    audit_store.close()


@pytest.fixture
def log_mailer() -> LogMailSender:
    return LogMailSender()
