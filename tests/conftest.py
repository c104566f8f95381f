"""
tests/conftest.py -- Shared test fixtures for LMS Bridge.

This module provides:
  - make_store(): a LocalUserStore on an isolated in-memory DB
  - directory / store / codec / orchestrator: unit-level collaborators, with
    the remote directory replaced by a MagicMock(spec=RemoteDirectoryClient)
  - api_client: TestClient over the real app with a patched lifespan, plus the
    mock directory and store it was wired with

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any project import: get_settings() refuses to
start without MOODLE_URL / MOODLE_TOKEN, and api/main.py reads the allowed
hosts and the login rate limit at import time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

# CRITICAL: Set these before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("MOODLE_URL", "https://moodle.test")
os.environ.setdefault("MOODLE_TOKEN", "admin-token")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.orchestrator import AuthOrchestrator
from auth.roles import RoleAuthority
from auth.store import LocalUserStore
from auth.tokens import SessionTokenCodec
from directory.client import RemoteDirectoryClient

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"


# ---------------------------------------------------------------------------
# Remote directory fixtures
# ---------------------------------------------------------------------------


def site_info(user_id: int = 42, username: str = "alice", *, admin: bool = False) -> dict:
    """A core_webservice_get_site_info body for one user."""
    return {
        "sitename": "Test Moodle",
        "userid": user_id,
        "username": username,
        "firstname": username.capitalize(),
        "lastname": "Tester",
        "fullname": f"{username.capitalize()} Tester",
        "userissiteadmin": admin,
    }


@pytest.fixture
def make_site_info():
    """Factory fixture for site-info bodies: make_site_info(7, "bob", admin=True)."""
    return site_info


def make_directory() -> MagicMock:
    """Mock directory whose happy path logs alice (id 42) in as a student."""
    directory = MagicMock(spec=RemoteDirectoryClient)
    directory.exchange_credentials.return_value = "remote-token-abc"
    directory.get_site_info.return_value = site_info()
    directory.create_user.return_value = 42
    directory.assign_role.return_value = None
    directory.get_courses.return_value = []
    directory.get_user_by_id.return_value = None
    return directory


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(prefix: str = "users") -> LocalUserStore:
    """Create a LocalUserStore on a fresh named shared-memory SQLite DB."""
    return LocalUserStore(f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


@pytest.fixture
def store() -> Generator[LocalUserStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def directory() -> MagicMock:
    return make_directory()


@pytest.fixture
def codec() -> SessionTokenCodec:
    return SessionTokenCodec(TEST_SECRET, expire_seconds=3600)


@pytest.fixture
def orchestrator(directory, store, codec) -> AuthOrchestrator:
    return AuthOrchestrator(directory, store, codec, RoleAuthority(teacher_role_id=3))


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    directory: MagicMock
    store: LocalUserStore
    codec: SessionTokenCodec


def _patch_lifespan(directory: MagicMock, store: LocalUserStore, codec: SessionTokenCodec):
    """Return an async context manager that replaces the real lifespan.

    Wires the mock directory and the test store into app.state so route
    handlers never open a real network connection or the production DB.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.directory = directory
        app.state.user_store = store
        app.state.codec = codec
        app.state.roles = RoleAuthority(teacher_role_id=3)
        app.state.orchestrator = AuthOrchestrator(directory, store, codec, app.state.roles)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def _api_harness() -> Generator[ApiHarness, None, None]:
    """One TestClient per test module for speed."""
    directory = make_directory()
    store = make_store("api")
    codec = SessionTokenCodec(TEST_SECRET, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(directory, store, codec)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, directory=directory, store=store, codec=codec)

    store.close()


@pytest.fixture
def api_client(_api_harness: ApiHarness) -> ApiHarness:
    """Module-scoped client with the mock directory reset to its happy path before each test."""
    fresh = make_directory()
    _api_harness.directory.reset_mock(return_value=True, side_effect=True)
    for name in ("exchange_credentials", "get_site_info", "create_user", "assign_role", "get_courses", "get_user_by_id"):
        getattr(_api_harness.directory, name).return_value = getattr(fresh, name).return_value
    return _api_harness
