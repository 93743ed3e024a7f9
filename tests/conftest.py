"""
tests/conftest.py -- Shared test fixtures for ITAM access integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for users + activities
  - _patch_lifespan(): wires test stores and the authorization core into
    app.state through api.main.init_state(), bypassing real startup
  - api_client: TestClient with an admin JWT for API integration tests
  - rbac_client: TestClient plus one JWT per seed role, for guard tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from activity.store import ActivityStore
from api.limiter import limiter
from api.main import app, init_state
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.config import get_settings

TEST_PASSWORD = "testpass123"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, ActivityStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'rbac').
    """
    users_url = f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true"
    activity_url = f"sqlite:///file:test_activity_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=users_url), ActivityStore(db_url=activity_url)


def _patch_lifespan(user_store: UserStore, activity_store: ActivityStore):
    """Return an async context manager that replaces the real lifespan.

    Uses the same init_state() as production so the write listeners and the
    membership consumer task are wired exactly as they are at runtime.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, user_store, activity_store, get_settings())
        app.state.membership.recompute_user_counts()
        app.state.membership_task = asyncio.create_task(app.state.membership.run())
        yield
        app.state.membership_task.cancel()

    return test_lifespan


def _create_user(store: UserStore, username: str, is_admin: bool = False, role_id: int | None = None) -> int:
    return store.create_user(
        User(
            username=username,
            hashed_password=hash_password(TEST_PASSWORD),
            is_admin=is_admin,
            role_id=role_id,
        )
    )


def _token(uid: int, username: str) -> str:
    return create_access_token(user_id=uid, username=username, expire_seconds=3600)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The admin user is created first, so it is user 1 (the protected
    bootstrap account). Its username is "testadmin", password TEST_PASSWORD.
    """
    limiter.reset()
    user_store, activity_store = _make_test_stores(f"api_{uuid.uuid4().hex}")

    uid = _create_user(user_store, "testadmin", is_admin=True)
    token = _token(uid, "testadmin")

    app.router.lifespan_context = _patch_lifespan(user_store, activity_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid

    user_store.close()
    activity_store.close()


@pytest.fixture(scope="module")
def rbac_client() -> Generator[tuple[TestClient, dict[str, str], dict[str, int], UserStore], None, None]:
    """Yield (client, tokens, user_ids, user_store) with one user per seed identity.

    Keys in tokens / user_ids:
      admin          -- is_admin=True
      asset_manager  -- role 2
      user_manager   -- role 3
      read_only      -- role 4
      unassigned     -- no admin flag, no role (default permissions)
    """
    limiter.reset()
    user_store, activity_store = _make_test_stores(f"rbac_{uuid.uuid4().hex}")

    identities = {
        "admin": (True, None),
        "asset_manager": (False, 2),
        "user_manager": (False, 3),
        "read_only": (False, 4),
        "unassigned": (False, None),
    }
    user_ids: dict[str, int] = {}
    tokens: dict[str, str] = {}
    for name, (is_admin, role_id) in identities.items():
        user_ids[name] = _create_user(user_store, name, is_admin=is_admin, role_id=role_id)
        tokens[name] = _token(user_ids[name], name)

    app.router.lifespan_context = _patch_lifespan(user_store, activity_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, tokens, user_ids, user_store

    user_store.close()
    activity_store.close()


@pytest.fixture
def memory_user_store() -> Generator[UserStore, None, None]:
    """A fresh UserStore on a shared-memory DB unique to the requesting test."""
    store = UserStore(db_url=f"sqlite:///file:test_unit_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield store
    store.close()
