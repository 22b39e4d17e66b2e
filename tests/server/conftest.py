"""API fixtures: an in-process broadcaster and an HTTP client wired to the app.

The seeded tenants (``seed``) come from the root conftest.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.server.app import app
from taskflow.server.broadcast.local import LocalBroadcaster
from taskflow.server.deps import get_db


@pytest.fixture
def broadcaster() -> LocalBroadcaster:
    return LocalBroadcaster()


@pytest.fixture
async def client(db_session: AsyncSession, broadcaster: LocalBroadcaster) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to the app with a test DB session.

    Overrides ``get_db`` so every request uses the savepoint-isolated
    ``db_session`` fixture from the root conftest.  The app lifespan does
    NOT run under ``ASGITransport``, so state fields are pre-set here.
    """

    async def _override_get_db() -> AsyncIterator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    # Pre-set state fields (lifespan does not run under ASGITransport).
    app.state.auth_token = None
    app.state.db_engine = None
    app.state.db_session_factory = None
    app.state.redis = None
    app.state.broadcaster = broadcaster

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
