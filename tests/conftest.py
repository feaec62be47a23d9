"""Shared fixtures for HTTP tests against the cycle ledger app."""

from collections.abc import AsyncIterator
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from src.cl_common.database import get_db_session
from src.main import app


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    """ASGI client with no database behind it; dependency overrides are reset on teardown."""

    async def mock_session():
        yield AsyncMock()

    app.dependency_overrides[get_db_session] = mock_session
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
