"""API test fixtures.

The real application is used; its state gets the test context, so the
lifespan never builds a second one.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from arena.main import app
from arena.utils.security import create_access_token


@pytest_asyncio.fixture(scope="function")
async def test_client(context) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the test context."""
    app.state.context = context
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.state.context = None


@pytest.fixture
def auth_headers(test_settings):
    def make(user_id: str = "alice") -> dict[str, str]:
        token = create_access_token(user_id, test_settings)
        return {"Authorization": f"Bearer {token}"}

    return make


@pytest.fixture
def admin_headers(test_settings) -> dict[str, str]:
    return {"X-API-Key": test_settings.admin_api_key}


@pytest.fixture
def cron_headers(test_settings) -> dict[str, str]:
    return {"Authorization": f"Bearer {test_settings.cron_secret}"}
