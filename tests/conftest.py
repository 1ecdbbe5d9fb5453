import os
import tempfile

# Must be set before shortlinks.config is imported
_TEST_DB_DIR = tempfile.mkdtemp(prefix="shortlinks-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/test.db"
os.environ["REDIS_URL"] = ""
os.environ["GEO_LOOKUP_ENABLED"] = "false"

import pytest
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport
from shortlinks.main import app
from shortlinks.database import AsyncSessionLocal, Base, engine
from shortlinks.services.clicks import ClickRecorder
from shortlinks.services.geo import CountryResolver, HeaderCountryStrategy
from shortlinks.services.rate_limiter import SlidingWindowRateLimiter

@pytest.fixture
async def db_schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Pooled aiosqlite connections must not outlive the test's event loop
    await engine.dispose()

@pytest.fixture
async def session_factory(db_schema):
    return AsyncSessionLocal

@pytest.fixture
def click_recorder() -> ClickRecorder:
    # Header-only resolution: tests never reach the network
    return ClickRecorder(AsyncSessionLocal, CountryResolver([HeaderCountryStrategy()]))

@pytest.fixture
async def client(db_schema, click_recorder) -> AsyncGenerator[AsyncClient, None]:
    # ASGITransport does not run the lifespan, so wire app state here
    app.state.rate_limiter = SlidingWindowRateLimiter(10, 60)
    app.state.click_recorder = click_recorder

    async with ASGITransport(app=app) as transport:
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
