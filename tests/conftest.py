import os
import tempfile
from datetime import datetime
from zoneinfo import ZoneInfo

# Settings are read at import time; pin them before any spotcheck module loads.
_TMP_DIR = tempfile.mkdtemp(prefix="spotcheck-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/spotcheck.sqlite3"
os.environ["REDIS_URL"] = ""
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["SESSION_JWT_SECRET"] = "test-session-secret"
os.environ["AUTO_CREATE_SCHEMA"] = "true"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from spotcheck import models

PARIS = "Europe/Paris"


def paris_ms(year, month, day, hour, minute):
    """Epoch ms for a wall-clock time in Paris."""
    return int(datetime(year, month, day, hour, minute, tzinfo=ZoneInfo(PARIS)).timestamp() * 1000)


# 2024-01-01 is a Monday.
MONDAY_2330 = paris_ms(2024, 1, 1, 23, 30)
MONDAY_1200 = paris_ms(2024, 1, 1, 12, 0)


def _make_engine():
    return create_async_engine("sqlite+aiosqlite:///:memory:", future=True)


@pytest_asyncio.fixture
async def session():
    engine = _make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)

    Session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async with Session() as sess:
        yield sess

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Sessions on separate connections to one SQLite file, for concurrent writers."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'concurrent.sqlite3'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    await engine.dispose()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from spotcheck.limits import limiter
    from spotcheck.main import app

    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
