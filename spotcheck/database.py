from typing import Optional
import logging
from pathlib import Path
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.engine import make_url
from spotcheck.settings import settings
from urllib.parse import urlparse, urlunparse, parse_qs
import os

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url or os.environ.get("DATABASE_URL")

# Created by init_engine() so a missing DATABASE_URL doesn't fail at import time
# inside uvicorn's reloader children.
engine = None  # type: Optional[object]
AsyncSessionLocal: Optional[async_sessionmaker] = None


def _normalize_db_url(raw_url: str) -> (str, dict):
    """Normalize a raw DATABASE_URL for SQLAlchemy async drivers and extract connect_args."""
    _parsed = urlparse(raw_url)
    _scheme = _parsed.scheme

    if _scheme in ("sqlite", "sqlite+aiosqlite"):
        # Swap the scheme only; urlunparse can drop the empty netloc of sqlite:////abs/path.
        return "sqlite+aiosqlite" + raw_url[len(_scheme):], {}

    _query = parse_qs(_parsed.query or "")
    _use_ssl = False
    if "sslmode" in _query:
        sslmode_val = _query.get("sslmode", [""])[0].lower()
        # treat any non-disable value as requiring SSL
        if sslmode_val and sslmode_val != "disable":
            _use_ssl = True

    if _scheme in ("postgres", "postgresql"):
        _scheme = "postgresql+asyncpg"

    _clean_parsed = _parsed._replace(scheme=_scheme, query="")
    CLEAN_DATABASE_URL = urlunparse(_clean_parsed)
    _connect_args = {"ssl": "require"} if _use_ssl else {}
    return CLEAN_DATABASE_URL, _connect_args


def _ensure_sqlite_dir(url: str) -> None:
    parsed = make_url(url)
    if parsed.database and parsed.database != ":memory:":
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the async engine and session factory.
    Call this during application startup (FastAPI lifespan) rather than at import.
    """
    global engine, AsyncSessionLocal, DATABASE_URL

    DATABASE_URL = database_url or DATABASE_URL or settings.database_url
    if not DATABASE_URL:
        raise ValueError("DATABASE_URL is required to initialize the database engine")

    CLEAN_DATABASE_URL, _connect_args = _normalize_db_url(DATABASE_URL)

    _connect_kwargs = {
        "echo": False,
        "future": True,
        "pool_pre_ping": True,
    }
    if CLEAN_DATABASE_URL.startswith("sqlite"):
        _ensure_sqlite_dir(CLEAN_DATABASE_URL)
    else:
        _connect_kwargs.update({"pool_size": 5, "max_overflow": 10, "pool_timeout": 30})

    if _connect_args:
        engine = create_async_engine(CLEAN_DATABASE_URL, connect_args=_connect_args, **_connect_kwargs)
    else:
        engine = create_async_engine(CLEAN_DATABASE_URL, **_connect_kwargs)

    AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    logger.info(f"Database engine initialized with driver {getattr(engine.dialect, 'driver', None)}")
    return engine


async def create_schema() -> None:
    """Create all tables from the models (development / SQLite deployments)."""
    from spotcheck.models import Base

    if engine is None:
        raise RuntimeError("Database engine is not initialized. Call init_engine() first.")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global engine, AsyncSessionLocal
    if engine is not None:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None


async def get_db():
    """
    FastAPI dependency that yields an async DB session.
    init_engine() must have been called before this is used.
    """
    if AsyncSessionLocal is None:
        raise RuntimeError("Database engine is not initialized. Call init_engine() during application startup.")
    async with AsyncSessionLocal() as session:
        yield session
