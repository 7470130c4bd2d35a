from pathlib import Path
from typing import Optional
import os

# Load the repository .env early so uvicorn reload children see it during import.
REPO_ROOT = Path(__file__).resolve().parent.parent
_env_path = REPO_ROOT / ".env"

from dotenv import load_dotenv

load_dotenv(dotenv_path=_env_path, override=False)

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(REPO_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = f"sqlite+aiosqlite:///{REPO_ROOT / 'data' / 'spotcheck.sqlite3'}"
    auto_create_schema: bool = True

    # Redis (parent notification stream)
    redis_url: str = "redis://localhost:6379"
    require_redis: bool = False
    notification_stream_name: str = "spotcheck:notifications"
    notification_consumer_group: str = "push-1"
    notification_maxlen: int = 100_000

    # Parent / admin auth
    admin_token: Optional[str] = None
    session_jwt_secret: Optional[str] = None
    session_jwt_algorithm: str = "HS256"
    session_jwt_expiration_days: int = 30

    # Device auth
    max_skew_ms: int = 5 * 60 * 1000

    # Policy evaluation
    default_timezone: str = "Europe/Paris"
    default_gap_ms: int = 2 * 60 * 60 * 1000
    heartbeat_dedupe_ms: int = 60_000

    # API
    api_base_path: str = "/api"
    extra_time_rate_limit: str = "10/minute"
    pairing_rate_limit: str = "20/minute"

    log_level: str = "INFO"


settings = Settings()

if os.environ.get("SPOTCHECK_DEBUG_SETTINGS") == "1":
    # Never print the URL itself; it may carry credentials.
    print(
        f"[settings] REPO_ROOT={REPO_ROOT}, .env_exists={_env_path.exists()}, "
        f"DATABASE_URL_present={'yes' if os.environ.get('DATABASE_URL') else 'no'}"
    )
