import logging
import time
from typing import Any, Dict, Optional

import redis

from spotcheck.metrics import metrics
from spotcheck.settings import settings

logger = logging.getLogger(__name__)

RECONNECT_INTERVAL_SECONDS = 30


class RedisClient:
    """Producer side of the parent-notification stream.

    Connection is lazy: the API keeps serving when Redis is down, and enqueue
    attempts retry the connection at most every ``RECONNECT_INTERVAL_SECONDS``.
    """

    def __init__(self, url: Optional[str] = None):
        self.url = settings.redis_url if url is None else url
        self.client: Optional[redis.Redis] = None
        self.is_redis_available = False
        self._last_attempt = 0.0

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def connect(self) -> bool:
        if not self.enabled:
            return False
        self._last_attempt = time.monotonic()
        try:
            client = redis.from_url(
                self.url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            client.ping()
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self.client = None
            self.is_redis_available = False
            metrics.increment("redis_connection_errors")
            if settings.require_redis:
                logger.error("REQUIRE_REDIS is enabled and Redis is unreachable")
            return False
        self.client = client
        self.is_redis_available = True
        logger.info("Connected to Redis successfully")
        return True

    def _ensure_connected(self) -> bool:
        if self.is_redis_available and self.client is not None:
            return True
        if self._last_attempt and time.monotonic() - self._last_attempt < RECONNECT_INTERVAL_SECONDS:
            return False
        return self.connect()

    def enqueue(self, fields: Dict[str, Any]) -> Optional[str]:
        """XADD one message to the notification stream; returns the id or None."""
        if not self._ensure_connected():
            return None
        try:
            return self.client.xadd(
                settings.notification_stream_name,
                fields,
                maxlen=settings.notification_maxlen,
                approximate=True,
            )
        except redis.RedisError as e:
            logger.error(f"Failed to enqueue notification: {e}")
            self.is_redis_available = False
            return None

    def is_available(self) -> bool:
        return self.is_redis_available and self.client is not None

    def get_connection_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "connected": self.is_available(),
            "require_redis": settings.require_redis,
        }

    def get_stream_info(self) -> Dict[str, Any]:
        if not self.is_available():
            return {"length": 0, "groups": 0, "error": "redis_unavailable"}
        try:
            info = self.client.xinfo_stream(settings.notification_stream_name)
        except redis.ResponseError:
            # Stream not created yet.
            return {"length": 0, "groups": 0}
        except redis.RedisError as e:
            logger.error(f"Failed to get stream info: {e}")
            return {"length": 0, "groups": 0, "error": str(e)}
        return {"length": info.get("length", 0), "groups": info.get("groups", 0)}

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
        self.client = None
        self.is_redis_available = False


redis_client = RedisClient()
