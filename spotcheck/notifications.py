"""Parent push notifications: enqueue side.

Request handlers only put a message on the Redis stream; ``processor.worker``
resolves the parent's push tokens and delivers. Enqueue never raises into the
request that triggered it.
"""

import json
import logging
from typing import Any, Dict, Optional

from spotcheck.clock import now_ms
from spotcheck.metrics import metrics
from spotcheck.redis_client import RedisClient, redis_client

logger = logging.getLogger(__name__)

EXTRA_TIME_REQUEST = "extra_time_request"


def extra_time_request_message(
    parent_id: str,
    device_id: str,
    device_name: str,
    request_id: str,
    requested_minutes: int,
    reason: Optional[str],
) -> Dict[str, Any]:
    return {
        "type": EXTRA_TIME_REQUEST,
        "parent_id": parent_id,
        "device_id": device_id,
        "request_id": request_id,
        "title": "Extra time requested",
        "body": f"{device_name} requested {requested_minutes} more mins",
        "data_json": json.dumps(
            {
                "type": EXTRA_TIME_REQUEST,
                "deviceId": device_id,
                "requestId": request_id,
                "requestedMinutes": int(requested_minutes),
                "reason": reason or "",
            }
        ),
        "ts": now_ms(),
    }


def enqueue_parent_notification(message: Dict[str, Any], client: Optional[RedisClient] = None) -> bool:
    """Best-effort XADD; meant for ``BackgroundTasks``."""
    client = client or redis_client
    try:
        message_id = client.enqueue(message)
    except Exception:
        logger.exception("Notification enqueue crashed (type=%s)", message.get("type"))
        message_id = None
    if message_id is None:
        metrics.increment("notification_enqueue_errors")
        logger.warning(
            "Dropped %s notification for parent %s (redis unavailable)",
            message.get("type"),
            message.get("parent_id"),
        )
        return False
    metrics.increment("notifications_enqueued")
    logger.info("Enqueued %s notification %s", message.get("type"), message_id)
    return True
