#!/usr/bin/env python3
"""
SpotCheck notification worker
Consumes parent notifications from the Redis stream and delivers them to every
push token the parent has registered. Invalid tokens are pruned.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import redis
from sqlalchemy.ext.asyncio import AsyncSession

from spotcheck import crud, database
from spotcheck.clock import now_ms
from spotcheck.metrics import metrics
from spotcheck.settings import settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Push gateways answer these for tokens that will never work again.
PRUNE_STATUSES = (400, 410)


@dataclass(frozen=True)
class PushResult:
    ok: bool
    status: Optional[int] = None
    reason: Optional[str] = None


class PushSender(Protocol):
    async def send(self, token: str, title: str, body: str, data: Dict[str, Any]) -> PushResult: ...


class LoggingPushSender:
    """Default sender: records the notification instead of calling a push gateway."""

    async def send(self, token: str, title: str, body: str, data: Dict[str, Any]) -> PushResult:
        logger.info("push -> ...%s: %s | %s", token[-8:], title, body)
        return PushResult(ok=True, status=200)


@dataclass
class DeliverySummary:
    delivered: int = 0
    pruned: int = 0
    failed: int = 0


async def deliver(db: AsyncSession, sender: PushSender, fields: Dict[str, Any]) -> DeliverySummary:
    """Send one stream message to all of the parent's tokens."""
    summary = DeliverySummary()
    parent_id = fields.get("parent_id")
    tokens = await crud.list_parent_push_tokens(db, parent_id) if parent_id else []
    if not tokens:
        logger.info("No push tokens for parent %s; skipping %s", parent_id, fields.get("type"))
        return summary

    try:
        data = json.loads(fields.get("data_json") or "{}")
    except json.JSONDecodeError:
        data = {}
    title = fields.get("title") or ""
    body = fields.get("body") or ""

    for token in tokens:
        try:
            result = await sender.send(token, title, body, data)
        except Exception as e:
            # Keep trying the remaining tokens.
            logger.warning(f"Push to ...{token[-8:]} raised: {e}")
            summary.failed += 1
            continue

        if result.ok:
            summary.delivered += 1
            await crud.mark_push_token_used(db, token, now_ms())
        elif result.status in PRUNE_STATUSES:
            summary.pruned += 1
            await crud.delete_push_token(db, token)
            logger.info("Pruned push token ...%s (status=%s reason=%s)", token[-8:], result.status, result.reason)
        else:
            summary.failed += 1
            logger.warning("Push to ...%s failed (status=%s reason=%s)", token[-8:], result.status, result.reason)
    return summary


class NotificationProcessor:
    def __init__(self, sender: Optional[PushSender] = None):
        self.redis_client = None
        self.sender = sender or LoggingPushSender()
        self.consumer_name = f"push-{int(time.time())}"
        self.running = True

    async def connect(self):
        """Connect to Redis and the database"""
        self.redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            retry_on_timeout=True
        )
        self.redis_client.ping()
        logger.info("Connected to Redis successfully")

        try:
            self.redis_client.xgroup_create(
                settings.notification_stream_name,
                settings.notification_consumer_group,
                id='0',
                mkstream=True
            )
            logger.info(f"Created consumer group: {settings.notification_consumer_group}")
        except redis.RedisError as e:
            if "BUSYGROUP" not in str(e):
                raise

        database.init_engine()

    async def process_message(self, message_id: str, fields: Dict[str, Any]) -> bool:
        if not fields.get("parent_id") or not fields.get("type"):
            logger.warning(f"Invalid message {message_id}: missing parent_id or type")
            metrics.increment("notifications_dropped", labels={"reason": "invalid_format"})
            # Nothing to retry.
            return True

        async with database.AsyncSessionLocal() as db:
            summary = await deliver(db, self.sender, fields)
        metrics.increment("notifications_delivered", summary.delivered)
        logger.info(
            f"Processed {message_id} ({fields.get('type')}): "
            f"{summary.delivered} delivered, {summary.pruned} pruned, {summary.failed} failed"
        )
        return True

    async def run(self):
        """Main processing loop"""
        await self.connect()
        logger.info(f"Starting notification worker with consumer: {self.consumer_name}")

        while self.running:
            try:
                messages = self.redis_client.xreadgroup(
                    settings.notification_consumer_group,
                    self.consumer_name,
                    {settings.notification_stream_name: '>'},
                    count=10,
                    block=1000
                )
                if not messages:
                    continue

                for _stream, stream_messages in messages:
                    for message_id, fields in stream_messages:
                        started = time.time()
                        try:
                            if await self.process_message(message_id, fields):
                                self.redis_client.xack(
                                    settings.notification_stream_name,
                                    settings.notification_consumer_group,
                                    message_id
                                )
                                metrics.observe("notification_latency_ms", (time.time() - started) * 1000)
                        except Exception as e:
                            # Left pending; redelivered after a restart.
                            logger.error(f"Error processing message {message_id}: {e}")
                            metrics.increment("notifications_dropped", labels={"reason": "exception"})
            except redis.RedisError as e:
                logger.error(f"Error in processing loop: {e}")
                await asyncio.sleep(5)

    async def shutdown(self):
        """Graceful shutdown"""
        logger.info("Shutting down notification worker...")
        self.running = False
        await database.dispose_engine()
        if self.redis_client:
            self.redis_client.close()


async def main():
    processor = NotificationProcessor()
    try:
        await processor.run()
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    finally:
        await processor.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
