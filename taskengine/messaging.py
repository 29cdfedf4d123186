# taskengine/messaging.py
"""
Outbound messaging queue.

The engine only enqueues; delivery (SMS/email/chat) is handled by whatever
consumes the queue. Two backends:

  - DatabaseMessageQueue: inserts into outbound_messages with
    delivery_status "pending" (default)
  - RedisMessageQueue: LPUSHes a JSON document onto a Redis list
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from sqlalchemy.orm import sessionmaker

from taskengine.models import SessionLocal, OutboundMessage

logger = logging.getLogger("taskengine.messaging")


@dataclass
class OutboundMessageRequest:
    """Message to enqueue for delivery through a webhook channel"""
    webhook_id: int
    user_id: int
    message_type: str  # notification | reminder | task_update
    content: str
    recipient: str = "owner"
    task_id: Optional[int] = None
    conversation_id: Optional[int] = None
    scheduled_for: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["scheduled_for"] = self.scheduled_for.isoformat() if self.scheduled_for else None
        return data


class MessageQueue(ABC):
    """Outbound messaging contract"""

    @abstractmethod
    async def enqueue(self, message: OutboundMessageRequest) -> Dict[str, Any]:
        """Queue a message; returns a reference to the queued entry"""


class DatabaseMessageQueue(MessageQueue):
    """Queue backed by the outbound_messages table"""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    async def enqueue(self, message: OutboundMessageRequest) -> Dict[str, Any]:
        db = self._session_factory()
        try:
            row = OutboundMessage(
                webhook_id=message.webhook_id,
                user_id=message.user_id,
                task_id=message.task_id,
                conversation_id=message.conversation_id,
                message_type=message.message_type,
                content=message.content,
                recipient_identifier=message.recipient,
                delivery_status="pending",
                scheduled_for=message.scheduled_for,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            f"Outbound message queued | message_id={row.id} | type={message.message_type} | "
            f"task_id={message.task_id} | webhook_id={message.webhook_id}"
        )
        return {"message_id": row.id, "delivery_status": "pending"}


class RedisMessageQueue(MessageQueue):
    """Queue backed by a Redis list (consumers BRPOP from the other end)"""

    def __init__(self, client: aioredis.Redis, queue_key: str = "outbound_messages"):
        self._client = client
        self._queue_key = queue_key

    async def enqueue(self, message: OutboundMessageRequest) -> Dict[str, Any]:
        payload = message.to_dict()
        payload["delivery_status"] = "pending"
        payload["queued_at"] = datetime.utcnow().isoformat()

        queue_length = await self._client.lpush(self._queue_key, json.dumps(payload))

        logger.info(
            f"Outbound message pushed to Redis | key={self._queue_key} | type={message.message_type} | "
            f"task_id={message.task_id} | queue_length={queue_length}"
        )
        return {"queue": self._queue_key, "queue_length": queue_length, "delivery_status": "pending"}


def build_message_queue(settings, session_factory: sessionmaker = SessionLocal) -> MessageQueue:
    """Create the configured outbound messaging backend"""
    backend = settings.MESSAGE_QUEUE_BACKEND.lower()
    if backend == "redis":
        client = aioredis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        return RedisMessageQueue(client, settings.OUTBOUND_QUEUE_KEY)
    if backend == "database":
        return DatabaseMessageQueue(session_factory)
    raise ValueError(f"Unknown MESSAGE_QUEUE_BACKEND: {settings.MESSAGE_QUEUE_BACKEND}")
