"""
Account events and their publisher.

Events are published on a Redis pub/sub channel for downstream workers
(newsletter signup, analytics). Publishing is fire-and-forget from the
caller's point of view: the account state is already committed when an
event is emitted, and a failed publish never rolls it back.

Wire format on the channel (JSON):
    {"subject": "WalletCreated::0xabc...", "message": {...}, "timestamp": "..."}
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from account_service.core.redis_client import get_redis_client

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of account events"""
    WALLET_CREATED = "WalletCreated"


@dataclass
class Event:
    """Account event"""
    event_type: EventType
    entity_id: str  # wallet address for wallet events
    payload: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def subject(self) -> str:
        return f"{self.event_type.value}::{self.entity_id}"


class EventBuilder:
    """Builds events with the payload keys downstream workers expect."""

    @staticmethod
    def wallet_created(account_id: str, email: Optional[str], signer_addr: str) -> Event:
        return Event(
            event_type=EventType.WALLET_CREATED,
            entity_id=signer_addr,
            payload={
                "accountId": account_id,
                "email": email,
                "signerAddr": signer_addr,
            },
        )


class RedisPublisher:
    """
    Publishes events on a Redis channel.

    Args:
        channel: Pub/sub channel name
        client_factory: Coroutine returning a redis client or None
            (defaults to the shared singleton)
    """

    def __init__(
        self,
        channel: str,
        client_factory: Callable[[], Awaitable[Any]] = get_redis_client,
    ):
        self.channel = channel
        self._client_factory = client_factory

    async def publish(self, subject: str, payload: Dict[str, Any]) -> bool:
        """
        Publish one message.

        Returns:
            True if published, False if Redis is not configured

        Raises:
            redis.RedisError: transport failure
        """
        client = await self._client_factory()
        if client is None:
            logger.warning(f"EVENT_NOT_PUBLISHED [subject={subject}, reason=redis_not_configured]")
            return False

        message = json.dumps({
            "subject": subject,
            "message": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        receivers = await client.publish(self.channel, message)
        logger.info(f"EVENT_PUBLISHED [subject={subject}, channel={self.channel}, receivers={receivers}]")
        return True
