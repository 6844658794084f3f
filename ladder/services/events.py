"""
Ladder event delivery.

Challenge creation and resolution are announced to an EventSink after the
transaction commits. Delivery is fire-and-forget: the EventDispatcher
schedules each publish as an asyncio task and only logs failures, so a slow
or broken sink can never delay or fail a ladder operation.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Set

from ladder.config import Config
from ladder.database.models import utcnow
from ladder.utils.logger import setup_logger

logger = setup_logger(__name__)

CHALLENGE_CREATED = "challenge.created"
CHALLENGE_RESOLVED = "challenge.resolved"
CHALLENGE_VOIDED = "challenge.voided"


@dataclass(frozen=True)
class LadderEvent:
    """Notification payload for a ladder state change."""
    type: str
    ladder_id: str
    capsule_id: str
    actor_id: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_json(self) -> str:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        return json.dumps(data, default=str)


class EventSink(ABC):
    """Receives ladder events for a recipient (usually the ladder owner)."""

    @abstractmethod
    async def publish(self, owner_id: str, event: LadderEvent) -> None:
        pass


class LoggingEventSink(EventSink):
    """Writes events to the log; the default when no broker is configured."""

    async def publish(self, owner_id, event):
        logger.info(f"Ladder event {event.type} for {owner_id}: ladder={event.ladder_id}")


class RedisEventSink(EventSink):
    """Publishes events as JSON on a per-owner Redis pub/sub channel."""

    def __init__(self, client, channel_prefix: Optional[str] = None):
        self.client = client
        self.channel_prefix = channel_prefix or Config.EVENT_CHANNEL_PREFIX

    def channel_for(self, owner_id: str) -> str:
        return f"{self.channel_prefix}:{owner_id}"

    async def publish(self, owner_id, event):
        await self.client.publish(self.channel_for(owner_id), event.to_json())


class EventDispatcher:
    """Non-blocking hand-off from the operations layer to an EventSink."""

    def __init__(self, sink: Optional[EventSink] = None):
        self.sink = sink or LoggingEventSink()
        self._tasks: Set[asyncio.Task] = set()

    def dispatch(self, owner_id: Optional[str], event: LadderEvent) -> Optional[asyncio.Task]:
        """Schedule delivery and return immediately."""
        if not owner_id:
            logger.debug(f"Skipping {event.type} for ladder {event.ladder_id}: no recipient")
            return None
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(owner_id, event))
        except RuntimeError as e:
            logger.warning(f"Could not schedule {event.type} for ladder {event.ladder_id}: {e}")
            return None
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, owner_id: str, event: LadderEvent) -> None:
        try:
            await self.sink.publish(owner_id, event)
        except Exception as e:
            logger.error(f"Event sink failed for {event.type} on ladder {event.ladder_id}: {e}")

    async def drain(self) -> None:
        """Wait for outstanding deliveries (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
