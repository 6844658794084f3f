from typing import Optional

from ladder.config import Config
from ladder.database.database import Database
from ladder.operations.challenge_operations import ChallengeOperations
from ladder.operations.ladder_operations import LadderOperations
from ladder.operations.roster_operations import RosterOperations
from ladder.services.access import DatabasePermissionOracle, PermissionOracle
from ladder.services.events import EventDispatcher, EventSink, RedisEventSink
from ladder.utils.logger import setup_logger
from ladder.utils.redis_utils import RedisUtils


class LadderEngine:
    """
    Entry point for embedding the ladder engine.

    Usage:
        engine = LadderEngine()
        await engine.start()
        detail = await engine.ladders.create_ladder(owner_id, capsule_id, "Spring Ladder", publish=True)
        await engine.challenges.create_challenge(owner_id, detail.ladder.id, a_id, b_id)
        await engine.close()
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        oracle: Optional[PermissionOracle] = None,
        sink: Optional[EventSink] = None,
        use_redis: bool = False
    ):
        self.logger = setup_logger(__name__)
        self.db = Database(database_url)
        self.oracle = oracle or DatabasePermissionOracle(self.db)
        self.sink = sink
        self.use_redis = use_redis
        self.redis_client = None
        self.dispatcher: Optional[EventDispatcher] = None
        self.ladders: Optional[LadderOperations] = None
        self.roster: Optional[RosterOperations] = None
        self.challenges: Optional[ChallengeOperations] = None

    async def start(self):
        """Initialize storage, the event sink and the operations services"""
        self.logger.info("Starting ladder engine...")
        Config.validate()
        await self.db.initialize()

        if self.sink is None and self.use_redis:
            self.redis_client = await RedisUtils.create_redis_client()
            if self.redis_client is not None:
                self.sink = RedisEventSink(self.redis_client)
            else:
                self.logger.warning("Redis unavailable; ladder events will only be logged")

        self.dispatcher = EventDispatcher(self.sink)
        self.roster = RosterOperations(self.db, self.oracle, self.dispatcher)
        self.ladders = LadderOperations(self.db, self.oracle, self.dispatcher, roster=self.roster)
        self.challenges = ChallengeOperations(self.db, self.oracle, self.dispatcher)
        self.logger.info("Ladder engine ready")
        return self

    async def close(self):
        """Flush pending events and release connections"""
        if self.dispatcher is not None:
            await self.dispatcher.drain()
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
        await self.db.close()

    async def __aenter__(self):
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
