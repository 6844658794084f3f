"""
Base service class for the ladder operations layer.

Provides the shared collaborators (database, repositories, permission
oracle, event dispatcher) and the bounded optimistic-concurrency retry used
by every mutating operation.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ladder.config import Config
from ladder.database.database import Database
from ladder.database.models import Ladder
from ladder.database.repositories import (
    LadderRepository, MemberRepository, ChallengeRepository, ChallengeHistoryStore
)
from ladder.services.access import PermissionOracle, ViewerContext
from ladder.services.events import EventDispatcher
from ladder.utils.exceptions import ConflictError, NotFoundError
from ladder.utils.logger import setup_logger

logger = setup_logger(__name__)


class BaseService:
    """Base class for ladder services with retry and ladder lookup helpers."""

    def __init__(
        self,
        db: Database,
        oracle: PermissionOracle,
        dispatcher: Optional[EventDispatcher] = None,
        max_retries: Optional[int] = None
    ):
        self.db = db
        self.oracle = oracle
        self.dispatcher = dispatcher or EventDispatcher()
        self.max_retries = max_retries or Config.OPTIMISTIC_RETRY_ATTEMPTS
        self.ladders = LadderRepository()
        self.members = MemberRepository()
        self.challenges = ChallengeRepository()
        self.history = ChallengeHistoryStore()
        self.logger = setup_logger(self.__class__.__module__)

    async def execute_with_retry(self, func: Callable[[], Awaitable[Any]], max_retries: Optional[int] = None) -> Any:
        """Execute a function, retrying only when it loses an optimistic-concurrency race."""
        attempts = max_retries or self.max_retries
        for attempt in range(attempts):
            try:
                return await func()
            except ConflictError as e:
                if attempt == attempts - 1:
                    logger.error(f"Giving up after {attempts} attempts: {e}")
                    raise
                logger.warning(f"Retry attempt {attempt + 1} for {getattr(func, '__name__', 'operation')}: {e}")
                await asyncio.sleep(0.05 * (2 ** attempt))  # Exponential backoff

    async def _load_ladder(self, session: AsyncSession, ladder_id: str) -> Ladder:
        ladder = await self.ladders.get_by_id(session, ladder_id) if ladder_id else None
        if ladder is None:
            raise NotFoundError("Ladder", ladder_id)
        return ladder

    async def _bump_version(self, session: AsyncSession, ladder: Ladder, patch: Optional[dict] = None) -> Ladder:
        """Compare-and-swap the ladder version read at the start of the operation."""
        expected_version = ladder.version
        updated = await self.ladders.update(session, ladder.id, patch or {}, expected_version=expected_version)
        if updated is None:
            logger.warning(f"Optimistic concurrency conflict on ladder {ladder.id} at version {expected_version}")
            raise ConflictError(ladder.id, expected_version)
        return updated

    async def _resolve_viewer(self, ladder: Ladder, user_id: Optional[str]) -> ViewerContext:
        return await self.oracle.resolve_viewer(ladder.capsule_id, user_id)
