"""
Ladder State Store - repositories over the SQLAlchemy models

Pure data access for ladders, roster members, challenges and match history.
Every method takes the caller's AsyncSession so the operations layer can
compose several writes into one transaction (see Database.transaction()).

Storage failures are re-raised as DependencyFailureError carrying the
operation name; a lost optimistic-concurrency race is reported by
LadderRepository.update() returning None, never by an exception.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ladder.constants import LadderConstants, RatingConstants
from ladder.data_models.ladder import ChallengeStatus, MemberStatus
from ladder.database.models import (
    Ladder, LadderMember, LadderChallenge, LadderHistory, CapsuleMembership, utcnow
)
from ladder.utils.exceptions import DependencyFailureError
from ladder.utils.logger import setup_logger

logger = setup_logger(__name__)

# Member row keys accepted by insert/update (caller key -> model attribute)
_MEMBER_FIELDS = {
    "id": "id",
    "user_id": "user_id",
    "display_name": "display_name",
    "handle": "handle",
    "status": "status",
    "seed": "seed",
    "rank": "rank",
    "rating": "rating",
    "wins": "wins",
    "losses": "losses",
    "draws": "draws",
    "streak": "streak",
    "metadata": "member_metadata",
}


@asynccontextmanager
async def storage_errors(operation: str):
    """Wrap SQLAlchemy failures with the operation that was running."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Storage failure during {operation}: {e}")
        raise DependencyFailureError(operation, str(e)) from e


class LadderRepository:
    """CRUD for ladder records with a compare-and-swap version column."""

    async def get_by_id(self, session: AsyncSession, ladder_id: str) -> Optional[Ladder]:
        async with storage_errors("get capsule_ladder"):
            return await session.get(Ladder, ladder_id, populate_existing=True)

    async def get_by_slug(self, session: AsyncSession, capsule_id: str, slug: str) -> Optional[Ladder]:
        async with storage_errors("get capsule_ladder by slug"):
            result = await session.execute(
                select(Ladder).where(Ladder.capsule_id == capsule_id, Ladder.slug == slug)
            )
            return result.scalar_one_or_none()

    async def list_by_capsule(self, session: AsyncSession, capsule_id: str) -> List[Ladder]:
        async with storage_errors("list capsule_ladders"):
            result = await session.execute(
                select(Ladder)
                .where(Ladder.capsule_id == capsule_id)
                .order_by(Ladder.created_at.desc())
            )
            return list(result.scalars().all())

    async def insert(self, session: AsyncSession, **fields: Any) -> Ladder:
        async with storage_errors("insert capsule_ladder"):
            ladder = Ladder(**fields)
            session.add(ladder)
            await session.flush()
            return ladder

    async def update(
        self,
        session: AsyncSession,
        ladder_id: str,
        patch: Mapping[str, Any],
        expected_version: Optional[int] = None
    ) -> Optional[Ladder]:
        """
        Apply a patch and bump the version.

        With expected_version the write only lands if the stored version still
        matches; otherwise nothing is written and None is returned.
        """
        async with storage_errors("update capsule_ladder"):
            stmt = update(Ladder).where(Ladder.id == ladder_id)
            if expected_version is not None:
                stmt = stmt.where(Ladder.version == expected_version)
            stmt = stmt.values(
                **dict(patch),
                version=Ladder.version + 1,
                updated_at=utcnow()
            ).execution_options(synchronize_session=False)

            result = await session.execute(stmt)
            if result.rowcount == 0:
                return None
            return await session.get(Ladder, ladder_id, populate_existing=True)

    async def delete(self, session: AsyncSession, ladder_id: str) -> bool:
        async with storage_errors("delete capsule_ladder"):
            # Explicit child deletes; SQLite does not enforce ON DELETE CASCADE by default
            await session.execute(delete(LadderHistory).where(LadderHistory.ladder_id == ladder_id))
            await session.execute(delete(LadderChallenge).where(LadderChallenge.ladder_id == ladder_id))
            await session.execute(delete(LadderMember).where(LadderMember.ladder_id == ladder_id))
            result = await session.execute(delete(Ladder).where(Ladder.id == ladder_id))
            return result.rowcount > 0


class MemberRepository:
    """Roster storage, including the atomic replace-all used after resolutions."""

    async def list(self, session: AsyncSession, ladder_id: str) -> List[LadderMember]:
        async with storage_errors("list capsule_ladder_members"):
            result = await session.execute(
                select(LadderMember)
                .where(LadderMember.ladder_id == ladder_id)
                .order_by(LadderMember.rank.is_(None), LadderMember.rank, LadderMember.display_name)
                .execution_options(populate_existing=True)
            )
            return list(result.scalars().all())

    async def get_by_id(self, session: AsyncSession, ladder_id: str, member_id: str) -> Optional[LadderMember]:
        async with storage_errors("get capsule_ladder_member"):
            result = await session.execute(
                select(LadderMember).where(
                    LadderMember.ladder_id == ladder_id,
                    LadderMember.id == member_id
                )
            )
            return result.scalar_one_or_none()

    async def get_by_user(self, session: AsyncSession, ladder_id: str, user_id: str) -> Optional[LadderMember]:
        async with storage_errors("get capsule_ladder_member by user"):
            result = await session.execute(
                select(LadderMember).where(
                    LadderMember.ladder_id == ladder_id,
                    LadderMember.user_id == user_id
                )
            )
            return result.scalar_one_or_none()

    async def list_by_user(
        self,
        session: AsyncSession,
        user_id: str,
        limit: int = 50
    ) -> List[Tuple[LadderMember, Ladder]]:
        """Roster entries for one user across all ladders, newest first, with their ladder."""
        limit = min(max(limit, 1), LadderConstants.MAX_PARTICIPATION_LIMIT)
        async with storage_errors("list ladders by participant"):
            result = await session.execute(
                select(LadderMember, Ladder)
                .join(Ladder, LadderMember.ladder_id == Ladder.id)
                .where(LadderMember.user_id == user_id)
                .order_by(LadderMember.created_at.desc())
                .limit(limit)
            )
            return [(member, ladder) for member, ladder in result.all()]

    async def insert_many(
        self,
        session: AsyncSession,
        ladder_id: str,
        rows: Sequence[Mapping[str, Any]],
        initial_rating: int = RatingConstants.DEFAULT_INITIAL_RATING
    ) -> List[LadderMember]:
        async with storage_errors("insert capsule_ladder_members"):
            return await self._insert_rows(session, ladder_id, rows, initial_rating)

    async def update(
        self,
        session: AsyncSession,
        ladder_id: str,
        member_id: str,
        patch: Mapping[str, Any]
    ) -> Optional[LadderMember]:
        async with storage_errors("update capsule_ladder_member"):
            member = await self.get_by_id(session, ladder_id, member_id)
            if member is None:
                return None
            for key, value in patch.items():
                attribute = _MEMBER_FIELDS.get(key)
                if attribute and attribute != "id":
                    setattr(member, attribute, value)
            member.updated_at = utcnow()
            await session.flush()
            return member

    async def delete(self, session: AsyncSession, ladder_id: str, member_id: str) -> bool:
        async with storage_errors("delete capsule_ladder_member"):
            member = await self.get_by_id(session, ladder_id, member_id)
            if member is None:
                return False
            await session.delete(member)
            await session.flush()
            return True

    async def replace_all(
        self,
        session: AsyncSession,
        ladder_id: str,
        rows: Sequence[Mapping[str, Any]],
        initial_rating: int = RatingConstants.DEFAULT_INITIAL_RATING
    ) -> List[LadderMember]:
        """
        Delete the roster and reinsert it from rows.

        The pre-delete roster is snapshotted first. If the reinsert fails the
        snapshot is written back before the error is raised, and the caller's
        transaction rollback undoes the delete as well, so a failed replace
        never leaves the ladder empty.
        """
        operation = "replace capsule_ladder_members"
        async with storage_errors(operation):
            existing = await self.list(session, ladder_id)
            backup = [self._row_values(member) for member in existing]
            for member in existing:
                session.expunge(member)
            await session.execute(delete(LadderMember).where(LadderMember.ladder_id == ladder_id))

        try:
            return await self._insert_rows(session, ladder_id, rows, initial_rating)
        except Exception as e:
            logger.error(f"Roster replace failed for ladder {ladder_id}: {e}")
            if backup:
                await self._restore(session, ladder_id, backup)
            if isinstance(e, DependencyFailureError):
                raise
            raise DependencyFailureError(operation, str(e)) from e

    async def _insert_rows(
        self,
        session: AsyncSession,
        ladder_id: str,
        rows: Sequence[Mapping[str, Any]],
        initial_rating: int
    ) -> List[LadderMember]:
        members = []
        for row in rows:
            values = {
                attribute: row[key]
                for key, attribute in _MEMBER_FIELDS.items()
                if key in row and row[key] is not None
            }
            values.setdefault("rating", initial_rating)
            values.setdefault("status", MemberStatus.ACTIVE)
            member = LadderMember(ladder_id=ladder_id, **values)
            session.add(member)
            members.append(member)
        await session.flush()
        return members

    async def _restore(self, session: AsyncSession, ladder_id: str, backup: List[Dict[str, Any]]) -> None:
        try:
            for pending in list(session.new):
                if isinstance(pending, LadderMember) and pending.ladder_id == ladder_id:
                    session.expunge(pending)
            await session.execute(delete(LadderMember).where(LadderMember.ladder_id == ladder_id))
            session.add_all(LadderMember(ladder_id=ladder_id, **values) for values in backup)
            await session.flush()
            logger.warning(f"Restored {len(backup)} roster rows for ladder {ladder_id}")
        except SQLAlchemyError as restore_error:
            logger.error(f"Failed to restore backup roster for ladder {ladder_id}: {restore_error}")

    @staticmethod
    def _row_values(member: LadderMember) -> Dict[str, Any]:
        return {
            attribute: getattr(member, attribute)
            for attribute in _MEMBER_FIELDS.values()
        } | {"created_at": member.created_at}


class ChallengeRepository:
    """First-class challenge rows."""

    async def get_by_id(self, session: AsyncSession, ladder_id: str, challenge_id: str) -> Optional[LadderChallenge]:
        async with storage_errors("get capsule_ladder_challenge"):
            result = await session.execute(
                select(LadderChallenge)
                .where(
                    LadderChallenge.ladder_id == ladder_id,
                    LadderChallenge.id == challenge_id
                )
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

    async def list_pending(self, session: AsyncSession, ladder_id: str,
                           limit: Optional[int] = None) -> List[LadderChallenge]:
        async with storage_errors("list capsule_ladder_challenges"):
            query = (
                select(LadderChallenge)
                .where(
                    LadderChallenge.ladder_id == ladder_id,
                    LadderChallenge.status == ChallengeStatus.PENDING
                )
                .order_by(LadderChallenge.created_version.desc(), LadderChallenge.created_at.desc())
            )
            if limit is not None:
                query = query.limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def insert(self, session: AsyncSession, challenge: LadderChallenge) -> LadderChallenge:
        async with storage_errors("insert capsule_ladder_challenge"):
            session.add(challenge)
            await session.flush()
            return challenge

    async def update(self, session: AsyncSession, challenge: LadderChallenge) -> LadderChallenge:
        async with storage_errors("update capsule_ladder_challenge"):
            challenge.updated_at = utcnow()
            await session.flush()
            return challenge

    async def void_pending_pair(
        self,
        session: AsyncSession,
        ladder_id: str,
        challenger_id: str,
        opponent_id: str,
        reason: str,
        exclude_id: Optional[str] = None
    ) -> int:
        """Void pending challenges for one directed (challenger, opponent) pair."""
        async with storage_errors("supersede capsule_ladder_challenges"):
            query = select(LadderChallenge).where(
                LadderChallenge.ladder_id == ladder_id,
                LadderChallenge.status == ChallengeStatus.PENDING,
                LadderChallenge.challenger_id == challenger_id,
                LadderChallenge.opponent_id == opponent_id
            )
            if exclude_id is not None:
                query = query.where(LadderChallenge.id != exclude_id)
            result = await session.execute(query)
            superseded = list(result.scalars().all())
            for challenge in superseded:
                challenge.status = ChallengeStatus.VOID
                challenge.void_reason = reason
                challenge.updated_at = utcnow()
            await session.flush()
            return len(superseded)

    async def cap_pending(self, session: AsyncSession, ladder_id: str, cap: int, reason: str) -> int:
        """Void the oldest pending challenges beyond the newest `cap`."""
        async with storage_errors("cap capsule_ladder_challenges"):
            pending = await self.list_pending(session, ladder_id)
            overflow = pending[cap:]
            for challenge in overflow:
                challenge.status = ChallengeStatus.VOID
                challenge.void_reason = reason
                challenge.updated_at = utcnow()
            await session.flush()
            return len(overflow)


class ChallengeHistoryStore:
    """Append-only match history with newest-N retention."""

    async def insert_history(self, session: AsyncSession, record: LadderHistory) -> LadderHistory:
        async with storage_errors("insert capsule_ladder_history"):
            session.add(record)
            await session.flush()
            return record

    async def list_history(self, session: AsyncSession, ladder_id: str, limit: int) -> List[LadderHistory]:
        async with storage_errors("list capsule_ladder_history"):
            result = await session.execute(
                select(LadderHistory)
                .where(LadderHistory.ladder_id == ladder_id)
                .order_by(LadderHistory.resolved_version.desc(), LadderHistory.resolved_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def count(self, session: AsyncSession, ladder_id: str) -> int:
        async with storage_errors("count capsule_ladder_history"):
            result = await session.execute(
                select(func.count(LadderHistory.id)).where(LadderHistory.ladder_id == ladder_id)
            )
            return result.scalar() or 0

    async def prune(self, session: AsyncSession, ladder_id: str, keep: int) -> int:
        """Delete history rows older than the newest `keep`."""
        async with storage_errors("prune capsule_ladder_history"):
            result = await session.execute(
                select(LadderHistory.id)
                .where(LadderHistory.ladder_id == ladder_id)
                .order_by(LadderHistory.resolved_version.desc(), LadderHistory.resolved_at.desc())
                .offset(keep)
            )
            stale_ids = list(result.scalars().all())
            if not stale_ids:
                return 0
            await session.execute(
                delete(LadderHistory)
                .where(LadderHistory.id.in_(stale_ids))
                .execution_options(synchronize_session=False)
            )
            return len(stale_ids)


class CapsuleMembershipRepository:
    """Capsule roles consumed by the database permission oracle."""

    async def get(self, session: AsyncSession, capsule_id: str, user_id: str) -> Optional[CapsuleMembership]:
        async with storage_errors("get capsule_membership"):
            result = await session.execute(
                select(CapsuleMembership).where(
                    CapsuleMembership.capsule_id == capsule_id,
                    CapsuleMembership.user_id == user_id
                )
            )
            return result.scalar_one_or_none()

    async def upsert(self, session: AsyncSession, capsule_id: str, user_id: str, role: str) -> CapsuleMembership:
        async with storage_errors("upsert capsule_membership"):
            membership = await self.get(session, capsule_id, user_id)
            if membership is None:
                membership = CapsuleMembership(capsule_id=capsule_id, user_id=user_id, role=role)
                session.add(membership)
            else:
                membership.role = role
            await session.flush()
            return membership

    async def list_for_user(self, session: AsyncSession, user_id: str) -> List[CapsuleMembership]:
        async with storage_errors("list capsule_memberships by user"):
            result = await session.execute(
                select(CapsuleMembership)
                .where(CapsuleMembership.user_id == user_id)
                .order_by(CapsuleMembership.capsule_id)
            )
            return list(result.scalars().all())
