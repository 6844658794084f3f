"""
Roster Operations Service

Manager-only roster editing for a ladder. Every edit re-sequences ranks to
1..N and bumps the ladder version in the same transaction, so roster edits
and challenge resolutions serialize on the ladder row.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ladder.data_models.ladder import MemberData
from ladder.database.models import Ladder, LadderMember
from ladder.services.access import require_capsule_manager
from ladder.services.base import BaseService
from ladder.utils.exceptions import InvalidInputError, NotFoundError
from ladder.utils.logger import setup_logger
from ladder.utils.ranking import RankingUtility
from ladder.utils.sanitizers import (
    normalize_id, sanitize_member_create_input, sanitize_member_update_input
)

logger = setup_logger(__name__)


class RosterOperations(BaseService):
    """Service class for ladder roster management."""

    async def list_members(self, actor_id: str, ladder_id: str) -> List[LadderMember]:
        async with self.db.get_session() as session:
            ladder = await self._load_ladder(session, ladder_id)
            require_capsule_manager(await self._resolve_viewer(ladder, actor_id))
            return await self.members.list(session, ladder.id)

    async def add_members(
        self,
        actor_id: str,
        ladder_id: str,
        members: Sequence[Mapping[str, Any]]
    ) -> List[LadderMember]:
        """
        Append members to a ladder.

        Members without a rank are placed after the current roster.

        Raises:
            InvalidInputError: Bad member payload or a user already on the ladder
        """
        rows = [sanitize_member_create_input(member) for member in members or []]
        if not rows:
            raise InvalidInputError("No members supplied", "Add at least one member.")
        self._assert_unique_users(rows)

        async def _add():
            async with self.db.transaction() as session:
                ladder = await self._load_ladder(session, ladder_id)
                require_capsule_manager(await self._resolve_viewer(ladder, actor_id))
                ladder = await self._bump_version(session, ladder)

                pending = [dict(row) for row in rows]
                existing = await self.members.list(session, ladder.id)
                taken = {member.user_id for member in existing if member.user_id}
                for row in pending:
                    if row.get("user_id") in taken:
                        raise InvalidInputError(
                            f"User {row['user_id']} already on ladder {ladder.id}",
                            "That user is already on this ladder."
                        )

                next_rank = max((member.rank or 0 for member in existing), default=0) + 1
                for row in pending:
                    if row.get("rank") is None:
                        row["rank"] = next_rank
                        next_rank += 1

                added = await self.members.insert_many(session, ladder.id, pending, ladder.scoring.initial_rating)
                await self._resequence(session, ladder)
                return ladder, added

        ladder, added = await self.execute_with_retry(_add)
        self.logger.info(f"Added {len(added)} members to ladder {ladder.id}")
        return added

    async def update_member(
        self,
        actor_id: str,
        ladder_id: str,
        member_id: str,
        patch: Mapping[str, Any]
    ) -> LadderMember:
        """Apply a partial update to one member."""
        values = sanitize_member_update_input(patch)
        member_ref = normalize_id(member_id)

        async def _update():
            async with self.db.transaction() as session:
                ladder = await self._load_ladder(session, ladder_id)
                require_capsule_manager(await self._resolve_viewer(ladder, actor_id))
                member = await self._load_member(session, ladder, member_ref)

                user_id = values.get("user_id")
                if user_id and user_id != member.user_id:
                    other = await self.members.get_by_user(session, ladder.id, user_id)
                    if other is not None:
                        raise InvalidInputError(
                            f"User {user_id} already on ladder {ladder.id}",
                            "That user is already on this ladder."
                        )

                ladder = await self._bump_version(session, ladder)
                updated = await self.members.update(session, ladder.id, member.id, values)
                await self._resequence(session, ladder)
                return updated

        member = await self.execute_with_retry(_update)
        self.logger.info(f"Updated member {member.id} on ladder {ladder_id}: {sorted(values)}")
        return member

    async def remove_member(self, actor_id: str, ladder_id: str, member_id: str) -> bool:
        member_ref = normalize_id(member_id)

        async def _remove():
            async with self.db.transaction() as session:
                ladder = await self._load_ladder(session, ladder_id)
                require_capsule_manager(await self._resolve_viewer(ladder, actor_id))
                member = await self._load_member(session, ladder, member_ref)
                ladder = await self._bump_version(session, ladder)
                await self.members.delete(session, ladder.id, member.id)
                await self._resequence(session, ladder)
                return True

        removed = await self.execute_with_retry(_remove)
        self.logger.info(f"Removed member {member_ref} from ladder {ladder_id}")
        return removed

    async def replace_roster(
        self,
        actor_id: str,
        ladder_id: str,
        members: Sequence[Mapping[str, Any]]
    ) -> List[LadderMember]:
        """
        Replace the whole roster.

        Entries carrying the ``id`` of a current member keep that id, so
        challenges and history that reference it stay valid.
        """
        rows = self.prepare_roster(members)

        async def _replace():
            async with self.db.transaction() as session:
                ladder = await self._load_ladder(session, ladder_id)
                require_capsule_manager(await self._resolve_viewer(ladder, actor_id))
                ladder = await self._bump_version(session, ladder)
                persisted = await self.write_roster(session, ladder, rows, members)
                return ladder, persisted

        ladder, persisted = await self.execute_with_retry(_replace)
        self.logger.info(f"Replaced roster of ladder {ladder.id} with {len(persisted)} members")
        return persisted

    @classmethod
    def prepare_roster(cls, members: Optional[Sequence[Mapping[str, Any]]]) -> List[Dict[str, Any]]:
        """Sanitize a full roster payload (used by replace and ladder create/update)."""
        rows = [sanitize_member_create_input(member) for member in members or []]
        cls._assert_unique_users(rows)
        return rows

    async def write_roster(
        self,
        session: AsyncSession,
        ladder: Ladder,
        rows: List[Dict[str, Any]],
        source: Optional[Sequence[Mapping[str, Any]]] = None
    ) -> List[LadderMember]:
        """Replace-all inside the caller's transaction, ranks sequenced 1..N."""
        rows = [dict(row) for row in rows]
        existing_ids = {member.id for member in await self.members.list(session, ladder.id)}
        for row, raw in zip(rows, source or []):
            member_id = normalize_id(raw.get("id"))
            if member_id in existing_ids:
                row["id"] = member_id

        keyed = {f"entry-{index}": row for index, row in enumerate(rows)}
        ordered = RankingUtility.order_members_with_sequential_ranks(
            MemberData(
                id=key,
                display_name=row["display_name"],
                rating=row.get("rating"),
                rank=row.get("rank"),
                wins=row.get("wins") or 0,
                losses=row.get("losses") or 0,
            )
            for key, row in keyed.items()
        )
        rows_in_order = []
        for entry in ordered:
            row = keyed[entry.id]
            row["rank"] = entry.rank
            rows_in_order.append(row)

        persisted = await self.members.replace_all(
            session, ladder.id, rows_in_order, ladder.scoring.initial_rating
        )
        return sorted(persisted, key=lambda member: member.rank)

    async def _resequence(self, session: AsyncSession, ladder: Ladder) -> None:
        records = await self.members.list(session, ladder.id)
        ordered = RankingUtility.order_members_with_sequential_ranks(record.to_data() for record in records)
        for member in ordered:
            record = next(record for record in records if record.id == member.id)
            if record.rank != member.rank:
                await self.members.update(session, ladder.id, record.id, {"rank": member.rank})

    async def _load_member(self, session: AsyncSession, ladder: Ladder,
                           member_id: Optional[str]) -> LadderMember:
        member = await self.members.get_by_id(session, ladder.id, member_id) if member_id else None
        if member is None:
            raise NotFoundError("Member", member_id)
        return member

    @staticmethod
    def _assert_unique_users(rows: Sequence[Mapping[str, Any]]) -> None:
        seen = set()
        for row in rows:
            user_id = row.get("user_id")
            if not user_id:
                continue
            if user_id in seen:
                raise InvalidInputError(
                    f"Duplicate user {user_id} in roster payload",
                    "Each user can only appear once on a ladder."
                )
            seen.add(user_id)

