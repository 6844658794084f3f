"""
Ladder Operations Service

Creation, publishing, archiving and deletion of ladders, plus the viewer-
facing reads. Writes are manager-only; reads go through the access gate.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ladder.constants import LadderConstants
from ladder.data_models.ladder import LadderStatus, LadderVisibility
from ladder.database.models import Ladder, LadderMember, utcnow
from ladder.operations.roster_operations import RosterOperations
from ladder.services.access import can_viewer_access_ladder, require_capsule_manager
from ladder.services.base import BaseService
from ladder.utils.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from ladder.utils.logger import setup_logger
from ladder.utils.sanitizers import (
    normalize_id, normalize_name, parse_enum, random_slug_suffix, sanitize_number, sanitize_text,
    slugify
)

logger = setup_logger(__name__)

# Fields a manager may patch directly through update_ladder
UPDATABLE_FIELDS = frozenset({
    "name", "slug", "summary", "status", "visibility", "game", "config", "sections", "meta"
})

_JSON_FIELDS = ("game", "config", "sections", "meta")


@dataclass
class LadderDetail:
    """A ladder with its roster when requested"""
    ladder: Ladder
    members: Optional[List[LadderMember]] = None


class LadderOperations(BaseService):
    """Service class for ladder lifecycle operations."""

    def __init__(self, db, oracle, dispatcher=None, max_retries=None, roster: Optional[RosterOperations] = None):
        super().__init__(db, oracle, dispatcher, max_retries)
        self.roster = roster or RosterOperations(db, oracle, self.dispatcher, max_retries)

    async def create_ladder(
        self,
        actor_id: str,
        capsule_id: str,
        name: Optional[str] = None,
        slug: Optional[str] = None,
        summary: Optional[str] = None,
        status=None,
        visibility=None,
        game: Optional[Mapping[str, Any]] = None,
        config: Optional[Mapping[str, Any]] = None,
        sections: Optional[Any] = None,
        meta: Optional[Mapping[str, Any]] = None,
        publish: bool = False,
        members: Optional[Sequence[Mapping[str, Any]]] = None
    ) -> LadderDetail:
        """
        Create a ladder in a capsule.

        Args:
            actor_id: Manager creating the ladder
            capsule_id: Owning capsule
            name: Display name ("Untitled Ladder" when blank)
            slug: Explicit slug; generated from the name when omitted
            publish: Make the ladder active immediately
            members: Optional initial roster

        Returns:
            LadderDetail with the new ladder and its roster

        Raises:
            ForbiddenError: Actor is not a capsule manager
            InvalidInputError: Bad status, visibility or roster payload, or slug taken
        """
        capsule_ref = normalize_id(capsule_id)
        if not capsule_ref:
            raise InvalidInputError("Missing capsule id", "A capsule is required to create a ladder.")
        viewer = require_capsule_manager(await self.oracle.resolve_viewer(capsule_ref, actor_id))

        ladder_status = LadderStatus.ACTIVE if publish else (
            parse_enum(LadderStatus, status, "status") if status is not None else LadderStatus.DRAFT
        )
        ladder_visibility = (
            parse_enum(LadderVisibility, visibility, "visibility")
            if visibility is not None else LadderVisibility.CAPSULE
        )
        ladder_name = normalize_name(name)
        rows = RosterOperations.prepare_roster(members) if members else []

        async with self.db.transaction() as session:
            if slug is None:
                ladder_slug = await self._generate_unique_slug(session, capsule_ref, ladder_name)
            else:
                ladder_slug = await self._claim_slug(session, capsule_ref, slug)

            published_at = utcnow() if ladder_status == LadderStatus.ACTIVE else None
            ladder = await self.ladders.insert(
                session,
                capsule_id=capsule_ref,
                created_by_id=viewer.viewer_id,
                name=ladder_name,
                slug=ladder_slug,
                summary=sanitize_text(summary, LadderConstants.MAX_SUMMARY_LENGTH),
                status=ladder_status,
                visibility=ladder_visibility,
                published_at=published_at,
                published_by_id=viewer.viewer_id if published_at else None,
                **self._json_fields(game=game, config=config, sections=sections, meta=meta),
            )
            roster = await self.roster.write_roster(session, ladder, rows, members) if rows else []

        self.logger.info(
            f"Created ladder {ladder.id} ({ladder.name!r}) in capsule {capsule_ref} "
            f"status={ladder.status.value} members={len(roster)}"
        )
        return LadderDetail(ladder=ladder, members=roster)

    async def update_ladder(
        self,
        actor_id: str,
        ladder_id: str,
        patch: Optional[Mapping[str, Any]] = None,
        publish: bool = False,
        archive: bool = False,
        members: Optional[Sequence[Mapping[str, Any]]] = None
    ) -> LadderDetail:
        """
        Patch a ladder's fields, publish or archive it, and optionally replace the roster.

        ``members=None`` leaves the roster alone; an empty list clears it.
        """
        patch = dict(patch or {})
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidInputError(
                f"Unknown ladder fields: {sorted(unknown)}",
                "Some ladder fields cannot be updated."
            )
        rows = RosterOperations.prepare_roster(members) if members is not None else None

        async def _update():
            async with self.db.transaction() as session:
                ladder = await self._load_ladder(session, ladder_id)
                viewer = require_capsule_manager(await self._resolve_viewer(ladder, actor_id))
                values = await self._build_patch(session, ladder, patch, viewer.viewer_id, publish, archive)

                ladder = await self._bump_version(session, ladder, values)
                roster = None
                if rows is not None:
                    roster = await self.roster.write_roster(session, ladder, rows, members)
                return LadderDetail(ladder=ladder, members=roster)

        detail = await self.execute_with_retry(_update)
        self.logger.info(
            f"Updated ladder {detail.ladder.id} to version {detail.ladder.version}: "
            f"fields={sorted(patch)} publish={publish} archive={archive}"
        )
        return detail

    async def delete_ladder(self, actor_id: str, ladder_id: str) -> bool:
        """Delete a ladder together with its roster, challenges and history."""
        async with self.db.transaction() as session:
            ladder = await self._load_ladder(session, ladder_id)
            require_capsule_manager(await self._resolve_viewer(ladder, actor_id))
            deleted = await self.ladders.delete(session, ladder.id)

        self.logger.info(f"Deleted ladder {ladder_id} from capsule {ladder.capsule_id}")
        return deleted

    async def get_ladder(self, viewer_id: Optional[str], ladder_id: str, include_members: bool = False) -> LadderDetail:
        async with self.db.get_session() as session:
            ladder = await self._load_ladder(session, ladder_id)
            viewer = await self._resolve_viewer(ladder, viewer_id)
            if not can_viewer_access_ladder(ladder, viewer, False):
                raise ForbiddenError(
                    f"User {viewer_id} cannot view ladder {ladder.id}",
                    "You do not have permission to view this ladder."
                )
            members = await self.members.list(session, ladder.id) if include_members else None
            return LadderDetail(ladder=ladder, members=members)

    async def list_ladders(
        self,
        viewer_id: Optional[str],
        capsule_id: str,
        include_drafts: Optional[bool] = None,
        include_archived: Optional[bool] = None
    ) -> List[Ladder]:
        """
        Ladders in a capsule the viewer may see, newest first.

        Drafts and archived ladders are included by default only for managers.
        """
        capsule_ref = normalize_id(capsule_id)
        if not capsule_ref:
            raise NotFoundError("Capsule", capsule_id)
        viewer = await self.oracle.resolve_viewer(capsule_ref, viewer_id)
        if include_drafts is None:
            include_drafts = viewer.is_manager
        if include_archived is None:
            include_archived = viewer.is_manager

        async with self.db.get_session() as session:
            ladders = await self.ladders.list_by_capsule(session, capsule_ref)

        visible = []
        for ladder in ladders:
            if ladder.status == LadderStatus.ARCHIVED and not include_archived:
                continue
            if ladder.status == LadderStatus.DRAFT and not include_drafts:
                continue
            if can_viewer_access_ladder(ladder, viewer, include_drafts):
                visible.append(ladder)
        return visible

    async def list_recent_ladders(self, viewer_id: Optional[str],
                                  limit: Any = LadderConstants.RECENT_DEFAULT_LIMIT) -> List[Ladder]:
        """
        Recent ladders for a viewer's home feed.

        Merges the ladders the viewer is rostered on with the ladders visible
        to them in their own capsules. Archived ladders and non-ladder variants
        are left out; the rest are ordered by publish (or creation) time,
        newest first, without duplicates.

        Args:
            viewer_id: Signed-in user; anonymous viewers get an empty list
            limit: Maximum number of ladders, clamped to 1..32

        Returns:
            List of Ladder records
        """
        viewer_ref = normalize_id(viewer_id)
        if not viewer_ref:
            return []
        limit = sanitize_number(
            limit, LadderConstants.RECENT_DEFAULT_LIMIT, 1, LadderConstants.RECENT_MAX_LIMIT
        )
        fetch_limit = max(limit * 2, limit + 8)

        async with self.db.get_session() as session:
            participation = await self.members.list_by_user(session, viewer_ref, fetch_limit)

        candidates: List[Ladder] = []
        viewers = {}
        for _, ladder in participation:
            if ladder.capsule_id not in viewers:
                viewers[ladder.capsule_id] = await self.oracle.resolve_viewer(ladder.capsule_id, viewer_ref)
            if can_viewer_access_ladder(ladder, viewers[ladder.capsule_id], False):
                candidates.append(ladder)

        for capsule_id in await self.oracle.list_capsule_ids(viewer_ref):
            candidates.extend(await self.list_ladders(viewer_ref, capsule_id, include_archived=False))

        candidates = [
            ladder for ladder in candidates
            if ladder.status != LadderStatus.ARCHIVED and _is_ladder_variant(ladder)
        ]
        candidates.sort(key=lambda ladder: ladder.published_at or ladder.created_at, reverse=True)

        recent: List[Ladder] = []
        seen = set()
        for ladder in candidates:
            if ladder.id in seen:
                continue
            seen.add(ladder.id)
            recent.append(ladder)
            if len(recent) == limit:
                break
        return recent

    async def _build_patch(
        self,
        session: AsyncSession,
        ladder: Ladder,
        patch: Mapping[str, Any],
        actor_id: str,
        publish: bool,
        archive: bool
    ) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        if "name" in patch:
            values["name"] = normalize_name(patch["name"])
        if "summary" in patch:
            values["summary"] = sanitize_text(patch["summary"], LadderConstants.MAX_SUMMARY_LENGTH)
        if "status" in patch:
            values["status"] = parse_enum(LadderStatus, patch["status"], "status")
        if "visibility" in patch:
            values["visibility"] = parse_enum(LadderVisibility, patch["visibility"], "visibility")
        values.update(self._json_fields(**{key: patch[key] for key in _JSON_FIELDS if key in patch}))

        if "slug" in patch:
            raw_slug = patch["slug"]
            if raw_slug is None or not str(raw_slug).strip():
                values["slug"] = None
            else:
                values["slug"] = await self._claim_slug(session, ladder.capsule_id, raw_slug, ladder.id)
        elif "name" in values and not ladder.slug:
            values["slug"] = await self._generate_unique_slug(session, ladder.capsule_id, values["name"])

        if publish:
            values["status"] = LadderStatus.ACTIVE
            values["published_at"] = utcnow()
            values["published_by_id"] = actor_id
        elif archive:
            values["status"] = LadderStatus.ARCHIVED
        elif values.get("status") == LadderStatus.ACTIVE and ladder.published_at is None:
            values["published_at"] = utcnow()
            values["published_by_id"] = actor_id
        return values

    async def _generate_unique_slug(self, session: AsyncSession, capsule_id: str, name: str) -> Optional[str]:
        base = slugify(name)[:LadderConstants.MAX_SLUG_LENGTH]
        if not base:
            return None
        candidates = [base] + [
            f"{base}-{random_slug_suffix()}" for _ in range(LadderConstants.SLUG_ATTEMPTS)
        ]
        for candidate in candidates:
            if await self.ladders.get_by_slug(session, capsule_id, candidate) is None:
                return candidate
        self.logger.warning(f"Could not find a free slug for {name!r} in capsule {capsule_id}")
        return None

    async def _claim_slug(self, session: AsyncSession, capsule_id: str, raw_slug: Any,
                          ladder_id: Optional[str] = None) -> Optional[str]:
        slug = slugify(str(raw_slug))[:LadderConstants.MAX_SLUG_LENGTH] or None
        if slug is None:
            return None
        existing = await self.ladders.get_by_slug(session, capsule_id, slug)
        if existing is not None and existing.id != ladder_id:
            raise InvalidInputError(
                f"Slug {slug!r} already used in capsule {capsule_id}",
                "That ladder link is already in use."
            )
        return slug

    @staticmethod
    def _json_fields(**fields: Any) -> Dict[str, Any]:
        values = {}
        for key, value in fields.items():
            if value is not None and not isinstance(value, (Mapping, list)):
                raise InvalidInputError(f"Ladder field {key} must be JSON data", f"Invalid {key} payload.")
            values[key] = dict(value) if isinstance(value, Mapping) else value
        return values


def _is_ladder_variant(ladder: Ladder) -> bool:
    variant = (ladder.meta or {}).get("variant") if isinstance(ladder.meta, Mapping) else None
    return not isinstance(variant, str) or not variant or variant == "ladder"
