"""
Ladder access gate.

Who may see or act on a ladder depends on the viewer's role in the owning
capsule and on the ladder's visibility and status. The same gate is used for
listing, viewing and challenge operations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from ladder.data_models.ladder import LadderStatus, LadderVisibility
from ladder.database.database import Database
from ladder.database.models import Ladder
from ladder.database.repositories import CapsuleMembershipRepository
from ladder.utils.exceptions import ForbiddenError

MANAGER_ROLES = frozenset({"owner", "admin", "moderator"})


@dataclass(frozen=True)
class ViewerContext:
    """What the permission oracle knows about a viewer in one capsule."""
    capsule_id: str
    viewer_id: Optional[str] = None
    role: Optional[str] = None
    is_owner: bool = False
    is_member: bool = False

    @property
    def is_manager(self) -> bool:
        return self.is_owner or (self.role in MANAGER_ROLES)


class PermissionOracle(ABC):
    """Resolves a user's standing in a capsule."""

    @abstractmethod
    async def resolve_viewer(self, capsule_id: str, user_id: Optional[str]) -> ViewerContext:
        pass

    async def list_capsule_ids(self, user_id: str) -> List[str]:
        """Capsules the user belongs to. Oracles that cannot enumerate return none."""
        return []


class DatabasePermissionOracle(PermissionOracle):
    """Reads roles from the capsule_memberships table."""

    def __init__(self, db: Database):
        self.db = db
        self.memberships = CapsuleMembershipRepository()

    async def resolve_viewer(self, capsule_id, user_id):
        if not user_id:
            return ViewerContext(capsule_id=capsule_id)
        async with self.db.get_session() as session:
            membership = await self.memberships.get(session, capsule_id, user_id)
        if membership is None:
            return ViewerContext(capsule_id=capsule_id, viewer_id=user_id)
        return ViewerContext(
            capsule_id=capsule_id,
            viewer_id=user_id,
            role=membership.role,
            is_owner=membership.role == "owner",
            is_member=True,
        )

    async def list_capsule_ids(self, user_id):
        async with self.db.get_session() as session:
            memberships = await self.memberships.list_for_user(session, user_id)
        return [membership.capsule_id for membership in memberships]


def can_viewer_access_ladder(ladder: Ladder, viewer: ViewerContext, include_drafts: bool = False) -> bool:
    if viewer.is_manager:
        return True

    if ladder.visibility == LadderVisibility.PUBLIC:
        if ladder.status == LadderStatus.DRAFT:
            return include_drafts
        return True

    if ladder.visibility == LadderVisibility.CAPSULE:
        if not viewer.is_member:
            return False
        return ladder.status in (LadderStatus.ACTIVE, LadderStatus.ARCHIVED)

    # Private ladders: creator only
    return bool(viewer.viewer_id) and viewer.viewer_id == ladder.created_by_id


def require_capsule_manager(viewer: ViewerContext) -> ViewerContext:
    if not viewer.viewer_id:
        raise ForbiddenError("Anonymous manager request", "Sign in to manage ladders.")
    if not viewer.is_manager:
        raise ForbiddenError(
            f"User {viewer.viewer_id} is not a manager of capsule {viewer.capsule_id}",
            "You do not have permission to manage ladders in this capsule."
        )
    return viewer
