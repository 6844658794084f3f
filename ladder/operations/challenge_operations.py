"""
Challenge Operations Service

Handles the challenge state machine for a ladder:

    pending -> resolved   (terminal; resolving again returns the stored result)
    pending -> void       (administrative cancel, supersede or cap; terminal)

Creation and resolution run inside one database transaction whose first write
is a compare-and-swap on the ladder version. A lost race rolls the transaction
back and the whole operation is retried, so two managers resolving the same
challenge cannot both apply rating changes: the second one re-reads the
challenge as resolved and gets the idempotent result.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ladder.config import Config
from ladder.constants import ChallengeConstants
from ladder.data_models.ladder import (
    ChallengeStatus, LadderStatus, MemberData, MemberStatus, ParticipantType
)
from ladder.database.models import (
    Ladder, LadderChallenge, LadderHistory, LadderMember, utcnow
)
from ladder.services.access import ViewerContext, can_viewer_access_ladder, require_capsule_manager
from ladder.services.base import BaseService
from ladder.services.events import (
    CHALLENGE_CREATED, CHALLENGE_RESOLVED, CHALLENGE_VOIDED, LadderEvent
)
from ladder.utils.exceptions import (
    ForbiddenError, InvalidInputError, InvalidStateError, NotFoundError
)
from ladder.utils.logger import setup_logger
from ladder.utils.ranking import RankingUtility
from ladder.utils.sanitizers import (
    normalize_id, parse_enum, parse_outcome, sanitize_note, sanitize_proof, sanitize_text
)
from ladder.utils.scoring_strategies import get_rating_strategy

logger = setup_logger(__name__)

VOID_SUPERSEDED = "superseded"
VOID_CAPPED = "capped"
VOID_CANCELLED = "cancelled"


@dataclass
class ChallengeResolution:
    """Result of a resolve call"""
    challenge: LadderChallenge
    members: List[LadderMember]
    history: List[LadderHistory]
    already_resolved: bool = False
    ladder: Optional[Ladder] = None


@dataclass
class ChallengeListing:
    """Pending challenges and recent history for a ladder"""
    ladder: Ladder
    challenges: List[LadderChallenge] = field(default_factory=list)
    history: List[LadderHistory] = field(default_factory=list)


class ChallengeOperations(BaseService):
    """
    Service class for challenge-related operations.

    Validates and transitions challenges, applies the ladder's rating
    strategy on resolution and keeps roster, challenge row and history in
    one atomic write.
    """

    async def create_challenge(
        self,
        actor_id: str,
        ladder_id: str,
        challenger_id: str,
        opponent_id: str,
        note: Optional[str] = None,
        participant_type=ParticipantType.MEMBER,
        proof_url: Optional[str] = None
    ) -> LadderChallenge:
        """
        Create a pending challenge between two ladder participants.

        Args:
            actor_id: User issuing the challenge
            ladder_id: Ladder the challenge belongs to
            challenger_id: Challenging member id (capsule id for capsule ladders)
            opponent_id: Challenged member id (capsule id for capsule ladders)
            note: Optional note shown with the challenge
            participant_type: "member" or "capsule"
            proof_url: Optional opaque proof reference

        Returns:
            The created LadderChallenge

        Raises:
            NotFoundError: Ladder does not exist
            InvalidStateError: Ladder is not active
            ForbiddenError: Actor may not issue challenges on this ladder
            UnsupportedStateError: Scoring system is not challenge-enabled
            InvalidInputError: Bad participants or wrong rank order on simple ladders
        """
        participant_type = parse_enum(ParticipantType, participant_type, "participant type")
        challenger_ref = normalize_id(challenger_id)
        opponent_ref = normalize_id(opponent_id)

        async def _create():
            async with self.db.transaction() as session:
                ladder = await self._load_ladder(session, ladder_id)
                if ladder.status != LadderStatus.ACTIVE:
                    raise InvalidStateError(
                        f"Ladder {ladder.id} is {ladder.status.value}",
                        "Challenges can only be created on active ladders."
                    )
                viewer = await self._resolve_viewer(ladder, actor_id)
                await self._assert_challenge_permissions(session, ladder, viewer)

                scoring = ladder.scoring
                strategy = get_rating_strategy(scoring.system)

                if not challenger_ref or not opponent_ref or challenger_ref == opponent_ref:
                    raise InvalidInputError(
                        f"Invalid challenge pair {challenger_ref!r} vs {opponent_ref!r}",
                        "Select two different ladder members to create a challenge."
                    )

                records = await self.members.list(session, ladder.id)
                roster = strategy.order_roster([record.to_data() for record in records], scoring)
                challenger = self._find_participant(roster, challenger_ref, participant_type)
                opponent = self._find_participant(roster, opponent_ref, participant_type)
                if challenger is None or opponent is None or challenger.id == opponent.id:
                    raise InvalidInputError(
                        f"Participants {challenger_ref} / {opponent_ref} not on ladder {ladder.id}",
                        "Both members must exist on this ladder."
                    )
                strategy.validate_challenge(challenger, opponent)

                ladder = await self._bump_version(session, ladder)

                is_capsule = participant_type == ParticipantType.CAPSULE
                challenge = LadderChallenge(
                    ladder_id=ladder.id,
                    participant_type=participant_type,
                    challenger_id=challenger.id,
                    opponent_id=opponent.id,
                    challenger_capsule_id=challenger_ref if is_capsule else None,
                    opponent_capsule_id=opponent_ref if is_capsule else None,
                    status=ChallengeStatus.PENDING,
                    note=sanitize_note(note),
                    proof_url=sanitize_proof(proof_url),
                    created_by_id=viewer.viewer_id,
                    created_version=ladder.version,
                )
                await self.challenges.insert(session, challenge)

                superseded = await self.challenges.void_pending_pair(
                    session, ladder.id, challenger.id, opponent.id, VOID_SUPERSEDED, exclude_id=challenge.id
                )
                capped = await self.challenges.cap_pending(
                    session, ladder.id, Config.PENDING_CHALLENGE_CAP, VOID_CAPPED
                )
                if superseded or capped:
                    self.logger.info(
                        f"Ladder {ladder.id}: voided {superseded} superseded and {capped} capped challenges"
                    )
                return ladder, challenge, challenger, opponent

        ladder, challenge, challenger, opponent = await self.execute_with_retry(_create)

        self.logger.info(
            f"Created challenge {challenge.id} on ladder {ladder.id}: "
            f"{challenger.display_name} vs {opponent.display_name}"
        )
        self._emit(ladder, CHALLENGE_CREATED, actor_id, {
            "challengeId": challenge.id,
            "challengerId": challenger.id,
            "challengerName": challenger.display_name,
            "opponentId": opponent.id,
            "opponentName": opponent.display_name,
            "note": challenge.note,
        })
        return challenge

    async def resolve_challenge(
        self,
        actor_id: str,
        ladder_id: str,
        challenge_id: str,
        outcome,
        note: Optional[str] = None,
        proof_url: Optional[str] = None
    ) -> ChallengeResolution:
        """
        Resolve a pending challenge and apply the result to the roster.

        Resolving an already resolved challenge returns the stored result and
        changes nothing.

        Args:
            actor_id: User reporting the result
            ladder_id: Ladder the challenge belongs to
            challenge_id: Challenge to resolve
            outcome: "challenger", "opponent" or "draw"
            note: Optional result note (falls back to the challenge note in history)
            proof_url: Optional opaque proof reference

        Returns:
            ChallengeResolution with the challenge, the new roster and recent history

        Raises:
            NotFoundError: Ladder or challenge does not exist
            ForbiddenError: Actor may not resolve challenges on this ladder
            InvalidStateError: Challenge was voided
            UnsupportedStateError: Scoring system is not challenge-enabled
            ConflictError: Lost the optimistic-concurrency race on every retry
        """
        outcome = parse_outcome(outcome)
        challenge_ref = normalize_id(challenge_id)

        async def _resolve():
            async with self.db.transaction() as session:
                ladder = await self._load_ladder(session, ladder_id)
                viewer = await self._resolve_viewer(ladder, actor_id)
                await self._assert_challenge_permissions(session, ladder, viewer)

                challenge = await self._load_challenge(session, ladder, challenge_ref)
                if challenge.status == ChallengeStatus.RESOLVED:
                    self.logger.info(f"Challenge {challenge.id} already resolved; returning stored result")
                    return ChallengeResolution(
                        challenge=challenge,
                        members=await self.members.list(session, ladder.id),
                        history=await self.history.list_history(session, ladder.id, Config.HISTORY_RETENTION),
                        already_resolved=True,
                        ladder=ladder,
                    )
                if challenge.status == ChallengeStatus.VOID:
                    raise InvalidStateError(
                        f"Challenge {challenge.id} is void",
                        "This challenge was cancelled and cannot be resolved."
                    )

                scoring = ladder.scoring
                strategy = get_rating_strategy(scoring.system)

                ladder = await self._bump_version(session, ladder)

                records = await self.members.list(session, ladder.id)
                result = strategy.apply_outcome(
                    [record.to_data() for record in records],
                    challenge.challenger_id,
                    challenge.opponent_id,
                    outcome,
                    scoring,
                )
                if not RankingUtility.is_contiguous(result.members):
                    self.logger.error(f"Non-contiguous ranks produced for ladder {ladder.id}")
                    raise InvalidStateError(
                        f"Resolution of challenge {challenge.id} produced non-contiguous ranks",
                        "The ladder standings could not be updated. Please try again."
                    )

                persisted = await self.members.replace_all(
                    session, ladder.id, [member.to_row() for member in result.members], scoring.initial_rating
                )

                resolved_at = utcnow()
                result_note = sanitize_note(note)
                proof = sanitize_proof(proof_url) or challenge.proof_url
                rank_changes = [change.to_dict() for change in result.rank_changes]
                rating_changes = [change.to_dict() for change in result.rating_changes]

                await self.history.insert_history(session, LadderHistory(
                    ladder_id=ladder.id,
                    challenge_id=challenge.id,
                    participant_type=challenge.participant_type,
                    challenger_id=challenge.challenger_id,
                    opponent_id=challenge.opponent_id,
                    challenger_capsule_id=challenge.challenger_capsule_id,
                    opponent_capsule_id=challenge.opponent_capsule_id,
                    outcome=outcome,
                    note=result_note or challenge.note,
                    proof_url=proof,
                    rank_changes=rank_changes or None,
                    rating_changes=rating_changes or None,
                    resolved_at=resolved_at,
                    resolved_version=ladder.version,
                ))

                challenge.status = ChallengeStatus.RESOLVED
                challenge.outcome = outcome
                challenge.reported_at = resolved_at
                challenge.reported_by_id = viewer.viewer_id
                challenge.result_note = result_note
                challenge.proof_url = proof
                challenge.rank_changes = rank_changes
                challenge.rating_changes = rating_changes
                await self.challenges.update(session, challenge)

                await self.history.prune(session, ladder.id, Config.HISTORY_RETENTION)
                history = await self.history.list_history(session, ladder.id, Config.HISTORY_RETENTION)

                return ChallengeResolution(
                    challenge=challenge,
                    members=sorted(persisted, key=lambda member: member.rank),
                    history=history,
                    ladder=ladder,
                )

        resolution = await self.execute_with_retry(_resolve)

        if not resolution.already_resolved:
            challenge = resolution.challenge
            self.logger.info(
                f"Resolved challenge {challenge.id} on ladder {resolution.ladder.id}: "
                f"outcome={challenge.outcome.value}, {len(challenge.rank_changes or [])} rank changes"
            )
            self._emit(resolution.ladder, CHALLENGE_RESOLVED, actor_id, {
                "challengeId": challenge.id,
                "challengerId": challenge.challenger_id,
                "opponentId": challenge.opponent_id,
                "outcome": challenge.outcome.value,
                "rankChanges": challenge.rank_changes,
                "ratingChanges": challenge.rating_changes,
            })
        return resolution

    async def void_challenge(
        self,
        actor_id: str,
        ladder_id: str,
        challenge_id: str,
        reason: Optional[str] = None
    ) -> LadderChallenge:
        """Cancel a pending challenge (managers only). Voiding twice is a no-op."""
        challenge_ref = normalize_id(challenge_id)

        async def _void():
            async with self.db.transaction() as session:
                ladder = await self._load_ladder(session, ladder_id)
                require_capsule_manager(await self._resolve_viewer(ladder, actor_id))

                challenge = await self._load_challenge(session, ladder, challenge_ref)
                if challenge.status == ChallengeStatus.VOID:
                    return ladder, challenge, False
                if challenge.status == ChallengeStatus.RESOLVED:
                    raise InvalidStateError(
                        f"Challenge {challenge.id} is already resolved",
                        "Resolved challenges cannot be cancelled."
                    )

                ladder = await self._bump_version(session, ladder)
                challenge.status = ChallengeStatus.VOID
                challenge.void_reason = sanitize_text(reason, ChallengeConstants.MAX_REASON_LENGTH, VOID_CANCELLED)
                await self.challenges.update(session, challenge)
                return ladder, challenge, True

        ladder, challenge, changed = await self.execute_with_retry(_void)
        if changed:
            self.logger.info(f"Voided challenge {challenge.id} on ladder {ladder.id}: {challenge.void_reason}")
            self._emit(ladder, CHALLENGE_VOIDED, actor_id, {
                "challengeId": challenge.id,
                "reason": challenge.void_reason,
            })
        return challenge

    async def list_challenges(self, viewer_id: Optional[str], ladder_id: str) -> ChallengeListing:
        """Pending challenges (newest first) and recent match history."""
        async with self.db.get_session() as session:
            ladder = await self._load_ladder(session, ladder_id)
            await self._assert_can_view(ladder, viewer_id)
            challenges = await self.challenges.list_pending(session, ladder.id, limit=Config.PENDING_CHALLENGE_CAP)
            history = await self.history.list_history(session, ladder.id, Config.HISTORY_LIST_LIMIT)
            return ChallengeListing(ladder=ladder, challenges=challenges, history=history)

    async def get_challenge(self, viewer_id: Optional[str], ladder_id: str, challenge_id: str) -> LadderChallenge:
        async with self.db.get_session() as session:
            ladder = await self._load_ladder(session, ladder_id)
            await self._assert_can_view(ladder, viewer_id)
            return await self._load_challenge(session, ladder, normalize_id(challenge_id))

    async def _assert_challenge_permissions(
        self,
        session: AsyncSession,
        ladder: Ladder,
        viewer: ViewerContext
    ) -> None:
        if not viewer.viewer_id:
            raise ForbiddenError("Anonymous challenge request", "Sign in to manage challenges.")
        if not viewer.is_manager:
            member = await self.members.get_by_user(session, ladder.id, viewer.viewer_id)
            if member is None or member.status != MemberStatus.ACTIVE:
                raise ForbiddenError(
                    f"User {viewer.viewer_id} is not an active member of ladder {ladder.id}",
                    "Join this ladder to issue challenges."
                )
        if not can_viewer_access_ladder(ladder, viewer, False):
            raise ForbiddenError(
                f"User {viewer.viewer_id} cannot access ladder {ladder.id}",
                "You do not have permission to manage this ladder."
            )

    async def _assert_can_view(self, ladder: Ladder, viewer_id: Optional[str]) -> None:
        viewer = await self._resolve_viewer(ladder, viewer_id)
        if not can_viewer_access_ladder(ladder, viewer, False):
            raise ForbiddenError(
                f"User {viewer_id} cannot view ladder {ladder.id}",
                "You do not have permission to view this ladder."
            )

    async def _load_challenge(self, session: AsyncSession, ladder: Ladder,
                              challenge_id: Optional[str]) -> LadderChallenge:
        challenge = await self.challenges.get_by_id(session, ladder.id, challenge_id) if challenge_id else None
        if challenge is None:
            raise NotFoundError("Challenge", challenge_id)
        return challenge

    @staticmethod
    def _find_participant(roster: Sequence[MemberData], reference: str,
                          participant_type: ParticipantType) -> Optional[MemberData]:
        if participant_type == ParticipantType.CAPSULE:
            return next(
                (member for member in roster
                 if (member.metadata or {}).get("capsuleId") == reference),
                None
            )
        return next((member for member in roster if member.id == reference), None)

    def _emit(self, ladder: Ladder, event_type: str, actor_id: Optional[str], payload: dict) -> None:
        self.dispatcher.dispatch(ladder.created_by_id, LadderEvent(
            type=event_type,
            ladder_id=ladder.id,
            capsule_id=ladder.capsule_id,
            actor_id=actor_id,
            payload=payload,
        ))
