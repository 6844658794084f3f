"""
Scoring Strategy Pattern for ladder challenge resolution

This module implements the Strategy pattern over the closed ScoringSystem
enum. Each challenge-enabled system gets one RatingStrategy that knows how to
validate a new challenge and how to apply a resolved outcome to the roster.

- EloStrategy: logistic Elo with placement and streak K-factor adjustments,
  full roster re-sort after every match
- SimpleLadderStrategy: climb-the-ladder positional swaps, no ratings
"""

import math
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, List, Sequence, Tuple

from ladder.data_models.ladder import (
    ChallengeOutcome, MemberData, OutcomeResult, RatingChange, ScoringConfig, ScoringSystem
)
from ladder.utils.elo import EloCalculator
from ladder.utils.exceptions import InvalidInputError, UnsupportedStateError
from ladder.utils.ranking import RankingUtility
from ladder.utils.logger import setup_logger

logger = setup_logger(__name__)

_CHALLENGER_RESULTS = {
    ChallengeOutcome.CHALLENGER: ("win", "loss"),
    ChallengeOutcome.OPPONENT: ("loss", "win"),
    ChallengeOutcome.DRAW: ("draw", "draw"),
}

_CHALLENGER_SCORES = {
    ChallengeOutcome.CHALLENGER: 1.0,
    ChallengeOutcome.DRAW: 0.5,
    ChallengeOutcome.OPPONENT: 0.0,
}


def _find_pair(members: Sequence[MemberData], challenger_id: str,
               opponent_id: str) -> Tuple[MemberData, MemberData]:
    challenger = next((m for m in members if m.id == challenger_id), None)
    opponent = next((m for m in members if m.id == opponent_id), None)
    if challenger is None or opponent is None:
        raise InvalidInputError(
            f"Challenger {challenger_id} or opponent {opponent_id} is not on the roster",
            "Both members must exist on this ladder."
        )
    return challenger, opponent


def apply_elo_outcome(
    members: Sequence[MemberData],
    challenger_id: str,
    opponent_id: str,
    outcome: ChallengeOutcome,
    scoring: ScoringConfig,
) -> OutcomeResult:
    """
    Apply an Elo result and re-rank the whole roster.

    Expected scores come from pre-match ratings and each side's delta is
    computed with its own K-factor, so the two deltas need not cancel.
    """
    initial_rating = scoring.initial_rating
    challenger, opponent = _find_pair(members, challenger_id, opponent_id)

    challenger_rating = EloCalculator.normalize_rating(challenger.rating, initial_rating)
    opponent_rating = EloCalculator.normalize_rating(opponent.rating, initial_rating)

    challenger_score = _CHALLENGER_SCORES[outcome]
    opponent_score = 1 - challenger_score

    challenger_delta = EloCalculator.calculate_elo_change(
        challenger_rating, opponent_rating, challenger_score,
        EloCalculator.get_k_factor(challenger, scoring)
    )
    opponent_delta = EloCalculator.calculate_elo_change(
        opponent_rating, challenger_rating, opponent_score,
        EloCalculator.get_k_factor(opponent, scoring)
    )

    next_challenger = EloCalculator.normalize_rating(challenger_rating + challenger_delta, initial_rating)
    next_opponent = EloCalculator.normalize_rating(opponent_rating + opponent_delta, initial_rating)

    challenger_result, opponent_result = _CHALLENGER_RESULTS[outcome]
    updated = []
    for member in members:
        if member.id == challenger_id:
            member = replace(RankingUtility.apply_result_stats(member, challenger_result), rating=next_challenger)
        elif member.id == opponent_id:
            member = replace(RankingUtility.apply_result_stats(member, opponent_result), rating=next_opponent)
        updated.append(member)

    base_ranks = {
        member.id: member.rank
        for member in RankingUtility.sort_members_by_rating(members, initial_rating)
    }
    reordered = RankingUtility.sort_members_by_rating(updated, initial_rating)

    rating_changes = [
        RatingChange(challenger_id, challenger_rating, next_challenger, next_challenger - challenger_rating),
        RatingChange(opponent_id, opponent_rating, next_opponent, next_opponent - opponent_rating),
    ]

    logger.debug(
        f"Elo outcome {outcome.value}: {challenger_id} "
        f"{EloCalculator.format_elo_change(rating_changes[0].delta)}, {opponent_id} "
        f"{EloCalculator.format_elo_change(rating_changes[1].delta)}"
    )

    return OutcomeResult(
        members=reordered,
        rank_changes=RankingUtility.diff_ranks(base_ranks, reordered),
        rating_changes=rating_changes,
    )


def apply_simple_outcome(
    members: Sequence[MemberData],
    challenger_id: str,
    opponent_id: str,
    outcome: ChallengeOutcome,
) -> OutcomeResult:
    """
    Apply a climb-the-ladder result.

    A winning challenger hops halfway toward the opponent (never past them);
    any other outcome only updates records.
    """
    ordered = RankingUtility.order_members_with_sequential_ranks(members)
    challenger, opponent = _find_pair(ordered, challenger_id, opponent_id)
    challenger_rank = challenger.rank
    opponent_rank = opponent.rank

    challenger_result, opponent_result = _CHALLENGER_RESULTS[outcome]
    updated = []
    for member in ordered:
        if member.id == challenger_id:
            member = RankingUtility.apply_result_stats(member, challenger_result)
        elif member.id == opponent_id:
            member = RankingUtility.apply_result_stats(member, opponent_result)
        updated.append(member)

    base_ranks: Dict[str, int] = {member.id: member.rank for member in ordered}

    if outcome is ChallengeOutcome.CHALLENGER and challenger_rank > opponent_rank:
        hop = math.ceil((challenger_rank - opponent_rank) / 2)
        target_rank = max(opponent_rank + 1, challenger_rank - hop)
        moved = next(member for member in updated if member.id == challenger_id)
        updated = [member for member in updated if member.id != challenger_id]
        updated.insert(max(0, target_rank - 1), moved)

    reordered = [replace(member, rank=index + 1) for index, member in enumerate(updated)]

    return OutcomeResult(
        members=reordered,
        rank_changes=RankingUtility.diff_ranks(base_ranks, reordered),
    )


class RatingStrategy(ABC):
    """
    Abstract base class for rating strategies.

    Each strategy implements one challenge-enabled scoring system.
    """

    system: ScoringSystem

    @abstractmethod
    def order_roster(self, members: Sequence[MemberData], scoring: ScoringConfig) -> List[MemberData]:
        """Return the roster in standing order with sequential ranks"""
        pass

    def validate_challenge(self, challenger: MemberData, opponent: MemberData) -> None:
        """Reject challenges the system does not allow (members come from order_roster)"""
        return None

    @abstractmethod
    def apply_outcome(
        self,
        members: Sequence[MemberData],
        challenger_id: str,
        opponent_id: str,
        outcome: ChallengeOutcome,
        scoring: ScoringConfig,
    ) -> OutcomeResult:
        """Apply a resolved outcome to the roster"""
        pass

    def get_strategy_name(self) -> str:
        return self.system.value


class EloStrategy(RatingStrategy):
    """Rating-driven ladder: every result re-sorts the roster by rating."""

    system = ScoringSystem.ELO

    def order_roster(self, members, scoring):
        return RankingUtility.sort_members_by_rating(members, scoring.initial_rating)

    def apply_outcome(self, members, challenger_id, opponent_id, outcome, scoring):
        return apply_elo_outcome(members, challenger_id, opponent_id, outcome, scoring)


class SimpleLadderStrategy(RatingStrategy):
    """Positional ladder: challenge someone above you, take their spot on a win."""

    system = ScoringSystem.SIMPLE

    def order_roster(self, members, scoring):
        return RankingUtility.order_members_with_sequential_ranks(members)

    def validate_challenge(self, challenger, opponent):
        if challenger.rank <= opponent.rank:
            raise InvalidInputError(
                f"Challenger rank {challenger.rank} is not below opponent rank {opponent.rank}",
                "Challenger must target someone ranked above them."
            )

    def apply_outcome(self, members, challenger_id, opponent_id, outcome, scoring):
        return apply_simple_outcome(members, challenger_id, opponent_id, outcome)


_STRATEGIES: Dict[ScoringSystem, RatingStrategy] = {
    ScoringSystem.ELO: EloStrategy(),
    ScoringSystem.SIMPLE: SimpleLadderStrategy(),
}


def get_rating_strategy(system: ScoringSystem) -> RatingStrategy:
    """
    Get the strategy for a scoring system.

    Raises:
        UnsupportedStateError: ai, points and custom ladders are not challenge-enabled
    """
    strategy = _STRATEGIES.get(system)
    if strategy is None:
        raise UnsupportedStateError(system.value)
    return strategy
