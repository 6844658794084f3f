"""
Shared ranking utilities for ladder rosters.

Provides the two ordering passes used by the rating strategies and the
win/loss/draw bookkeeping applied to match participants. Every ordering pass
reassigns ranks 1..N so a roster never carries gaps or duplicate ranks.
"""

import sys
from dataclasses import replace
from typing import Dict, Iterable, List

from ladder.data_models.ladder import MemberData, RankChange
from ladder.utils.elo import EloCalculator

UNRANKED = sys.maxsize


class RankingUtility:
    """Roster ordering and result bookkeeping."""

    @staticmethod
    def sort_members_by_rating(members: Iterable[MemberData], initial_rating: float) -> List[MemberData]:
        """
        Order a roster for Elo ladders and reassign sequential ranks.

        Tie-breaks: rating desc, wins desc, losses asc, display name asc.
        """
        normalized = [
            replace(member, rating=EloCalculator.normalize_rating(member.rating, initial_rating))
            for member in members
        ]
        normalized.sort(key=lambda member: (
            -member.rating,
            -(member.wins or 0),
            member.losses or 0,
            member.display_name.casefold(),
            member.display_name,
        ))
        return [replace(member, rank=index + 1) for index, member in enumerate(normalized)]

    @staticmethod
    def order_members_with_sequential_ranks(members: Iterable[MemberData]) -> List[MemberData]:
        """
        Order a roster by its current ranks and close any gaps.

        Members without a rank sort last; ties fall back to rating desc,
        wins desc, losses asc.
        """
        ordered = sorted(members, key=lambda member: (
            member.rank if member.rank is not None else UNRANKED,
            -(member.rating or 0),
            -(member.wins or 0),
            member.losses or 0,
        ))
        return [replace(member, rank=index + 1) for index, member in enumerate(ordered)]

    @staticmethod
    def apply_result_stats(member: MemberData, result: str) -> MemberData:
        """Apply a 'win', 'loss' or 'draw' to a member's record and streak."""
        wins = member.wins or 0
        losses = member.losses or 0
        draws = member.draws or 0
        streak = member.streak or 0
        if result == "win":
            return replace(member, wins=wins + 1, streak=streak + 1 if streak >= 0 else 1)
        if result == "loss":
            return replace(member, losses=losses + 1, streak=streak - 1 if streak <= 0 else -1)
        if result == "draw":
            return replace(member, draws=draws + 1, streak=0)
        raise ValueError(f"Unknown match result: {result}")

    @staticmethod
    def diff_ranks(before: Dict[str, int], after: Iterable[MemberData]) -> List[RankChange]:
        """List members whose rank differs between two orderings."""
        changes = []
        for member in after:
            previous = before.get(member.id, member.rank or 0)
            if previous != member.rank:
                changes.append(RankChange(member.id, previous, member.rank))
        return changes

    @staticmethod
    def is_contiguous(members: Iterable[MemberData]) -> bool:
        """True when ranks form exactly the permutation 1..N."""
        ranks = [member.rank for member in members]
        return sorted(ranks) == list(range(1, len(ranks) + 1))
