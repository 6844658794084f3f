import math
from typing import Any

from ladder.constants import RatingConstants
from ladder.data_models.ladder import MemberData, ScoringConfig

class EloCalculator:
    """Handles Elo rating calculations for ladder matches"""

    @staticmethod
    def normalize_rating(value: Any, initial_rating: float) -> int:
        """
        Clamp a rating into the ladder bounds

        Args:
            value: Stored rating (may be missing or malformed)
            initial_rating: Fallback used when value is not a finite number

        Returns:
            Rating rounded to the nearest integer within [MIN_RATING, MAX_RATING]
        """
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            value = initial_rating
        rating = math.floor(value + 0.5)
        return min(RatingConstants.MAX_RATING, max(RatingConstants.MIN_RATING, rating))

    @staticmethod
    def calculate_expected_score(rating_a: float, rating_b: float) -> float:
        """
        Calculate the expected score for player A against player B

        Args:
            rating_a: Player A's current Elo rating
            rating_b: Player B's current Elo rating

        Returns:
            Expected score (0.0 to 1.0) for player A
        """
        return 1 / (1 + math.pow(10, (rating_b - rating_a) / RatingConstants.ELO_SCALE))

    @staticmethod
    def get_k_factor(member: MemberData, scoring: ScoringConfig) -> int:
        """
        Get the effective K-factor for a member

        Placement matches multiply the base K, an active win streak adds a
        bonus when the ladder configures one.

        Args:
            member: Member about to play
            scoring: Ladder scoring configuration

        Returns:
            K-factor to use in Elo calculation
        """
        base_k = scoring.k_factor or RatingConstants.DEFAULT_K_FACTOR
        placement_boost = (
            RatingConstants.PLACEMENT_MULTIPLIER
            if member.matches_played < scoring.placement_matches
            else 1
        )
        streak = member.streak or 0
        streak_bonus = 0
        if scoring.bonus_for_streak and streak > 1:
            streak_bonus = (
                min(streak, RatingConstants.STREAK_BONUS_CAP)
                * scoring.bonus_for_streak
                * RatingConstants.STREAK_BONUS_WEIGHT
            )
        adjusted = math.floor(base_k * placement_boost + streak_bonus + 0.5)
        return min(RatingConstants.MAX_K_FACTOR, max(RatingConstants.MIN_K_FACTOR, adjusted))

    @staticmethod
    def calculate_elo_change(current_rating: float, opponent_rating: float,
                             actual_score: float, k_factor: int) -> int:
        """
        Calculate the Elo rating change for a player

        Args:
            current_rating: Player's pre-match Elo rating
            opponent_rating: Opponent's pre-match Elo rating
            actual_score: Actual score (1.0 for win, 0.5 for draw, 0.0 for loss)
            k_factor: Effective K-factor for the player

        Returns:
            Elo rating change (can be positive or negative)
        """
        expected_score = EloCalculator.calculate_expected_score(current_rating, opponent_rating)
        return math.floor(k_factor * (actual_score - expected_score) + 0.5)

    @staticmethod
    def format_elo_change(elo_change: int) -> str:
        """Format Elo change for display"""
        if elo_change > 0:
            return f"+{elo_change}"
        elif elo_change < 0:
            return str(elo_change)
        else:
            return "±0"
