"""
Engine-wide constants for the ladder competition engine.

This module contains the bounds and defaults shared by the rating model,
the roster sanitizers and the challenge state machine.
"""

class RatingConstants:
    """Constants related to Elo calculations and scoring."""

    # Defaults applied when a ladder's scoring config omits a value
    DEFAULT_INITIAL_RATING = 1200
    DEFAULT_K_FACTOR = 32
    DEFAULT_PLACEMENT_MATCHES = 3

    # Hard rating bounds for every member
    MIN_RATING = 100
    MAX_RATING = 4000

    # Effective K-factor bounds and modifiers
    MIN_K_FACTOR = 4
    MAX_K_FACTOR = 128
    PLACEMENT_MULTIPLIER = 1.5
    STREAK_BONUS_CAP = 5
    STREAK_BONUS_WEIGHT = 0.2

    # Elo logistic curve scale
    ELO_SCALE = 400

class RosterConstants:
    """Input bounds for roster members."""

    MIN_DISPLAY_NAME_LENGTH = 2
    MAX_DISPLAY_NAME_LENGTH = 80
    MAX_HANDLE_LENGTH = 40

    MIN_SEED = 1
    MAX_SEED = 999
    MIN_RANK = 1
    MAX_RANK = 999

    MIN_RECORD = 0
    MAX_RECORD = 500

    MIN_STREAK = -20
    MAX_STREAK = 20

class LadderConstants:
    """Constants for ladder records."""

    MAX_NAME_LENGTH = 80
    DEFAULT_NAME = "Untitled Ladder"
    MAX_SLUG_LENGTH = 64
    SLUG_ATTEMPTS = 4
    MAX_SUMMARY_LENGTH = 1200
    RECENT_DEFAULT_LIMIT = 12
    RECENT_MAX_LIMIT = 32
    MAX_PARTICIPATION_LIMIT = 200

class ChallengeConstants:
    """Constants for challenges and match history."""

    MAX_NOTE_LENGTH = 240
    MAX_PROOF_LENGTH = 512
    MAX_REASON_LENGTH = 120
