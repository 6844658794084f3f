"""
Unit tests for input sanitizers and configuration helpers.
"""

import pytest

from ladder.config import Config
from ladder.data_models.ladder import ChallengeOutcome, MemberStatus, ScoringConfig, ScoringSystem
from ladder.utils.exceptions import InvalidInputError, InvalidStateError, LadderException
from ladder.utils.sanitizers import (
    parse_outcome, sanitize_member_create_input, sanitize_member_update_input, sanitize_note,
    sanitize_number, sanitize_proof, slugify
)


class TestSanitizeNumber:

    @pytest.mark.parametrize("value,expected", [
        (12.5, 13),
        ("7", 7),
        (" 3.4 ", 3),
        (-5, 0),
        (9999, 500),
    ])
    def test_parses_and_clamps(self, value, expected):
        assert sanitize_number(value, None, 0, 500) == expected

    @pytest.mark.parametrize("value", [None, "abc", float("nan"), True, [1]])
    def test_unparseable_returns_fallback(self, value):
        assert sanitize_number(value, 42, 0, 500) == 42


class TestMemberInput:

    def test_create_input(self):
        sanitized = sanitize_member_create_input({
            "display_name": "  Alpha \n Team ",
            "user_id": "  u-1 ",
            "handle": "   ",
            "status": "INVITED",
            "seed": 0,
            "metadata": {"capsuleId": "cap-1"},
        })

        assert sanitized == {
            "display_name": "Alpha Team",
            "user_id": "u-1",
            "handle": None,
            "status": MemberStatus.INVITED,
            "seed": 1,
            "metadata": {"capsuleId": "cap-1"},
        }

    def test_display_name_is_truncated(self):
        sanitized = sanitize_member_create_input({"display_name": "x" * 100})
        assert len(sanitized["display_name"]) == 80

    def test_update_only_keeps_supplied_keys(self):
        assert sanitize_member_update_input({"wins": "4"}) == {"wins": 4}

    def test_update_rejects_blank_name(self):
        with pytest.raises(InvalidInputError):
            sanitize_member_update_input({"display_name": " "})

    @pytest.mark.parametrize("patch", [
        {"wins": None},
        {"rating": "n/a"},
        {"streak": None},
        {"draws": [2]},
    ])
    def test_update_cannot_clear_record_fields(self, patch):
        with pytest.raises(InvalidInputError):
            sanitize_member_update_input(patch)

    def test_update_may_clear_optional_numbers(self):
        assert sanitize_member_update_input({"seed": None, "rank": "?"}) == {"seed": None, "rank": None}


class TestChallengeInput:

    @pytest.mark.parametrize("value,expected", [
        ("challenger", ChallengeOutcome.CHALLENGER),
        (" OPPONENT ", ChallengeOutcome.OPPONENT),
        ("Draw", ChallengeOutcome.DRAW),
    ])
    def test_parse_outcome(self, value, expected):
        assert parse_outcome(value) == expected

    @pytest.mark.parametrize("value", ["win", "", None, 1])
    def test_parse_outcome_rejects(self, value):
        with pytest.raises(InvalidInputError):
            parse_outcome(value)

    def test_note_and_proof_limits(self):
        assert len(sanitize_note("n" * 500)) == 240
        assert sanitize_note("   ") is None
        assert len(sanitize_proof("p" * 600)) == 512
        assert sanitize_proof(None) is None

    def test_slugify(self):
        assert slugify("  Spring Ladder #2! ") == "spring-ladder-2"
        assert slugify("!!!") == ""


class TestScoringConfig:

    def test_defaults(self):
        scoring = ScoringConfig.from_config(None)
        assert scoring.system == ScoringSystem.ELO
        assert (scoring.initial_rating, scoring.k_factor, scoring.placement_matches) == (1200, 32, 3)

    def test_reads_camel_case_keys_and_ignores_bad_values(self):
        scoring = ScoringConfig.from_config({"scoring": {
            "system": "Simple", "initialRating": 1000, "kFactor": "fast", "bonusForStreak": 2
        }})
        assert scoring.system == ScoringSystem.SIMPLE
        assert scoring.initial_rating == 1000
        assert scoring.k_factor == 32
        assert scoring.bonus_for_streak == 2


class TestErrorsAndConfig:

    def test_error_kinds(self):
        error = InvalidStateError("ladder is archived", "Ladder is archived.")
        assert isinstance(error, InvalidInputError)
        assert isinstance(error, LadderException)
        assert error.kind == "invalid"
        assert error.user_message == "Ladder is archived."

    def test_async_database_url(self, monkeypatch):
        monkeypatch.setattr(Config, "DATABASE_URL", "sqlite:///tmp/ladder.db")
        assert Config.get_async_database_url() == "sqlite+aiosqlite:///tmp/ladder.db"

    def test_validate_rejects_zero_retries(self, monkeypatch):
        monkeypatch.setattr(Config, "OPTIMISTIC_RETRY_ATTEMPTS", 0)
        with pytest.raises(ValueError):
            Config.validate()
