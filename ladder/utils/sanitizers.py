"""
Input sanitizers for ladder, roster and challenge payloads.

Free-form caller input is normalized here before it reaches the operations
layer: text is trimmed and whitespace-collapsed, numbers are clamped to the
documented bounds, enums are parsed case-insensitively.
"""

import math
import re
import secrets
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from ladder.constants import ChallengeConstants, LadderConstants, RatingConstants, RosterConstants
from ladder.data_models.ladder import ChallengeOutcome, MemberStatus
from ladder.utils.exceptions import InvalidInputError

E = TypeVar("E", bound=Enum)

_WHITESPACE = re.compile(r"\s+")
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")

# (key, min, max) for numeric roster fields
_MEMBER_NUMERIC_BOUNDS = (
    ("seed", RosterConstants.MIN_SEED, RosterConstants.MAX_SEED),
    ("rank", RosterConstants.MIN_RANK, RosterConstants.MAX_RANK),
    ("rating", RatingConstants.MIN_RATING, RatingConstants.MAX_RATING),
    ("wins", RosterConstants.MIN_RECORD, RosterConstants.MAX_RECORD),
    ("losses", RosterConstants.MIN_RECORD, RosterConstants.MAX_RECORD),
    ("draws", RosterConstants.MIN_RECORD, RosterConstants.MAX_RECORD),
    ("streak", RosterConstants.MIN_STREAK, RosterConstants.MAX_STREAK),
)

# Columns that cannot be cleared by an update
_REQUIRED_MEMBER_NUMBERS = ("rating", "wins", "losses", "draws", "streak")


def normalize_id(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def normalize_name(name: Any) -> str:
    cleaned = sanitize_text(name, LadderConstants.MAX_NAME_LENGTH)
    return cleaned or LadderConstants.DEFAULT_NAME


def sanitize_text(value: Any, max_length: int, fallback: Optional[str] = None) -> Optional[str]:
    if not isinstance(value, str):
        return fallback
    compact = _WHITESPACE.sub(" ", value).strip()
    if not compact:
        return fallback
    return compact[:max_length]


def sanitize_number(value: Any, fallback: Optional[int], minimum: int = None,
                    maximum: int = None) -> Optional[int]:
    """Parse and clamp a number; returns fallback when it cannot be parsed."""
    resolved = None
    if isinstance(value, bool):
        resolved = None
    elif isinstance(value, (int, float)):
        resolved = value
    elif isinstance(value, str):
        try:
            resolved = float(value.strip())
        except ValueError:
            resolved = None
    if resolved is None or not math.isfinite(resolved):
        return fallback
    if minimum is not None and resolved < minimum:
        resolved = minimum
    if maximum is not None and resolved > maximum:
        resolved = maximum
    return int(math.floor(resolved + 0.5))


def parse_enum(enum_cls: Type[E], value: Any, field_name: str) -> E:
    """Parse an enum member from its value, case-insensitively."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        cleaned = value.strip().lower()
        for member in enum_cls:
            if member.value == cleaned:
                return member
    allowed = ", ".join(member.value for member in enum_cls)
    raise InvalidInputError(
        f"Invalid {field_name} {value!r}",
        f"{field_name} must be one of: {allowed}."
    )


def parse_outcome(value: Any) -> ChallengeOutcome:
    return parse_enum(ChallengeOutcome, value, "outcome")


def sanitize_note(value: Any) -> Optional[str]:
    return sanitize_text(value, ChallengeConstants.MAX_NOTE_LENGTH)


def sanitize_proof(value: Any) -> Optional[str]:
    """Proof references are opaque; only trimmed and length-capped."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed[:ChallengeConstants.MAX_PROOF_LENGTH] or None


def slugify(value: str) -> str:
    return _SLUG_STRIP.sub("-", (value or "").lower()).strip("-")


def random_slug_suffix() -> str:
    return secrets.token_hex(3)


def _sanitize_display_name(value: Any) -> str:
    name = sanitize_text(value, RosterConstants.MAX_DISPLAY_NAME_LENGTH)
    if not name:
        raise InvalidInputError("Member display name missing", "Each member must include a display name.")
    if len(name) < RosterConstants.MIN_DISPLAY_NAME_LENGTH:
        raise InvalidInputError(
            f"Member display name {name!r} too short",
            f"Display names need at least {RosterConstants.MIN_DISPLAY_NAME_LENGTH} characters."
        )
    return name


def _sanitize_member_fields(source: Mapping[str, Any], sanitized: Dict[str, Any]) -> Dict[str, Any]:
    if "user_id" in source:
        sanitized["user_id"] = normalize_id(source["user_id"])
    if "handle" in source:
        sanitized["handle"] = sanitize_text(source["handle"], RosterConstants.MAX_HANDLE_LENGTH)
    if "status" in source and source["status"] is not None:
        sanitized["status"] = parse_enum(MemberStatus, source["status"], "status")
    for key, minimum, maximum in _MEMBER_NUMERIC_BOUNDS:
        if key in source:
            sanitized[key] = sanitize_number(source[key], None, minimum, maximum)
    if "metadata" in source:
        metadata = source["metadata"]
        sanitized["metadata"] = dict(metadata) if isinstance(metadata, Mapping) else None
    return sanitized


def sanitize_member_create_input(member: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate a new roster entry; display name is required."""
    if not isinstance(member, Mapping):
        raise InvalidInputError("Member payload must be a mapping", "Invalid member payload.")
    sanitized = {"display_name": _sanitize_display_name(member.get("display_name"))}
    return _sanitize_member_fields(member, sanitized)


def sanitize_member_update_input(patch: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate a partial member update; only supplied keys are kept."""
    if not isinstance(patch, Mapping):
        raise InvalidInputError("Member patch must be a mapping", "Invalid member payload.")
    sanitized: Dict[str, Any] = {}
    if "display_name" in patch:
        sanitized["display_name"] = _sanitize_display_name(patch["display_name"])
    sanitized = _sanitize_member_fields(patch, sanitized)
    for key in _REQUIRED_MEMBER_NUMBERS:
        if key in sanitized and sanitized[key] is None:
            raise InvalidInputError(
                f"Member {key} {patch[key]!r} is not a number",
                f"{key.capitalize()} must be a number."
            )
    return sanitized
