"""
Ladder data models for the rating model and challenge state machine.

Provides immutable data transfer objects that the pure rating code works on,
decoupled from the SQLAlchemy rows they are loaded from.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ladder.constants import RatingConstants


class LadderStatus(Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class LadderVisibility(Enum):
    PRIVATE = "private"
    CAPSULE = "capsule"
    PUBLIC = "public"


class MemberStatus(Enum):
    PENDING = "pending"
    INVITED = "invited"
    ACTIVE = "active"
    REJECTED = "rejected"
    BANNED = "banned"


class ChallengeStatus(Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    VOID = "void"


class ChallengeOutcome(Enum):
    CHALLENGER = "challenger"
    OPPONENT = "opponent"
    DRAW = "draw"


class ParticipantType(Enum):
    MEMBER = "member"
    CAPSULE = "capsule"


class ScoringSystem(Enum):
    SIMPLE = "simple"
    ELO = "elo"
    AI = "ai"
    POINTS = "points"
    CUSTOM = "custom"

    @classmethod
    def normalize(cls, value: Any) -> "ScoringSystem":
        """Map a free-form scoring label onto a known system (defaults to Elo)."""
        if isinstance(value, ScoringSystem):
            return value
        if not isinstance(value, str):
            return cls.ELO
        cleaned = value.strip().lower()
        for system in cls:
            if cleaned == system.value:
                return system
        if "ai" in cleaned:
            return cls.AI
        if "simple" in cleaned or "casual" in cleaned or "points" in cleaned:
            return cls.SIMPLE
        return cls.ELO


@dataclass(frozen=True)
class ScoringConfig:
    """Resolved scoring parameters for a ladder."""
    system: ScoringSystem = ScoringSystem.ELO
    initial_rating: int = RatingConstants.DEFAULT_INITIAL_RATING
    k_factor: float = RatingConstants.DEFAULT_K_FACTOR
    placement_matches: int = RatingConstants.DEFAULT_PLACEMENT_MATCHES
    decay_per_day: float = 0
    bonus_for_streak: float = 0

    @classmethod
    def from_config(cls, config: Optional[Mapping[str, Any]]) -> "ScoringConfig":
        """Build from a ladder ``config`` map (``{"scoring": {...}}``)."""
        scoring = {}
        if isinstance(config, Mapping) and isinstance(config.get("scoring"), Mapping):
            scoring = config["scoring"]

        def pick(key: str, default):
            value = scoring.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return default
            return value

        return cls(
            system=ScoringSystem.normalize(scoring.get("system")),
            initial_rating=pick("initialRating", RatingConstants.DEFAULT_INITIAL_RATING),
            k_factor=pick("kFactor", RatingConstants.DEFAULT_K_FACTOR),
            placement_matches=pick("placementMatches", RatingConstants.DEFAULT_PLACEMENT_MATCHES),
            decay_per_day=pick("decayPerDay", 0),
            bonus_for_streak=pick("bonusForStreak", 0),
        )


@dataclass(frozen=True)
class MemberData:
    """A roster entry as seen by the rating model."""
    id: str
    display_name: str
    rating: Optional[float] = None
    rank: Optional[int] = None
    wins: int = 0
    losses: int = 0
    draws: int = 0
    streak: int = 0
    seed: Optional[int] = None
    user_id: Optional[str] = None
    handle: Optional[str] = None
    status: MemberStatus = MemberStatus.ACTIVE
    metadata: Optional[Dict[str, Any]] = None

    @property
    def matches_played(self) -> int:
        return (self.wins or 0) + (self.losses or 0) + (self.draws or 0)

    def to_row(self) -> Dict[str, Any]:
        """Repository row for a roster replace; keeps the member id stable."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "handle": self.handle,
            "status": self.status,
            "seed": self.seed,
            "rank": self.rank,
            "rating": self.rating,
            "wins": self.wins,
            "losses": self.losses,
            "draws": self.draws,
            "streak": self.streak,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class RankChange:
    """A member whose rank moved as a result of a match."""
    member_id: str
    from_rank: int
    to_rank: int

    def to_dict(self) -> Dict[str, Any]:
        return {"memberId": self.member_id, "from": self.from_rank, "to": self.to_rank}


@dataclass(frozen=True)
class RatingChange:
    """Rating movement for one match participant."""
    member_id: str
    from_rating: int
    to_rating: int
    delta: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memberId": self.member_id,
            "from": self.from_rating,
            "to": self.to_rating,
            "delta": self.delta,
        }


@dataclass(frozen=True)
class OutcomeResult:
    """Roster after a match plus the rank and rating deltas it produced."""
    members: List[MemberData]
    rank_changes: List[RankChange] = field(default_factory=list)
    rating_changes: List[RatingChange] = field(default_factory=list)
