import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON,
    ForeignKey, Enum as SQLEnum, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship

from ladder.constants import RatingConstants
from ladder.data_models.ladder import (
    LadderStatus, LadderVisibility, MemberStatus, ChallengeStatus,
    ChallengeOutcome, ParticipantType, MemberData, ScoringConfig
)

Base = declarative_base()

def _new_id() -> str:
    return str(uuid.uuid4())

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class CapsuleMembership(Base):
    __tablename__ = 'capsule_memberships'

    id = Column(String(36), primary_key=True, default=_new_id)
    capsule_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    role = Column(String(20), nullable=False, default='member')  # owner, admin, moderator, member

    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint('capsule_id', 'user_id'),)

    def __repr__(self):
        return f"<CapsuleMembership(capsule='{self.capsule_id}', user='{self.user_id}', role='{self.role}')>"

class Ladder(Base):
    __tablename__ = 'capsule_ladders'

    id = Column(String(36), primary_key=True, default=_new_id)
    capsule_id = Column(String(64), nullable=False, index=True)
    name = Column(String(80), nullable=False)
    slug = Column(String(64), nullable=True)
    summary = Column(Text, nullable=True)
    status = Column(SQLEnum(LadderStatus), nullable=False, default=LadderStatus.DRAFT)
    visibility = Column(SQLEnum(LadderVisibility), nullable=False, default=LadderVisibility.CAPSULE)

    # Free-form configuration; scoring lives under config["scoring"]
    game = Column(JSON, nullable=True)
    config = Column(JSON, nullable=True)
    sections = Column(JSON, nullable=True)
    meta = Column(JSON, nullable=True)

    created_by_id = Column(String(64), nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    published_by_id = Column(String(64), nullable=True)

    # Optimistic concurrency key, bumped by every mutating write
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    members = relationship("LadderMember", back_populates="ladder", cascade="all, delete-orphan",
                           passive_deletes=True)

    __table_args__ = (UniqueConstraint('capsule_id', 'slug'),)

    @property
    def scoring(self) -> ScoringConfig:
        return ScoringConfig.from_config(self.config)

    def __repr__(self):
        return f"<Ladder(name='{self.name}', status='{self.status.value}', version={self.version})>"

class LadderMember(Base):
    __tablename__ = 'capsule_ladder_members'

    id = Column(String(36), primary_key=True, default=_new_id)
    ladder_id = Column(String(36), ForeignKey('capsule_ladders.id', ondelete='CASCADE'),
                       nullable=False, index=True)
    user_id = Column(String(64), nullable=True)  # Null for alias/guest entrants
    display_name = Column(String(80), nullable=False)
    handle = Column(String(40), nullable=True)
    status = Column(SQLEnum(MemberStatus), nullable=False, default=MemberStatus.ACTIVE)

    seed = Column(Integer, nullable=True)
    rank = Column(Integer, nullable=True)
    rating = Column(Integer, nullable=False, default=RatingConstants.DEFAULT_INITIAL_RATING)
    wins = Column(Integer, nullable=False, default=0)
    losses = Column(Integer, nullable=False, default=0)
    draws = Column(Integer, nullable=False, default=0)
    streak = Column(Integer, nullable=False, default=0)

    member_metadata = Column('metadata', JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    ladder = relationship("Ladder", back_populates="members")

    __table_args__ = (UniqueConstraint('ladder_id', 'user_id'),)

    def to_data(self) -> MemberData:
        """Snapshot for the rating model"""
        return MemberData(
            id=self.id,
            display_name=self.display_name,
            rating=self.rating,
            rank=self.rank,
            wins=self.wins or 0,
            losses=self.losses or 0,
            draws=self.draws or 0,
            streak=self.streak or 0,
            seed=self.seed,
            user_id=self.user_id,
            handle=self.handle,
            status=self.status or MemberStatus.ACTIVE,
            metadata=self.member_metadata,
        )

    def __repr__(self):
        return f"<LadderMember(name='{self.display_name}', rank={self.rank}, rating={self.rating})>"

class LadderChallenge(Base):
    __tablename__ = 'capsule_ladder_challenges'

    id = Column(String(36), primary_key=True, default=_new_id)
    ladder_id = Column(String(36), ForeignKey('capsule_ladders.id', ondelete='CASCADE'), nullable=False)
    participant_type = Column(SQLEnum(ParticipantType), nullable=False, default=ParticipantType.MEMBER)

    # Member ids are plain references: roster replacement deletes and reinserts rows
    challenger_id = Column(String(36), nullable=False, index=True)
    opponent_id = Column(String(36), nullable=False, index=True)
    challenger_capsule_id = Column(String(64), nullable=True)
    opponent_capsule_id = Column(String(64), nullable=True)

    status = Column(SQLEnum(ChallengeStatus), nullable=False, default=ChallengeStatus.PENDING)
    void_reason = Column(String(120), nullable=True)
    note = Column(Text, nullable=True)
    proof_url = Column(Text, nullable=True)

    created_by_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    created_version = Column(Integer, nullable=False, default=0)  # Ladder version at creation
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    # Result (filled when the challenge is resolved)
    outcome = Column(SQLEnum(ChallengeOutcome), nullable=True)
    reported_at = Column(DateTime(timezone=True), nullable=True)
    reported_by_id = Column(String(64), nullable=True)
    result_note = Column(Text, nullable=True)
    rank_changes = Column(JSON, nullable=True)
    rating_changes = Column(JSON, nullable=True)

    __table_args__ = (Index('ix_ladder_challenges_ladder_status', 'ladder_id', 'status'),)

    @property
    def result(self):
        """Result sub-object, or None while pending/void"""
        if self.outcome is None:
            return None
        return {
            "outcome": self.outcome.value,
            "reportedAt": self.reported_at.isoformat() if self.reported_at else None,
            "reportedById": self.reported_by_id,
            "note": self.result_note,
            "rankChanges": list(self.rank_changes or []),
            "ratingChanges": list(self.rating_changes or []),
        }

    def __repr__(self):
        return f"<LadderChallenge(id='{self.id}', status='{self.status.value}')>"

class LadderHistory(Base):
    __tablename__ = 'capsule_ladder_history'

    id = Column(String(36), primary_key=True, default=_new_id)
    ladder_id = Column(String(36), ForeignKey('capsule_ladders.id', ondelete='CASCADE'),
                       nullable=False, index=True)
    challenge_id = Column(String(36), ForeignKey('capsule_ladder_challenges.id', ondelete='SET NULL'),
                          nullable=True, index=True)
    participant_type = Column(SQLEnum(ParticipantType), nullable=False, default=ParticipantType.MEMBER)
    challenger_id = Column(String(36), nullable=False)
    opponent_id = Column(String(36), nullable=False)
    challenger_capsule_id = Column(String(64), nullable=True)
    opponent_capsule_id = Column(String(64), nullable=True)

    outcome = Column(SQLEnum(ChallengeOutcome), nullable=False)
    note = Column(Text, nullable=True)
    proof_url = Column(Text, nullable=True)
    rank_changes = Column(JSON, nullable=True)
    rating_changes = Column(JSON, nullable=True)

    resolved_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolved_version = Column(Integer, nullable=False, default=0)  # Ladder version at resolution

    def __repr__(self):
        return f"<LadderHistory(challenge='{self.challenge_id}', outcome='{self.outcome.value}')>"
