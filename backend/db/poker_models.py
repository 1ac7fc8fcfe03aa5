"""
Planning Poker Models
Games (estimation sessions), their facilitators, participants and stories

Child rows are removed by ON DELETE CASCADE when a game is deleted, either
explicitly or by the age based purge.
"""
from datetime import datetime
from typing import Optional, List
from enum import Enum as PyEnum

from sqlalchemy import (
    String, Text, Boolean, Integer, DateTime, JSON,
    ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .models import generate_uuid, utc_now


class PointAverageRounding(str, PyEnum):
    CEIL = "ceil"
    ROUND = "round"
    FLOOR = "floor"


class PokerGame(Base):
    """Planning poker session

    point_values_allowed is stored as JSON text and decoded by the
    repository so a bad row can be skipped instead of failing a listing.
    join_code and leader_code hold ciphertext only.
    """
    __tablename__ = "poker_games"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    poker_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, default=lambda: generate_uuid("poker_"))
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    voting_locked: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Not a foreign key: stories reference the game, so this would be circular
    active_story_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    point_values_allowed: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    auto_finish_voting: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    point_average_rounding: Mapped[str] = mapped_column(String(10), default=PointAverageRounding.CEIL.value, nullable=False)
    hide_voter_identity: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    join_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    leader_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    team_id: Mapped[Optional[str]] = mapped_column(String(50), ForeignKey("teams.team_id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
    last_active: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    # Relationships
    facilitators: Mapped[List["PokerFacilitator"]] = relationship(back_populates="game", cascade="all, delete-orphan", passive_deletes=True)
    participants: Mapped[List["PokerParticipant"]] = relationship(back_populates="game", cascade="all, delete-orphan", passive_deletes=True)
    stories: Mapped[List["PokerStory"]] = relationship(back_populates="game", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        Index('idx_poker_games_team_id', 'team_id'),
        Index('idx_poker_games_last_active', 'last_active'),
    )


class PokerFacilitator(Base):
    __tablename__ = "poker_facilitators"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    poker_id: Mapped[str] = mapped_column(String(50), ForeignKey("poker_games.poker_id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(50), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    game: Mapped["PokerGame"] = relationship(back_populates="facilitators")

    __table_args__ = (
        UniqueConstraint('poker_id', 'user_id', name='uq_poker_facilitators_game_user'),
    )


class PokerParticipant(Base):
    """A user's membership in a game

    active: connected right now
    abandoned: explicitly left; hides the game from the user's list
    spectator: excluded from voting
    """
    __tablename__ = "poker_users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    poker_id: Mapped[str] = mapped_column(String(50), ForeignKey("poker_games.poker_id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(50), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    abandoned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    spectator: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    game: Mapped["PokerGame"] = relationship(back_populates="participants")

    __table_args__ = (
        UniqueConstraint('poker_id', 'user_id', name='uq_poker_users_game_user'),
        Index('idx_poker_users_user_id', 'user_id'),
    )


class PokerStory(Base):
    __tablename__ = "poker_stories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    story_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, default=lambda: generate_uuid("story_"))
    poker_id: Mapped[str] = mapped_column(String(50), ForeignKey("poker_games.poker_id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    type: Mapped[str] = mapped_column(String(64), default="Story", nullable=False)
    reference_id: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    link: Mapped[str] = mapped_column(Text, default="", nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    acceptance_criteria: Mapped[str] = mapped_column(Text, default="", nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    points: Mapped[str] = mapped_column(String(10), default="", nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    skipped: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # [{"user_id": ..., "vote": ...}]
    votes: Mapped[list] = mapped_column(JSON, default=lambda: [], nullable=False)
    vote_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    vote_end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    game: Mapped["PokerGame"] = relationship(back_populates="stories")

    __table_args__ = (
        Index('idx_poker_stories_poker_position', 'poker_id', 'position'),
    )
