"""
User and Team Models
SQLAlchemy 2.0 with PostgreSQL

Profile and team membership tables are owned by the account features of the
application; the poker repository only reads them (plus the last_active
stamp on users).
"""
from datetime import datetime, timezone
from typing import Optional, List
from enum import Enum as PyEnum
import uuid

from sqlalchemy import (
    String, DateTime, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def generate_uuid(prefix: str = "") -> str:
    """Generate a prefixed UUID"""
    return f"{prefix}{uuid.uuid4().hex[:12]}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# ENUMS (Python-side for type safety)
# ============================================

class UserType(str, PyEnum):
    GUEST = "GUEST"
    REGISTERED = "REGISTERED"
    ADMIN = "ADMIN"


class TeamRole(str, PyEnum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


# ============================================
# USER MODELS
# ============================================

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, default=lambda: generate_uuid("user_"))
    # Guests have no email
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(20), default=UserType.GUEST.value, nullable=False)
    avatar: Mapped[str] = mapped_column(String(100), default="robohash", nullable=False)
    picture: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    last_active: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Relationships
    team_memberships: Mapped[List["TeamUser"]] = relationship(back_populates="user", cascade="all, delete-orphan")


# ============================================
# TEAM MODELS
# ============================================

class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    team_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, default=lambda: generate_uuid("team_"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Relationships
    members: Mapped[List["TeamUser"]] = relationship(back_populates="team", cascade="all, delete-orphan")


class TeamUser(Base):
    __tablename__ = "team_users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    team_id: Mapped[str] = mapped_column(String(50), ForeignKey("teams.team_id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(50), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default=TeamRole.MEMBER.value, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    # Relationships
    team: Mapped["Team"] = relationship(back_populates="members")
    user: Mapped["User"] = relationship(back_populates="team_memberships")

    __table_args__ = (
        UniqueConstraint('team_id', 'user_id', name='uq_team_users_team_user'),
        Index('idx_team_users_user_id', 'user_id'),
    )
