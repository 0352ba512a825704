from datetime import datetime
from enum import Enum
from typing import Optional
from sqlalchemy import Index, text
from sqlmodel import SQLModel, Field

from ..config import DEFAULT_MAX_MEMBERS, DEFAULT_TEAM_AVATAR


class TeamStatus(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class TeamRole(str, Enum):
    LEADER = "leader"
    MEMBER = "member"


class Team(SQLModel, table=True):
    """Player team competing in tournaments."""
    __tablename__ = "teams"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, max_length=100)
    game: str = Field(index=True, max_length=50)
    description: Optional[str] = Field(default=None)
    requirements: Optional[str] = Field(default=None, max_length=200)
    avatar: str = Field(default=DEFAULT_TEAM_AVATAR, max_length=10)
    max_members: int = Field(default=DEFAULT_MAX_MEMBERS)
    is_private: bool = Field(default=False)
    status: str = Field(default=TeamStatus.ACTIVE.value, index=True)  # active, deleted
    created_by: int = Field(foreign_key="users.id")

    wins: int = Field(default=0)
    losses: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    deleted_at: Optional[datetime] = Field(default=None)

    @property
    def team_code(self) -> str:
        return f"T{self.id:06d}"

    @property
    def is_active(self) -> bool:
        return self.status == TeamStatus.ACTIVE.value


class TeamMembership(SQLModel, table=True):
    """Active membership. One row per user across all teams (one-team rule)."""
    __tablename__ = "team_members"
    __table_args__ = (
        Index(
            "unique_team_leader",
            "team_id",
            unique=True,
            sqlite_where=text("role = 'leader'"),
            postgresql_where=text("role = 'leader'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    team_id: int = Field(foreign_key="teams.id", index=True)
    user_id: int = Field(foreign_key="users.id", unique=True)
    role: str = Field(default=TeamRole.MEMBER.value)  # leader, member
    joined_at: datetime = Field(default_factory=datetime.utcnow)
