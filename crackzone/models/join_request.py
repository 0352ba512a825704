from datetime import datetime
from enum import Enum
from typing import Optional
from sqlalchemy import Index, text
from sqlmodel import SQLModel, Field


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class JoinRequest(SQLModel, table=True):
    """User-initiated request to enter a team, resolved by its leader."""
    __tablename__ = "team_join_requests"
    __table_args__ = (
        Index(
            "unique_pending_join_request",
            "team_id",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    team_id: int = Field(foreign_key="teams.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    message: Optional[str] = Field(default=None)
    status: str = Field(default=RequestStatus.PENDING.value, index=True)
    resolved_by: Optional[int] = Field(default=None, foreign_key="users.id")

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = Field(default=None)
