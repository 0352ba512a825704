from datetime import datetime
from enum import Enum
from typing import Optional
from sqlalchemy import Index, text
from sqlmodel import SQLModel, Field


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"  # team deleted while pending


class Invitation(SQLModel, table=True):
    """Leader-initiated invitation, resolved by the invited user."""
    __tablename__ = "team_invitations"
    __table_args__ = (
        Index(
            "unique_pending_invitation",
            "team_id",
            "invited_user_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    team_id: int = Field(foreign_key="teams.id", index=True)
    invited_user_id: int = Field(foreign_key="users.id", index=True)
    invited_by_user_id: int = Field(foreign_key="users.id")
    status: str = Field(default=InvitationStatus.PENDING.value, index=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    responded_at: Optional[datetime] = Field(default=None)
