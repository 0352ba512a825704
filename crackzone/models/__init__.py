from .user import User
from .session import Session
from .team import Team, TeamMembership, TeamRole, TeamStatus
from .join_request import JoinRequest, RequestStatus
from .invitation import Invitation, InvitationStatus
from .notification import Notification

__all__ = [
    "User",
    "Session",
    "Team",
    "TeamMembership",
    "TeamRole",
    "TeamStatus",
    "JoinRequest",
    "RequestStatus",
    "Invitation",
    "InvitationStatus",
    "Notification",
]
