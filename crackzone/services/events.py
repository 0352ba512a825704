import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol
from sqlmodel import Session

from ..models.notification import Notification

logger = logging.getLogger(__name__)

TEAM_CREATED = "team.created"
TEAM_UPDATED = "team.updated"
TEAM_DELETED = "team.deleted"
TEAM_LEADER_CHANGED = "team.leader_changed"
MEMBER_JOINED = "member.joined"
MEMBER_LEFT = "member.left"
MEMBER_REMOVED = "member.removed"
REQUEST_SUBMITTED = "request.submitted"
REQUEST_CANCELLED = "request.cancelled"
REQUEST_APPROVED = "request.approved"
REQUEST_REJECTED = "request.rejected"
INVITATION_SENT = "invitation.sent"
INVITATION_ACCEPTED = "invitation.accepted"
INVITATION_DECLINED = "invitation.declined"


@dataclass
class DomainEvent:
    name: str
    team_id: int
    actor_id: int
    recipients: List[int] = field(default_factory=list)
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=datetime.utcnow)


class EventSink(Protocol):
    def publish(self, events: List[DomainEvent]) -> None:
        ...


# (notification type, title, message template); payload keys fill the template
NOTIFICATION_TEMPLATES = {
    TEAM_DELETED: ("team", "Team disbanded", "{team_name} was deleted by its leader."),
    TEAM_LEADER_CHANGED: ("team", "New team leader", "You are now the leader of {team_name}."),
    MEMBER_JOINED: ("team", "New teammate", "{username} joined {team_name}."),
    MEMBER_LEFT: ("team", "Teammate left", "{username} left {team_name}."),
    MEMBER_REMOVED: ("team", "Removed from team", "You were removed from {team_name}."),
    REQUEST_SUBMITTED: ("team", "New join request", "{username} wants to join {team_name}."),
    REQUEST_APPROVED: ("team", "Join request approved", "Welcome to {team_name}!"),
    REQUEST_REJECTED: ("team", "Join request rejected", "Your request to join {team_name} was rejected."),
    INVITATION_SENT: ("team_invitation", "Team invitation", "{inviter} invited you to join {team_name}."),
    INVITATION_ACCEPTED: ("team", "Invitation accepted", "{username} accepted your invitation to {team_name}."),
    INVITATION_DECLINED: ("team", "Invitation declined", "{username} declined your invitation to {team_name}."),
}


class NotificationSink:
    """Turns committed domain events into per-user notifications."""

    def __init__(self, db: Session):
        self.db = db

    def publish(self, events: List[DomainEvent]) -> None:
        created = 0
        for event in events:
            logger.info(
                "event %s team=%s actor=%s recipients=%s",
                event.name, event.team_id, event.actor_id, event.recipients
            )
            template = NOTIFICATION_TEMPLATES.get(event.name)
            if template is None:
                continue

            kind, title, message = template
            for user_id in event.recipients:
                self.db.add(Notification(
                    user_id=user_id,
                    type=kind,
                    title=title,
                    message=message.format_map(_Defaulting(event.payload)),
                    data={"event": event.name, "team_id": event.team_id, **_json_safe(event.payload)},
                ))
                created += 1

        if created:
            self.db.commit()


class _Defaulting(dict):
    def __missing__(self, key):
        return "someone"


def _json_safe(payload: Dict[str, Any]) -> Dict[str, Optional[Any]]:
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in payload.items()
    }
