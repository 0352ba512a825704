"""Join requests and invitations.

Requests are raised by players and resolved by the team leader; invitations
are raised by the leader and resolved by the invited player. Either way the
actual admission goes through ``membership.join_via_approval``, which re-checks
capacity and the one-team rule at commit time.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlmodel import Session, select

from ..config import USER_SEARCH_LIMIT
from ..models import (
    Invitation,
    InvitationStatus,
    JoinRequest,
    RequestStatus,
    Team,
    TeamMembership,
    User,
)
from . import events as ev
from .events import DomainEvent
from .membership import (
    already_in_team,
    count_members,
    find_team_by_code,
    get_active_team,
    get_leader_id,
    get_membership,
    get_team_membership,
    is_leader,
    join_via_approval,
    lock_team,
    lock_user,
)
from .results import Err, ErrorKind, Ok, Result
from .transaction import atomic

logger = logging.getLogger(__name__)

APPROVE = "approve"
REJECT = "reject"
ACCEPT = "accept"
DECLINE = "decline"


def _lock_request(db: Session, request_id: int) -> Optional[JoinRequest]:
    statement = (
        select(JoinRequest)
        .where(JoinRequest.id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.exec(statement).first()


def _lock_invitation(db: Session, invitation_id: int) -> Optional[Invitation]:
    statement = (
        select(Invitation)
        .where(Invitation.id == invitation_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.exec(statement).first()


# --- Join requests ---

def _submit(
    db: Session,
    events: List[DomainEvent],
    user_id: int,
    team: Team,
    message: Optional[str]
) -> Result:
    user = lock_user(db, user_id)
    if user is None:
        return Err(ErrorKind.NOT_FOUND, "User not found")

    membership = get_membership(db, user_id)
    if membership:
        return already_in_team(db, membership)

    pending = db.exec(
        select(JoinRequest.id).where(
            JoinRequest.team_id == team.id,
            JoinRequest.user_id == user_id,
            JoinRequest.status == RequestStatus.PENDING.value
        )
    ).first()
    if pending is not None:
        return Err(ErrorKind.DUPLICATE_PENDING, "You already have a pending request for this team")

    # Advisory only; approval re-checks under the team lock
    if count_members(db, team.id) >= team.max_members:
        return Err(ErrorKind.TEAM_FULL)

    request = JoinRequest(team_id=team.id, user_id=user_id, message=message or None)
    db.add(request)
    db.flush()

    leader_id = get_leader_id(db, team.id)
    events.append(DomainEvent(
        name=ev.REQUEST_SUBMITTED,
        team_id=team.id,
        actor_id=user_id,
        recipients=[leader_id] if leader_id else [],
        payload={"team_name": team.name, "username": user.username, "request_id": request.id},
    ))
    return Ok(request)


@atomic(on_conflict=ErrorKind.DUPLICATE_PENDING)
def submit_join_request(
    db: Session,
    events: List[DomainEvent],
    user_id: int,
    team_id: int,
    message: Optional[str] = None
) -> Result:
    team = get_active_team(db, team_id)
    # Private teams are reached through their join code only
    if team is None or team.is_private:
        return Err(ErrorKind.NOT_FOUND, "Team not found")
    return _submit(db, events, user_id, team, message)


@atomic(on_conflict=ErrorKind.DUPLICATE_PENDING)
def submit_join_request_by_code(
    db: Session,
    events: List[DomainEvent],
    user_id: int,
    team_code: str,
    message: Optional[str] = None
) -> Result:
    team = find_team_by_code(db, team_code)
    if team is None:
        return Err(ErrorKind.NOT_FOUND, "No team with that code")
    return _submit(db, events, user_id, team, message)


@atomic(on_conflict=ErrorKind.INVALID_STATE)
def cancel_join_request(
    db: Session,
    events: List[DomainEvent],
    user_id: int,
    request_id: int
) -> Result:
    request = _lock_request(db, request_id)
    if request is None:
        return Err(ErrorKind.NOT_FOUND, "Join request not found")

    if request.user_id != user_id:
        return Err(ErrorKind.FORBIDDEN, "You can only cancel your own requests")

    if request.status != RequestStatus.PENDING.value:
        return Err(ErrorKind.INVALID_STATE, f"Join request is already {request.status}")

    now = datetime.utcnow()
    request.status = RequestStatus.CANCELLED.value
    request.updated_at = now
    request.resolved_at = now
    db.add(request)
    db.flush()

    events.append(DomainEvent(
        name=ev.REQUEST_CANCELLED,
        team_id=request.team_id,
        actor_id=user_id,
        payload={"request_id": request.id},
    ))
    return Ok(request)


@atomic(on_conflict=ErrorKind.TEAM_FULL)
def resolve_join_request(
    db: Session,
    events: List[DomainEvent],
    actor_id: int,
    request_id: int,
    decision: str,
    team_id: Optional[int] = None
) -> Result:
    """Approve or reject a pending request (leader only).

    Resolving an already resolved request is ``InvalidState``, never a no-op.
    A failed approval leaves the request pending.
    """
    if decision not in (APPROVE, REJECT):
        raise ValueError(f"Unknown decision: {decision}")

    request = db.get(JoinRequest, request_id)
    if request is None or (team_id is not None and request.team_id != team_id):
        return Err(ErrorKind.NOT_FOUND, "Join request not found")

    # Lock order: user, team, then the request itself
    user = lock_user(db, request.user_id)
    team = lock_team(db, request.team_id)
    request = _lock_request(db, request_id)
    if team is None:
        return Err(ErrorKind.NOT_FOUND, "Team not found")

    if not is_leader(db, team.id, actor_id):
        return Err(ErrorKind.FORBIDDEN, "Only team leaders can manage join requests")

    if request.status != RequestStatus.PENDING.value:
        return Err(ErrorKind.INVALID_STATE, f"Join request is already {request.status}")

    if decision == APPROVE:
        admitted = join_via_approval(db, events, team, user, actor_id, keep_request_id=request.id)
        if isinstance(admitted, Err):
            return admitted
        request.status = RequestStatus.APPROVED.value
        name = ev.REQUEST_APPROVED
    else:
        request.status = RequestStatus.REJECTED.value
        name = ev.REQUEST_REJECTED

    now = datetime.utcnow()
    request.resolved_by = actor_id
    request.resolved_at = now
    request.updated_at = now
    db.add(request)
    db.flush()

    events.append(DomainEvent(
        name=name,
        team_id=team.id,
        actor_id=actor_id,
        recipients=[request.user_id],
        payload={"team_name": team.name, "request_id": request.id},
    ))
    return Ok(request)


def request_view(request: JoinRequest, user: User, team: Team) -> Dict[str, Any]:
    return {
        "id": request.id,
        "team_id": team.id,
        "team_name": team.name,
        "game": team.game,
        "user_id": user.id,
        "username": user.username,
        "message": request.message,
        "status": request.status,
        "created_at": request.created_at,
    }


def list_team_join_requests(db: Session, actor_id: int, team_id: int) -> Result:
    team = get_active_team(db, team_id)
    if team is None:
        return Err(ErrorKind.NOT_FOUND, "Team not found")

    if not is_leader(db, team_id, actor_id):
        return Err(ErrorKind.FORBIDDEN, "Only team leaders can view join requests")

    rows = db.exec(
        select(JoinRequest, User)
        .join(User, User.id == JoinRequest.user_id)
        .where(
            JoinRequest.team_id == team_id,
            JoinRequest.status == RequestStatus.PENDING.value
        )
        .order_by(JoinRequest.created_at, JoinRequest.id)
    ).all()
    return Ok([request_view(request, user, team) for request, user in rows])


def list_my_join_requests(db: Session, user_id: int) -> List[Dict[str, Any]]:
    user = db.get(User, user_id)
    rows = db.exec(
        select(JoinRequest, Team)
        .join(Team, Team.id == JoinRequest.team_id)
        .where(
            JoinRequest.user_id == user_id,
            JoinRequest.status == RequestStatus.PENDING.value
        )
        .order_by(JoinRequest.created_at.desc(), JoinRequest.id.desc())
    ).all()
    return [request_view(request, user, team) for request, team in rows]


# --- Invitations ---

@atomic(on_conflict=ErrorKind.DUPLICATE_PENDING)
def invite_user(
    db: Session,
    events: List[DomainEvent],
    actor_id: int,
    team_id: int,
    user_id: Optional[int] = None,
    username: Optional[str] = None
) -> Result:
    """Invite a player by id or username (leader only)."""
    team = lock_team(db, team_id)
    if team is None:
        return Err(ErrorKind.NOT_FOUND, "Team not found")

    if not is_leader(db, team_id, actor_id):
        return Err(ErrorKind.FORBIDDEN, "Only team leaders can invite players")

    if user_id is not None:
        target = db.get(User, user_id)
    elif username:
        target = db.exec(select(User).where(User.username == username)).first()
    else:
        target = None
    if target is None:
        return Err(ErrorKind.NOT_FOUND, "User not found")

    if get_team_membership(db, team_id, target.id):
        return Err(ErrorKind.ALREADY_IN_TEAM, f"{target.username} is already a member of this team")

    pending = db.exec(
        select(Invitation.id).where(
            Invitation.team_id == team_id,
            Invitation.invited_user_id == target.id,
            Invitation.status == InvitationStatus.PENDING.value
        )
    ).first()
    if pending is not None:
        return Err(ErrorKind.DUPLICATE_PENDING, f"{target.username} already has a pending invitation")

    if count_members(db, team_id) >= team.max_members:
        return Err(ErrorKind.TEAM_FULL)

    inviter = db.get(User, actor_id)
    invitation = Invitation(
        team_id=team_id,
        invited_user_id=target.id,
        invited_by_user_id=actor_id
    )
    db.add(invitation)
    db.flush()

    events.append(DomainEvent(
        name=ev.INVITATION_SENT,
        team_id=team_id,
        actor_id=actor_id,
        recipients=[target.id],
        payload={
            "team_name": team.name,
            "inviter": inviter.username,
            "username": target.username,
            "invitation_id": invitation.id,
        },
    ))
    return Ok(invitation)


@atomic(on_conflict=ErrorKind.ALREADY_IN_TEAM)
def respond_to_invitation(
    db: Session,
    events: List[DomainEvent],
    user_id: int,
    invitation_id: int,
    decision: str
) -> Result:
    """Accept or decline an invitation addressed to the caller.

    Accepting re-runs the admission checks: time has passed since the leader
    sent it.
    """
    if decision not in (ACCEPT, DECLINE):
        raise ValueError(f"Unknown decision: {decision}")

    invitation = db.get(Invitation, invitation_id)
    if invitation is None or invitation.invited_user_id != user_id:
        return Err(ErrorKind.NOT_FOUND, "Invitation not found")

    user = lock_user(db, user_id)
    team = lock_team(db, invitation.team_id)
    invitation = _lock_invitation(db, invitation_id)

    if invitation.status != InvitationStatus.PENDING.value:
        return Err(ErrorKind.INVALID_STATE, f"Invitation is already {invitation.status}")

    if team is None:
        return Err(ErrorKind.NOT_FOUND, "Team not found")

    if decision == ACCEPT:
        admitted = join_via_approval(db, events, team, user, user_id)
        if isinstance(admitted, Err):
            return admitted
        invitation.status = InvitationStatus.ACCEPTED.value
        name = ev.INVITATION_ACCEPTED
    else:
        invitation.status = InvitationStatus.DECLINED.value
        name = ev.INVITATION_DECLINED

    now = datetime.utcnow()
    invitation.responded_at = now
    invitation.updated_at = now
    db.add(invitation)
    db.flush()

    events.append(DomainEvent(
        name=name,
        team_id=team.id,
        actor_id=user_id,
        recipients=[invitation.invited_by_user_id],
        payload={"team_name": team.name, "username": user.username, "invitation_id": invitation.id},
    ))
    return Ok(invitation)


def invitation_view(invitation: Invitation, team: Team, inviter: User) -> Dict[str, Any]:
    return {
        "id": invitation.id,
        "team_id": team.id,
        "team_name": team.name,
        "game": team.game,
        "invited_user_id": invitation.invited_user_id,
        "invited_by": inviter.username,
        "status": invitation.status,
        "created_at": invitation.created_at,
    }


def list_my_invitations(db: Session, user_id: int) -> List[Dict[str, Any]]:
    rows = db.exec(
        select(Invitation, Team, User)
        .join(Team, Team.id == Invitation.team_id)
        .join(User, User.id == Invitation.invited_by_user_id)
        .where(
            Invitation.invited_user_id == user_id,
            Invitation.status == InvitationStatus.PENDING.value
        )
        .order_by(Invitation.created_at.desc(), Invitation.id.desc())
    ).all()
    return [invitation_view(invitation, team, inviter) for invitation, team, inviter in rows]


def search_users(db: Session, actor_id: int, team_id: int, query: str) -> Result:
    """Find players to invite (leader only)."""
    team = get_active_team(db, team_id)
    if team is None:
        return Err(ErrorKind.NOT_FOUND, "Team not found")

    if not is_leader(db, team_id, actor_id):
        return Err(ErrorKind.FORBIDDEN, "Only team leaders can search for players")

    query = (query or "").strip()
    if not query:
        return Ok([])

    users = db.exec(
        select(User)
        .where(User.username.ilike(f"%{query}%"), User.id != actor_id)
        .order_by(User.username)
        .limit(USER_SEARCH_LIMIT)
    ).all()

    user_ids = [user.id for user in users]
    memberships = {
        m.user_id: m.team_id
        for m in db.exec(select(TeamMembership).where(TeamMembership.user_id.in_(user_ids))).all()
    } if user_ids else {}
    invited = set(db.exec(
        select(Invitation.invited_user_id).where(
            Invitation.team_id == team_id,
            Invitation.status == InvitationStatus.PENDING.value
        )
    ).all())

    return Ok([
        {
            "id": user.id,
            "username": user.username,
            "in_team": user.id in memberships,
            "in_this_team": memberships.get(user.id) == team_id,
            "has_pending_invitation": user.id in invited,
        }
        for user in users
    ])
