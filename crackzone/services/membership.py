"""Team membership engine.

Owns the two platform invariants: a user holds at most one membership across
all teams, and every active team has exactly one leader and never more members
than its ``max_members``. Mutations lock the affected user and team rows (in
that order) and re-check both invariants before committing.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlmodel import Session, select, func, or_

from ..config import AVAILABLE_TEAMS_LIMIT, DEFAULT_MAX_MEMBERS, DEFAULT_TEAM_AVATAR
from ..models import (
    Invitation,
    InvitationStatus,
    JoinRequest,
    RequestStatus,
    Team,
    TeamMembership,
    TeamRole,
    TeamStatus,
    User,
)
from . import events as ev
from .events import DomainEvent
from .results import Err, ErrorKind, Ok, Result
from .transaction import atomic

logger = logging.getLogger(__name__)


# --- Lookups and locks ---

def lock_user(db: Session, user_id: int) -> Optional[User]:
    statement = (
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.exec(statement).first()


def lock_team(db: Session, team_id: int) -> Optional[Team]:
    """Lock an active team row. Deleted teams read as missing."""
    statement = (
        select(Team)
        .where(Team.id == team_id, Team.status == TeamStatus.ACTIVE.value)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.exec(statement).first()


def get_active_team(db: Session, team_id: int) -> Optional[Team]:
    team = db.get(Team, team_id)
    if team is None or not team.is_active:
        return None
    return team


def get_membership(db: Session, user_id: int) -> Optional[TeamMembership]:
    """The user's single active membership, if any."""
    return db.exec(
        select(TeamMembership).where(TeamMembership.user_id == user_id)
    ).first()


def get_team_membership(db: Session, team_id: int, user_id: int) -> Optional[TeamMembership]:
    return db.exec(
        select(TeamMembership).where(
            TeamMembership.team_id == team_id,
            TeamMembership.user_id == user_id
        )
    ).first()


def count_members(db: Session, team_id: int) -> int:
    return db.exec(
        select(func.count(TeamMembership.id)).where(TeamMembership.team_id == team_id)
    ).one()


def get_member_ids(db: Session, team_id: int) -> List[int]:
    return list(db.exec(
        select(TeamMembership.user_id).where(TeamMembership.team_id == team_id)
    ).all())


def get_leader_id(db: Session, team_id: int) -> Optional[int]:
    return db.exec(
        select(TeamMembership.user_id).where(
            TeamMembership.team_id == team_id,
            TeamMembership.role == TeamRole.LEADER.value
        )
    ).first()


def is_leader(db: Session, team_id: int, user_id: int) -> bool:
    return get_leader_id(db, team_id) == user_id


def already_in_team(db: Session, membership: TeamMembership, you: bool = True) -> Err:
    team = db.get(Team, membership.team_id)
    subject = "You are" if you else "User is"
    return Err(
        ErrorKind.ALREADY_IN_TEAM,
        f'{subject} already a member of "{team.name}". Leave the current team first.'
    )


def find_team_by_code(db: Session, team_code: str) -> Optional[Team]:
    """Resolve a ``T000042`` style join code to its active team."""
    code = (team_code or "").strip().upper()
    if not code.startswith("T") or not code[1:].isdigit():
        return None
    return get_active_team(db, int(code[1:]))


def cancel_pending_requests(
    db: Session,
    user_id: int,
    keep_request_id: Optional[int] = None
) -> int:
    """Cancel a user's pending join requests; they cannot be in two teams."""
    statement = select(JoinRequest).where(
        JoinRequest.user_id == user_id,
        JoinRequest.status == RequestStatus.PENDING.value
    )
    if keep_request_id is not None:
        statement = statement.where(JoinRequest.id != keep_request_id)

    now = datetime.utcnow()
    cancelled = 0
    for request in db.exec(statement).all():
        request.status = RequestStatus.CANCELLED.value
        request.updated_at = now
        request.resolved_at = now
        db.add(request)
        cancelled += 1

    if cancelled:
        logger.info("Cancelled %s pending join requests of user %s", cancelled, user_id)
    return cancelled


# --- Commit step shared by approvals and accepted invitations ---

def join_via_approval(
    db: Session,
    events: List[DomainEvent],
    team: Team,
    user: User,
    actor_id: int,
    keep_request_id: Optional[int] = None
) -> Result:
    """Admit ``user`` into ``team`` as a member.

    Callers must already hold the user and team locks. Both invariants are
    checked here, at commit time, so the first approval to commit takes the
    last slot and later ones see ``TeamFull``.
    """
    membership = get_membership(db, user.id)
    if membership:
        return already_in_team(db, membership, you=user.id == actor_id)

    existing_ids = get_member_ids(db, team.id)
    if len(existing_ids) >= team.max_members:
        return Err(ErrorKind.TEAM_FULL)

    membership = TeamMembership(
        team_id=team.id,
        user_id=user.id,
        role=TeamRole.MEMBER.value
    )
    db.add(membership)
    cancel_pending_requests(db, user.id, keep_request_id=keep_request_id)
    db.flush()

    events.append(DomainEvent(
        name=ev.MEMBER_JOINED,
        team_id=team.id,
        actor_id=actor_id,
        recipients=existing_ids,
        payload={"team_name": team.name, "username": user.username, "user_id": user.id},
    ))
    return Ok(membership)


def disband_team(db: Session, events: List[DomainEvent], team: Team, actor_id: int) -> None:
    """Delete a team: drop memberships, close everything pending, mark deleted."""
    now = datetime.utcnow()
    former_members = get_member_ids(db, team.id)

    for membership in db.exec(
        select(TeamMembership).where(TeamMembership.team_id == team.id)
    ).all():
        db.delete(membership)

    for request in db.exec(
        select(JoinRequest).where(
            JoinRequest.team_id == team.id,
            JoinRequest.status == RequestStatus.PENDING.value
        )
    ).all():
        request.status = RequestStatus.CANCELLED.value
        request.updated_at = now
        request.resolved_at = now
        db.add(request)

    for invitation in db.exec(
        select(Invitation).where(
            Invitation.team_id == team.id,
            Invitation.status == InvitationStatus.PENDING.value
        )
    ).all():
        invitation.status = InvitationStatus.CANCELLED.value
        invitation.updated_at = now
        invitation.responded_at = now
        db.add(invitation)

    team.status = TeamStatus.DELETED.value
    team.deleted_at = now
    team.updated_at = now
    db.add(team)
    db.flush()

    events.append(DomainEvent(
        name=ev.TEAM_DELETED,
        team_id=team.id,
        actor_id=actor_id,
        recipients=[user_id for user_id in former_members if user_id != actor_id],
        payload={"team_name": team.name},
    ))


# --- Operations ---

@atomic(on_conflict=ErrorKind.ALREADY_IN_TEAM)
def create_team(
    db: Session,
    events: List[DomainEvent],
    actor_id: int,
    name: str,
    game: str,
    description: Optional[str] = None,
    requirements: Optional[str] = None,
    max_members: int = DEFAULT_MAX_MEMBERS,
    is_private: bool = False,
    avatar: Optional[str] = None
) -> Result:
    """Create a team with the caller as its leader."""
    user = lock_user(db, actor_id)
    if user is None:
        return Err(ErrorKind.NOT_FOUND, "User not found")

    membership = get_membership(db, actor_id)
    if membership:
        return already_in_team(db, membership)

    team = Team(
        name=name,
        game=game,
        description=description,
        requirements=requirements,
        max_members=max_members,
        is_private=is_private,
        avatar=avatar or DEFAULT_TEAM_AVATAR,
        created_by=actor_id
    )
    db.add(team)
    db.flush()

    db.add(TeamMembership(team_id=team.id, user_id=actor_id, role=TeamRole.LEADER.value))
    cancel_pending_requests(db, actor_id)
    db.flush()

    events.append(DomainEvent(
        name=ev.TEAM_CREATED,
        team_id=team.id,
        actor_id=actor_id,
        payload={"team_name": team.name, "game": team.game},
    ))
    return Ok(team)


@atomic(on_conflict=ErrorKind.INVALID_STATE)
def update_team(
    db: Session,
    events: List[DomainEvent],
    actor_id: int,
    team_id: int,
    name: str,
    game: str,
    description: Optional[str] = None,
    requirements: Optional[str] = None,
    max_members: Optional[int] = None,
    avatar: Optional[str] = None,
    is_private: Optional[bool] = None
) -> Result:
    """Edit team details (leader only)."""
    team = lock_team(db, team_id)
    if team is None:
        return Err(ErrorKind.NOT_FOUND, "Team not found")

    if not is_leader(db, team_id, actor_id):
        return Err(ErrorKind.FORBIDDEN, "Only team leaders can edit teams")

    if max_members is not None:
        current = count_members(db, team_id)
        if max_members < current:
            return Err(
                ErrorKind.INVALID_STATE,
                f"Team already has {current} members"
            )
        team.max_members = max_members

    team.name = name
    team.game = game
    team.description = description
    team.requirements = requirements
    if avatar:
        team.avatar = avatar
    if is_private is not None:
        team.is_private = is_private
    team.updated_at = datetime.utcnow()
    db.add(team)
    db.flush()

    events.append(DomainEvent(
        name=ev.TEAM_UPDATED,
        team_id=team.id,
        actor_id=actor_id,
        payload={"team_name": team.name},
    ))
    return Ok(team)


@atomic(on_conflict=ErrorKind.NOT_FOUND)
def remove_member(
    db: Session,
    events: List[DomainEvent],
    actor_id: int,
    team_id: int,
    member_id: int
) -> Result:
    """Leader removes a non-leader member."""
    team = lock_team(db, team_id)
    if team is None:
        return Err(ErrorKind.NOT_FOUND, "Team not found")

    if not is_leader(db, team_id, actor_id):
        return Err(ErrorKind.FORBIDDEN, "Only team leaders can remove members")

    if member_id == actor_id:
        return Err(ErrorKind.FORBIDDEN, "Leaders cannot remove themselves")

    membership = get_team_membership(db, team_id, member_id)
    if membership is None:
        return Err(ErrorKind.NOT_FOUND, "Member not found in this team")

    member = db.get(User, member_id)
    db.delete(membership)
    db.flush()

    events.append(DomainEvent(
        name=ev.MEMBER_REMOVED,
        team_id=team.id,
        actor_id=actor_id,
        recipients=[member_id],
        payload={"team_name": team.name, "username": member.username, "user_id": member_id},
    ))
    return Ok(None)


@atomic(on_conflict=ErrorKind.INVALID_STATE)
def leave_team(db: Session, events: List[DomainEvent], actor_id: int, team_id: int) -> Result:
    """Leave a team.

    A leader with teammates must transfer leadership or delete the team. A
    leader who is the only member takes the team down with them. Returns
    ``Ok(True)`` when the team was deleted.
    """
    lock_user(db, actor_id)
    team = lock_team(db, team_id)
    if team is None:
        return Err(ErrorKind.NOT_FOUND, "Team not found")

    membership = get_team_membership(db, team_id, actor_id)
    if membership is None:
        return Err(ErrorKind.NOT_FOUND, "You are not a member of this team")

    if membership.role == TeamRole.LEADER.value:
        if count_members(db, team_id) > 1:
            return Err(ErrorKind.LEADER_CANNOT_LEAVE)
        disband_team(db, events, team, actor_id)
        return Ok(True)

    user = db.get(User, actor_id)
    leader_id = get_leader_id(db, team_id)
    db.delete(membership)
    db.flush()

    events.append(DomainEvent(
        name=ev.MEMBER_LEFT,
        team_id=team.id,
        actor_id=actor_id,
        recipients=[leader_id] if leader_id else [],
        payload={"team_name": team.name, "username": user.username, "user_id": actor_id},
    ))
    return Ok(False)


@atomic(on_conflict=ErrorKind.INVALID_STATE)
def delete_team(db: Session, events: List[DomainEvent], actor_id: int, team_id: int) -> Result:
    team = lock_team(db, team_id)
    if team is None:
        return Err(ErrorKind.NOT_FOUND, "Team not found")

    if not is_leader(db, team_id, actor_id):
        return Err(ErrorKind.FORBIDDEN, "Only team leaders can delete teams")

    disband_team(db, events, team, actor_id)
    return Ok(None)


@atomic(on_conflict=ErrorKind.INVALID_STATE)
def transfer_leadership(
    db: Session,
    events: List[DomainEvent],
    actor_id: int,
    team_id: int,
    new_leader_id: int
) -> Result:
    """Hand the leader role to another member; the old leader stays as a member."""
    team = lock_team(db, team_id)
    if team is None:
        return Err(ErrorKind.NOT_FOUND, "Team not found")

    current = get_team_membership(db, team_id, actor_id)
    if current is None or current.role != TeamRole.LEADER.value:
        return Err(ErrorKind.FORBIDDEN, "Only the team leader can transfer leadership")

    target = get_team_membership(db, team_id, new_leader_id)
    if target is None:
        return Err(ErrorKind.NOT_FOUND, "Member not found in this team")

    if target.id == current.id:
        return Err(ErrorKind.INVALID_STATE, "You are already the leader")

    # Demote before promoting: one leader per team at every flush
    current.role = TeamRole.MEMBER.value
    db.add(current)
    db.flush()
    target.role = TeamRole.LEADER.value
    db.add(target)
    db.flush()

    events.append(DomainEvent(
        name=ev.TEAM_LEADER_CHANGED,
        team_id=team.id,
        actor_id=actor_id,
        recipients=[new_leader_id],
        payload={"team_name": team.name, "user_id": new_leader_id},
    ))
    return Ok(team)


# --- Reads ---

def team_view(db: Session, team: Team, role: Optional[str] = None) -> Dict[str, Any]:
    """Team as the clients render it, members listed leader first."""
    rows = db.exec(
        select(User.id, User.username, TeamMembership.role, TeamMembership.joined_at)
        .join(TeamMembership, TeamMembership.user_id == User.id)
        .where(TeamMembership.team_id == team.id)
        .order_by(TeamMembership.joined_at, TeamMembership.id)
    ).all()

    members_list = [
        {"id": row[0], "name": row[1], "role": row[2], "joined_at": row[3]}
        for row in rows
    ]
    members_list.sort(key=lambda m: m["role"] != TeamRole.LEADER.value)

    return {
        "id": team.id,
        "name": team.name,
        "game": team.game,
        "description": team.description,
        "requirements": team.requirements,
        "avatar": team.avatar,
        "is_private": team.is_private,
        "members": len(members_list),
        "max_members": team.max_members,
        "role": role,
        "wins": team.wins,
        "losses": team.losses,
        "team_code": team.team_code,
        "members_list": members_list,
        "created_at": team.created_at,
    }


def get_my_teams(db: Session, user_id: int) -> List[Dict[str, Any]]:
    membership = get_membership(db, user_id)
    if membership is None:
        return []
    team = db.get(Team, membership.team_id)
    return [team_view(db, team, role=membership.role)]


def get_available_teams(
    db: Session,
    user_id: int,
    game: Optional[str] = None,
    search: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Public teams with a free slot that the user is not part of."""
    member_count = func.count(TeamMembership.id)
    statement = (
        select(Team, member_count)
        .outerjoin(TeamMembership, TeamMembership.team_id == Team.id)
        .where(
            Team.status == TeamStatus.ACTIVE.value,
            Team.is_private == False  # noqa: E712
        )
        .group_by(Team.id)
        .having(member_count < Team.max_members)
        .order_by(Team.created_at.desc(), Team.id.desc())
        .limit(AVAILABLE_TEAMS_LIMIT)
    )

    membership = get_membership(db, user_id)
    if membership:
        statement = statement.where(Team.id != membership.team_id)
    if game:
        statement = statement.where(Team.game == game)
    if search:
        pattern = f"%{search}%"
        statement = statement.where(or_(Team.name.ilike(pattern), Team.description.ilike(pattern)))

    pending_team_ids = set(db.exec(
        select(JoinRequest.team_id).where(
            JoinRequest.user_id == user_id,
            JoinRequest.status == RequestStatus.PENDING.value
        )
    ).all())

    teams = []
    for team, members in db.exec(statement).all():
        teams.append({
            "id": team.id,
            "name": team.name,
            "game": team.game,
            "description": team.description,
            "requirements": team.requirements,
            "avatar": team.avatar,
            "members": members,
            "max_members": team.max_members,
            "team_code": team.team_code,
            "has_pending_request": team.id in pending_team_ids,
        })
    return teams


def get_team_details(db: Session, team_id: int, viewer_id: int) -> Result:
    team = get_active_team(db, team_id)
    if team is None:
        return Err(ErrorKind.NOT_FOUND, "Team not found")

    membership = get_team_membership(db, team_id, viewer_id)
    if team.is_private and membership is None:
        invited = db.exec(
            select(Invitation.id).where(
                Invitation.team_id == team_id,
                Invitation.invited_user_id == viewer_id,
                Invitation.status == InvitationStatus.PENDING.value
            )
        ).first()
        if invited is None:
            return Err(ErrorKind.NOT_FOUND, "Team not found")

    return Ok(team_view(db, team, role=membership.role if membership else None))
