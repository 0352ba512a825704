from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from sqlmodel import Session

from ..config import DEFAULT_MAX_MEMBERS, MAX_TEAM_SIZE, MIN_TEAM_SIZE
from ..database import get_session
from ..dependencies import get_current_user, get_event_sink
from ..models import Team, User
from ..services import membership, workflow
from ..services.events import EventSink
from .responses import unwrap

router = APIRouter(prefix="/api/teams", tags=["teams"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TeamCreate(CamelModel):
    """Schema for creating a team."""
    name: str = Field(min_length=1, max_length=100)
    game: str = Field(min_length=1, max_length=50)
    description: Optional[str] = None
    requirements: Optional[str] = Field(default=None, max_length=200)
    max_members: int = Field(default=DEFAULT_MAX_MEMBERS, ge=MIN_TEAM_SIZE, le=MAX_TEAM_SIZE)
    is_private: bool = False
    avatar: Optional[str] = Field(default=None, max_length=10)


class TeamUpdate(CamelModel):
    """Schema for editing a team. Name and game are always required."""
    name: str = Field(min_length=1, max_length=100)
    game: str = Field(min_length=1, max_length=50)
    description: Optional[str] = None
    requirements: Optional[str] = Field(default=None, max_length=200)
    max_members: Optional[int] = Field(default=None, ge=MIN_TEAM_SIZE, le=MAX_TEAM_SIZE)
    is_private: Optional[bool] = None
    avatar: Optional[str] = Field(default=None, max_length=10)


class JoinRequestCreate(CamelModel):
    message: Optional[str] = Field(default=None, max_length=500)


class JoinByCode(JoinRequestCreate):
    team_code: str = Field(min_length=2, max_length=20)


class InviteCreate(CamelModel):
    """Invite by user id or username."""
    user_id: Optional[int] = None
    username: Optional[str] = None

    @model_validator(mode="after")
    def check_target(self):
        if self.user_id is None and not self.username:
            raise ValueError("userId or username is required")
        return self


class LeadershipTransfer(CamelModel):
    user_id: int


class MemberResponse(CamelModel):
    id: int
    name: str
    role: str
    joined_at: datetime


class TeamResponse(CamelModel):
    id: int
    name: str
    game: str
    description: Optional[str] = None
    requirements: Optional[str] = None
    avatar: str
    is_private: bool
    members: int
    max_members: int
    role: Optional[str] = None
    wins: int
    losses: int
    team_code: str
    members_list: List[MemberResponse]
    created_at: datetime


class TeamsResponse(CamelModel):
    teams: List[TeamResponse]


class AvailableTeamResponse(CamelModel):
    id: int
    name: str
    game: str
    description: Optional[str] = None
    requirements: Optional[str] = None
    avatar: str
    members: int
    max_members: int
    team_code: str
    has_pending_request: bool = Field(alias="has_pending_request")


class AvailableTeamsResponse(CamelModel):
    teams: List[AvailableTeamResponse]


class JoinRequestResponse(CamelModel):
    id: int
    team_id: int
    team_name: str
    game: str
    user_id: int
    username: str
    message: Optional[str] = None
    status: str
    created_at: datetime


class JoinRequestsResponse(CamelModel):
    requests: List[JoinRequestResponse]


class JoinRequestCreated(CamelModel):
    message: str
    request: JoinRequestResponse


class InvitationResponse(CamelModel):
    id: int
    team_id: int
    team_name: str
    game: str
    invited_user_id: int
    invited_by: str
    status: str
    created_at: datetime


class InvitationsResponse(CamelModel):
    invitations: List[InvitationResponse]


class InvitationCreated(CamelModel):
    message: str
    invitation: InvitationResponse


class UserSearchResult(CamelModel):
    id: int
    username: str
    in_team: bool
    in_this_team: bool
    has_pending_invitation: bool


class UserSearchResponse(CamelModel):
    users: List[UserSearchResult]


def _no_content() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _request_response(db: Session, request) -> dict:
    return workflow.request_view(request, db.get(User, request.user_id), db.get(Team, request.team_id))


def _invitation_response(db: Session, invitation) -> dict:
    return workflow.invitation_view(
        invitation,
        db.get(Team, invitation.team_id),
        db.get(User, invitation.invited_by_user_id)
    )


# --- Collection routes (declared before /{team_id}) ---

@router.get("/my-teams", response_model=TeamsResponse)
async def get_my_teams(
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    """Get the caller's team with its member list."""
    return {"teams": membership.get_my_teams(db, current_user.id)}


@router.get("/available", response_model=AvailableTeamsResponse)
async def get_available_teams(
    game: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    """Get public teams with a free slot."""
    return {"teams": membership.get_available_teams(db, current_user.id, game=game, search=search)}


@router.post("", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    team_data: TeamCreate,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    team = unwrap(membership.create_team(
        db,
        current_user.id,
        name=team_data.name,
        game=team_data.game,
        description=team_data.description,
        requirements=team_data.requirements,
        max_members=team_data.max_members,
        is_private=team_data.is_private,
        avatar=team_data.avatar,
        sink=sink
    ))
    return membership.team_view(db, team, role="leader")


@router.post("/join-by-code", response_model=JoinRequestCreated, status_code=status.HTTP_201_CREATED)
async def join_by_code(
    join_data: JoinByCode,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    """Request to join the team behind a join code."""
    request = unwrap(workflow.submit_join_request_by_code(
        db, current_user.id, join_data.team_code, join_data.message, sink=sink
    ))
    return {"message": "Join request sent", "request": _request_response(db, request)}


@router.get("/my-join-requests", response_model=JoinRequestsResponse)
async def get_my_join_requests(
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    return {"requests": workflow.list_my_join_requests(db, current_user.id)}


@router.delete("/join-requests/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_join_request(
    request_id: int,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    unwrap(workflow.cancel_join_request(db, current_user.id, request_id, sink=sink))
    return _no_content()


@router.get("/invitations", response_model=InvitationsResponse)
async def get_my_invitations(
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    """Pending invitations addressed to the caller."""
    return {"invitations": workflow.list_my_invitations(db, current_user.id)}


@router.post("/invitations/{invitation_id}/accept", response_model=InvitationResponse)
async def accept_invitation(
    invitation_id: int,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    invitation = unwrap(workflow.respond_to_invitation(
        db, current_user.id, invitation_id, workflow.ACCEPT, sink=sink
    ))
    return _invitation_response(db, invitation)


@router.post("/invitations/{invitation_id}/decline", response_model=InvitationResponse)
async def decline_invitation(
    invitation_id: int,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    invitation = unwrap(workflow.respond_to_invitation(
        db, current_user.id, invitation_id, workflow.DECLINE, sink=sink
    ))
    return _invitation_response(db, invitation)


# --- Single team routes ---

@router.get("/{team_id}", response_model=TeamResponse)
async def get_team_details(
    team_id: int,
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    return unwrap(membership.get_team_details(db, team_id, current_user.id))


@router.put("/{team_id}", response_model=TeamResponse)
async def update_team(
    team_id: int,
    team_data: TeamUpdate,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    team = unwrap(membership.update_team(
        db,
        current_user.id,
        team_id,
        name=team_data.name,
        game=team_data.game,
        description=team_data.description,
        requirements=team_data.requirements,
        max_members=team_data.max_members,
        avatar=team_data.avatar,
        is_private=team_data.is_private,
        sink=sink
    ))
    return membership.team_view(db, team, role="leader")


@router.delete("/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_team(
    team_id: int,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    unwrap(membership.delete_team(db, current_user.id, team_id, sink=sink))
    return _no_content()


@router.post("/{team_id}/join", response_model=JoinRequestCreated, status_code=status.HTTP_201_CREATED)
async def join_team(
    team_id: int,
    join_data: Optional[JoinRequestCreate] = None,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    """Send a join request to the team leader."""
    message = join_data.message if join_data else None
    request = unwrap(workflow.submit_join_request(db, current_user.id, team_id, message, sink=sink))
    return {"message": "Join request sent", "request": _request_response(db, request)}


@router.delete("/{team_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_team(
    team_id: int,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    unwrap(membership.leave_team(db, current_user.id, team_id, sink=sink))
    return _no_content()


@router.post("/{team_id}/invite", response_model=InvitationCreated, status_code=status.HTTP_201_CREATED)
async def invite_user(
    team_id: int,
    invite_data: InviteCreate,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    invitation = unwrap(workflow.invite_user(
        db,
        current_user.id,
        team_id,
        user_id=invite_data.user_id,
        username=invite_data.username,
        sink=sink
    ))
    return {"message": "Invitation sent", "invitation": _invitation_response(db, invitation)}


@router.delete("/{team_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    team_id: int,
    member_id: int,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    unwrap(membership.remove_member(db, current_user.id, team_id, member_id, sink=sink))
    return _no_content()


@router.post("/{team_id}/transfer-leadership", response_model=TeamResponse)
async def transfer_leadership(
    team_id: int,
    transfer: LeadershipTransfer,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    team = unwrap(membership.transfer_leadership(
        db, current_user.id, team_id, transfer.user_id, sink=sink
    ))
    return membership.team_view(db, team, role="member")


@router.get("/{team_id}/search-users", response_model=UserSearchResponse)
async def search_users(
    team_id: int,
    q: str = "",
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    return {"users": unwrap(workflow.search_users(db, current_user.id, team_id, q))}


@router.get("/{team_id}/join-requests", response_model=JoinRequestsResponse)
async def get_join_requests(
    team_id: int,
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    return {"requests": unwrap(workflow.list_team_join_requests(db, current_user.id, team_id))}


@router.post("/{team_id}/join-requests/{request_id}/approve", response_model=JoinRequestResponse)
async def approve_join_request(
    team_id: int,
    request_id: int,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    request = unwrap(workflow.resolve_join_request(
        db, current_user.id, request_id, workflow.APPROVE, team_id=team_id, sink=sink
    ))
    return _request_response(db, request)


@router.post("/{team_id}/join-requests/{request_id}/reject", response_model=JoinRequestResponse)
async def reject_join_request(
    team_id: int,
    request_id: int,
    db: Session = Depends(get_session),
    sink: EventSink = Depends(get_event_sink),
    current_user: User = Depends(get_current_user)
):
    request = unwrap(workflow.resolve_join_request(
        db, current_user.id, request_id, workflow.REJECT, team_id=team_id, sink=sink
    ))
    return _request_response(db, request)
