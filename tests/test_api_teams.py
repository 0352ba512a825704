from fastapi.testclient import TestClient
from sqlmodel import Session, select

from crackzone.dependencies import get_current_user
from crackzone.models import JoinRequest, RequestStatus, Team, TeamStatus
from crackzone.services import membership, workflow
from main import app

from conftest import auth_headers, create_user, fill_team, make_team


def test_requires_authentication(client: TestClient):
    response = client.get("/api/teams/my-teams")

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_create_team(client: TestClient, session: Session):
    user = create_user(session, "xavier")

    response = client.post(
        "/api/teams",
        json={"name": "Headshots", "game": "PUBG", "maxMembers": 4, "isPrivate": False},
        headers=auth_headers(session, user)
    )

    assert response.status_code == 201
    data = response.json()
    assert data["name"] == "Headshots"
    assert data["maxMembers"] == 4
    assert data["members"] == 1
    assert data["role"] == "leader"
    assert data["teamCode"] == f"T{data['id']:06d}"
    assert data["membersList"][0]["name"] == "xavier"

    team = session.exec(select(Team).where(Team.name == "Headshots")).first()
    assert team is not None
    assert membership.is_leader(session, team.id, user.id)


def test_create_second_team_conflicts(client: TestClient, session: Session):
    user = create_user(session, "xavier")
    make_team(session, user)

    response = client.post(
        "/api/teams",
        json={"name": "Another", "game": "PUBG"},
        headers=auth_headers(session, user)
    )

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "AlreadyInTeam"


def test_create_team_validates_size(client: TestClient, session: Session):
    user = create_user(session, "xavier")

    response = client.post(
        "/api/teams",
        json={"name": "Crowd", "game": "PUBG", "maxMembers": 12},
        headers=auth_headers(session, user)
    )

    assert response.status_code == 422


def test_my_teams_and_details(client: TestClient, session: Session):
    leader = create_user(session, "leader")
    team = make_team(session, leader)
    (member,) = fill_team(session, team, ["member"])

    # Same shape whether auth comes from a token or an override
    app.dependency_overrides[get_current_user] = lambda: member
    my_teams = client.get("/api/teams/my-teams")
    details = client.get(f"/api/teams/{team.id}")

    assert my_teams.status_code == 200
    assert [t["id"] for t in my_teams.json()["teams"]] == [team.id]
    assert details.status_code == 200
    assert details.json()["role"] == "member"
    assert [m["role"] for m in details.json()["membersList"]] == ["leader", "member"]


def test_missing_team_is_404(client: TestClient, session: Session):
    user = create_user(session, "xavier")

    response = client.get("/api/teams/999", headers=auth_headers(session, user))

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NotFound"


def test_available_teams(client: TestClient, session: Session):
    make_team(session, create_user(session, "leader"), "Open Squad")
    viewer = create_user(session, "viewer")

    response = client.get("/api/teams/available", headers=auth_headers(session, viewer))

    assert response.status_code == 200
    teams = response.json()["teams"]
    assert [t["name"] for t in teams] == ["Open Squad"]
    assert teams[0]["has_pending_request"] is False
    assert teams[0]["maxMembers"] == 5


def test_join_request_flow(client: TestClient, session: Session):
    leader = create_user(session, "leader")
    team = make_team(session, leader)
    y = create_user(session, "yuki")
    y_headers = auth_headers(session, y)
    leader_headers = auth_headers(session, leader)

    sent = client.post(f"/api/teams/{team.id}/join", json={"message": "gg"}, headers=y_headers)
    assert sent.status_code == 201
    assert sent.json()["message"] == "Join request sent"
    request_id = sent.json()["request"]["id"]

    duplicate = client.post(f"/api/teams/{team.id}/join", headers=y_headers)
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["code"] == "DuplicatePending"

    pending = client.get(f"/api/teams/{team.id}/join-requests", headers=leader_headers)
    assert pending.status_code == 200
    assert [r["username"] for r in pending.json()["requests"]] == ["yuki"]

    forbidden = client.post(f"/api/teams/{team.id}/join-requests/{request_id}/approve", headers=y_headers)
    assert forbidden.status_code == 403

    approved = client.post(f"/api/teams/{team.id}/join-requests/{request_id}/approve", headers=leader_headers)
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    again = client.post(f"/api/teams/{team.id}/join-requests/{request_id}/reject", headers=leader_headers)
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "InvalidState"

    assert membership.get_membership(session, y.id).team_id == team.id


def test_join_by_code(client: TestClient, session: Session):
    team = make_team(session, create_user(session, "leader"), is_private=True)
    y = create_user(session, "yuki")

    response = client.post(
        "/api/teams/join-by-code",
        json={"teamCode": team.team_code},
        headers=auth_headers(session, y)
    )

    assert response.status_code == 201
    assert response.json()["request"]["teamId"] == team.id


def test_cancel_join_request(client: TestClient, session: Session):
    team = make_team(session, create_user(session, "leader"))
    y = create_user(session, "yuki")
    request = workflow.submit_join_request(session, y.id, team.id).value
    headers = auth_headers(session, y)

    mine = client.get("/api/teams/my-join-requests", headers=headers)
    assert [r["id"] for r in mine.json()["requests"]] == [request.id]

    response = client.delete(f"/api/teams/join-requests/{request.id}", headers=headers)
    assert response.status_code == 204

    session.refresh(request)
    assert request.status == RequestStatus.CANCELLED.value


def test_join_full_team(client: TestClient, session: Session):
    leader = create_user(session, "leader")
    team = make_team(session, leader, max_members=2)
    fill_team(session, team, ["member"])
    y = create_user(session, "yuki")

    response = client.post(f"/api/teams/{team.id}/join", headers=auth_headers(session, y))

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "TeamFull"
    assert session.exec(select(JoinRequest)).all() == []


def test_invitation_flow(client: TestClient, session: Session):
    leader = create_user(session, "leader")
    team = make_team(session, leader)
    z = create_user(session, "zara")
    z_headers = auth_headers(session, z)

    missing_target = client.post(f"/api/teams/{team.id}/invite", json={}, headers=auth_headers(session, leader))
    assert missing_target.status_code == 422

    sent = client.post(
        f"/api/teams/{team.id}/invite",
        json={"username": "zara"},
        headers=auth_headers(session, leader)
    )
    assert sent.status_code == 201
    assert sent.json()["message"] == "Invitation sent"
    invitation_id = sent.json()["invitation"]["id"]

    listed = client.get("/api/teams/invitations", headers=z_headers)
    assert [i["invitedBy"] for i in listed.json()["invitations"]] == ["leader"]

    accepted = client.post(f"/api/teams/invitations/{invitation_id}/accept", headers=z_headers)
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "accepted"
    assert membership.get_membership(session, z.id).team_id == team.id


def test_decline_someone_elses_invitation(client: TestClient, session: Session):
    leader = create_user(session, "leader")
    team = make_team(session, leader)
    z = create_user(session, "zara")
    eve = create_user(session, "eve")
    invitation = workflow.invite_user(session, leader.id, team.id, user_id=z.id).value

    response = client.post(
        f"/api/teams/invitations/{invitation.id}/decline",
        headers=auth_headers(session, eve)
    )

    assert response.status_code == 404


def test_leave_remove_and_delete(client: TestClient, session: Session):
    leader = create_user(session, "leader")
    team = make_team(session, leader)
    first, second = fill_team(session, team, ["first", "second"])
    leader_headers = auth_headers(session, leader)

    leader_leaves = client.delete(f"/api/teams/{team.id}/leave", headers=leader_headers)
    assert leader_leaves.status_code == 409
    assert leader_leaves.json()["detail"]["code"] == "LeaderCannotLeave"

    left = client.delete(f"/api/teams/{team.id}/leave", headers=auth_headers(session, first))
    assert left.status_code == 204

    removed = client.delete(f"/api/teams/{team.id}/members/{second.id}", headers=leader_headers)
    assert removed.status_code == 204
    assert membership.count_members(session, team.id) == 1

    deleted = client.delete(f"/api/teams/{team.id}", headers=leader_headers)
    assert deleted.status_code == 204
    session.refresh(team)
    assert team.status == TeamStatus.DELETED.value

    gone = client.get(f"/api/teams/{team.id}", headers=leader_headers)
    assert gone.status_code == 404


def test_update_and_transfer(client: TestClient, session: Session):
    leader = create_user(session, "leader")
    team = make_team(session, leader)
    (member,) = fill_team(session, team, ["member"])
    headers = auth_headers(session, leader)

    updated = client.put(
        f"/api/teams/{team.id}",
        json={"name": "Renamed", "game": "Valorant", "maxMembers": 3},
        headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["name"] == "Renamed"
    assert updated.json()["maxMembers"] == 3

    transferred = client.post(
        f"/api/teams/{team.id}/transfer-leadership",
        json={"userId": member.id},
        headers=headers
    )
    assert transferred.status_code == 200
    assert transferred.json()["role"] == "member"
    assert transferred.json()["membersList"][0]["name"] == "member"

    # The old leader may now leave
    assert client.delete(f"/api/teams/{team.id}/leave", headers=headers).status_code == 204


def test_search_users(client: TestClient, session: Session):
    leader = create_user(session, "leader")
    team = make_team(session, leader)
    create_user(session, "sniper_sam")

    response = client.get(
        f"/api/teams/{team.id}/search-users",
        params={"q": "sniper"},
        headers=auth_headers(session, leader)
    )

    assert response.status_code == 200
    users = response.json()["users"]
    assert [u["username"] for u in users] == ["sniper_sam"]
    assert users[0]["inTeam"] is False
    assert users[0]["hasPendingInvitation"] is False
