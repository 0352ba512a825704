from fastapi.testclient import TestClient
from sqlmodel import Session, select

from crackzone.dependencies import get_event_sink
from crackzone.models import Notification
from crackzone.services import membership, workflow
from crackzone.services.events import (
    INVITATION_SENT,
    MEMBER_JOINED,
    REQUEST_APPROVED,
    NotificationSink,
)

from main import app

from conftest import auth_headers, create_user, fill_team, make_team


def notifications_for(session: Session, user) -> list:
    return session.exec(
        select(Notification).where(Notification.user_id == user.id).order_by(Notification.id)
    ).all()


def test_sink_writes_one_notification_per_recipient(session: Session):
    leader = create_user(session, "leader")
    team = make_team(session, leader)
    (member,) = fill_team(session, team, ["member"])
    y = create_user(session, "yuki")
    request = workflow.submit_join_request(session, y.id, team.id).value

    result = workflow.resolve_join_request(
        session, leader.id, request.id, workflow.APPROVE, sink=NotificationSink(session)
    )

    assert result.ok
    joined = notifications_for(session, member)
    welcomed = notifications_for(session, y)
    assert [n.data["event"] for n in joined] == [MEMBER_JOINED]
    assert joined[0].message == f"yuki joined {team.name}."
    assert [n.data["event"] for n in welcomed] == [REQUEST_APPROVED]
    assert welcomed[0].data["team_id"] == team.id


def test_failed_operation_publishes_nothing(session: Session, sink):
    leader = create_user(session, "leader")
    team = make_team(session, leader, max_members=2)
    fill_team(session, team, ["member"])
    y = create_user(session, "yuki")

    result = workflow.submit_join_request(session, y.id, team.id, sink=NotificationSink(session))

    assert not result.ok
    assert session.exec(select(Notification)).all() == []


def test_events_reach_sink_after_commit(recording_client: TestClient, session: Session, sink):
    leader = create_user(session, "leader")
    team = make_team(session, leader)
    z = create_user(session, "zara")

    response = recording_client.post(
        f"/api/teams/{team.id}/invite",
        json={"userId": z.id},
        headers=auth_headers(session, leader)
    )

    assert response.status_code == 201
    assert sink.names == [INVITATION_SENT]
    assert sink.events[0].recipients == [z.id]
    assert sink.events[0].payload["invitation_id"] == response.json()["invitation"]["id"]

    sink.clear()
    duplicate = recording_client.post(
        f"/api/teams/{team.id}/invite",
        json={"userId": z.id},
        headers=auth_headers(session, leader)
    )
    assert duplicate.status_code == 409
    assert sink.events == []


def test_notifications_api(client: TestClient, session: Session):
    leader = create_user(session, "leader")
    team = make_team(session, leader)
    z = create_user(session, "zara")
    y = create_user(session, "yuki")
    sink = NotificationSink(session)
    workflow.invite_user(session, leader.id, team.id, user_id=z.id, sink=sink)
    workflow.submit_join_request(session, y.id, team.id, sink=sink)
    headers = auth_headers(session, leader)

    listed = client.get("/api/notifications", headers=headers)
    assert listed.status_code == 200
    notifications = listed.json()["notifications"]
    assert [n["title"] for n in notifications] == ["New join request"]
    assert notifications[0]["data"]["username"] == "yuki"

    stats = client.get("/api/notifications/stats", headers=headers).json()
    assert stats == {"total": 1, "unread": 1, "by_type": {"team": 1}}

    marked = client.put(f"/api/notifications/{notifications[0]['id']}/read", headers=headers)
    assert marked.status_code == 200
    assert marked.json()["read"] is True

    invite_notice = notifications_for(session, z)[0]
    assert invite_notice.type == "team_invitation"
    foreign = client.put(f"/api/notifications/{invite_notice.id}/read", headers=headers)
    assert foreign.status_code == 404

    updated = client.put("/api/notifications/mark-all-read", headers=auth_headers(session, z))
    assert updated.json() == {"message": "All notifications marked as read", "updated_count": 1}
    assert client.get(
        "/api/notifications", params={"read": False}, headers=auth_headers(session, z)
    ).json()["notifications"] == []


def test_team_deleted_notice_skips_actor(session: Session):
    leader = create_user(session, "leader")
    team = make_team(session, leader)
    (member,) = fill_team(session, team, ["member"])

    membership.delete_team(session, leader.id, team.id, sink=NotificationSink(session))

    assert notifications_for(session, leader) == []
    assert [n.title for n in notifications_for(session, member)] == ["Team disbanded"]


def add_notification(session: Session, user, title: str = "Team invitation") -> Notification:
    notification = Notification(
        user_id=user.id,
        type="team_invitation",
        title=title,
        message="leader invited you to join Night Owls."
    )
    session.add(notification)
    session.commit()
    session.refresh(notification)
    return notification


def test_mark_unread(client: TestClient, session: Session):
    z = create_user(session, "zara")
    notification = add_notification(session, z)
    headers = auth_headers(session, z)

    client.put(f"/api/notifications/{notification.id}/read", headers=headers)
    response = client.put(f"/api/notifications/{notification.id}/unread", headers=headers)

    assert response.status_code == 200
    assert response.json()["read"] is False
    assert response.json()["read_at"] is None


def test_delete_notification(client: TestClient, session: Session):
    z = create_user(session, "zara")
    eve = create_user(session, "eve")
    notification = add_notification(session, z)
    notification_id = notification.id

    foreign = client.delete(f"/api/notifications/{notification_id}", headers=auth_headers(session, eve))
    assert foreign.status_code == 404

    response = client.delete(f"/api/notifications/{notification_id}", headers=auth_headers(session, z))
    assert response.status_code == 204
    assert session.get(Notification, notification_id) is None


def test_clear_all(client: TestClient, session: Session):
    z = create_user(session, "zara")
    eve = create_user(session, "eve")
    add_notification(session, z, "First")
    add_notification(session, z, "Second")
    add_notification(session, eve)

    response = client.delete("/api/notifications/clear-all", headers=auth_headers(session, z))

    assert response.status_code == 200
    assert response.json()["deleted_count"] == 2
    assert notifications_for(session, z) == []
    assert len(notifications_for(session, eve)) == 1


class BrokenSink:
    def publish(self, events):
        raise RuntimeError("notification store unavailable")


def test_sink_failure_keeps_committed_result(client: TestClient, session: Session):
    app.dependency_overrides[get_event_sink] = lambda: BrokenSink()
    leader = create_user(session, "leader")

    response = client.post(
        "/api/teams",
        json={"name": "Headshots", "game": "PUBG"},
        headers=auth_headers(session, leader)
    )

    assert response.status_code == 201
    assert response.json()["name"] == "Headshots"
    assert membership.get_membership(session, leader.id) is not None
    assert session.exec(select(Notification)).all() == []
