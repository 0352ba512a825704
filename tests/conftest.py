import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine, select, func
from sqlmodel.pool import StaticPool

from main import app
from crackzone.auth import create_session
from crackzone.database import configure_sqlite, get_session
from crackzone.dependencies import get_event_sink
from crackzone.models import Team, TeamMembership, TeamRole, TeamStatus, User
from crackzone.services import membership

# Create in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

engine = configure_sqlite(create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
))


class RecordingSink:
    """Event sink that keeps whatever it is handed."""

    def __init__(self):
        self.events = []

    def publish(self, events):
        self.events.extend(events)

    @property
    def names(self):
        return [event.name for event in self.events]

    def clear(self):
        self.events.clear()


@pytest.fixture(name="session")
def session_fixture():
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="sink")
def sink_fixture():
    return RecordingSink()


@pytest.fixture(name="client")
def client_fixture(session: Session):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="recording_client")
def recording_client_fixture(client: TestClient, sink: RecordingSink):
    """Client whose committed events land in ``sink`` instead of notifications."""
    app.dependency_overrides[get_event_sink] = lambda: sink
    return client


def create_user(session: Session, username: str) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        password_hash="hashed_secret"
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def auth_headers(session: Session, user: User) -> dict:
    token = create_session(session, user.id).session_token
    return {"Authorization": f"Bearer {token}"}


def make_team(session: Session, leader: User, name: str = "Night Owls", **kwargs) -> Team:
    kwargs.setdefault("game", "Free Fire")
    result = membership.create_team(session, leader.id, name=name, **kwargs)
    assert result.ok, result
    return result.value


def fill_team(session: Session, team: Team, usernames) -> list:
    """Insert members directly, bypassing the workflow."""
    users = []
    for username in usernames:
        user = create_user(session, username)
        session.add(TeamMembership(team_id=team.id, user_id=user.id, role=TeamRole.MEMBER.value))
        users.append(user)
    session.commit()
    return users


def assert_invariants(session: Session):
    """One membership per user; every active team within capacity with one leader."""
    per_user = session.exec(
        select(TeamMembership.user_id, func.count(TeamMembership.id))
        .group_by(TeamMembership.user_id)
    ).all()
    assert all(count == 1 for _, count in per_user)

    for team in session.exec(select(Team)).all():
        members = session.exec(
            select(TeamMembership).where(TeamMembership.team_id == team.id)
        ).all()
        if team.status == TeamStatus.DELETED.value:
            assert members == []
            continue
        assert 1 <= len(members) <= team.max_members
        assert [m.role for m in members].count(TeamRole.LEADER.value) == 1
