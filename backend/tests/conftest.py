"""
Shared fixtures for the poker store tests.

Each test gets its own SQLite file database with the full schema and a
small set of users and teams:

- alice: registered, member of team "Platform"
- bob: registered, no team
- carol: guest without email, member of team "Other"
- root: admin
"""
import pytest

from db.database import build_engine, build_session_factory, init_db
from db.models import User, UserType, Team, TeamUser
from models.poker import PokerStorySnapshot
from services.encryption import EncryptionService
from services.poker_service import PokerService

TEST_SECRET = "poker-test-secret"


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'poker.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def encryption():
    return EncryptionService(TEST_SECRET)


@pytest.fixture
async def users(session):
    """Seed users and teams, returning their ids"""
    session.add_all([
        User(user_id="user_alice", name="Alice", email="alice@example.com", type=UserType.REGISTERED.value),
        User(user_id="user_bob", name="Bob", email="bob@example.com", type=UserType.REGISTERED.value),
        User(user_id="user_carol", name="Carol", email=None, type=UserType.GUEST.value),
        User(user_id="user_root", name="Root", email="root@example.com", type=UserType.ADMIN.value),
        Team(team_id="team_platform", name="Platform"),
        Team(team_id="team_other", name="Other"),
    ])
    await session.flush()
    session.add_all([
        TeamUser(team_id="team_platform", user_id="user_alice"),
        TeamUser(team_id="team_other", user_id="user_carol"),
    ])
    await session.commit()

    return {
        "alice": "user_alice",
        "bob": "user_bob",
        "carol": "user_carol",
        "admin": "user_root",
        "platform": "team_platform",
        "other": "team_other",
    }


@pytest.fixture
def service(session, encryption):
    return PokerService(session, encryption)


async def make_game(service, facilitator_id, name="Sprint 42", stories=None, team_id=None,
                    join_code="join-me", facilitator_code="lead-me"):
    """Create a game with sensible defaults"""
    args = dict(
        facilitator_id=facilitator_id,
        name=name,
        point_values_allowed=["1", "2", "3", "5"],
        stories=stories if stories is not None else [],
        auto_finish_voting=True,
        point_average_rounding="ceil",
        join_code=join_code,
        facilitator_code=facilitator_code,
        hide_voter_identity=False,
    )
    if team_id is not None:
        return await service.team_create_game(team_id=team_id, **args)
    return await service.create_game(**args)


@pytest.fixture
async def game(service, users):
    """Game facilitated by alice with a single story"""
    return await make_game(service, users["alice"], stories=[PokerStorySnapshot(name="Login flow")])
