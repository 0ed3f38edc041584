import os

# Keep app startup off the developer database and out of live push
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.pop("FIREBASE_KEY_LOCATION", None)

import random  # noqa: E402
from typing import List, Optional, Sequence  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from clubgame.database import get_session  # noqa: E402
from clubgame.main import app  # noqa: E402
from clubgame.models.schedule import LifecycleState, Schedule  # noqa: E402
from clubgame.models.schedule_member import ScheduleMember  # noqa: E402
from clubgame.models.user import User  # noqa: E402
from clubgame.utils.kdk_rules import KdkRuleset, load_kdk_ruleset  # noqa: E402

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# Test Database Setup with StaticPool
# ============================================================================
# 1. sqlite:///:memory: with StaticPool so ALL sessions share same DB
# 2. check_same_thread=False required for TestClient/threaded access
# 3. All models imported before create_all() (see session_fixture)
# 4. App dependency overridden to use test_engine (see client_fixture)
# 5. Tables dropped after every test so each test starts empty
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on a fresh schema."""
    # Import all models to ensure they're registered BEFORE create_all
    from clubgame.models.game_table import GameTable  # noqa: F401
    from clubgame.models.notification import Notification  # noqa: F401
    from clubgame.models.user_level import UserLevel  # noqa: F401

    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session

    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Provide a test client with overridden database session

    Override MUST be set BEFORE TestClient() and stay in place for the
    entire duration. This ensures the app never uses its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(scope="session")
def ruleset() -> KdkRuleset:
    return load_kdk_ruleset()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(20261019)


@pytest.fixture
def make_game(session: Session):
    """
    Factory: a game schedule with one User + ScheduleMember per uid.

    teams, when given, is a list of team names aligned with uids (doubles).
    pending lists extra uids registered but not approved.
    """

    def _make(
        uids: Sequence[str],
        is_kdk: bool = False,
        is_single: bool = True,
        teams: Optional[Sequence[Optional[str]]] = None,
        pending: Sequence[str] = (),
        state: LifecycleState = LifecycleState.OPEN,
        final_score: int = 21,
        creator: str = "host",
        level: float = 5.0,
    ) -> Schedule:
        if session.get(User, creator) is None:
            session.add(User(uid=creator, nickname=creator, level=level))
        schedule = Schedule(
            uid=creator,
            title="Sunday Club Game",
            is_kdk=is_kdk,
            is_single=is_single,
            final_score=final_score,
            state=int(state),
        )
        session.add(schedule)
        session.commit()
        session.refresh(schedule)

        members: List[ScheduleMember] = []
        for i, uid in enumerate(list(uids) + list(pending)):
            if session.get(User, uid) is None:
                session.add(User(uid=uid, nickname=uid, level=level, fcm_token=f"token-{uid}"))
            members.append(ScheduleMember(
                schedule_id=schedule.id,
                uid=uid,
                approval=uid not in pending,
                team_name=teams[i] if teams and i < len(teams) else None,
            ))
        session.add_all(members)
        session.commit()
        session.refresh(schedule)
        return schedule

    return _make
