"""
Shared fixtures for the engine tests.

Every test gets its own SQLite file so that tests which open several
sessions (concurrency, post-commit announcements) see committed data
the way separate requests would.
"""
import random
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.config.feature_flags import Settings
from matchday.database import build_engine, build_sessionmaker
from matchday.notifications.in_memory_adapter import InMemoryNotificationAdapter
from matchday.orm.base import Base
from matchday.orm.match import Match
from matchday.orm.tournament import TournamentFormat
from matchday.repositories import TeamRepository
from matchday.services.bracket_service import BracketService
from matchday.services.match_result_service import MatchResultService
from matchday.services.notification_service import NotificationService
from matchday.services.tournament_locks import wait_for_background_tasks
from matchday.services.tournament_service import TournamentService

ORGANIZER = "organizer@matchday.test"


def participant(index: int) -> str:
    return f"player{index}@matchday.test"


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'matchday_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await wait_for_background_tasks(timeout=5)
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return build_sessionmaker(engine)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def no_completion_delay(monkeypatch):
    monkeypatch.setattr(Settings, "COMPLETION_CHECK_DELAY_SECONDS", 0.0)


# =============================================================================
# Services
# =============================================================================

@pytest.fixture
def adapter() -> InMemoryNotificationAdapter:
    return InMemoryNotificationAdapter()


@pytest.fixture
def notifications(adapter) -> NotificationService:
    return NotificationService(adapter)


@pytest.fixture
def bracket_service(db, notifications) -> BracketService:
    return BracketService(db, notifications, rng=random.Random(7))


@pytest.fixture
def tournament_service(db, notifications, bracket_service) -> TournamentService:
    return TournamentService(db, notifications, bracket=bracket_service)


@pytest.fixture
def result_service(db, notifications, session_factory, bracket_service) -> MatchResultService:
    return MatchResultService(db, notifications, session_factory=session_factory, bracket=bracket_service)


@pytest.fixture
def make_tournament(tournament_service):
    """Create a tournament with `team_count` teams, optionally started."""
    async def factory(format=TournamentFormat.LEAGUE, team_count=4, start=True, **kwargs):
        tournament = await tournament_service.create_tournament(
            name=kwargs.pop("name", f"{format.value.title()} Cup"),
            format=format,
            created_by=ORGANIZER,
            **kwargs,
        )
        for i in range(team_count):
            await tournament_service.join_tournament(tournament.id, participant(i), f"Team {i}")
        matches = []
        if start:
            matches = await tournament_service.start_tournament(tournament.id, ORGANIZER)
        return tournament, matches
    return factory


@pytest.fixture
def play(db, result_service):
    """Submit a score as the home team and approve it as the organizer."""
    async def play_match(match: Match, home_score: int, away_score: int, **penalties):
        home = await TeamRepository(db).find_by_id(match.home_team_id)
        result = await result_service.submit_result(
            match.id, home.participant_id, home_score, away_score, **penalties
        )
        await result_service.approve_result(result.id, ORGANIZER)
        return result
    return play_match
