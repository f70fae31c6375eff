"""Test config and shared fixtures."""
import pytest
from typing import AsyncGenerator
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from main import app
from framework.database.sql_driver import enable_sqlite_foreign_keys, make_session_factory
from framework.database.statistics import StatementStatistics
from framework.repository.unit_of_work import UnitOfWork
from apps.members.models import Member, Team
from apps.members.repository import MemberRepository, TeamRepository


# In-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_ACTOR = "tester"


@pytest.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test (one shared connection)."""
    import apps.models  # noqa: F401  register every table in metadata

    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    enable_sqlite_foreign_keys(engine.sync_engine)

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine):
    return make_session_factory(engine)


@pytest.fixture
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session configured like the app's: no autobegin, no expiry on commit."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def uow(async_session: AsyncSession) -> UnitOfWork:
    """UnitOfWork not yet begun; tests open transactions with ``async with uow``."""
    return UnitOfWork(session=async_session, actor=TEST_ACTOR)


@pytest.fixture
def member_repository(uow: UnitOfWork) -> MemberRepository:
    return uow.get_repository(MemberRepository, Member)


@pytest.fixture
def team_repository(uow: UnitOfWork) -> TeamRepository:
    return uow.get_repository(TeamRepository, Team)


@pytest.fixture
def statistics(engine: AsyncEngine) -> StatementStatistics:
    """Statement counter; use as ``with statistics: ...``."""
    stats = StatementStatistics(engine)
    yield stats
    stats.disable()


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create test client; every request gets its own session on the test database."""
    from apps.members.api.router import get_db

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def sample_members(uow: UnitOfWork, member_repository: MemberRepository, team_repository: TeamRepository):
    """member1..member4 (ages 10..40); odd ones in teamA, even ones in teamB."""
    async with uow:
        team_a = await team_repository.save(Team(name="teamA"))
        team_b = await team_repository.save(Team(name="teamB"))
        members = []
        for i in range(1, 5):
            team = team_a if i % 2 == 1 else team_b
            members.append(await member_repository.save(Member(username=f"member{i}", age=i * 10, team=team)))
    uow.clear()
    return members


def pytest_addoption(parser):
    """Add pytest command-line options."""
    parser.addoption(
        "--clean-test-data",
        action="store_true",
        default=False,
        help="Delete all members and teams from the configured database and exit"
    )


def pytest_configure(config):
    """Configure pytest."""
    if config.getoption("--clean-test-data"):
        import asyncio
        import sys
        from tests.cleanup_test_data import delete_all_rows

        asyncio.run(delete_all_rows())
        sys.exit(0)
