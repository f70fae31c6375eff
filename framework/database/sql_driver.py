from sqlmodel import SQLModel
from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession
from loguru import logger
from .base import BaseDatabaseDriver


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """SQLite ignores FOREIGN KEY constraints unless asked per connection."""

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def make_session_factory(engine: AsyncEngine) -> sessionmaker:
    """
    Session factory shared by the app and the tests.

    Sessions never begin a transaction implicitly: a UnitOfWork must begin
    one, so set-based updates can tell whether they run inside a transaction.
    """
    return sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autobegin=False
    )


class SQLDriver(BaseDatabaseDriver):
    def __init__(self, url: str, echo: bool = False):
        kwargs = {}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
        self.engine = create_async_engine(url, echo=echo, future=True, **kwargs)
        if self.engine.dialect.name == "sqlite":
            enable_sqlite_foreign_keys(self.engine.sync_engine)
        self.session_factory = make_session_factory(self.engine)

    async def connect(self):
        """Check connectivity (the engine manages the pool)."""
        async with self.engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info(f"Database connected: {self.engine.url.render_as_string(hide_password=True)}")

    async def disconnect(self):
        """Dispose the connection pool."""
        await self.engine.dispose()

    async def create_all(self):
        """Create mapped tables (development/test shortcut for alembic)."""
        import apps.models  # noqa: F401  register every table in metadata
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def get_session(self):
        async with self.session_factory() as session:
            yield session
