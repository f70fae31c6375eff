"""Statement counting for tests and diagnostics (N+1 detection)."""

from typing import List, Union

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine


class StatementStatistics:
    """
    Counts SQL statements sent through an engine while enabled.

    Usage:
        with StatementStatistics(engine) as stats:
            members = await repo.find_member_with_team()
            names = [m.team.name for m in members]
        assert stats.statement_count == 1
    """

    def __init__(self, engine: Union[AsyncEngine, Engine]):
        self._engine = engine.sync_engine if isinstance(engine, AsyncEngine) else engine
        self._listening = False
        self.statements: List[str] = []

    @property
    def statement_count(self) -> int:
        return len(self.statements)

    def _on_execute(self, conn, cursor, statement, parameters, context, executemany):
        self.statements.append(statement)

    def enable(self) -> None:
        if not self._listening:
            event.listen(self._engine, "before_cursor_execute", self._on_execute)
            self._listening = True

    def disable(self) -> None:
        if self._listening:
            event.remove(self._engine, "before_cursor_execute", self._on_execute)
            self._listening = False

    def clear(self) -> None:
        self.statements.clear()

    def __enter__(self) -> "StatementStatistics":
        self.clear()
        self.enable()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disable()
