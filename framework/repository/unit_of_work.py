"""
Unit of Work: manages repositories and transaction boundaries.
"""

from typing import Optional
from sqlmodel.ext.asyncio.session import AsyncSession
from framework.database.auditing import CURRENT_ACTOR_KEY, READ_ONLY_KEY
from framework.exceptions.data_access import IllegalTransactionStateError
from framework.logging.logger import get_data_logger


class UnitOfWork:
    """
    Manages related repositories with a shared session and one transaction.

    The session's identity map is the unit of work's tracked-entity set: one
    instance per identity, dirty-checked at flush. ``actor`` is stamped into
    created_by/updated_by for every entity flushed inside the transaction.

        async with UnitOfWork(session, actor="alice") as uow:
            members = uow.get_repository(MemberRepository)
            await members.save(Member(username="member1"))
    """

    def __init__(self, session: Optional[AsyncSession] = None, actor: Optional[str] = None):
        """Initialize UnitOfWork over a session that has not begun."""
        if session is None:
            raise ValueError("Session must be provided")

        self.session = session
        self.actor = actor
        self._repositories = {}
        self._logger = get_data_logger(type(self).__name__)

    def get_repository(self, repo_class, model_class=None):
        """Get or create a repository instance (cached per unit of work)."""
        cache_key = repo_class.__name__ if model_class is None else f"{repo_class.__name__}_{model_class.__name__}"
        if cache_key not in self._repositories:
            self._repositories[cache_key] = repo_class(self.session)
        return self._repositories[cache_key]

    @property
    def in_transaction(self) -> bool:
        return self.session.in_transaction()

    async def begin(self) -> None:
        """Start the transaction and bind the actor to this session."""
        if self.session.in_transaction():
            raise IllegalTransactionStateError("A transaction is already active on this session")
        self.session.info[CURRENT_ACTOR_KEY] = self.actor
        await self.session.begin()
        self._logger.debug(f"Transaction started (actor={self.actor})")

    async def commit(self) -> None:
        """Flush and commit all changes."""
        if not self.session.in_transaction():
            raise IllegalTransactionStateError("No active transaction to commit")
        await self.session.commit()
        self._logger.debug("Transaction committed")

    async def rollback(self) -> None:
        """Rollback all changes (no-op without an active transaction)."""
        if self.session.in_transaction():
            await self.session.rollback()
            self._logger.warning("Transaction rolled back")

    async def flush(self) -> None:
        """Flush session: pending INSERT/UPDATE/DELETE run now, constraint errors surface here."""
        await self.session.flush()

    def clear(self) -> None:
        """Detach every tracked entity; later reads load fresh rows."""
        self.session.expunge_all()
        self.session.info.pop(READ_ONLY_KEY, None)

    async def __aenter__(self):
        await self.begin()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                await self.rollback()
            else:
                await self.commit()
        finally:
            self.session.info.pop(CURRENT_ACTOR_KEY, None)
            self.session.info.pop(READ_ONLY_KEY, None)
