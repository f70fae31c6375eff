"""
Repository abstract base class and generic implementation.
"""

from abc import ABC, abstractmethod
from typing import Generic, Iterable, TypeVar, Optional, List, Type, Any, ClassVar
from sqlalchemy import inspect as sa_inspect
from sqlmodel import SQLModel, select, func
from sqlmodel.ext.asyncio.session import AsyncSession

from framework.database.auditing import READ_ONLY_KEY
from framework.exceptions.data_access import InvalidPropertyPathError
from framework.exceptions.handler import InvalidSortPropertyError
from framework.logging.logger import get_data_logger
from framework.pagination import Page, PageRequest, Slice, Sort
from framework.query.criteria import order_clauses
from framework.query.finder import EntityGraph
from framework.query.paging import count_statement, fetch_page, fetch_slice, run

T = TypeVar("T", bound=SQLModel)


class IRepository(ABC, Generic[T]):
    """Repository interface; defines standard data access API."""

    @abstractmethod
    async def find_by_id(self, id: Any) -> Optional[T]:
        """Get entity by ID; None when absent."""
        pass

    @abstractmethod
    async def find_all(self, sort: Optional[Sort] = None) -> List[T]:
        """Get all entities."""
        pass

    @abstractmethod
    async def find_page(self, pageable: PageRequest) -> Page[T]:
        """Get one page of entities plus the total count."""
        pass

    @abstractmethod
    async def save(self, entity: T) -> T:
        """Insert a transient entity or keep tracking a managed one."""
        pass

    @abstractmethod
    async def delete(self, entity: T) -> None:
        """Remove entity at the next flush."""
        pass

    @abstractmethod
    async def count(self, **filters) -> int:
        """Count entities."""
        pass


class BaseRepository(IRepository[T]):
    """
    Generic repository implementation over one SQLModel entity.

    Subclasses add declared queries (Finder, DeclaredQuery, NativeQuery,
    ModifyingQuery) as class attributes and may set ``entity_graph`` to
    eager-load relations in find_all/find_page/find_slice.
    """

    entity_graph: ClassVar[Optional[EntityGraph]] = None

    def __init__(self, session: AsyncSession, model: Type[T]):
        """Initialize repository with session and model."""
        self.session = session
        self.model = model

    @property
    def logger(self):
        return get_data_logger(type(self).__name__)

    # --- reads -------------------------------------------------------------

    async def find_by_id(self, id: Any) -> Optional[T]:
        """Get entity by ID; served from the identity map when already loaded."""
        return await self.session.get(self.model, id)

    async def exists_by_id(self, id: Any) -> bool:
        return await self.find_by_id(id) is not None

    async def find_all_by_id(self, ids: Iterable[Any]) -> List[T]:
        ids = list(ids)
        if not ids:
            return []
        primary_key = sa_inspect(self.model).primary_key[0]
        statement = select(self.model).where(primary_key.in_(ids))
        return await run(self.session, statement)

    def _base_statement(self, sort: Optional[Sort]):
        statement = select(self.model)
        if self.entity_graph:
            statement = statement.options(*self.entity_graph.options())
        if sort is not None and sort.is_sorted:
            try:
                statement, clauses = order_clauses(self.model, sort, statement, {})
            except InvalidPropertyPathError as e:
                raise InvalidSortPropertyError(self.model.__name__, e.path) from e
            statement = statement.order_by(*clauses)
        return statement

    async def find_all(self, sort: Optional[Sort] = None) -> List[T]:
        """Get all entities, eager-loading ``entity_graph``."""
        return await run(self.session, self._base_statement(sort), unique=bool(self.entity_graph))

    async def find_page(self, pageable: PageRequest) -> Page[T]:
        """Get one page; the count query never carries the entity graph joins."""
        statement = self._base_statement(pageable.sort)
        page = await fetch_page(self.session, statement, count_statement(self.model), pageable, unique=bool(self.entity_graph))
        self.logger.debug(f"find_page page={pageable.page} size={pageable.size} -> {len(page.content)}/{page.total_elements}")
        return page

    async def find_slice(self, pageable: PageRequest) -> Slice[T]:
        statement = self._base_statement(pageable.sort)
        return await fetch_slice(self.session, statement, pageable, unique=bool(self.entity_graph))

    async def find_one(self, **filters) -> Optional[T]:
        """Find one entity by filters (e.g. username='member1')."""
        statement = select(self.model)
        for key, value in filters.items():
            if hasattr(self.model, key):
                statement = statement.where(getattr(self.model, key) == value)

        result = await self.session.exec(statement)
        return result.first()

    async def count(self, **filters) -> int:
        """Count entities matching filters."""
        statement = select(func.count()).select_from(self.model)
        for key, value in filters.items():
            if hasattr(self.model, key):
                statement = statement.where(getattr(self.model, key) == value)

        result = await self.session.exec(statement)
        return result.one()

    # --- writes ------------------------------------------------------------

    async def save(self, entity: T) -> T:
        """
        Persist a transient entity (flushed immediately so id and audit
        stamps are assigned), merge a detached one, leave a managed one to
        dirty checking. Returns the managed instance.
        """
        state = sa_inspect(entity)
        if state.transient:
            self.session.add(entity)
            await self.session.flush()
            self.logger.debug(f"save: inserted {self.model.__name__} id={getattr(entity, 'id', None)}")
            return entity
        if state.detached:
            return await self.session.merge(entity)
        return entity

    async def save_all(self, entities: Iterable[T]) -> List[T]:
        return [await self.save(entity) for entity in entities]

    async def save_and_flush(self, entity: T) -> T:
        entity = await self.save(entity)
        await self.session.flush()
        return entity

    async def delete(self, entity: T) -> None:
        """Mark entity for removal; the DELETE is issued at the next flush."""
        if sa_inspect(entity).transient:
            return
        await self.session.delete(entity)

    async def delete_by_id(self, id: Any) -> bool:
        """Delete entity by ID; False when it does not exist."""
        entity = await self.find_by_id(id)
        if entity is None:
            return False
        await self.session.delete(entity)
        return True

    async def delete_all(self, entities: Iterable[T]) -> None:
        for entity in entities:
            await self.delete(entity)

    # --- unit of work passthrough -----------------------------------------

    async def flush(self) -> None:
        await self.session.flush()

    def clear(self) -> None:
        """Detach everything tracked by the session (the identity map empties)."""
        self.session.expunge_all()
        self.session.info.pop(READ_ONLY_KEY, None)
