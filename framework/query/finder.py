"""
Declarative finders.

Instead of deriving queries from method names, a repository declares them
with an explicit builder:

    class MemberRepository(BaseRepository[Member]):
        find_by_username_and_age_greater_than = (
            Finder(Member).where("username").where("age", Op.GT)
        )
        find_top3_by = Finder(Member).top(3)
        find_page_by = Finder(Member).paged()

    members = await repo.find_by_username_and_age_greater_than("test", 15)

Arguments bind to conditions in declaration order (or by keyword, named
after the path with dots replaced by underscores). Paged and sliced finders
take a trailing PageRequest; finders declared with ``projected()`` take the
projection type as their first argument.

Ordering: the declared ``order_by()`` keys come first and the caller's sort
(``sort=`` or the PageRequest sort) is appended after them, so a caller
sort only breaks ties left by the declaration.
"""

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from pydantic import BaseModel
from sqlalchemy import select as sa_select
from sqlalchemy.orm import joinedload
from sqlmodel import select

from framework.exceptions.data_access import (
    IncorrectResultSizeError,
    InvalidPropertyPathError,
)
from framework.exceptions.handler import InvalidSortPropertyError
from framework.database.auditing import mark_read_only
from framework.pagination import Direction, Order, PageRequest, Sort
from .base import RepositoryQuery
from .criteria import Condition, Op, PropertyPath, apply_joins, combine, order_clauses, resolve_path
from .paging import count_statement, fetch_page, fetch_slice, run, run_count, subquery_count_statement


class LockMode(str, Enum):
    NONE = "none"
    PESSIMISTIC_READ = "pessimistic_read"
    PESSIMISTIC_WRITE = "pessimistic_write"


class ResultMode(str, Enum):
    LIST = "list"
    FIRST = "first"
    ONE = "one"
    PAGE = "page"
    SLICE = "slice"
    COUNT = "count"
    EXISTS = "exists"


class EntityGraph:
    """
    Relationships to load eagerly in the same statement (LEFT OUTER JOIN).

    Paths are validated on construction: ``EntityGraph(Member, "team")``.
    """

    def __init__(self, model: type, *paths: str):
        self.model = model
        self.paths = paths
        self._resolved: List[PropertyPath] = []
        for path in paths:
            resolved = resolve_path(model, path, allow_relationship=True)
            if not resolved.is_relationship:
                raise InvalidPropertyPathError(model.__name__, path, "entity graph paths must end at a relationship")
            self._resolved.append(resolved)

    def options(self) -> list:
        loaders = []
        for resolved in self._resolved:
            hops = resolved.joins + (resolved.attribute,)
            loader = joinedload(hops[0])
            for hop in hops[1:]:
                loader = loader.joinedload(hop)
            loaders.append(loader)
        return loaders

    def __bool__(self) -> bool:
        return bool(self.paths)

    def __repr__(self) -> str:
        return f"EntityGraph({self.model.__name__}, {', '.join(self.paths)})"


def projection_paths(model: type, projection: Type[BaseModel]) -> List[Tuple[str, PropertyPath]]:
    """Map each projection field (by alias, else name) to an entity column path."""
    if not (isinstance(projection, type) and issubclass(projection, BaseModel)):
        raise TypeError(f"Projection must be a pydantic model class, got {projection!r}")
    mapped = []
    for name, field in projection.model_fields.items():
        key = field.alias or name
        mapped.append((key, resolve_path(model, key)))
    if not mapped:
        raise TypeError(f"Projection {projection.__name__} declares no fields")
    return mapped


class Finder(RepositoryQuery):
    """Builder for a derived query on one entity."""

    def __init__(self, model: type):
        super().__init__()
        self.model = model
        self._groups: List[List[Condition]] = [[]]
        self._static_sort = Sort.unsorted()
        self._limit: Optional[int] = None
        self._distinct = False
        self._mode = ResultMode.LIST
        self._fetch: Tuple[str, ...] = ()
        self._lock = LockMode.NONE
        self._nowait = False
        self._read_only = False
        self._projection: Optional[Type[BaseModel]] = None
        self._dynamic_projection = False
        self._select: Optional[str] = None
        # resolved in prepare()
        self._resolved: List[List[Tuple[Condition, PropertyPath, List[str]]]] = []
        self._filter_paths: List[PropertyPath] = []
        self._graph: Optional[EntityGraph] = None
        self._select_path: Optional[PropertyPath] = None
        self._projection_columns: List[Tuple[str, PropertyPath]] = []

    # --- declaration -------------------------------------------------------

    def where(self, path: str, op: Op = Op.EQ, ignore_case: bool = False) -> "Finder":
        """AND a condition onto the current group."""
        self._groups[-1].append(Condition(path, op, ignore_case))
        return self

    def or_where(self, path: str, op: Op = Op.EQ, ignore_case: bool = False) -> "Finder":
        """Start a new OR group with this condition."""
        self._groups.append([Condition(path, op, ignore_case)])
        return self

    def order_by(self, path: str, descending: bool = False) -> "Finder":
        direction = Direction.DESC if descending else Direction.ASC
        self._static_sort = self._static_sort.and_(Sort.by_orders(Order(prop=path, direction=direction)))
        return self

    def top(self, n: int) -> "Finder":
        if n < 1:
            raise ValueError("top(n) requires n >= 1")
        self._limit = n
        return self

    def distinct(self) -> "Finder":
        self._distinct = True
        return self

    def first(self) -> "Finder":
        self._mode = ResultMode.FIRST
        return self

    def one(self) -> "Finder":
        self._mode = ResultMode.ONE
        return self

    def paged(self) -> "Finder":
        self._mode = ResultMode.PAGE
        return self

    def sliced(self) -> "Finder":
        self._mode = ResultMode.SLICE
        return self

    def count(self) -> "Finder":
        self._mode = ResultMode.COUNT
        return self

    def exists(self) -> "Finder":
        self._mode = ResultMode.EXISTS
        return self

    def fetch(self, *paths: str) -> "Finder":
        self._fetch = self._fetch + paths
        return self

    def lock(self, mode: LockMode = LockMode.PESSIMISTIC_WRITE, nowait: bool = False) -> "Finder":
        self._lock = mode
        self._nowait = nowait
        return self

    def read_only(self) -> "Finder":
        self._read_only = True
        return self

    def project(self, projection: Type[BaseModel]) -> "Finder":
        self._projection = projection
        return self

    def projected(self) -> "Finder":
        self._dynamic_projection = True
        return self

    def select(self, path: str) -> "Finder":
        self._select = path
        return self

    # --- validation --------------------------------------------------------

    def prepare(self) -> None:
        shapes = [self._projection is not None, self._dynamic_projection, self._select is not None]
        if sum(shapes) > 1:
            raise ValueError("choose one of project(), projected() and select()")
        narrowed = any(shapes)
        if narrowed and self._fetch:
            raise ValueError("fetch() applies to entity results, not projections")
        if narrowed and self._read_only:
            raise ValueError("read_only() applies to entity results, not projections")
        if self._limit is not None and self._mode in (ResultMode.PAGE, ResultMode.SLICE):
            raise ValueError("top() cannot be combined with paged() or sliced()")
        if self._mode in (ResultMode.COUNT, ResultMode.EXISTS) and (narrowed or self._fetch or self._lock is not LockMode.NONE):
            raise ValueError("count()/exists() take conditions only")

        self._resolved = []
        self._filter_paths = []
        names: List[str] = []
        for group in self._groups:
            resolved_group = []
            for condition in group:
                path = resolve_path(self.model, condition.path)
                params = []
                for candidate in condition.parameter_names():
                    name, n = candidate, 2
                    while name in names:
                        name, n = f"{candidate}_{n}", n + 1
                    names.append(name)
                    params.append(name)
                resolved_group.append((condition, path, params))
                self._filter_paths.append(path)
            self._resolved.append(resolved_group)
        self.parameter_names = names

        for order in self._static_sort.orders:
            resolve_path(self.model, order.prop)
        self._graph = EntityGraph(self.model, *self._fetch) if self._fetch else None
        self._select_path = resolve_path(self.model, self._select) if self._select else None
        self._projection_columns = projection_paths(self.model, self._projection) if self._projection else []

    # --- execution ---------------------------------------------------------

    def _split_call(self, args: Sequence[Any], kwargs: Mapping[str, Any]):
        args = list(args)
        kwargs = dict(kwargs)
        projection_columns = self._projection_columns
        projection = self._projection
        if self._dynamic_projection:
            projection = kwargs.pop("projection") if "projection" in kwargs else (args.pop(0) if args else None)
            projection_columns = projection_paths(self.model, projection)
        pageable: Optional[PageRequest] = None
        sort = Sort.unsorted()
        if self._mode in (ResultMode.PAGE, ResultMode.SLICE):
            pageable = kwargs.pop("pageable") if "pageable" in kwargs else (args.pop() if args else None)
            if not isinstance(pageable, PageRequest):
                raise TypeError(f"{self.name}() requires a PageRequest, got {pageable!r}")
            sort = pageable.sort
        elif "sort" in kwargs:
            sort = kwargs.pop("sort") or Sort.unsorted()
        params = self.bind_parameters(args, kwargs)
        return projection, projection_columns, pageable, sort, params

    def _where(self, params: Dict[str, Any]):
        groups = []
        for group in self._resolved:
            clauses = []
            for condition, path, names in group:
                clauses.append(condition.to_clause(path.attribute, [params[n] for n in names]))
            groups.append(clauses)
        return combine(groups)

    def _filter_joins(self) -> list:
        hops, seen = [], set()
        for path in self._filter_paths:
            for hop in path.joins:
                key = f"{hop.class_.__name__}.{hop.key}"
                if key not in seen:
                    seen.add(key)
                    hops.append(hop)
        return hops

    def _statement(self, projection_columns, sort: Sort, params: Dict[str, Any]):
        selected = None
        if self._select_path is not None:
            statement = select(self._select_path.attribute).select_from(self.model)
            outer = [self._select_path]
        elif projection_columns:
            statement = sa_select(*[p.attribute.label(key) for key, p in projection_columns]).select_from(self.model)
            outer = [p for _, p in projection_columns]
            selected = {key: p.attribute for key, p in projection_columns}
        else:
            statement = select(self.model)
            outer = []

        joined: Dict[str, bool] = {}
        statement = apply_joins(statement, self._filter_paths, joined)
        statement = apply_joins(statement, outer, joined, outer=True)
        where = self._where(params)
        if where is not None:
            statement = statement.where(where)

        try:
            statement, clauses = order_clauses(self.model, self._static_sort.and_(sort), statement, joined, selected)
        except InvalidPropertyPathError as e:
            raise InvalidSortPropertyError(self.model.__name__, e.path) from e
        if clauses:
            statement = statement.order_by(*clauses)

        if self._distinct:
            statement = statement.distinct()
        if self._graph:
            statement = statement.options(*self._graph.options())
        if self._lock is LockMode.PESSIMISTIC_WRITE:
            statement = statement.with_for_update(nowait=self._nowait)
        elif self._lock is LockMode.PESSIMISTIC_READ:
            statement = statement.with_for_update(read=True, nowait=self._nowait)

        if self._limit is not None:
            statement = statement.limit(self._limit)
        elif self._mode is ResultMode.FIRST:
            statement = statement.limit(1)
        elif self._mode is ResultMode.ONE:
            statement = statement.limit(2)
        return statement, where

    def build_statement(self, args: Sequence[Any], kwargs: Mapping[str, Any]):
        _, projection_columns, pageable, sort, params = self._split_call(args, kwargs)
        if self._mode in (ResultMode.COUNT, ResultMode.EXISTS):
            return count_statement(self.model, self._where(params), self._filter_joins(), self._distinct)
        statement, _ = self._statement(projection_columns, sort, params)
        if pageable is not None:
            extra = 1 if self._mode is ResultMode.SLICE else 0
            statement = statement.offset(pageable.offset).limit(pageable.size + extra)
        return statement

    async def execute(self, repository, args: Sequence[Any], kwargs: Mapping[str, Any]):
        session = repository.session
        projection, projection_columns, pageable, sort, params = self._split_call(args, kwargs)

        if self._mode in (ResultMode.COUNT, ResultMode.EXISTS):
            total = await run_count(session, count_statement(self.model, self._where(params), self._filter_joins(), self._distinct))
            self.logger.debug(f"{self.name}{params} -> count {total}")
            return total if self._mode is ResultMode.COUNT else total > 0

        statement, where = self._statement(projection_columns, sort, params)
        convert = (lambda row: projection.model_validate(dict(row._mapping))) if projection_columns else None
        unique = bool(self._graph)

        if self._mode is ResultMode.PAGE:
            if self._distinct and (self._select_path is not None or projection_columns):
                # distinct values, not distinct entities
                count = subquery_count_statement(statement)
            else:
                count = count_statement(self.model, where, self._filter_joins(), self._distinct)
            page = await fetch_page(session, statement, count, pageable, unique=unique, convert=convert)
            self._after_load(session, page.content)
            self.logger.debug(f"{self.name}{params} page={pageable.page} size={pageable.size} -> {len(page.content)}/{page.total_elements}")
            return page
        if self._mode is ResultMode.SLICE:
            chunk = await fetch_slice(session, statement, pageable, unique=unique, convert=convert)
            self._after_load(session, chunk.content)
            self.logger.debug(f"{self.name}{params} slice={pageable.page} size={pageable.size} -> {len(chunk.content)} has_next={chunk.has_next}")
            return chunk

        rows = await run(session, statement, unique=unique)
        if convert is not None:
            rows = [convert(row) for row in rows]
        self._after_load(session, rows)
        self.logger.debug(f"{self.name}{params} -> {len(rows)} rows")

        if self._mode is ResultMode.FIRST:
            return rows[0] if rows else None
        if self._mode is ResultMode.ONE:
            if len(rows) > 1:
                raise IncorrectResultSizeError(1, len(rows))
            return rows[0] if rows else None
        return rows

    def _after_load(self, session, entities: Sequence[Any]) -> None:
        if self._read_only:
            for entity in entities:
                mark_read_only(session, entity)
