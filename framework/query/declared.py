"""
Literal queries declared on repositories.

- DeclaredQuery: a SQLAlchemy select written out by hand, with bindparam()
  placeholders (or a named query registered next to the entity).
- NativeQuery: raw SQL through text(), checked against the mapped tables.
- ModifyingQuery: set-based UPDATE/DELETE that bypasses the identity map.

Each is compiled once when its repository class is created; call arguments
are always sent as bound parameters.
"""

import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type

from pydantic import BaseModel
from sqlalchemy import Select, column, func, select as sa_select, text
from sqlalchemy.sql.dml import UpdateBase
from sqlalchemy.sql.elements import TextClause
from sqlmodel import SQLModel, select

from framework.exceptions.data_access import IllegalTransactionStateError, IncorrectResultSizeError, InvalidPropertyPathError
from framework.exceptions.handler import InvalidSortPropertyError
from framework.pagination import PageRequest, Sort, build_page
from .base import RepositoryQuery
from .criteria import order_clauses
from .finder import ResultMode
from .paging import fetch_page, fetch_slice, run, run_count, subquery_count_statement

_NAMED_QUERIES: Dict[str, Select] = {}


def register_named_query(name: str, statement: Select) -> Select:
    """Register a reusable statement under ``Entity.query_name``."""
    if name in _NAMED_QUERIES:
        raise ValueError(f"Named query '{name}' is already registered")
    _NAMED_QUERIES[name] = statement
    return statement


def named_query(name: str) -> Select:
    try:
        return _NAMED_QUERIES[name]
    except KeyError:
        raise KeyError(f"No named query '{name}' registered") from None


def required_binds(statement) -> List[str]:
    """Names of bindparam() placeholders without a value, in statement order."""
    compiled = statement.compile()
    return [bind.key for bind in compiled.binds.values() if bind.required]


def _check_mode(mode: ResultMode) -> None:
    if mode not in (ResultMode.LIST, ResultMode.FIRST, ResultMode.ONE, ResultMode.PAGE, ResultMode.SLICE):
        raise ValueError(f"Unsupported result mode {mode.value} for a literal query")


def _single(rows: list, mode: ResultMode):
    if mode is ResultMode.ONE and len(rows) > 1:
        raise IncorrectResultSizeError(1, len(rows))
    return rows[0] if rows else None


class DeclaredQuery(RepositoryQuery):
    """
    A hand-written select.

        find_user = DeclaredQuery(
            select(Member).where(Member.username == bindparam("username"),
                                 Member.age == bindparam("age"))
        )

    ``projection`` builds pydantic objects from the labelled result columns.
    Paged queries count with ``count_query`` when given; otherwise they count
    the statement wrapped as a subquery.
    """

    def __init__(
        self,
        statement: Optional[Select] = None,
        *,
        name: Optional[str] = None,
        count_query: Optional[Select] = None,
        projection: Optional[Type[BaseModel]] = None,
        mode: ResultMode = ResultMode.LIST,
    ):
        super().__init__()
        if (statement is None) == (name is None):
            raise ValueError("DeclaredQuery takes either a statement or a named query name")
        self.statement = statement
        self.query_name = name
        self.count_query = count_query
        self.projection = projection
        self.mode = mode
        self.root_entity: Optional[type] = None

    def prepare(self) -> None:
        _check_mode(self.mode)
        if self.query_name is not None:
            self.statement = named_query(self.query_name)
        if not isinstance(self.statement, Select):
            raise TypeError(f"expected a select statement, got {type(self.statement).__name__}")
        self.parameter_names = required_binds(self.statement)
        if self.count_query is not None:
            extra = set(required_binds(self.count_query)) - set(self.parameter_names)
            if extra:
                raise ValueError(f"count query uses parameters the query does not declare: {sorted(extra)}")
        if self.projection is not None:
            keys = set(self.statement.selected_columns.keys())
            fields = {f.alias or n for n, f in self.projection.model_fields.items() if f.is_required()}
            missing = fields - keys
            if missing:
                raise ValueError(f"projection {self.projection.__name__} needs columns {sorted(missing)}")
        description = self.statement.column_descriptions[0]
        entity = description.get("entity")
        self.root_entity = entity if isinstance(entity, type) and issubclass(entity, SQLModel) else None

    def _split_call(self, args: Sequence[Any], kwargs: Mapping[str, Any]):
        args = list(args)
        kwargs = dict(kwargs)
        pageable = None
        if self.mode in (ResultMode.PAGE, ResultMode.SLICE):
            pageable = kwargs.pop("pageable") if "pageable" in kwargs else (args.pop() if args else None)
            if not isinstance(pageable, PageRequest):
                raise TypeError(f"{self.name}() requires a PageRequest, got {pageable!r}")
        return pageable, self.bind_parameters(args, kwargs)

    def _sorted(self, statement, sort: Sort):
        if not sort.is_sorted:
            return statement
        selected = dict(statement.selected_columns.items())
        try:
            if self.root_entity is None:
                missing = [o.prop for o in sort.orders if o.prop not in selected]
                if missing:
                    raise InvalidPropertyPathError(self.owner_name, missing[0], "not a selected column")
                clauses = [selected[o.prop].asc() if o.is_ascending else selected[o.prop].desc() for o in sort.orders]
                return statement.order_by(*clauses)
            statement, clauses = order_clauses(self.root_entity, sort, statement, {}, selected if self.projection else None)
        except InvalidPropertyPathError as e:
            raise InvalidSortPropertyError(self.root_entity.__name__ if self.root_entity else self.name, e.path) from e
        return statement.order_by(*clauses)

    def build_statement(self, args: Sequence[Any], kwargs: Mapping[str, Any]):
        pageable, _ = self._split_call(args, kwargs)
        if pageable is None:
            return self.statement
        return self._sorted(self.statement, pageable.sort).offset(pageable.offset).limit(pageable.size)

    def _convert(self):
        if self.projection is None:
            return None
        projection = self.projection
        return lambda row: projection.model_validate(dict(row._mapping))

    async def execute(self, repository, args: Sequence[Any], kwargs: Mapping[str, Any]):
        session = repository.session
        pageable, params = self._split_call(args, kwargs)
        convert = self._convert()

        if self.mode is ResultMode.PAGE:
            statement = self._sorted(self.statement, pageable.sort)
            count = self.count_query if self.count_query is not None else subquery_count_statement(self.statement)
            # a hand-written count query may take a subset of the parameters
            count_names = set(required_binds(count))
            count_params = {k: v for k, v in params.items() if k in count_names}
            page = await fetch_page(session, statement, count, pageable, params, convert=convert, count_params=count_params)
            self.logger.debug(f"{self.name}{params} page={pageable.page} -> {len(page.content)}/{page.total_elements}")
            return page
        if self.mode is ResultMode.SLICE:
            statement = self._sorted(self.statement, pageable.sort)
            chunk = await fetch_slice(session, statement, pageable, params, convert=convert)
            self.logger.debug(f"{self.name}{params} slice={pageable.page} -> {len(chunk.content)} has_next={chunk.has_next}")
            return chunk

        rows = await run(session, self.statement, params)
        if convert is not None:
            rows = [convert(row) for row in rows]
        self.logger.debug(f"{self.name}{params} -> {len(rows)} rows")
        if self.mode in (ResultMode.FIRST, ResultMode.ONE):
            return _single(rows, self.mode)
        return rows


_TABLE_REFERENCE = re.compile(r"\b(?:from|join|update|into)\s+([A-Za-z_][\w.]*)", re.IGNORECASE)
_SUBQUERY_START = re.compile(r"\s*(?:select|with)\b", re.IGNORECASE)


def _enclosing_paren(sql: str, position: int) -> Optional[int]:
    depth = 0
    for index in range(position - 1, -1, -1):
        if sql[index] == ")":
            depth += 1
        elif sql[index] == "(":
            if depth == 0:
                return index
            depth -= 1
    return None


def referenced_tables(sql: str) -> List[str]:
    """Tables named by FROM/JOIN/UPDATE/INTO at statement or subquery level."""
    tables = []
    for match in _TABLE_REFERENCE.finditer(sql):
        opening = _enclosing_paren(sql, match.start())
        # extract(year from x) and trim(both ' ' from x) name columns
        if opening is not None and not _SUBQUERY_START.match(sql, opening + 1):
            continue
        tables.append(match.group(1))
    return tables


class NativeQuery(RepositoryQuery):
    """
    Raw SQL with :named parameters.

    Every table named after FROM/JOIN must be mapped. Paged native queries
    need the result columns (``projection`` or ``columns``) so the SQL can be
    wrapped and sorted by column name; ``count_sql`` replaces the derived
    ``count(*)`` over that wrapper.
    """

    def __init__(
        self,
        sql: str,
        *,
        count_sql: Optional[str] = None,
        projection: Optional[Type[BaseModel]] = None,
        columns: Sequence[str] = (),
        mode: ResultMode = ResultMode.LIST,
    ):
        super().__init__()
        self.sql = sql
        self.count_sql = count_sql
        self.projection = projection
        self.columns = tuple(columns)
        self.mode = mode
        self._clause: Optional[TextClause] = None
        self._count_clause: Optional[TextClause] = None

    def prepare(self) -> None:
        _check_mode(self.mode)
        known = set(SQLModel.metadata.tables)
        for sql in filter(None, (self.sql, self.count_sql)):
            for table in referenced_tables(sql):
                if table not in known:
                    raise ValueError(f"unknown table '{table}' in native query")
        self._clause = text(self.sql)
        self.parameter_names = list(self._clause.compile().params)
        if self.count_sql is not None:
            self._count_clause = text(self.count_sql)
            extra = set(self._count_clause.compile().params) - set(self.parameter_names)
            if extra:
                raise ValueError(f"count query uses parameters the query does not declare: {sorted(extra)}")
        if not self.columns and self.projection is not None:
            self.columns = tuple(f.alias or n for n, f in self.projection.model_fields.items())
        if self.mode in (ResultMode.PAGE, ResultMode.SLICE) and not self.columns:
            raise ValueError("paged native queries need a projection or explicit columns")

    def _wrapped(self):
        textual = self._clause.columns(*[column(name) for name in self.columns])
        return textual.subquery("native")

    def _split_call(self, args, kwargs):
        args = list(args)
        kwargs = dict(kwargs)
        pageable = None
        if self.mode in (ResultMode.PAGE, ResultMode.SLICE):
            pageable = kwargs.pop("pageable") if "pageable" in kwargs else (args.pop() if args else None)
            if not isinstance(pageable, PageRequest):
                raise TypeError(f"{self.name}() requires a PageRequest, got {pageable!r}")
        return pageable, self.bind_parameters(args, kwargs)

    def _sorted_select(self, sort: Sort):
        sub = self._wrapped()
        statement = sa_select(sub)
        clauses = []
        for order in sort.orders:
            if order.prop not in sub.c:
                raise InvalidSortPropertyError(self.name, order.prop)
            col = sub.c[order.prop]
            clauses.append(col.asc() if order.is_ascending else col.desc())
        return statement.order_by(*clauses) if clauses else statement

    def build_statement(self, args, kwargs):
        pageable, _ = self._split_call(args, kwargs)
        if pageable is None:
            return self._clause
        return self._sorted_select(pageable.sort).offset(pageable.offset).limit(pageable.size)

    def _convert(self, row):
        if self.projection is not None:
            return self.projection.model_validate(dict(row._mapping))
        return dict(row._mapping)

    async def execute(self, repository, args, kwargs):
        session = repository.session
        pageable, params = self._split_call(args, kwargs)

        if self.mode is ResultMode.PAGE:
            if self._count_clause is not None:
                count = self._count_clause
                count_params = {k: v for k, v in params.items() if k in self._count_clause.compile().params}
            else:
                count = select(func.count()).select_from(self._wrapped())
                count_params = params
            rows = await run(session, self._sorted_select(pageable.sort).offset(pageable.offset).limit(pageable.size), params)
            content = [self._convert(row) for row in rows]

            async def total():
                return await run_count(session, count, count_params)

            page = await build_page(content, pageable, total)
            self.logger.debug(f"{self.name}{params} page={pageable.page} -> {len(page.content)}/{page.total_elements}")
            return page
        if self.mode is ResultMode.SLICE:
            chunk = await fetch_slice(session, self._sorted_select(pageable.sort), pageable, params, convert=self._convert)
            self.logger.debug(f"{self.name}{params} slice={pageable.page} -> {len(chunk.content)}")
            return chunk

        rows = [self._convert(row) for row in await run(session, self._clause, params)]
        self.logger.debug(f"{self.name}{params} -> {len(rows)} rows")
        if self.mode in (ResultMode.FIRST, ResultMode.ONE):
            return _single(rows, self.mode)
        return rows


class ModifyingQuery(RepositoryQuery):
    """
    Set-based UPDATE/DELETE returning the affected row count.

        bulk_inc_age = ModifyingQuery(update(Member).values(age=Member.age + 1))

    Requires an active transaction. Pending changes are flushed first
    (``flush_automatically``) and the identity map is cleared afterwards
    (``clear_automatically``), because the statement bypasses it and every
    tracked copy of an affected row is stale.
    """

    def __init__(self, statement, *, clear_automatically: bool = True, flush_automatically: bool = True):
        super().__init__()
        self.statement = statement
        self.clear_automatically = clear_automatically
        self.flush_automatically = flush_automatically

    def prepare(self) -> None:
        if isinstance(self.statement, str):
            self.statement = text(self.statement)
        if not isinstance(self.statement, (UpdateBase, TextClause)):
            raise TypeError(f"expected an UPDATE/DELETE statement, got {type(self.statement).__name__}")
        if isinstance(self.statement, TextClause):
            self.parameter_names = list(self.statement.compile().params)
        else:
            self.parameter_names = required_binds(self.statement)

    def build_statement(self, args, kwargs):
        self.bind_parameters(args, kwargs)
        return self.statement

    async def execute(self, repository, args, kwargs) -> int:
        session = repository.session
        params = self.bind_parameters(args, kwargs)
        if not session.in_transaction():
            raise IllegalTransactionStateError(
                f"{self.owner_name}.{self.name} executes a bulk update and requires an active transaction"
            )
        if self.flush_automatically:
            await session.flush()
        statement = self.statement.execution_options(synchronize_session=False)
        result = await session.exec(statement, params=params or None)
        affected = result.rowcount
        if self.clear_automatically:
            repository.clear()
        self.logger.info(f"{self.name}{params} -> {affected} rows affected")
        return affected
