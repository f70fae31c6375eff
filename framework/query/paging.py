"""Page and Slice execution over SQLAlchemy statements."""

from typing import Any, Callable, List, Mapping, Optional

from sqlalchemy import func, inspect as sa_inspect
from sqlalchemy.engine import Row
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from framework.pagination import Page, PageRequest, Slice, build_page


def count_statement(model: type, where=None, joins=(), distinct: bool = False):
    """
    Count over the base predicate only.

    ``joins`` are the filter joins; fetch joins never reach this statement,
    so a joined relation cannot multiply the count.
    """
    if distinct:
        primary_key = sa_inspect(model).primary_key[0]
        statement = select(func.count(primary_key.distinct())).select_from(model)
    else:
        statement = select(func.count()).select_from(model)
    for hop in joins:
        statement = statement.join(hop)
    if where is not None:
        statement = statement.where(where)
    return statement


def subquery_count_statement(statement):
    """Count the rows of an arbitrary select by wrapping it (ORDER BY dropped)."""
    return select(func.count()).select_from(statement.order_by(None).subquery())


async def run(session: AsyncSession, statement, params: Optional[Mapping[str, Any]] = None, unique: bool = False) -> List[Any]:
    result = await session.exec(statement, params=params or None)
    if unique:
        result = result.unique()
    return list(result.all())


async def run_count(session: AsyncSession, statement, params: Optional[Mapping[str, Any]] = None) -> int:
    result = await session.exec(statement, params=params or None)
    value = result.one()
    # text() counts come back as rows, select(func.count()) as scalars
    return int(value[0] if isinstance(value, Row) else value)


async def fetch_page(
    session: AsyncSession,
    statement,
    count: Any,
    pageable: PageRequest,
    params: Optional[Mapping[str, Any]] = None,
    unique: bool = False,
    convert: Optional[Callable[[Any], Any]] = None,
    count_params: Optional[Mapping[str, Any]] = None,
) -> Page[Any]:
    """Run ``statement`` bounded by ``pageable`` and ``count`` only if needed."""
    rows = await run(session, statement.offset(pageable.offset).limit(pageable.size), params, unique)
    if convert is not None:
        rows = [convert(row) for row in rows]

    async def total() -> int:
        return await run_count(session, count, params if count_params is None else count_params)

    return await build_page(rows, pageable, total)


async def fetch_slice(
    session: AsyncSession,
    statement,
    pageable: PageRequest,
    params: Optional[Mapping[str, Any]] = None,
    unique: bool = False,
    convert: Optional[Callable[[Any], Any]] = None,
) -> Slice[Any]:
    """Read size + 1 rows; the extra row only signals has_next."""
    rows = await run(session, statement.offset(pageable.offset).limit(pageable.size + 1), params, unique)
    if convert is not None:
        rows = [convert(row) for row in rows]
    return Slice.of(rows, pageable)
