"""
Property paths and predicates.

A path is an attribute name, dotted through relationships ("team.name").
Paths are resolved against the SQLAlchemy mapper, so a typo fails when the
declaring repository class is created rather than when a request arrives.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, inspect as sa_inspect, or_
from sqlalchemy.orm import InstrumentedAttribute

from framework.exceptions.data_access import InvalidPropertyPathError


@dataclass(frozen=True)
class PropertyPath:
    """A resolved path: relationship hops to join, then the terminal attribute."""
    path: str
    joins: Tuple[InstrumentedAttribute, ...]
    attribute: InstrumentedAttribute
    is_relationship: bool = False

    @property
    def name(self) -> str:
        return self.path.rsplit(".", 1)[-1]


def resolve_path(model: type, path: str, allow_relationship: bool = False) -> PropertyPath:
    """Resolve ``path`` on ``model``'s mapper or raise InvalidPropertyPathError."""
    entity = model.__name__
    if not path or any(not segment for segment in path.split(".")):
        raise InvalidPropertyPathError(entity, path, "empty path segment")

    mapper = sa_inspect(model)
    joins: List[InstrumentedAttribute] = []
    segments = path.split(".")
    for index, segment in enumerate(segments):
        is_last = index == len(segments) - 1
        is_column = segment in mapper.column_attrs
        is_relation = segment in mapper.relationships
        if is_column and is_relation:
            raise InvalidPropertyPathError(entity, path, f"'{segment}' is both a column and a relationship")
        attribute = getattr(mapper.class_, segment, None)
        if is_relation:
            if is_last:
                if not allow_relationship:
                    raise InvalidPropertyPathError(entity, path, f"'{segment}' is a relationship, name one of its columns")
                return PropertyPath(path, tuple(joins), attribute, is_relationship=True)
            joins.append(attribute)
            mapper = mapper.relationships[segment].mapper
            continue
        if is_column:
            if not is_last:
                raise InvalidPropertyPathError(entity, path, f"'{segment}' is a column and cannot be traversed")
            return PropertyPath(path, tuple(joins), attribute)
        raise InvalidPropertyPathError(entity, path, f"no property '{segment}' on {mapper.class_.__name__}")
    raise InvalidPropertyPathError(entity, path, "unresolvable")  # pragma: no cover


class Op(str, Enum):
    """Comparison operators available to finder conditions."""
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"
    LIKE = "like"
    CONTAINING = "containing"
    STARTING_WITH = "starting_with"
    ENDING_WITH = "ending_with"
    IN = "in"
    NOT_IN = "not_in"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    BETWEEN = "between"

    @property
    def arity(self) -> int:
        if self in (Op.IS_NULL, Op.IS_NOT_NULL):
            return 0
        if self is Op.BETWEEN:
            return 2
        return 1


@dataclass(frozen=True)
class Condition:
    path: str
    op: Op = Op.EQ
    ignore_case: bool = False

    def parameter_names(self) -> List[str]:
        base = self.path.replace(".", "_")
        if self.op.arity == 0:
            return []
        if self.op.arity == 2:
            return [f"{base}_start", f"{base}_end"]
        return [base]

    def to_clause(self, column, values: Sequence[Any]):
        op = self.op
        if op is Op.IS_NULL:
            return column.is_(None)
        if op is Op.IS_NOT_NULL:
            return column.is_not(None)
        if op is Op.BETWEEN:
            return column.between(values[0], values[1])

        value = values[0]
        if op is Op.EQ:
            if value is None:
                return column.is_(None)
            if self.ignore_case:
                return func.lower(column) == func.lower(value)
            return column == value
        if op is Op.NE:
            if value is None:
                return column.is_not(None)
            if self.ignore_case:
                return func.lower(column) != func.lower(value)
            return column != value
        if op is Op.GT:
            return column > value
        if op is Op.GE:
            return column >= value
        if op is Op.LT:
            return column < value
        if op is Op.LE:
            return column <= value
        if op is Op.LIKE:
            return column.ilike(value) if self.ignore_case else column.like(value)
        if op is Op.CONTAINING:
            return column.icontains(value, autoescape=True) if self.ignore_case else column.contains(value, autoescape=True)
        if op is Op.STARTING_WITH:
            return column.istartswith(value, autoescape=True) if self.ignore_case else column.startswith(value, autoescape=True)
        if op is Op.ENDING_WITH:
            return column.iendswith(value, autoescape=True) if self.ignore_case else column.endswith(value, autoescape=True)
        if op is Op.IN:
            return column.in_(list(value))
        if op is Op.NOT_IN:
            return column.not_in(list(value))
        raise ValueError(f"Unsupported operator {op}")  # pragma: no cover


def combine(groups: Iterable[Sequence[Any]]):
    """AND within a group, OR across groups; None when there is nothing to filter."""
    clauses = [and_(*group) if len(group) > 1 else group[0] for group in groups if group]
    if not clauses:
        return None
    return clauses[0] if len(clauses) == 1 else or_(*clauses)


def apply_joins(statement, paths: Iterable[PropertyPath], joined: dict, outer: bool = False):
    """
    Join every relationship hop the paths need, once per hop.

    ``joined`` maps hop keys already present in the statement to True and is
    updated in place, so filter joins and sort joins are shared.
    """
    for path in paths:
        for hop in path.joins:
            key = f"{hop.class_.__name__}.{hop.key}"
            if key in joined:
                continue
            statement = statement.outerjoin(hop) if outer else statement.join(hop)
            joined[key] = True
    return statement


def order_clauses(model: type, sort, statement, joined: dict, selected: Optional[dict] = None):
    """
    Translate a Sort into ORDER BY clauses.

    Properties are matched against ``selected`` labels first (projections),
    then resolved as entity paths; relationship hops are outer-joined so
    rows without the relation are not dropped.
    Raises InvalidPropertyPathError for unknown properties.
    """
    clauses = []
    for order in sort.orders:
        if selected is not None and order.prop in selected:
            column = selected[order.prop]
        else:
            path = resolve_path(model, order.prop)
            statement = apply_joins(statement, [path], joined, outer=True)
            column = path.attribute
        clauses.append(column.asc() if order.is_ascending else column.desc())
    return statement, clauses
