"""
Descriptor base for queries declared on repository classes.

A declared query validates itself when Python assigns it to its class
attribute (``__set_name__``), so every declaration in the app is checked at
import time. Accessed through a repository instance it becomes an awaitable
bound to that repository's session.
"""

from typing import Any, Dict, List, Mapping, Sequence

from sqlalchemy.exc import ArgumentError, CompileError, InvalidRequestError, NoInspectionAvailable

from framework.exceptions.data_access import QueryDeclarationError
from framework.logging.logger import get_data_logger

_DECLARATION_ERRORS = (
    ArgumentError,
    CompileError,
    InvalidRequestError,
    NoInspectionAvailable,
    KeyError,
    TypeError,
    ValueError,
)


class BoundQuery:
    """A declared query attached to one repository instance."""

    def __init__(self, query: "RepositoryQuery", repository: Any):
        self.query = query
        self.repository = repository

    async def __call__(self, *args, **kwargs):
        return await self.query.execute(self.repository, args, kwargs)

    def statement(self, *args, **kwargs):
        """The statement a call with these arguments would run (for inspection)."""
        return self.query.build_statement(args, kwargs)

    def __repr__(self) -> str:
        return f"<bound {self.query!r} of {type(self.repository).__name__}>"


class RepositoryQuery:
    """Common declaration/binding plumbing for Finder, DeclaredQuery, NativeQuery and ModifyingQuery."""

    def __init__(self):
        self.owner_name: str = "<unbound>"
        self.name: str = "<unbound>"
        self.parameter_names: List[str] = []

    def __set_name__(self, owner, name):
        self.bind(owner.__name__, name)

    def bind(self, owner_name: str, name: str) -> "RepositoryQuery":
        """Name and validate the declaration; raises QueryDeclarationError."""
        self.owner_name = owner_name
        self.name = name
        try:
            self.prepare()
        except QueryDeclarationError:
            raise
        except _DECLARATION_ERRORS as e:
            raise QueryDeclarationError(owner_name, name, str(e)) from e
        return self

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return BoundQuery(self, instance)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.owner_name}.{self.name})"

    @property
    def logger(self):
        return get_data_logger(self.owner_name)

    def prepare(self) -> None:
        """Resolve and validate the declaration (declaration time)."""
        raise NotImplementedError

    def build_statement(self, args: Sequence[Any], kwargs: Mapping[str, Any]):
        raise NotImplementedError

    async def execute(self, repository, args: Sequence[Any], kwargs: Mapping[str, Any]):
        raise NotImplementedError

    def bind_parameters(self, args: Sequence[Any], kwargs: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Map call arguments onto ``parameter_names``: positionally in
        declaration order, or by keyword. Every parameter must be supplied
        exactly once.
        """
        names = self.parameter_names
        if len(args) > len(names):
            raise TypeError(f"{self.name}() takes {len(names)} query arguments but {len(args)} were given")
        bound = dict(zip(names, args))
        for key, value in kwargs.items():
            if key not in names:
                raise TypeError(f"{self.name}() got an unexpected keyword argument '{key}'")
            if key in bound:
                raise TypeError(f"{self.name}() got multiple values for argument '{key}'")
            bound[key] = value
        missing = [n for n in names if n not in bound]
        if missing:
            raise TypeError(f"{self.name}() missing query arguments: {', '.join(missing)}")
        return bound
