"""
Data-access exceptions raised by the repository and query layers.

These are programming or state errors, not business outcomes, so they do not
extend BusinessException: they reach the global handler as plain 500s.
"""


class DataAccessError(Exception):
    """Base class for repository-layer failures."""


class QueryDeclarationError(DataAccessError):
    """A declared finder or literal query is invalid for its entity.

    Raised while the repository class is being created, i.e. at import time,
    never while serving a request.
    """

    def __init__(self, owner: str, attribute: str, reason: str):
        self.owner = owner
        self.attribute = attribute
        self.reason = reason
        super().__init__(f"Invalid query declaration {owner}.{attribute}: {reason}")


class InvalidPropertyPathError(DataAccessError, ValueError):
    """A dotted property path does not resolve on the entity's mapper."""

    def __init__(self, entity: str, path: str, reason: str):
        self.entity = entity
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid property path '{path}' for {entity}: {reason}")


class IllegalTransactionStateError(DataAccessError):
    """Operation requires an active transaction (or none) and the state disagrees."""


class IncorrectResultSizeError(DataAccessError):
    """A single-result query matched more than one row."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Incorrect result size: expected {expected}, actual {actual}")
