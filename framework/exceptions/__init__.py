from .data_access import (
    DataAccessError,
    IllegalTransactionStateError,
    IncorrectResultSizeError,
    InvalidPropertyPathError,
    QueryDeclarationError,
)

__all__ = [
    "DataAccessError",
    "IllegalTransactionStateError",
    "IncorrectResultSizeError",
    "InvalidPropertyPathError",
    "QueryDeclarationError",
]
