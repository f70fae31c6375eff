"""
Declared repository queries: derived finders, literal and native queries,
bulk modifications, and the paging machinery they share.
"""

from .criteria import Condition, Op, PropertyPath, resolve_path
from .declared import DeclaredQuery, ModifyingQuery, NativeQuery, named_query, register_named_query
from .finder import EntityGraph, Finder, LockMode, ResultMode

__all__ = [
    "Condition",
    "DeclaredQuery",
    "EntityGraph",
    "Finder",
    "LockMode",
    "ModifyingQuery",
    "NativeQuery",
    "Op",
    "PropertyPath",
    "ResultMode",
    "named_query",
    "register_named_query",
    "resolve_path",
]
