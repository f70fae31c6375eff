"""
Repository pattern: generic CRUD, paging and declared queries over a session
owned by a UnitOfWork.
"""

from .base import BaseRepository, IRepository
from .unit_of_work import UnitOfWork

__all__ = ["BaseRepository", "IRepository", "UnitOfWork"]
