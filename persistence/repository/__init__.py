"""
Repository pattern: generic data access over SQLModel tables, coordinated by a unit of work.
"""

from .async_base import AsyncRepository
from .base import IRepository, Repository
from .query import CompiledQueryCache, compiled_queries
from .unit_of_work import AsyncUnitOfWork, RepositoryRegistry, UnitOfWork

__all__ = [
    "AsyncRepository",
    "AsyncUnitOfWork",
    "CompiledQueryCache",
    "IRepository",
    "Repository",
    "RepositoryRegistry",
    "UnitOfWork",
    "compiled_queries",
]
