"""
Generic repository implementation over an asyncio session.

Mirrors ``Repository`` method for method; every call that touches the
store is a coroutine.
"""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Generic, List, Mapping, Optional, Type

from sqlalchemy import inspect as sa_inspect, text
from sqlalchemy.sql import ColumnElement
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlmodel.sql.expression import SelectOfScalar

from persistence.exceptions.errors import InvalidArgumentError
from . import query as q
from .base import T, mark_all_modified, require_id, require_stored

if TYPE_CHECKING:
    from .unit_of_work import AsyncUnitOfWork


class AsyncRepository(Generic[T]):
    """Async repository over one SQLModel table, bound to an AsyncUnitOfWork."""

    model: Type[T]

    def __init__(self, uow: "AsyncUnitOfWork", model: Optional[Type[T]] = None):
        """Initialize repository with its owning unit of work and model."""
        self.uow = uow
        if model is not None:
            self.model = model
        if getattr(self, "model", None) is None:
            raise InvalidArgumentError("Repository requires a model", argument="model")

    @property
    def session(self) -> AsyncSession:
        return self.uow.session

    @asynccontextmanager
    async def _reader(self) -> AsyncIterator[AsyncSession]:
        connection = await self.session.connection()
        async with AsyncSession(bind=connection) as reader:
            yield reader

    async def get_all(self) -> List[T]:
        """Get every entity, detached from the change tracker."""
        async with self._reader() as reader:
            result = await reader.exec(select(self.model))
            return list(result.all())

    async def get_all_compiled(self) -> List[T]:
        """Same result as get_all, from the cached compiled plan."""
        async with self._reader() as reader:
            result = await reader.exec(q.all_rows(self.model))
            return list(result.all())

    def query(self) -> SelectOfScalar:
        """Composable select over the model (execute with ``await session.exec``)."""
        return select(self.model)

    async def exec_raw(self, query: str, params: Optional[Mapping[str, Any]] = None) -> List[T]:
        """Run raw SQL with named bind parameters and map rows onto the model (detached)."""
        statement = select(self.model).from_statement(text(query))
        async with self._reader() as reader:
            result = await reader.exec(statement, params=params or {})
            return list(result.scalars().all())

    async def get_by_id(self, id: Any) -> Optional[T]:
        return await self.session.get(self.model, require_id(id))

    async def get_by_unique_id(self, id: str) -> Optional[T]:
        return await self.session.get(self.model, require_id(id))

    async def find(self, *criteria: ColumnElement, **filters) -> Optional[T]:
        """Single match or None; more than one match raises MultipleResultsFound."""
        result = await self.session.exec(q.where(self.model, criteria, filters))
        return result.one_or_none()

    async def find_all(self, *criteria: ColumnElement, **filters) -> List[T]:
        result = await self.session.exec(q.where(self.model, criteria, filters))
        return list(result.all())

    def find_by(self, *criteria: ColumnElement, **filters) -> SelectOfScalar:
        return q.where(self.model, criteria, filters)

    async def exist(self, *criteria: ColumnElement, **filters) -> bool:
        result = await self.session.exec(q.exists_rows(self.model, criteria, filters))
        return bool(result.one())

    async def count(self, *criteria: ColumnElement, **filters) -> int:
        result = await self.session.exec(q.count_rows(self.model, criteria, filters))
        return result.one()

    async def filter(
        self,
        filter: Optional[ColumnElement] = None,
        order_by: Optional[q.OrderBy] = None,
        include_properties: Optional[str] = "",
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> List[T]:
        statement = q.build_filter(self.model, filter, order_by, include_properties, page, page_size)
        result = await self.session.exec(statement)
        return list(result.all())

    async def add(self, entity: T) -> T:
        """Stage entity (flushed, so generated keys are populated)."""
        self.session.add(entity)
        await self.uow.save_changes()
        return entity

    async def update(self, updated: Optional[T]) -> Optional[T]:
        if updated is None:
            return None
        merged = await self.session.merge(updated)
        tracked = mark_all_modified(require_stored(self.session, merged))
        await self.uow.save_changes()
        return tracked

    async def delete(self, entity: T) -> int:
        """Delete entity; returns rows written by the save."""
        state = sa_inspect(entity)
        if state.pending:
            self.session.expunge(entity)
            return 0
        if not state.persistent:
            entity = await self.session.merge(entity)
        await self.session.delete(entity)
        return await self.uow.save_changes()
