"""
Unit of Work: manages repositories and transaction boundaries.
"""

from typing import Callable, Dict, Optional, Type, TypeVar

from loguru import logger
from sqlalchemy import event
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.orm import Session as OrmSession
from sqlmodel import Session, SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from persistence.config import settings
from persistence.exceptions.errors import RepositoryError
from .async_base import AsyncRepository
from .base import Repository

M = TypeVar("M", bound=SQLModel)
R = TypeVar("R")


class RepositoryRegistry:
    """At most one repository per model class for the lifetime of a unit of work."""

    def __init__(self):
        self._repositories: Dict[type, object] = {}

    def get_or_create(self, model: Type[SQLModel], repository_class: type, factory: Callable[[], R]) -> R:
        repository = self._repositories.get(model)
        if repository is None:
            repository = factory()
            self._repositories[model] = repository
            logger.debug(f"Repository created: {type(repository).__name__} for {model.__name__}")
        elif not isinstance(repository, repository_class):
            raise RepositoryError(
                f"{model.__name__} is already served by {type(repository).__name__}, "
                f"not {repository_class.__name__}"
            )
        return repository

    def clear(self):
        self._repositories.clear()

    def __contains__(self, model):
        return model in self._repositories

    def __len__(self):
        return len(self._repositories)


class _FlushCounter:
    """Counts objects written by each flush of a session (inserted + updated + deleted).

    This is a count of flushed entities, not of rows reported by the driver:
    bulk statements and database-side cascades are not seen here.
    """

    def __init__(self, session: OrmSession):
        self.rows = 0
        event.listen(session, "after_flush", self._after_flush)
        self._session = session

    def _after_flush(self, session, flush_context):
        # new/dirty/deleted still show the pre-flush state here
        modified = [obj for obj in session.dirty if session.is_modified(obj, include_collections=False)]
        self.rows += len(session.new) + len(modified) + len(session.deleted)

    def take(self) -> int:
        rows, self.rows = self.rows, 0
        return rows

    def detach(self):
        if event.contains(self._session, "after_flush", self._after_flush):
            event.remove(self._session, "after_flush", self._after_flush)


class UnitOfWork:
    """Owns one blocking session, vends one Repository per model, commits them together."""

    def __init__(self, session: Optional[Session] = None, auto_commit: Optional[bool] = None):
        """Initialize UnitOfWork; session must be provided (e.g. UnitOfWork.from_session())."""
        if session is None:
            raise ValueError("Session must be provided. Use UnitOfWork.from_session() or pass session explicitly.")

        self.session = session
        self.auto_commit = settings.UOW_AUTO_COMMIT if auto_commit is None else auto_commit
        self._registry = RepositoryRegistry()
        self._counter = _FlushCounter(session)

    @classmethod
    def from_session(cls, session: Session, auto_commit: Optional[bool] = None) -> "UnitOfWork":
        """Create UnitOfWork from an existing session."""
        return cls(session=session, auto_commit=auto_commit)

    def repository(self, model: Type[M], repository_class: Type[Repository] = Repository) -> Repository[M]:
        """Get or create the repository for ``model`` (cached)."""
        return self._registry.get_or_create(
            model, repository_class, lambda: repository_class(self, model)
        )

    def flush(self) -> int:
        """Flush session (e.g. to get auto-increment IDs); returns rows written."""
        before = self._counter.rows
        self.session.flush()
        return self._counter.rows - before

    def commit(self) -> int:
        """Commit all changes; returns rows written since the last commit or rollback."""
        self.session.flush()
        rows = self._counter.take()
        self.session.commit()
        logger.debug(f"UnitOfWork committed, {rows} row(s) written")
        return rows

    def save_changes(self) -> int:
        """Commit when auto-committing, otherwise only flush."""
        return self.commit() if self.auto_commit else self.flush()

    def rollback(self) -> None:
        """Discard uncommitted changes and reload every tracked entity; entities whose row is gone are detached."""
        self.session.rollback()
        self._counter.take()
        tracked = list(self.session.identity_map.values())
        gone = 0
        for entity in tracked:
            try:
                self.session.refresh(entity)
            except InvalidRequestError:
                # row no longer stored
                self.session.expunge(entity)
                gone += 1
        logger.debug(f"UnitOfWork rolled back, {len(tracked) - gone} entit(y/ies) reloaded, {gone} detached")

    def close(self) -> None:
        self._counter.detach()
        self._registry.clear()
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self.rollback()
            else:
                self.commit()
        finally:
            self.close()


class AsyncUnitOfWork:
    """Owns one AsyncSession, vends one AsyncRepository per model, commits them together."""

    def __init__(self, session: Optional[AsyncSession] = None, auto_commit: Optional[bool] = None):
        """Initialize AsyncUnitOfWork; session must be provided."""
        if session is None:
            raise ValueError("Session must be provided. Use AsyncUnitOfWork.from_session() or pass session explicitly.")

        self.session = session
        self.auto_commit = settings.ASYNC_UOW_AUTO_COMMIT if auto_commit is None else auto_commit
        self._registry = RepositoryRegistry()
        self._counter = _FlushCounter(session.sync_session)

    @classmethod
    async def from_session(cls, session: AsyncSession, auto_commit: Optional[bool] = None) -> "AsyncUnitOfWork":
        """Create AsyncUnitOfWork from an existing session."""
        return cls(session=session, auto_commit=auto_commit)

    def repository(
        self, model: Type[M], repository_class: Type[AsyncRepository] = AsyncRepository
    ) -> AsyncRepository[M]:
        """Get or create the repository for ``model`` (cached)."""
        return self._registry.get_or_create(
            model, repository_class, lambda: repository_class(self, model)
        )

    async def flush(self) -> int:
        """Flush session (e.g. to get auto-increment IDs); returns rows written."""
        before = self._counter.rows
        await self.session.flush()
        return self._counter.rows - before

    async def commit(self) -> int:
        """Commit all changes; returns rows written since the last commit or rollback."""
        await self.session.flush()
        rows = self._counter.take()
        await self.session.commit()
        logger.debug(f"AsyncUnitOfWork committed, {rows} row(s) written")
        return rows

    async def save_changes(self) -> int:
        """Commit when auto-committing, otherwise only flush."""
        if self.auto_commit:
            return await self.commit()
        return await self.flush()

    async def rollback(self) -> None:
        """Discard uncommitted changes and reload every tracked entity; entities whose row is gone are detached."""
        await self.session.rollback()
        self._counter.take()
        tracked = list(self.session.sync_session.identity_map.values())
        gone = 0
        for entity in tracked:
            try:
                await self.session.refresh(entity)
            except InvalidRequestError:
                self.session.expunge(entity)
                gone += 1
        logger.debug(f"AsyncUnitOfWork rolled back, {len(tracked) - gone} entit(y/ies) reloaded, {gone} detached")

    async def close(self) -> None:
        self._counter.detach()
        self._registry.clear()
        await self.session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                await self.rollback()
            else:
                await self.commit()
        finally:
            await self.close()
