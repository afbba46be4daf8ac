"""
Repository abstract base class and generic implementation (blocking session).
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Generic, Iterator, List, Mapping, Optional, Type, TypeVar

from sqlalchemy import inspect as sa_inspect, text
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.sql import ColumnElement
from sqlmodel import Session, SQLModel, select
from sqlmodel.sql.expression import SelectOfScalar

from persistence.exceptions.errors import InvalidArgumentError
from . import query as q

if TYPE_CHECKING:
    from .unit_of_work import UnitOfWork

T = TypeVar("T", bound=SQLModel)


class IRepository(ABC, Generic[T]):
    """Repository interface; defines standard data access API."""

    @abstractmethod
    def get_by_id(self, id: Any) -> Optional[T]:
        """Get entity by primary key."""
        pass

    @abstractmethod
    def get_all(self) -> List[T]:
        """Get all entities as detached snapshots."""
        pass

    @abstractmethod
    def add(self, entity: T) -> T:
        """Add entity."""
        pass

    @abstractmethod
    def update(self, updated: Optional[T]) -> Optional[T]:
        """Overwrite entity."""
        pass

    @abstractmethod
    def delete(self, entity: T) -> int:
        """Delete entity."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Count entities."""
        pass


def require_id(id: Any, argument: str = "id") -> Any:
    if id is None:
        raise InvalidArgumentError(f"{argument} must not be None", argument=argument)
    return id


def require_stored(session, merged: SQLModel) -> SQLModel:
    """Reject a merge that found no stored row; an update never inserts."""
    state = sa_inspect(merged)
    if state.pending:
        session.expunge(merged)
        raise StaleDataError(
            f"{type(merged).__name__} {state.mapper.primary_key_from_instance(merged)} has no stored row to update"
        )
    return merged


def mark_all_modified(entity: SQLModel) -> SQLModel:
    """Flag every loaded non-key column dirty so the UPDATE overwrites the whole row."""
    state = sa_inspect(entity)
    keys = {column.key for column in state.mapper.primary_key}
    for attribute in state.mapper.column_attrs:
        if attribute.key not in keys and attribute.key in state.dict:
            flag_modified(entity, attribute.key)
    return entity


class Repository(IRepository[T]):
    """Generic repository over one SQLModel table, bound to a unit of work's session.

    Obtain instances through ``UnitOfWork.repository(Model)``; subclasses can set
    ``model`` and add custom queries.
    """

    model: Type[T]

    def __init__(self, uow: "UnitOfWork", model: Optional[Type[T]] = None):
        """Initialize repository with its owning unit of work and model."""
        self.uow = uow
        if model is not None:
            self.model = model
        if getattr(self, "model", None) is None:
            raise InvalidArgumentError("Repository requires a model", argument="model")

    @property
    def session(self) -> Session:
        return self.uow.session

    @contextmanager
    def _reader(self) -> Iterator[Session]:
        # Throw-away session on the same connection; closing it detaches what it loaded
        with Session(bind=self.session.connection()) as reader:
            yield reader

    # ---- reads ----

    def get_all(self) -> List[T]:
        """Get every entity, detached from the change tracker."""
        with self._reader() as reader:
            return list(reader.exec(select(self.model)).all())

    def get_all_compiled(self) -> List[T]:
        """Same result as get_all, from the cached compiled plan."""
        with self._reader() as reader:
            return list(reader.exec(q.all_rows(self.model)).all())

    def query(self) -> SelectOfScalar:
        """Composable select over the model."""
        return select(self.model)

    def exec_raw(self, query: str, params: Optional[Mapping[str, Any]] = None) -> List[T]:
        """Run raw SQL and map the rows onto the model (detached).

        Named bind parameters (``:name``) are passed through verbatim; never
        build ``query`` from untrusted input.
        """
        statement = select(self.model).from_statement(text(query))
        with self._reader() as reader:
            return list(reader.exec(statement, params=params or {}).scalars().all())

    def get_by_id(self, id: Any) -> Optional[T]:
        """Get entity by primary key; None id is an argument error."""
        return self.session.get(self.model, require_id(id))

    def get_by_unique_id(self, id: str) -> Optional[T]:
        """Get entity keyed by a string identifier."""
        return self.session.get(self.model, require_id(id))

    def find(self, *criteria: ColumnElement, **filters) -> Optional[T]:
        """Single match or None; more than one match raises MultipleResultsFound."""
        statement = q.where(self.model, criteria, filters)
        return self.session.exec(statement).one_or_none()

    def find_all(self, *criteria: ColumnElement, **filters) -> List[T]:
        statement = q.where(self.model, criteria, filters)
        return list(self.session.exec(statement).all())

    def find_by(self, *criteria: ColumnElement, **filters) -> SelectOfScalar:
        """Filtered select, left unexecuted for further composition."""
        return q.where(self.model, criteria, filters)

    def exist(self, *criteria: ColumnElement, **filters) -> bool:
        return bool(self.session.exec(q.exists_rows(self.model, criteria, filters)).one())

    def count(self, *criteria: ColumnElement, **filters) -> int:
        return self.session.exec(q.count_rows(self.model, criteria, filters)).one()

    def filter(
        self,
        filter: Optional[ColumnElement] = None,
        order_by: Optional[q.OrderBy] = None,
        include_properties: Optional[str] = "",
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> List[T]:
        """Filter, order, eager-load and page in one query."""
        statement = q.build_filter(self.model, filter, order_by, include_properties, page, page_size)
        return list(self.session.exec(statement).all())

    # ---- writes ----

    def add(self, entity: T) -> T:
        """Add entity; generated keys are populated on return."""
        self.session.add(entity)
        self.uow.save_changes()
        return entity

    def update(self, updated: Optional[T]) -> Optional[T]:
        """Attach ``updated`` as fully modified and save; None is a no-op.

        Raises StaleDataError when no stored row has the entity's key.
        """
        if updated is None:
            return None
        tracked = mark_all_modified(require_stored(self.session, self.session.merge(updated)))
        self.uow.save_changes()
        return tracked

    def delete(self, entity: T) -> int:
        """Delete entity; returns rows written by the save."""
        state = sa_inspect(entity)
        if state.pending:
            self.session.expunge(entity)
            return 0
        if not state.persistent:
            entity = self.session.merge(entity)
        self.session.delete(entity)
        return self.uow.save_changes()
