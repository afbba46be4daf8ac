"""
Statement-building helpers shared by the sync and async repositories.

Everything here is I/O free: functions take a ``select`` and return a new
one, so both repository flavours compose the same SQL and only differ in how
they execute it.
"""

import threading
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple, Type, Union

from loguru import logger
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import selectinload
from sqlalchemy.sql import ClauseElement, ColumnElement
from sqlmodel import SQLModel, func, select
from sqlmodel.sql.expression import SelectOfScalar

from persistence.exceptions.errors import InvalidArgumentError

OrderBy = Union[
    Callable[[SelectOfScalar], SelectOfScalar],
    ColumnElement,
    str,
    Iterable[Union[ColumnElement, str]],
]


class CompiledQueryCache:
    """Process-wide cache of prebuilt statements keyed by query shape.

    A plan is built once per ``(shape, model)`` and the same statement object
    is reused afterwards, so SQLAlchemy's compiled cache hits on every call.
    """

    def __init__(self):
        self._plans: Dict[Tuple[str, Hashable], Any] = {}
        self._lock = threading.Lock()

    def get_or_build(self, shape: str, model: Type[SQLModel], builder: Callable[[], Any]):
        key = (shape, model)
        plan = self._plans.get(key)
        if plan is not None:
            return plan
        with self._lock:
            plan = self._plans.get(key)
            if plan is None:
                plan = builder()
                self._plans[key] = plan
                logger.debug(f"Compiled query plan built: {shape} for {model.__name__}")
        return plan

    def clear(self):
        with self._lock:
            self._plans.clear()

    def __len__(self):
        return len(self._plans)

    def __contains__(self, key):
        return key in self._plans


compiled_queries = CompiledQueryCache()


def primary_key_columns(model: Type[SQLModel]) -> List[Any]:
    return list(sa_inspect(model).primary_key)


def all_rows(model: Type[SQLModel]) -> SelectOfScalar:
    """Compiled plan: every row of ``model``."""
    return compiled_queries.get_or_build("all", model, lambda: select(model))


def equality_criteria(model: Type[SQLModel], filters: Dict[str, Any]) -> List[ColumnElement]:
    """Turn ``field=value`` keyword filters into column expressions."""
    criteria = []
    for key, value in filters.items():
        if key not in sa_inspect(model).attrs:
            raise InvalidArgumentError(
                f"{model.__name__} has no attribute '{key}'", argument=key
            )
        criteria.append(getattr(model, key) == value)
    return criteria


def where(model: Type[SQLModel], criteria: Iterable[ColumnElement], filters: Dict[str, Any]) -> SelectOfScalar:
    statement = select(model)
    clauses = [c for c in criteria if c is not None] + equality_criteria(model, filters)
    if clauses:
        statement = statement.where(*clauses)
    return statement


def count_rows(model: Type[SQLModel], criteria: Iterable[ColumnElement], filters: Dict[str, Any]) -> SelectOfScalar:
    clauses = [c for c in criteria if c is not None] + equality_criteria(model, filters)
    statement = select(func.count()).select_from(model)
    if clauses:
        statement = statement.where(*clauses)
    return statement


def exists_rows(model: Type[SQLModel], criteria: Iterable[ColumnElement], filters: Dict[str, Any]) -> SelectOfScalar:
    return select(where(model, criteria, filters).exists())


def _sort_clause(model: Type[SQLModel], token: str) -> ColumnElement:
    descending = token.startswith("-")
    name = token[1:].strip() if descending else token.strip()
    if name not in sa_inspect(model).column_attrs:
        raise InvalidArgumentError(
            f"{model.__name__} has no sortable column '{name}'", argument="order_by"
        )
    column = getattr(model, name)
    return column.desc() if descending else column.asc()


def apply_ordering(statement: SelectOfScalar, model: Type[SQLModel], order_by: Optional[OrderBy]) -> SelectOfScalar:
    """Apply ``order_by`` given as a callable, a clause, a sort token or any iterable of those."""
    if order_by is None:
        return statement
    if isinstance(order_by, (list, tuple)):
        items = order_by
    elif isinstance(order_by, (str, ClauseElement)) or hasattr(order_by, "__clause_element__"):
        items = [order_by]
    elif callable(order_by):
        return order_by(statement)
    elif isinstance(order_by, Iterable):
        items = list(order_by)
    else:
        raise InvalidArgumentError(f"Unsupported order_by value: {order_by!r}", argument="order_by")

    clauses = [_sort_clause(model, item) if isinstance(item, str) else item for item in items]
    return statement.order_by(*clauses)


def parse_include_properties(include_properties: Optional[str]) -> List[str]:
    """Split ``"a, b.c,,"`` into ``["a", "b.c"]``."""
    if not include_properties:
        return []
    return [part.strip() for part in include_properties.split(",") if part.strip()]


def apply_includes(statement: SelectOfScalar, model: Type[SQLModel], include_properties: Optional[str]) -> SelectOfScalar:
    """Eager-load the named relationships; dotted paths load nested relationships."""
    for path in parse_include_properties(include_properties):
        owner = model
        loader = None
        for name in path.split("."):
            relationships = sa_inspect(owner).relationships
            if name not in relationships:
                raise InvalidArgumentError(
                    f"{owner.__name__} has no relationship '{name}' (in '{path}')",
                    argument="include_properties",
                )
            attribute = getattr(owner, name)
            loader = selectinload(attribute) if loader is None else loader.selectinload(attribute)
            owner = relationships[name].mapper.class_
        statement = statement.options(loader)
    return statement


def apply_paging(
    statement: SelectOfScalar,
    model: Type[SQLModel],
    page: Optional[int],
    page_size: Optional[int],
) -> SelectOfScalar:
    """Offset pagination, 1-based; a no-op unless both page and page_size are given."""
    if page is None or page_size is None:
        return statement
    if page < 1:
        raise InvalidArgumentError("page must be >= 1", argument="page")
    if page_size < 1:
        raise InvalidArgumentError("page_size must be >= 1", argument="page_size")

    # Primary key as final tiebreaker keeps pages stable
    statement = statement.order_by(*primary_key_columns(model))
    return statement.offset((page - 1) * page_size).limit(page_size)


def build_filter(
    model: Type[SQLModel],
    filter: Optional[ColumnElement] = None,
    order_by: Optional[OrderBy] = None,
    include_properties: Optional[str] = "",
    page: Optional[int] = None,
    page_size: Optional[int] = None,
) -> SelectOfScalar:
    statement = select(model)
    if filter is not None:
        statement = statement.where(filter)
    statement = apply_ordering(statement, model, order_by)
    statement = apply_includes(statement, model, include_properties)
    return apply_paging(statement, model, page, page_size)
