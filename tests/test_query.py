"""Statement-building helpers (no database needed)."""
import pytest
from sqlalchemy.dialects import sqlite
from sqlmodel import select

from apps.clinic.models import Appointment, Patient
from persistence.exceptions.errors import InvalidArgumentError
from persistence.repository import CompiledQueryCache
from persistence.repository import query as q


def sql(statement) -> str:
    return str(statement.compile(dialect=sqlite.dialect(), compile_kwargs={"literal_binds": True}))


@pytest.mark.parametrize("raw,expected", [
    (None, []),
    ("", []),
    ("doctor", ["doctor"]),
    (" appointments , appointments.doctor ,,", ["appointments", "appointments.doctor"]),
])
def test_parse_include_properties(raw, expected):
    assert q.parse_include_properties(raw) == expected


def test_paging_offsets_and_tiebreaker():
    rendered = sql(q.apply_paging(select(Patient), Patient, page=3, page_size=10))
    assert "ORDER BY patients.id" in rendered
    assert "LIMIT 10 OFFSET 20" in rendered


def test_paging_skipped_without_size():
    assert "LIMIT" not in sql(q.apply_paging(select(Patient), Patient, page=3, page_size=None))


def test_sort_tokens_render_direction():
    rendered = sql(q.apply_ordering(select(Patient), Patient, ["-age", "name"]))
    assert "ORDER BY patients.age DESC, patients.name ASC" in rendered


def test_sort_token_must_be_a_column():
    with pytest.raises(InvalidArgumentError):
        q.apply_ordering(select(Patient), Patient, "appointments")


def test_unsupported_order_by_value():
    with pytest.raises(InvalidArgumentError):
        q.apply_ordering(select(Patient), Patient, 42)


def test_equality_filters_reject_unknown_fields():
    with pytest.raises(InvalidArgumentError):
        q.where(Patient, [], {"shoe_size": 44})


def test_include_rejects_columns():
    with pytest.raises(InvalidArgumentError):
        q.apply_includes(select(Appointment), Appointment, "reason")


def test_compiled_cache_builds_once_per_shape():
    cache = CompiledQueryCache()
    builds = []

    def builder():
        builds.append(1)
        return select(Patient)

    first = cache.get_or_build("all", Patient, builder)
    second = cache.get_or_build("all", Patient, builder)
    cache.get_or_build("all", Appointment, lambda: select(Appointment))

    assert first is second
    assert len(builds) == 1
    assert len(cache) == 2
    cache.clear()
    assert len(cache) == 0


def test_sort_tokens_from_generator():
    tokens = (token for token in ["-age", "name"])
    rendered = sql(q.apply_ordering(select(Patient), Patient, tokens))
    assert "ORDER BY patients.age DESC, patients.name ASC" in rendered
