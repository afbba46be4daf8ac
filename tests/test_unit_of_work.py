"""Unit of work tests (blocking session): registry, commit, rollback."""
import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from apps.clinic.models import Doctor, Patient
from persistence.exceptions.errors import RepositoryError
from persistence.repository import Repository, RepositoryRegistry, UnitOfWork


class PatientRepository(Repository[Patient]):
    model = Patient

    def adults(self):
        return self.find_all(Patient.age >= 18)


class TestRegistry:

    def test_same_instance_per_model(self, uow: UnitOfWork):
        first = uow.repository(Patient)
        second = uow.repository(Patient)

        assert first is second
        assert uow.repository(Doctor) is not first

    def test_change_through_one_reference_visible_through_other(self, staged_uow: UnitOfWork):
        first = staged_uow.repository(Patient)
        added = first.add(Patient(name="Cy", email="cy@example.com"))

        assert staged_uow.repository(Patient).get_by_id(added.id) is added

    def test_custom_repository_class(self, uow: UnitOfWork):
        repo = uow.repository(Patient, PatientRepository)

        assert isinstance(repo, PatientRepository)
        assert uow.repository(Patient) is repo
        assert repo.adults() == []

    def test_conflicting_repository_class(self, uow: UnitOfWork):
        uow.repository(Patient)
        with pytest.raises(RepositoryError):
            uow.repository(Patient, PatientRepository)

    def test_registry_creates_once(self):
        registry = RepositoryRegistry()
        calls = []

        def factory():
            calls.append(1)
            return object()

        first = registry.get_or_create(Patient, object, factory)
        assert registry.get_or_create(Patient, object, factory) is first
        assert len(calls) == 1
        assert Patient in registry and len(registry) == 1

    def test_session_is_required(self):
        with pytest.raises(ValueError):
            UnitOfWork(session=None)


class TestCommit:

    def test_commit_batches_across_repositories(self, staged_uow: UnitOfWork, engine):
        staged_uow.repository(Patient).add(Patient(name="Di", email="di@example.com"))
        staged_uow.repository(Patient).add(Patient(name="Ed", email="ed@example.com"))
        staged_uow.repository(Doctor).add(Doctor(name="Dr. Who"))

        assert staged_uow.commit() == 3
        assert staged_uow.commit() == 0
        with Session(engine) as other:
            assert other.get(Doctor, 1).name == "Dr. Who"

    def test_flush_reports_rows(self, staged_uow: UnitOfWork, session: Session):
        session.add(Doctor(name="Dr. Flush"))
        assert staged_uow.flush() == 1
        assert staged_uow.commit() == 1

    def test_auto_commit_mutation_is_durable(self, uow: UnitOfWork, engine):
        uow.repository(Doctor).add(Doctor(name="Dr. Auto"))
        uow.rollback()

        with Session(engine) as other:
            assert other.get(Doctor, 1).name == "Dr. Auto"

    def test_add_commit_delete_scenario(self, staged_uow: UnitOfWork, seeded):
        repo = staged_uow.repository(Patient)
        before = repo.count()

        a = repo.add(Patient(name="Fay", email="fay@example.com", age=30))
        assert staged_uow.commit() == 1
        assert repo.count() == before + 1
        assert repo.get_by_id(a.id) is a

        repo.delete(a)
        assert staged_uow.commit() == 1
        assert repo.get_by_id(a.id) is None

    def test_failed_commit_writes_nothing(self, staged_uow: UnitOfWork, session: Session):
        session.add(Patient(name="Ivy", email="twin@example.com"))
        session.add(Patient(name="Jo", email="twin@example.com"))

        with pytest.raises(IntegrityError):
            staged_uow.commit()
        staged_uow.rollback()

        assert staged_uow.repository(Patient).count() == 0
        assert staged_uow.commit() == 0


class TestRollback:

    def test_rollback_discards_uncommitted_add(self, staged_uow: UnitOfWork, seeded):
        repo = staged_uow.repository(Patient)
        added = repo.add(Patient(name="Gus", email="gus@example.com"))
        assert added.id is not None

        staged_uow.rollback()

        assert all(p.email != "gus@example.com" for p in repo.get_all())
        assert repo.count() == 25

    def test_rollback_after_commit_has_no_effect(self, staged_uow: UnitOfWork):
        repo = staged_uow.repository(Patient)
        repo.add(Patient(name="Hal", email="hal@example.com"))
        staged_uow.commit()

        staged_uow.rollback()

        assert [p.name for p in repo.get_all()] == ["Hal"]

    def test_rollback_reloads_tracked_entities(self, staged_uow: UnitOfWork, seeded):
        repo = staged_uow.repository(Patient)
        patient = repo.get_by_id(seeded[0].id)
        patient.name = "Edited"
        repo.update(patient)
        assert repo.find(name="Edited") is patient

        staged_uow.rollback()

        assert patient.name == "Patient 01"
        assert repo.find(name="Edited") is None

    def test_rollback_restores_staged_delete(self, staged_uow: UnitOfWork, seeded):
        repo = staged_uow.repository(Patient)
        repo.delete(repo.get_by_id(seeded[5].id))
        assert repo.count() == 24

        staged_uow.rollback()
        assert repo.count() == 25

    def test_rollback_detaches_rows_removed_elsewhere(self, staged_uow: UnitOfWork, engine, seeded):
        repo = staged_uow.repository(Patient)
        removed = repo.get_by_id(seeded[7].id)
        kept = repo.get_by_id(seeded[8].id)
        staged_uow.commit()

        kept.name = "Edited"
        with Session(engine) as other:
            other.connection().execute(text("DELETE FROM patients WHERE id = :id"), {"id": removed.id})
            other.commit()

        staged_uow.rollback()

        assert removed not in staged_uow.session
        assert kept.name == "Patient 09"
        assert repo.get_by_id(removed.id) is None


class TestContextManager:

    def test_commits_on_success(self, engine):
        with UnitOfWork(Session(engine, expire_on_commit=False), auto_commit=False) as unit:
            unit.repository(Doctor).add(Doctor(name="Dr. Ctx"))

        assert len(unit._registry) == 0
        with Session(engine) as other:
            assert other.get(Doctor, 1).name == "Dr. Ctx"

    def test_rolls_back_on_error(self, engine):
        with pytest.raises(RuntimeError):
            with UnitOfWork(Session(engine, expire_on_commit=False), auto_commit=False) as unit:
                unit.repository(Doctor).add(Doctor(name="Dr. Oops"))
                raise RuntimeError("boom")

        with Session(engine) as other:
            assert other.get(Doctor, 1) is None
