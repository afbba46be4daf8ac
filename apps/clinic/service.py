import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from loguru import logger
from sqlalchemy.exc import IntegrityError
from persistence.config import settings
from persistence.exceptions.handler import BusinessException
from persistence.repository.unit_of_work import AsyncUnitOfWork
from .models import Appointment, Doctor, MedicalRecord, Patient, as_utc
from .repository import AppointmentRepository, PatientRepository

PATIENT_FIELDS = {"name", "email", "age"}


class ClinicService:
    def __init__(self, uow: AsyncUnitOfWork):
        """Initialize Clinic Service with AsyncUnitOfWork."""
        self.uow = uow

    @property
    def patients(self) -> PatientRepository:
        return self.uow.repository(Patient, PatientRepository)

    @property
    def doctors(self):
        return self.uow.repository(Doctor)

    @property
    def appointments(self) -> AppointmentRepository:
        return self.uow.repository(Appointment, AppointmentRepository)

    @property
    def records(self):
        return self.uow.repository(MedicalRecord)

    async def register_patient(self, name: str, email: str, age: int = 0) -> Patient:
        """Register a new patient; email must be unique."""
        if await self.patients.get_by_email(email):
            raise BusinessException("Email already registered", code=4001)

        try:
            patient = await self.patients.add(Patient(name=name, email=email, age=age))
            await self.uow.commit()
        except IntegrityError as e:
            await self.uow.rollback()
            logger.warning(f"Patient {email} rejected by the store: {e.orig if hasattr(e, 'orig') else e}")
            raise BusinessException("Email already registered", code=4001)

        logger.info(f"Patient {patient.id} registered ({email})")
        return patient

    async def get_patient(self, patient_id: int) -> Patient:
        patient = await self.patients.get_by_id(patient_id)
        if patient is None:
            raise BusinessException("Patient not found", status_code=404, code=404)
        return patient

    async def list_patients(
        self,
        name: Optional[str] = None,
        min_age: Optional[int] = None,
        sort: Optional[List[str]] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Tuple[List[Patient], int]:
        """One page of patients plus the total matching count."""
        page_size = page_size or settings.DEFAULT_PAGE_SIZE
        criteria = []
        if name:
            criteria.append(Patient.name.contains(name))
        if min_age is not None:
            criteria.append(Patient.age >= min_age)

        condition = None
        if criteria:
            condition = criteria[0]
            for clause in criteria[1:]:
                condition = condition & clause

        items = await self.patients.filter(
            filter=condition,
            order_by=sort or ["name"],
            page=page,
            page_size=page_size,
        )
        total = await self.patients.count(*criteria)
        return items, total

    async def update_patient(self, patient_id: int, fields: Dict[str, Any]) -> Patient:
        """Overwrite whitelisted fields of a patient."""
        unknown = set(fields) - PATIENT_FIELDS
        if unknown:
            raise BusinessException(f"Non-updatable fields: {sorted(unknown)}", code=400)

        patient = await self.get_patient(patient_id)
        values = patient.model_dump()
        values.update(fields)
        updated = await self.patients.update(Patient(**values))
        await self.uow.commit()
        return updated

    async def delete_patient(self, patient_id: int) -> int:
        patient = await self.get_patient(patient_id)
        if await self.appointments.exist(patient_id=patient_id):
            raise BusinessException("Patient has appointments", code=409)
        await self.patients.delete(patient)
        rows = await self.uow.commit()
        logger.info(f"Patient {patient_id} deleted")
        return rows

    async def add_doctor(self, name: str, specialty: str = "general") -> Doctor:
        doctor = await self.doctors.add(Doctor(name=name, specialty=specialty))
        await self.uow.commit()
        return doctor

    async def book_appointment(
        self,
        patient_id: int,
        doctor_id: int,
        scheduled_at: datetime,
        reason: Optional[str] = None,
    ) -> Tuple[Appointment, MedicalRecord]:
        """Book an appointment and open its medical record in a single commit."""
        scheduled_at = as_utc(scheduled_at)
        patient = await self.get_patient(patient_id)
        doctor = await self.doctors.get_by_id(doctor_id)
        if doctor is None:
            raise BusinessException("Doctor not found", status_code=404, code=404)
        if await self.appointments.doctor_is_booked(doctor_id, scheduled_at):
            raise BusinessException("Doctor already booked at that time", code=409)

        try:
            appointment = await self.appointments.add(
                Appointment(
                    patient_id=patient.id,
                    doctor_id=doctor.id,
                    scheduled_at=scheduled_at,
                    reason=reason,
                )
            )
            record = await self.records.add(
                MedicalRecord(
                    code=f"MR-{uuid.uuid4().hex[:12].upper()}",
                    patient_id=patient.id,
                    note=f"Appointment with {doctor.name}: {reason or 'no reason given'}",
                )
            )
            rows = await self.uow.commit()
        except Exception:
            await self.uow.rollback()
            raise

        logger.info(f"Appointment {appointment.id} booked ({rows} rows), record {record.code}")
        return appointment, record

    async def get_record(self, code: str) -> MedicalRecord:
        record = await self.records.get_by_unique_id(code)
        if record is None:
            raise BusinessException("Medical record not found", status_code=404, code=404)
        return record

    async def patient_appointments(self, patient_id: int) -> List[Appointment]:
        await self.get_patient(patient_id)
        return await self.appointments.list_for_patient(patient_id)
