from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlmodel.ext.asyncio.session import AsyncSession
from pydantic import BaseModel
from persistence.config import settings
from persistence.database.manager import DatabaseManager
from persistence.repository.unit_of_work import AsyncUnitOfWork
from persistence.response import ResponseModel
from ..service import ClinicService

router = APIRouter()

class PatientSchema(BaseModel):
    name: str
    email: str
    age: int = 0

class PatientUpdateSchema(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    age: Optional[int] = None

class DoctorSchema(BaseModel):
    name: str
    specialty: str = "general"

class AppointmentSchema(BaseModel):
    patient_id: int
    doctor_id: int
    scheduled_at: datetime
    reason: Optional[str] = None

async def get_db():
    """Get database session."""
    manager = DatabaseManager.get_instance()
    async for session in manager.sql.get_session():
        yield session

def get_uow(
    db: AsyncSession = Depends(get_db)
) -> AsyncUnitOfWork:
    """Dependency: create AsyncUnitOfWork (one per request)."""
    return AsyncUnitOfWork(session=db)

def get_clinic_service(uow: AsyncUnitOfWork = Depends(get_uow)) -> ClinicService:
    """Dependency: create ClinicService."""
    return ClinicService(uow)

@router.post("/patients")
async def register_patient(
    data: PatientSchema,
    service: ClinicService = Depends(get_clinic_service)
):
    """Register a patient."""
    patient = await service.register_patient(data.name, data.email, data.age)
    return ResponseModel.success(data=patient.model_dump())

@router.get("/patients")
async def list_patients(
    name: Optional[str] = None,
    min_age: Optional[int] = None,
    sort: List[str] = Query(default=["name"]),
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1, le=200),
    service: ClinicService = Depends(get_clinic_service)
):
    """List patients (filter by name fragment / minimum age, sort tokens like -age)."""
    items, total = await service.list_patients(name, min_age, sort, page, page_size)
    return ResponseModel.paged(
        items=[p.model_dump() for p in items],
        total=total,
        page=page,
        page_size=page_size or settings.DEFAULT_PAGE_SIZE,
    )

@router.get("/patients/{patient_id}")
async def get_patient(patient_id: int, service: ClinicService = Depends(get_clinic_service)):
    patient = await service.get_patient(patient_id)
    return ResponseModel.success(data=patient.model_dump())

@router.patch("/patients/{patient_id}")
async def update_patient(
    patient_id: int,
    data: PatientUpdateSchema,
    service: ClinicService = Depends(get_clinic_service)
):
    patient = await service.update_patient(patient_id, data.model_dump(exclude_unset=True))
    return ResponseModel.success(data=patient.model_dump())

@router.delete("/patients/{patient_id}")
async def delete_patient(patient_id: int, service: ClinicService = Depends(get_clinic_service)):
    rows = await service.delete_patient(patient_id)
    return ResponseModel.success(data={"deleted": rows})

@router.get("/patients/{patient_id}/appointments")
async def patient_appointments(patient_id: int, service: ClinicService = Depends(get_clinic_service)):
    """Appointments of a patient, each with its doctor."""
    appointments = await service.patient_appointments(patient_id)
    return ResponseModel.success(
        data=[
            {**a.model_dump(), "doctor": a.doctor.model_dump() if a.doctor else None}
            for a in appointments
        ]
    )

@router.post("/doctors")
async def add_doctor(data: DoctorSchema, service: ClinicService = Depends(get_clinic_service)):
    doctor = await service.add_doctor(data.name, data.specialty)
    return ResponseModel.success(data=doctor.model_dump())

@router.post("/appointments")
async def book_appointment(
    data: AppointmentSchema,
    service: ClinicService = Depends(get_clinic_service)
):
    """Book an appointment; its medical record is created in the same commit."""
    appointment, record = await service.book_appointment(
        data.patient_id, data.doctor_id, data.scheduled_at, data.reason
    )
    return ResponseModel.success(
        data={"appointment": appointment.model_dump(), "record": record.model_dump()}
    )

@router.get("/records/{code}")
async def get_record(code: str, service: ClinicService = Depends(get_clinic_service)):
    record = await service.get_record(code)
    return ResponseModel.success(data=record.model_dump())
