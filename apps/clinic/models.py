from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, Relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive values are taken to be UTC; aware ones are converted to it."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Doctor(SQLModel, table=True):
    __tablename__ = "doctors"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    specialty: str = Field(default="general")

    appointments: List["Appointment"] = Relationship(back_populates="doctor")


class Patient(SQLModel, table=True):
    __tablename__ = "patients"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    email: str = Field(unique=True, index=True)
    age: int = Field(default=0)

    appointments: List["Appointment"] = Relationship(back_populates="patient")
    records: List["MedicalRecord"] = Relationship(back_populates="patient")


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    id: Optional[int] = Field(default=None, primary_key=True)
    patient_id: int = Field(foreign_key="patients.id", index=True)
    doctor_id: int = Field(foreign_key="doctors.id", index=True)
    scheduled_at: datetime = Field(sa_type=DateTime(timezone=True))
    reason: Optional[str] = None

    patient: Optional[Patient] = Relationship(back_populates="appointments")
    doctor: Optional[Doctor] = Relationship(back_populates="appointments")


class MedicalRecord(SQLModel, table=True):
    """Record keyed by an externally issued string code (e.g. "MR-2026-0001")."""
    __tablename__ = "medical_records"
    code: str = Field(primary_key=True, max_length=64)
    patient_id: int = Field(foreign_key="patients.id", index=True)
    note: str = Field(default="")
    created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))

    patient: Optional[Patient] = Relationship(back_populates="records")
