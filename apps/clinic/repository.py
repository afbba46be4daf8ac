"""Clinic module repository implementations."""

from datetime import datetime
from typing import List, Optional
from persistence.repository import AsyncRepository
from .models import Appointment, Patient


class PatientRepository(AsyncRepository[Patient]):
    """Patient repository."""

    model = Patient

    async def get_by_email(self, email: str) -> Optional[Patient]:
        """Find patient by email."""
        return await self.find(email=email)


class AppointmentRepository(AsyncRepository[Appointment]):
    """Appointment repository."""

    model = Appointment

    async def doctor_is_booked(self, doctor_id: int, scheduled_at: datetime) -> bool:
        """Check whether the doctor already has an appointment at that time."""
        return await self.exist(
            Appointment.doctor_id == doctor_id,
            Appointment.scheduled_at == scheduled_at,
        )

    async def list_for_patient(self, patient_id: int) -> List[Appointment]:
        """Appointments of one patient with their doctor loaded, soonest first."""
        return await self.filter(
            filter=Appointment.patient_id == patient_id,
            order_by="scheduled_at",
            include_properties="doctor",
        )
