"""
Model registration: import every table model here so it is present on SQLModel.metadata
before create_all() runs. When adding/removing apps, add/remove the corresponding imports here.
"""
from apps.clinic.models import Appointment, Doctor, MedicalRecord, Patient

__all__ = ["Appointment", "Doctor", "MedicalRecord", "Patient"]
