"""Pydantic models for records exchanged with the record store.

The store speaks camelCase JSON (``doctorId``, ``patientName``...). Models
use snake_case attributes with camelCase aliases, accept either spelling on
input and dump by alias on output. Unknown fields are kept so a record can
be written back without losing data the engine does not care about.
"""
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AppointmentStatus(str, Enum):
    """Lifecycle states of an appointment."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    RESCHEDULED = "rescheduled"


class Tab(str, Enum):
    """List tabs shown to doctors and patients."""
    UPCOMING = "upcoming"
    PAST = "past"


class StoreRecord(BaseModel):
    """Base for records owned by the record store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="allow",
    )

    def to_wire(self) -> dict:
        """Dump as the JSON body the store expects."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Appointment(StoreRecord):
    """A booked slot between one doctor and one patient.

    ``status`` stays a plain string: the store may hold values this engine
    does not know, and those must survive a round trip untouched.
    """
    id: str
    doctor_id: str = ""
    patient_id: str = ""
    date: Optional[str] = None  # YYYY-MM-DD
    time: Optional[str] = None  # HH:MM (24h, local wall clock)
    status: str = AppointmentStatus.PENDING.value
    doctor_name: str = ""
    patient_name: str = ""
    specialty: str = ""
    prescription_id: Optional[str] = None


class Medication(StoreRecord):
    """One line of a prescription. Order within a prescription is meaningful."""
    name: str = ""
    dosage: str = ""
    instructions: str = ""
    duration: Optional[str] = None


class PatientSummary(StoreRecord):
    name: str = ""
    age: Optional[int] = None


class DoctorSummary(StoreRecord):
    name: str = ""
    specialty: str = ""


class PrescriptionDraft(StoreRecord):
    """Prescription payload before the store assigns ``id`` and ``date``."""
    appointment_id: str
    doctor_id: str
    patient_id: str
    medications: List[Medication] = Field(default_factory=list)
    notes: str = ""
    patient: Optional[PatientSummary] = None
    doctor: Optional[DoctorSummary] = None


class Prescription(PrescriptionDraft):
    """A stored prescription, linked to exactly one appointment."""
    id: str
    date: Optional[str] = None


class Review(StoreRecord):
    """Patient feedback for an appointment (owned by the review subsystem).

    Content is taken as stored: ``rating`` is not range-checked here, so one
    odd record never hides the others. ``medbook.reviews`` skips ratings it
    cannot use.
    """
    id: str
    appointment_id: str = ""
    doctor_id: str = ""
    patient_id: str = ""
    rating: Any = None
    review_text: Optional[str] = None
    date: Optional[str] = None


class Actor(BaseModel):
    """Current user as supplied by the identity provider."""
    id: str
    role: Literal["doctor", "patient"]

    model_config = ConfigDict(coerce_numbers_to_str=True)
