"""Shared test fixtures."""
import threading
from datetime import datetime
from typing import Dict, List

import pytest

from medbook.circuit_breaker import CircuitBreaker
from medbook.models import Appointment, Medication, Prescription, PrescriptionDraft, Review
from medbook.store import RecordNotFoundError, StoreUnavailableError


NOW = datetime(2025, 3, 1, 12, 0)


@pytest.fixture
def now() -> datetime:
    """Fixed 'now' used across classification tests."""
    return NOW


@pytest.fixture
def make_appointment():
    """Factory for appointments with sensible defaults."""
    counter = [0]

    def _create(**overrides) -> Appointment:
        counter[0] += 1
        data = {
            "id": f"a{counter[0]}",
            "doctor_id": "d1",
            "patient_id": "p1",
            "date": "2025-03-10",
            "time": "09:00",
            "status": "confirmed",
            "doctor_name": "Dr. Chen",
            "patient_name": "John Doe",
            "specialty": "Cardiology",
        }
        data.update(overrides)
        return Appointment(**data)
    return _create


@pytest.fixture
def make_draft():
    def _create(appointment_id: str = "a1", **overrides) -> PrescriptionDraft:
        data = {
            "appointment_id": appointment_id,
            "doctor_id": "d1",
            "patient_id": "p1",
            "medications": [
                Medication(name="Amoxicillin", dosage="500mg", instructions="3x daily"),
            ],
            "notes": "Take with food.",
        }
        data.update(overrides)
        return PrescriptionDraft(**data)
    return _create


@pytest.fixture
def breaker() -> CircuitBreaker:
    """Private breaker so one test's failures never open another's circuit."""
    return CircuitBreaker(failure_threshold=100, timeout=1)


class FakeStore:
    """
    In-memory stand-in for RecordStore.

    - ``fail[method] = exc`` makes the next calls of ``method`` raise ``exc``
    - ``hold(method)`` blocks ``method`` after it has taken its snapshot,
      until the returned gate is released
    """

    def __init__(self, appointments=(), prescriptions=(), reviews=()):
        self.appointments: Dict[str, Appointment] = {a.id: a for a in appointments}
        self.prescriptions: List[Prescription] = list(prescriptions)
        self.reviews: List[Review] = list(reviews)
        self.calls: List[str] = []
        self.fail: Dict[str, Exception] = {}
        self._holds: Dict[str, tuple] = {}
        self._next_id = 900

    def hold(self, method: str):
        entered, gate = threading.Event(), threading.Event()
        self._holds[method] = (entered, gate)
        return entered, gate

    def _enter(self, method: str):
        self.calls.append(method)
        if method in self.fail:
            raise self.fail[method]

    def _wait(self, method: str):
        if method in self._holds:
            entered, gate = self._holds.pop(method)
            entered.set()
            gate.wait(5)

    def _appointment(self, appointment_id: str) -> Appointment:
        if appointment_id not in self.appointments:
            raise RecordNotFoundError(f"Record not found: appointments/{appointment_id}", status_code=404)
        return self.appointments[appointment_id]

    # ---- RecordStore interface ----

    def list_appointments(self, owner_id: str, role: str) -> List[Appointment]:
        self._enter("list_appointments")
        key = "doctor_id" if role == "doctor" else "patient_id"
        snapshot = [a for a in self.appointments.values() if getattr(a, key) == owner_id]
        self._wait("list_appointments")
        return snapshot

    def update_status(self, appointment_id: str, status: str) -> Appointment:
        self._enter("update_status")
        updated = self._appointment(appointment_id).model_copy(update={"status": status})
        self.appointments[appointment_id] = updated
        self._wait("update_status")
        return updated

    def update_schedule(self, appointment_id: str, date: str, time_: str) -> Appointment:
        self._enter("update_schedule")
        updated = self._appointment(appointment_id).model_copy(
            update={"date": date, "time": time_, "status": "rescheduled"}
        )
        self._wait("update_schedule")
        self.appointments[appointment_id] = updated
        return updated

    def list_prescriptions_by_doctor(self, doctor_id: str) -> List[Prescription]:
        self._enter("list_prescriptions_by_doctor")
        snapshot = [p for p in self.prescriptions if p.doctor_id == doctor_id]
        self._wait("list_prescriptions_by_doctor")
        return snapshot

    def list_prescriptions_by_appointment(self, appointment_id: str) -> List[Prescription]:
        self._enter("list_prescriptions_by_appointment")
        return [p for p in self.prescriptions if p.appointment_id == appointment_id]

    def create_prescription(self, draft: PrescriptionDraft) -> Prescription:
        self._enter("create_prescription")
        self._next_id += 1
        created = Prescription.model_validate(
            {**draft.model_dump(), "id": str(self._next_id), "date": "2025-03-01"}
        )
        self.prescriptions.append(created)
        return created

    def update_prescription(self, prescription_id: str, changes: dict) -> Prescription:
        self._enter("update_prescription")
        for i, p in enumerate(self.prescriptions):
            if p.id == prescription_id:
                merged = Prescription.model_validate({**p.to_wire(), **changes})
                self.prescriptions[i] = merged
                return merged
        raise RecordNotFoundError(f"Record not found: prescriptions/{prescription_id}", status_code=404)

    def delete_prescription(self, prescription_id: str) -> bool:
        self._enter("delete_prescription")
        before = len(self.prescriptions)
        self.prescriptions = [p for p in self.prescriptions if p.id != prescription_id]
        if len(self.prescriptions) == before:
            raise RecordNotFoundError(f"Record not found: prescriptions/{prescription_id}", status_code=404)
        return True

    def list_reviews_by_doctor(self, doctor_id: str) -> List[Review]:
        self._enter("list_reviews_by_doctor")
        snapshot = [r for r in self.reviews if r.doctor_id == doctor_id]
        self._wait("list_reviews_by_doctor")
        return snapshot

    def list_reviews_by_patient(self, patient_id: str) -> List[Review]:
        self._enter("list_reviews_by_patient")
        return [r for r in self.reviews if r.patient_id == patient_id]


@pytest.fixture
def fake_store_factory():
    return FakeStore


@pytest.fixture
def unavailable() -> StoreUnavailableError:
    return StoreUnavailableError("Cannot connect to the appointment server.")
