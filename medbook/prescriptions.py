"""Prescription linkage guard.

At most one prescription per appointment. The record store does not
enforce this, so every create goes through ``PrescriptionService``, which
looks for an existing prescription first and refuses to post a duplicate.

Lifecycle and linkage are separate facts: ``status`` says where the
appointment is in its lifecycle, ``find_prescription`` says whether it has
been prescribed. Linkage is authoritative for "has this been prescribed".
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from medbook.logging_config import get_logger
from medbook.models import (
    Appointment,
    AppointmentStatus,
    Medication,
    Prescription,
    PrescriptionDraft,
)
from medbook.state import StatusMachine, can_take_action
from medbook.store import StoreError

logger = get_logger(__name__)

EDITABLE_FIELDS = {"medications", "notes"}


class InvalidPrescriptionError(ValueError):
    """Prescription payload failed validation; nothing was sent to the store."""
    pass


class DuplicatePrescriptionError(ValueError):
    """The appointment already has a prescription."""

    def __init__(self, appointment_id: str, existing: Optional[Prescription] = None):
        super().__init__(f"Prescription already exists for appointment {appointment_id}")
        self.appointment_id = appointment_id
        self.existing = existing


def find_prescription(
    appointment: Appointment,
    prescriptions: Sequence[Prescription],
) -> Optional[Prescription]:
    """Prescription linked to ``appointment``, or None."""
    for p in prescriptions:
        if p.appointment_id == appointment.id:
            return p
        if appointment.prescription_id and p.id == appointment.prescription_id:
            return p
    return None


def has_prescription(appointment: Appointment, prescriptions: Sequence[Prescription]) -> bool:
    return find_prescription(appointment, prescriptions) is not None


def can_prescribe(
    appointment: Appointment,
    prescriptions: Sequence[Prescription],
    now: datetime,
) -> bool:
    """True iff confirmed, past the cancel/complete window, and not yet prescribed."""
    return (
        appointment.status == AppointmentStatus.CONFIRMED.value
        and not can_take_action(appointment, now)
        and not has_prescription(appointment, prescriptions)
    )


def accepts_prescription(appointment: Appointment, now: datetime) -> bool:
    """Whether a prescription may be recorded for the appointment at all.

    True for a confirmed appointment, and for any appointment whose
    "Complete" control is offered (``can_take_action``), which covers
    upcoming pending ones and rescheduled ones.
    """
    return (
        appointment.status == AppointmentStatus.CONFIRMED.value
        or can_take_action(appointment, now)
    )


def validate_medications(medications: List[Medication]):
    if not medications:
        raise InvalidPrescriptionError("At least one medication is required.")
    first = medications[0]
    if not first.name.strip() or not first.dosage.strip():
        raise InvalidPrescriptionError(
            "At least one medication with name and dosage is required."
        )


def validate_draft(draft: PrescriptionDraft):
    if not draft.appointment_id:
        raise InvalidPrescriptionError("Prescription must reference an appointment.")
    validate_medications(draft.medications)


@dataclass
class PrescriptionOutcome:
    """Result of a linkage change plus the follow-up status write.

    ``status_error`` is set when the prescription change succeeded but the
    appointment's status could not be updated. The prescription stays
    authoritative in that case.
    """
    prescription: Optional[Prescription]
    appointment: Optional[Appointment] = None
    status_error: Optional[StoreError] = None


class PrescriptionService:
    """Creates, edits and deletes prescriptions while keeping linkage unique."""

    def __init__(self, store, status_machine: Optional[StatusMachine] = None):
        self.store = store
        self.status_machine = status_machine or StatusMachine(store)
        # Appointments prescribed in this session, in case the store lags
        self._linked: Set[str] = set()

    def existing_for(self, appointment_id: str) -> Optional[Prescription]:
        found = self.store.list_prescriptions_by_appointment(appointment_id)
        return found[0] if found else None

    def create(
        self,
        draft: PrescriptionDraft,
        appointment: Optional[Appointment] = None,
        now: Optional[datetime] = None,
    ) -> PrescriptionOutcome:
        """
        Record a prescription and move its appointment to ``completed``.

        ``now`` decides whether the appointment is still actionable
        (defaults to the current local time).

        Raises:
            InvalidPrescriptionError: Bad draft or non-prescribable appointment
            DuplicatePrescriptionError: Appointment already has one
            StoreError: Lookup or create failed (nothing persisted)
        """
        validate_draft(draft)
        if appointment is not None:
            if appointment.id != draft.appointment_id:
                raise InvalidPrescriptionError(
                    f"Draft is for appointment {draft.appointment_id}, not {appointment.id}"
                )
            if not accepts_prescription(appointment, now or datetime.now()):
                raise InvalidPrescriptionError(
                    f"Cannot prescribe for a {appointment.status} appointment."
                )

        if draft.appointment_id in self._linked:
            raise DuplicatePrescriptionError(draft.appointment_id)
        existing = self.existing_for(draft.appointment_id)
        if existing is not None:
            self._linked.add(draft.appointment_id)
            logger.info(
                "prescription_duplicate_rejected",
                appointment_id=draft.appointment_id,
                existing_id=existing.id,
            )
            raise DuplicatePrescriptionError(draft.appointment_id, existing)

        prescription = self.store.create_prescription(draft)
        self._linked.add(draft.appointment_id)
        logger.info(
            "prescription_created",
            prescription_id=prescription.id,
            appointment_id=prescription.appointment_id,
            medications=len(prescription.medications),
        )

        outcome = PrescriptionOutcome(prescription=prescription, appointment=appointment)
        if appointment is not None:
            try:
                outcome.appointment = self.status_machine.mark_prescribed(appointment)
            except StoreError as e:
                logger.warning(
                    "prescription_status_update_failed",
                    appointment_id=appointment.id,
                    error=str(e),
                )
                outcome.status_error = e
        return outcome

    def update(self, prescription_id: str, changes: Dict[str, Any]) -> Prescription:
        """
        Edit medications and/or notes. The appointment link is immutable.

        Raises:
            InvalidPrescriptionError: Unknown field, relink attempt or empty medications
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise InvalidPrescriptionError(
                f"Cannot change {', '.join(sorted(unknown))} on a prescription."
            )

        payload: Dict[str, Any] = {}
        if "medications" in changes:
            medications = [Medication.model_validate(m) for m in changes["medications"]]
            validate_medications(medications)
            payload["medications"] = [m.to_wire() for m in medications]
        if "notes" in changes:
            payload["notes"] = changes["notes"] or ""

        updated = self.store.update_prescription(prescription_id, payload)
        logger.info("prescription_updated", prescription_id=prescription_id)
        return updated

    def delete(
        self,
        prescription: Prescription,
        appointment: Optional[Appointment] = None,
    ) -> PrescriptionOutcome:
        """
        Delete a prescription. A ``completed`` appointment it belonged to is
        reopened to ``confirmed`` so it can be prescribed again.
        """
        self.store.delete_prescription(prescription.id)
        self._linked.discard(prescription.appointment_id)
        logger.info(
            "prescription_deleted",
            prescription_id=prescription.id,
            appointment_id=prescription.appointment_id,
        )

        outcome = PrescriptionOutcome(prescription=None, appointment=appointment)
        if appointment is not None and appointment.id == prescription.appointment_id:
            try:
                outcome.appointment = self.status_machine.reopen_after_prescription_removed(appointment)
            except StoreError as e:
                logger.warning(
                    "prescription_status_revert_failed",
                    appointment_id=appointment.id,
                    error=str(e),
                )
                outcome.status_error = e
        return outcome
