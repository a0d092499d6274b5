"""Patient medical history and patient lists.

Fan-out/fan-in: one prescriptions request per appointment, issued
concurrently and joined once all complete. A single failure fails the
whole load.
"""
import asyncio
from dataclasses import dataclass, field
from typing import List, Sequence

from medbook.logging_config import get_logger
from medbook.models import Appointment, Prescription
from medbook.views import sort_by_instant

logger = get_logger(__name__)


@dataclass
class HistoryEntry:
    appointment: Appointment
    prescriptions: List[Prescription] = field(default_factory=list)


@dataclass(frozen=True)
class PatientRef:
    id: str
    name: str


async def fetch_prescriptions_for(store, appointments: Sequence[Appointment]) -> List[List[Prescription]]:
    """Prescriptions per appointment, aligned with ``appointments``."""
    return list(await asyncio.gather(*(
        asyncio.to_thread(store.list_prescriptions_by_appointment, a.id)
        for a in appointments
    )))


async def load_medical_history(store, patient_id: str) -> List[HistoryEntry]:
    """
    Load a patient's appointments with their prescriptions.

    Args:
        store: RecordStore (or anything with the same methods)
        patient_id: Patient whose history to load

    Returns:
        Entries ordered by appointment instant

    Raises:
        StoreError: If any request fails
    """
    appointments = await asyncio.to_thread(store.list_appointments, patient_id, "patient")
    per_appointment = await fetch_prescriptions_for(store, appointments)

    by_id = {
        a.id: HistoryEntry(appointment=a, prescriptions=list(p))
        for a, p in zip(appointments, per_appointment)
    }
    logger.info(
        "medical_history_loaded",
        patient_id=patient_id,
        appointments=len(appointments),
        prescriptions=sum(len(p) for p in per_appointment),
    )
    return [by_id[a.id] for a in sort_by_instant(appointments)]


def unique_patients(appointments: Sequence[Appointment]) -> List[PatientRef]:
    """Distinct patients of a doctor, first appearance wins."""
    seen = {}
    for a in appointments:
        if a.patient_id not in seen:
            seen[a.patient_id] = PatientRef(id=a.patient_id, name=a.patient_name)
    return list(seen.values())
