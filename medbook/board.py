"""Per-view appointment state for a doctor's (or patient's) screen.

The board holds the in-memory appointment and prescription collections of
one view and is the only place they change. They change in three cases:

- a completed refresh (fan-out of appointments + prescriptions, fan-in)
- a confirmed status transition
- a confirmed reschedule (including settling an optimistic drag)

Every failure is turned into a ``Notice`` (the toast a UI would show) and
leaves the last-known-good collections in place.

Ordering rules:
- A refresh that completes after ``close()`` is discarded.
- A refresh that started before the last applied refresh is discarded.
- A local write made while a refresh was in flight survives that refresh.
"""
import asyncio
import itertools
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

from medbook.history import fetch_prescriptions_for
from medbook.logging_config import get_logger
from medbook.models import (
    Actor,
    Appointment,
    Prescription,
    PrescriptionDraft,
    Review,
    Tab,
)
from medbook.prescriptions import (
    DuplicatePrescriptionError,
    InvalidPrescriptionError,
    PrescriptionService,
)
from medbook.scheduling import (
    InvalidScheduleError,
    Rescheduler,
    TentativeMove,
    resolve_move,
    split_event_start,
)
from medbook.state import IllegalTransitionError, StatusMachine
from medbook.store import StoreError
from medbook import reviews as review_stats
from medbook import views

logger = get_logger(__name__)


@dataclass(frozen=True)
class Notice:
    """User-facing message; level is info, success, warning or error."""
    level: str
    title: str
    message: str


@dataclass(frozen=True)
class MoveResult:
    """Outcome of a drag-and-drop reschedule."""
    appointment: Appointment
    reverted: bool
    error: Optional[BaseException] = None


class AppointmentBoard:
    """In-memory appointments and prescriptions for one active view."""

    def __init__(
        self,
        store,
        actor: Actor,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.actor = actor
        self.clock = clock

        self.status_machine = StatusMachine(store)
        self.rescheduler = Rescheduler(store)
        self.prescription_service = PrescriptionService(store, self.status_machine)

        self.appointments: List[Appointment] = []
        self.prescriptions: List[Prescription] = []
        self.reviews: List[Review] = []
        self.notices: List[Notice] = []
        self.loaded = False

        self._active = True
        self._seq = itertools.count(1)
        self._applied_refresh_seq = 0
        # appointment id -> seq of the last local write
        self._appointment_writes: Dict[str, int] = {}
        # appointment id -> (seq, prescription now linked locally or None)
        self._prescription_writes: Dict[str, Tuple[int, Optional[Prescription]]] = {}

    # ---- Lifecycle ----

    @property
    def active(self) -> bool:
        return self._active

    def close(self):
        """The view went away; late results are dropped from now on."""
        self._active = False

    # ---- Loading ----

    async def refresh(self) -> bool:
        """
        Reload appointments and prescriptions concurrently.

        Returns:
            True if the result was applied, False if it was discarded as stale

        Raises:
            StoreError: If either request failed (prior state is kept)
        """
        if not self._active:
            return False
        started = next(self._seq)

        try:
            appointments, prescriptions = await self._fetch()
        except StoreError as e:
            if not self._active:
                logger.debug("refresh_failed_after_close", error=str(e))
                return False
            logger.warning("board_refresh_failed", actor_id=self.actor.id, error=str(e))
            self._notify("error", "Error", "Failed to load appointments or prescriptions")
            raise

        if not self._active or started < self._applied_refresh_seq:
            logger.debug("refresh_discarded", started=started, applied=self._applied_refresh_seq)
            return False

        self.appointments = views.sort_by_instant(self._merge_appointments(appointments, started))
        self.prescriptions = self._merge_prescriptions(prescriptions, started)
        self._applied_refresh_seq = started
        self.loaded = True
        logger.info(
            "board_refreshed",
            actor_id=self.actor.id,
            appointments=len(self.appointments),
            prescriptions=len(self.prescriptions),
        )
        return True

    async def _fetch(self) -> Tuple[List[Appointment], List[Prescription]]:
        if self.actor.role == "doctor":
            appointments, prescriptions = await asyncio.gather(
                asyncio.to_thread(self.store.list_appointments, self.actor.id, "doctor"),
                asyncio.to_thread(self.store.list_prescriptions_by_doctor, self.actor.id),
            )
            return appointments, prescriptions

        appointments = await asyncio.to_thread(
            self.store.list_appointments, self.actor.id, "patient"
        )
        per_appointment = await fetch_prescriptions_for(self.store, appointments)
        return appointments, [p for group in per_appointment for p in group]

    async def load_reviews(self) -> bool:
        """
        Load reviews for the actor (by doctor or by patient).

        Returns:
            True if applied, False if the board closed meanwhile

        Raises:
            StoreError: If the request failed (prior reviews are kept)
        """
        if not self._active:
            return False
        if self.actor.role == "doctor":
            fetch = self.store.list_reviews_by_doctor
        else:
            fetch = self.store.list_reviews_by_patient

        try:
            loaded = await asyncio.to_thread(fetch, self.actor.id)
        except StoreError as e:
            if self._active:
                logger.warning("board_reviews_failed", actor_id=self.actor.id, error=str(e))
                self._notify("error", "Error", "Failed to load reviews")
            raise

        if not self._active:
            return False
        self.reviews = loaded
        logger.info("board_reviews_loaded", actor_id=self.actor.id, reviews=len(loaded))
        return True

    def _merge_appointments(self, fetched: List[Appointment], started: int) -> List[Appointment]:
        local = {a.id: a for a in self.appointments}
        newer = {
            appointment_id for appointment_id, seq in self._appointment_writes.items()
            if seq > started and appointment_id in local
        }
        merged = [local[a.id] if a.id in newer else a for a in fetched]
        fetched_ids = {a.id for a in fetched}
        merged.extend(local[i] for i in newer if i not in fetched_ids)
        return merged

    def _merge_prescriptions(self, fetched: List[Prescription], started: int) -> List[Prescription]:
        newer = {
            appointment_id: prescription
            for appointment_id, (seq, prescription) in self._prescription_writes.items()
            if seq > started
        }
        merged = [p for p in fetched if p.appointment_id not in newer]
        merged.extend(p for p in newer.values() if p is not None)
        return merged

    # ---- Lookups and read models ----

    def get(self, appointment_id: str) -> Appointment:
        for a in self.appointments:
            if a.id == appointment_id:
                return a
        raise KeyError(appointment_id)

    def now(self) -> datetime:
        return self.clock()

    def tab(self, tab: Union[Tab, str]) -> List[Appointment]:
        return views.partition(self.appointments, tab, self.now())

    def grouped(self, tab: Union[Tab, str]) -> Dict[str, List[Appointment]]:
        return views.group_by_date(self.tab(tab))

    def counts(self) -> Dict[str, int]:
        return views.tab_counts(self.appointments, self.now())

    def calendar(self) -> List[views.CalendarEvent]:
        return views.calendar_events(self.appointments)

    def view(self, appointment_id: str) -> views.AppointmentView:
        return views.describe(
            self.get(appointment_id), self.prescriptions, self.now(), self.reviews
        )

    def rating_summary(self) -> review_stats.RatingSummary:
        return review_stats.summarize(self.reviews)

    def search_prescriptions(self, query: str) -> List[Prescription]:
        return views.search_prescriptions(self.prescriptions, self.appointments, query)

    # ---- Status transitions ----

    async def update_status(self, appointment_id: str, status: str) -> Appointment:
        appointment = self.get(appointment_id)
        return await self._transition(
            lambda: self.status_machine.transition(appointment, status)
        )

    async def cancel(self, appointment_id: str) -> Appointment:
        appointment = self.get(appointment_id)
        return await self._transition(lambda: self.status_machine.cancel(appointment))

    async def confirm(self, appointment_id: str) -> Appointment:
        appointment = self.get(appointment_id)
        return await self._transition(lambda: self.status_machine.confirm(appointment))

    async def _transition(self, action) -> Appointment:
        try:
            updated = await asyncio.to_thread(action)
        except IllegalTransitionError as e:
            self._notify("error", "Error", str(e))
            raise
        except StoreError:
            if self._active:
                self._notify("error", "Error", "Failed to update appointment")
            raise

        if self._active:
            self._replace(updated)
            self._notify("success", "Success", f"Appointment {updated.status} successfully!")
        return updated

    # ---- Rescheduling ----

    async def reschedule(self, appointment_id: str, new_date: str, new_time: str) -> Appointment:
        """Form-driven reschedule; the board changes only after the store confirms."""
        appointment = self.get(appointment_id)
        try:
            updated = await asyncio.to_thread(
                self.rescheduler.reschedule_appointment, appointment, new_date, new_time
            )
        except (InvalidScheduleError, IllegalTransitionError) as e:
            self._notify("error", "Error", str(e))
            raise
        except StoreError:
            if self._active:
                self._notify("error", "Error", "Failed to reschedule.")
            raise

        if self._active:
            self._replace(updated)
            self._notify("success", "Rescheduled", f"Moved to {updated.date} at {updated.time}")
        return updated

    async def drop(self, appointment_id: str, start: str) -> MoveResult:
        """
        Drag-and-drop reschedule with optimistic apply.

        The moved record is visible immediately; once the store answers the
        board holds either the server's record or exactly the prior one.

        Raises:
            InvalidScheduleError / IllegalTransitionError: Before anything moved
        """
        appointment = self.get(appointment_id)
        try:
            new_date, new_time = split_event_start(start)
            move = TentativeMove.begin(appointment, new_date, new_time)
        except (InvalidScheduleError, IllegalTransitionError) as e:
            self._notify("error", "Error", str(e))
            raise

        self._replace(move.proposed)

        try:
            remote = await asyncio.to_thread(
                self.rescheduler.reschedule, appointment_id, new_date, new_time
            )
        except StoreError as e:
            remote = e
        except Exception:
            self._replace(move.prior)
            raise

        final, error = resolve_move(move.prior, move.proposed, remote)
        if not self._active:
            return MoveResult(appointment=final, reverted=error is not None, error=error)

        self._replace(final)
        if error is not None:
            logger.warning("drop_reverted", appointment_id=appointment_id, error=str(error))
            self._notify("error", "Error", "Failed to reschedule.")
            return MoveResult(appointment=final, reverted=True, error=error)

        self._notify(
            "success",
            "Appointment Rescheduled",
            f"{final.patient_name} moved to {final.date} at {final.time}.",
        )
        return MoveResult(appointment=final, reverted=False)

    # ---- Prescriptions ----

    async def prescribe(self, draft: PrescriptionDraft) -> Prescription:
        """Record a prescription for one of this board's appointments."""
        appointment = self.get(draft.appointment_id)
        try:
            outcome = await asyncio.to_thread(
                self.prescription_service.create, draft, appointment, self.now()
            )
        except DuplicatePrescriptionError as e:
            self._notify("info", "Notice", "Prescription already exists for this appointment.")
            if e.existing is not None and self._active:
                self._link(e.existing.appointment_id, e.existing)
            raise
        except InvalidPrescriptionError as e:
            self._notify("error", "Validation Error", str(e))
            raise
        except StoreError:
            if self._active:
                self._notify("error", "Error", "Failed to create prescription.")
            raise

        if not self._active:
            return outcome.prescription

        self._link(draft.appointment_id, outcome.prescription)
        if outcome.appointment is not None:
            self._replace(outcome.appointment)
        self._notify("success", "Success", "Prescription created successfully.")
        if outcome.status_error is not None:
            self._notify(
                "warning",
                "Status not updated",
                "Prescription saved, but the appointment status could not be updated.",
            )
        return outcome.prescription

    async def update_prescription(self, prescription_id: str, changes: dict) -> Prescription:
        try:
            updated = await asyncio.to_thread(
                self.prescription_service.update, prescription_id, changes
            )
        except InvalidPrescriptionError as e:
            self._notify("error", "Validation Error", str(e))
            raise
        except StoreError:
            if self._active:
                self._notify("error", "Error", "Failed to update prescription.")
            raise

        if self._active:
            self._link(updated.appointment_id, updated)
            self._notify("success", "Success", "Prescription updated successfully.")
        return updated

    async def delete_prescription(self, prescription_id: str):
        prescription = next((p for p in self.prescriptions if p.id == prescription_id), None)
        if prescription is None:
            raise KeyError(prescription_id)
        appointment = next(
            (a for a in self.appointments if a.id == prescription.appointment_id), None
        )

        try:
            outcome = await asyncio.to_thread(
                self.prescription_service.delete, prescription, appointment
            )
        except StoreError:
            if self._active:
                self._notify("error", "Error deleting", "Failed to delete prescription.")
            raise

        if not self._active:
            return
        self._link(prescription.appointment_id, None)
        if outcome.appointment is not None:
            self._replace(outcome.appointment)
        self._notify("success", "Prescription deleted", "")
        if outcome.status_error is not None:
            self._notify(
                "warning",
                "Status not updated",
                "Prescription deleted, but the appointment could not be reopened.",
            )

    # ---- Internals ----

    def _replace(self, appointment: Appointment):
        """Swap in a record wholesale and stamp it as a local write."""
        self._appointment_writes[appointment.id] = next(self._seq)
        others = [a for a in self.appointments if a.id != appointment.id]
        # A move changes the instant; keep the list in instant order
        self.appointments = views.sort_by_instant(others + [appointment])

    def _link(self, appointment_id: str, prescription: Optional[Prescription]):
        self._prescription_writes[appointment_id] = (next(self._seq), prescription)
        self.prescriptions = [p for p in self.prescriptions if p.appointment_id != appointment_id]
        if prescription is not None:
            self.prescriptions.append(prescription)

    def _notify(self, level: str, title: str, message: str):
        self.notices.append(Notice(level=level, title=title, message=message))
