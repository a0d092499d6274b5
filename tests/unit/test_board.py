"""Tests for the per-view appointment board."""
import asyncio
from datetime import datetime

import pytest

from medbook.board import AppointmentBoard
from medbook.models import Actor, Medication, Prescription, Review
from medbook.prescriptions import DuplicatePrescriptionError
from medbook.scheduling import InvalidScheduleError
from medbook.state import IllegalTransitionError
from medbook.store import StoreUnavailableError


DOCTOR = Actor(id="d1", role="doctor")


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def board_for(fake_store_factory, clock):
    def _create(appointments=(), prescriptions=(), actor=DOCTOR, reviews=()):
        store = fake_store_factory(appointments, prescriptions, reviews)
        return AppointmentBoard(store, actor, clock=clock), store
    return _create


async def _released(task, gate):
    gate.set()
    return await task


class TestRefresh:

    @pytest.mark.asyncio
    async def test_loads_appointments_and_prescriptions(self, board_for, make_appointment):
        later = make_appointment(id="a2", date="2025-03-12")
        earlier = make_appointment(id="a1", date="2025-03-10")
        prescription = Prescription(id="p1", appointment_id="a1", doctor_id="d1", patient_id="p1")
        board, store = board_for([later, earlier], [prescription])

        assert await board.refresh() is True

        assert board.loaded
        assert [a.id for a in board.appointments] == ["a1", "a2"]
        assert board.prescriptions == [prescription]
        assert set(store.calls) == {"list_appointments", "list_prescriptions_by_doctor"}

    @pytest.mark.asyncio
    async def test_patient_view_loads_prescriptions_per_appointment(self, board_for, make_appointment):
        appointments = [make_appointment(id="a1"), make_appointment(id="a2")]
        prescription = Prescription(id="p1", appointment_id="a2", doctor_id="d1", patient_id="p1")
        board, store = board_for(appointments, [prescription], actor=Actor(id="p1", role="patient"))

        await board.refresh()

        assert board.prescriptions == [prescription]
        assert store.calls.count("list_prescriptions_by_appointment") == 2

    @pytest.mark.asyncio
    async def test_failure_keeps_state_and_notifies_once(self, board_for, make_appointment, unavailable):
        board, store = board_for([make_appointment(id="a1")])
        await board.refresh()
        store.appointments.clear()
        store.fail["list_prescriptions_by_doctor"] = unavailable

        with pytest.raises(StoreUnavailableError):
            await board.refresh()

        assert [a.id for a in board.appointments] == ["a1"]
        assert len(board.notices) == 1
        assert board.notices[0].level == "error"
        assert board.notices[0].message == "Failed to load appointments or prescriptions"

    @pytest.mark.asyncio
    async def test_refresh_finishing_after_close_is_discarded(self, board_for, make_appointment):
        board, store = board_for([make_appointment(id="a1")])
        entered, gate = store.hold("list_appointments")

        task = asyncio.create_task(board.refresh())
        await asyncio.to_thread(entered.wait, 5)
        board.close()

        assert await _released(task, gate) is False
        assert board.appointments == []
        assert not board.loaded

    @pytest.mark.asyncio
    async def test_closed_board_does_not_fetch(self, board_for):
        board, store = board_for()
        board.close()

        assert await board.refresh() is False
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_older_refresh_cannot_overwrite_newer(self, board_for, make_appointment):
        board, store = board_for([make_appointment(id="a1")])
        entered, gate = store.hold("list_appointments")

        slow = asyncio.create_task(board.refresh())
        await asyncio.to_thread(entered.wait, 5)
        new = make_appointment(id="a2", date="2025-03-11")
        store.appointments[new.id] = new
        assert await board.refresh() is True

        assert await _released(slow, gate) is False
        assert [a.id for a in board.appointments] == ["a1", "a2"]

    @pytest.mark.asyncio
    async def test_local_write_survives_in_flight_refresh(self, board_for, make_appointment):
        board, store = board_for([make_appointment(id="a1", status="confirmed")])
        await board.refresh()
        entered, gate = store.hold("list_appointments")

        refresh = asyncio.create_task(board.refresh())
        # Snapshot with the old status is already taken
        await asyncio.to_thread(entered.wait, 5)
        await board.cancel("a1")

        assert await _released(refresh, gate) is True
        assert board.get("a1").status == "cancelled"


class TestTransitions:

    @pytest.mark.asyncio
    async def test_cancel_swaps_in_server_record(self, board_for, make_appointment):
        board, _ = board_for([make_appointment(id="a1", status="pending")])
        await board.refresh()

        await board.cancel("a1")

        assert board.get("a1").status == "cancelled"
        assert board.notices[-1].message == "Appointment cancelled successfully!"

    @pytest.mark.asyncio
    async def test_store_failure_leaves_record_unchanged(self, board_for, make_appointment, unavailable):
        board, store = board_for([make_appointment(id="a1", status="pending")])
        await board.refresh()
        store.fail["update_status"] = unavailable

        with pytest.raises(StoreUnavailableError):
            await board.confirm("a1")

        assert board.get("a1").status == "pending"
        assert board.notices[-1].message == "Failed to update appointment"

    @pytest.mark.asyncio
    async def test_illegal_transition_notifies(self, board_for, make_appointment):
        board, store = board_for([make_appointment(id="a1", status="completed")])
        await board.refresh()

        with pytest.raises(IllegalTransitionError):
            await board.cancel("a1")
        assert "update_status" not in store.calls
        assert board.notices[-1].level == "error"

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, board_for):
        board, _ = board_for()
        with pytest.raises(KeyError):
            await board.cancel("nope")


class TestReschedule:

    @pytest.mark.asyncio
    async def test_form_reschedule(self, board_for, make_appointment):
        board, _ = board_for([make_appointment(id="a1", status="confirmed")])
        await board.refresh()

        updated = await board.reschedule("a1", "2025-03-15", "10:30")

        assert (updated.date, updated.time, updated.status) == ("2025-03-15", "10:30", "rescheduled")
        assert board.get("a1") == updated

    @pytest.mark.asyncio
    async def test_drop_is_visible_before_store_answers(self, board_for, make_appointment):
        board, store = board_for([make_appointment(id="a1", date="2025-03-10", time="09:00")])
        await board.refresh()
        entered, gate = store.hold("update_schedule")

        task = asyncio.create_task(board.drop("a1", "2025-03-15T10:30:00"))
        await asyncio.to_thread(entered.wait, 5)
        tentative = board.get("a1")
        assert (tentative.date, tentative.time, tentative.status) == ("2025-03-15", "10:30", "rescheduled")

        result = await _released(task, gate)

        assert result.reverted is False
        assert board.get("a1") == store.appointments["a1"]
        assert board.notices[-1].title == "Appointment Rescheduled"
        assert board.notices[-1].message == "John Doe moved to 2025-03-15 at 10:30."

    @pytest.mark.asyncio
    async def test_failed_drop_reverts_exactly(self, board_for, make_appointment, unavailable):
        prior = make_appointment(id="a1", date="2025-03-10", time="09:00", status="confirmed")
        board, store = board_for([prior])
        await board.refresh()
        store.fail["update_schedule"] = unavailable

        result = await board.drop("a1", "2025-03-15T10:30:00")

        assert result.reverted is True
        assert result.error is unavailable
        assert board.get("a1") == prior
        assert board.notices[-1].message == "Failed to reschedule."

    @pytest.mark.asyncio
    async def test_drop_with_bad_start_moves_nothing(self, board_for, make_appointment):
        prior = make_appointment(id="a1")
        board, store = board_for([prior])
        await board.refresh()

        with pytest.raises(InvalidScheduleError):
            await board.drop("a1", "garbage")

        assert board.get("a1") == prior
        assert "update_schedule" not in store.calls


class TestPrescriptions:

    @pytest.fixture
    def past_confirmed(self, make_appointment):
        return make_appointment(id="a1", date="2025-02-20", time="10:00", status="confirmed")

    @pytest.mark.asyncio
    async def test_prescribe_completes_appointment(self, board_for, past_confirmed, make_draft):
        board, _ = board_for([past_confirmed])
        await board.refresh()
        assert board.view("a1").prescribable

        prescription = await board.prescribe(make_draft("a1"))

        row = board.view("a1")
        assert row.prescription == prescription
        assert row.appointment.status == "completed"
        assert row.prescribable is False
        assert board.notices[-1].message == "Prescription created successfully."

    @pytest.mark.asyncio
    async def test_duplicate_prescribe_links_existing(self, board_for, past_confirmed, make_draft):
        existing = Prescription(
            id="p1", appointment_id="a1", doctor_id="other-doctor", patient_id="p1",
            medications=[Medication(name="Ibuprofen", dosage="200mg")],
        )
        board, store = board_for([past_confirmed], [existing])
        await board.refresh()  # doctor view misses another doctor's prescription

        with pytest.raises(DuplicatePrescriptionError):
            await board.prescribe(make_draft("a1"))

        assert "create_prescription" not in store.calls
        assert board.view("a1").has_prescription
        assert board.notices[-1].level == "info"

    @pytest.mark.asyncio
    async def test_status_failure_after_create_warns(self, board_for, past_confirmed, make_draft, unavailable):
        board, store = board_for([past_confirmed])
        await board.refresh()
        store.fail["update_status"] = unavailable

        await board.prescribe(make_draft("a1"))

        assert board.view("a1").has_prescription
        assert board.get("a1").status == "confirmed"
        assert [n.level for n in board.notices[-2:]] == ["success", "warning"]

    @pytest.mark.asyncio
    async def test_delete_reopens_prescribing(self, board_for, past_confirmed, make_draft):
        board, _ = board_for([past_confirmed])
        await board.refresh()
        prescription = await board.prescribe(make_draft("a1"))

        await board.delete_prescription(prescription.id)

        row = board.view("a1")
        assert row.has_prescription is False
        assert row.appointment.status == "confirmed"
        assert row.prescribable is True

    @pytest.mark.asyncio
    async def test_delete_unknown_prescription(self, board_for):
        board, _ = board_for()
        with pytest.raises(KeyError):
            await board.delete_prescription("p404")

    @pytest.mark.asyncio
    async def test_search_through_board(self, board_for, past_confirmed, make_draft):
        board, _ = board_for([past_confirmed])
        await board.refresh()
        await board.prescribe(make_draft("a1"))

        assert len(board.search_prescriptions("john")) == 1
        assert board.search_prescriptions("nobody") == []


def test_read_models_use_injected_clock(fake_store_factory, make_appointment):
    appointment = make_appointment(date="2025-03-10", time="09:00")
    board = AppointmentBoard(fake_store_factory(), DOCTOR, clock=lambda: datetime(2025, 3, 11))
    board.appointments = [appointment]

    assert board.counts() == {"upcoming": 0, "past": 1}
    assert board.tab("past") == [appointment]
    assert list(board.grouped("past")) == ["2025-03-10"]
    assert board.calendar()[0].color == "green"


@pytest.mark.asyncio
async def test_complete_on_upcoming_pending_records_prescription(board_for, make_appointment, make_draft):
    board, _ = board_for([make_appointment(id="a1", date="2025-03-10", status="pending")])
    await board.refresh()
    assert board.view("a1").actionable

    await board.prescribe(make_draft("a1"))

    row = board.view("a1")
    assert row.has_prescription
    assert row.appointment.status == "completed"
    assert board.notices[-1].message == "Prescription created successfully."


class TestReviews:

    @pytest.fixture
    def reviews(self):
        return [
            Review(id="r1", appointment_id="a1", doctor_id="d1", patient_id="p1", rating=5),
            Review(id="r2", appointment_id="a2", doctor_id="d1", patient_id="p2", rating=0),
            Review(id="r3", appointment_id="a3", doctor_id="d2", patient_id="p1", rating=3),
        ]

    @pytest.mark.asyncio
    async def test_doctor_loads_own_reviews(self, board_for, make_appointment, reviews):
        board, store = board_for([make_appointment(id="a1", date="2025-02-20")], reviews=reviews)
        await board.refresh()

        assert await board.load_reviews() is True

        assert [r.id for r in board.reviews] == ["r1", "r2"]
        assert board.view("a1").review.id == "r1"
        assert "list_reviews_by_doctor" in store.calls

    @pytest.mark.asyncio
    async def test_summary_skips_bad_rating(self, board_for, reviews):
        board, _ = board_for(reviews=reviews)
        await board.load_reviews()

        summary = board.rating_summary()

        assert summary.average == 5.0
        assert summary.count == 1
        assert summary.distribution[5] == 1

    @pytest.mark.asyncio
    async def test_patient_loads_reviews_they_wrote(self, board_for, reviews):
        board, store = board_for(actor=Actor(id="p1", role="patient"), reviews=reviews)

        await board.load_reviews()

        assert [r.id for r in board.reviews] == ["r1", "r3"]
        assert store.calls == ["list_reviews_by_patient"]

    @pytest.mark.asyncio
    async def test_failure_keeps_reviews_and_notifies(self, board_for, reviews, unavailable):
        board, store = board_for(reviews=reviews)
        await board.load_reviews()
        store.fail["list_reviews_by_doctor"] = unavailable

        with pytest.raises(StoreUnavailableError):
            await board.load_reviews()

        assert len(board.reviews) == 2
        assert board.notices[-1].message == "Failed to load reviews"

    @pytest.mark.asyncio
    async def test_reviews_arriving_after_close_are_discarded(self, board_for, reviews):
        board, store = board_for(reviews=reviews)
        entered, gate = store.hold("list_reviews_by_doctor")

        task = asyncio.create_task(board.load_reviews())
        await asyncio.to_thread(entered.wait, 5)
        board.close()

        assert await _released(task, gate) is False
        assert board.reviews == []

    def test_view_without_reviews(self, board_for, make_appointment):
        board, _ = board_for()
        board.appointments = [make_appointment(id="a1")]

        assert board.view("a1").review is None
