from concurrent.futures import ThreadPoolExecutor
from datetime import date
import threading

import pytest

from docbook.core.exceptions import Forbidden, InvalidStatus, InvalidTarget, NotFound, SlotConflict
from docbook.core.security import UserRole
from docbook.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus
from docbook.services.booking_ledger import BookingLedger
from tests.conftest import TestingSessionLocal, principal_for

DAY = date(2024, 6, 1)
NEXT_DAY = date(2024, 6, 2)


@pytest.fixture
def ledger(db):
    return BookingLedger(db)


def _active_count(db, doctor_id, slot_date, slot_time):
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.date == slot_date,
        Appointment.time == slot_time,
        Appointment.status.in_(ACTIVE_STATUSES)
    ).count()


class TestRequestAppointment:

    def test_new_appointment_is_pending(self, ledger, customer, doctor):
        appointment = ledger.request_appointment(
            customer.id, doctor.id, DAY, "10:00", document_reference="/uploads/referral.pdf"
        )

        assert appointment.id is not None
        assert appointment.status == AppointmentStatus.PENDING
        assert appointment.customer_id == customer.id
        assert appointment.doctor_id == doctor.id
        assert appointment.document_reference == "/uploads/referral.pdf"
        assert appointment.created_at is not None

    def test_same_slot_twice_conflicts(self, db, ledger, customer, other_customer, doctor):
        ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        with pytest.raises(SlotConflict) as exc_info:
            ledger.request_appointment(other_customer.id, doctor.id, DAY, "10:00")

        assert exc_info.value.doctor_id == doctor.id
        assert "choose another" in exc_info.value.message
        assert db.query(Appointment).count() == 1

    def test_slot_is_matched_exactly(self, ledger, customer, doctor, other_doctor):
        ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        # Different time token, day or doctor are different slots
        ledger.request_appointment(customer.id, doctor.id, DAY, "10:00 AM")
        ledger.request_appointment(customer.id, doctor.id, NEXT_DAY, "10:00")
        ledger.request_appointment(customer.id, other_doctor.id, DAY, "10:00")

    def test_unapproved_doctor_is_invalid_target(self, ledger, customer, make_user):
        pending_doctor = make_user(UserRole.DOCTOR, approved=False)

        with pytest.raises(InvalidTarget):
            ledger.request_appointment(customer.id, pending_doctor.id, DAY, "10:00")

    def test_non_doctor_is_invalid_target(self, ledger, customer, other_customer):
        with pytest.raises(InvalidTarget):
            ledger.request_appointment(customer.id, other_customer.id, DAY, "10:00")

    def test_unknown_doctor_is_invalid_target(self, ledger, customer):
        with pytest.raises(InvalidTarget):
            ledger.request_appointment(customer.id, 9999, DAY, "10:00")

    def test_cancelled_slot_can_be_rebooked(self, db, ledger, customer, other_customer, doctor):
        first = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")
        with pytest.raises(SlotConflict):
            ledger.request_appointment(other_customer.id, doctor.id, DAY, "10:00")

        ledger.update_status(first.id, principal_for(doctor), "cancelled")
        third = ledger.request_appointment(other_customer.id, doctor.id, DAY, "10:00")

        assert third.status == AppointmentStatus.PENDING
        assert _active_count(db, doctor.id, DAY, "10:00") == 1

    def test_completed_slot_can_be_rebooked(self, ledger, customer, other_customer, doctor):
        first = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")
        ledger.update_status(first.id, principal_for(doctor), "completed")

        again = ledger.request_appointment(other_customer.id, doctor.id, DAY, "10:00")
        assert again.status == AppointmentStatus.PENDING


class TestConcurrency:

    def test_concurrent_requests_have_one_winner(self, make_user, doctor):
        attempts = 8
        customer_ids = [make_user(UserRole.CUSTOMER).id for _ in range(attempts)]
        doctor_id = doctor.id
        barrier = threading.Barrier(attempts)

        def attempt(customer_id):
            session = TestingSessionLocal()
            try:
                barrier.wait()
                BookingLedger(session).request_appointment(customer_id, doctor_id, DAY, "10:00")
                return "booked"
            except SlotConflict:
                return "conflict"
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=attempts) as pool:
            outcomes = list(pool.map(attempt, customer_ids))

        assert outcomes.count("booked") == 1
        assert outcomes.count("conflict") == attempts - 1

        session = TestingSessionLocal()
        try:
            assert _active_count(session, doctor_id, DAY, "10:00") == 1
        finally:
            session.close()

    def test_concurrent_reschedules_into_one_slot(self, ledger, make_user, doctor, admin):
        customers = [make_user(UserRole.CUSTOMER) for _ in range(4)]
        appointment_ids = [
            ledger.request_appointment(c.id, doctor.id, DAY, f"0{i + 1}:00").id
            for i, c in enumerate(customers)
        ]
        admin_principal = principal_for(admin)
        barrier = threading.Barrier(len(appointment_ids))

        def attempt(appointment_id):
            session = TestingSessionLocal()
            try:
                barrier.wait()
                BookingLedger(session).reschedule(appointment_id, admin_principal, NEXT_DAY, "15:00")
                return "moved"
            except SlotConflict:
                return "conflict"
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=len(appointment_ids)) as pool:
            outcomes = list(pool.map(attempt, appointment_ids))

        assert outcomes.count("moved") == 1
        assert outcomes.count("conflict") == len(appointment_ids) - 1


class TestReschedule:

    def test_reschedule_to_own_slot_succeeds(self, ledger, customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        moved = ledger.reschedule(appointment.id, principal_for(customer), DAY, "10:00")

        assert moved.date == DAY
        assert moved.time == "10:00"

    def test_reschedule_scheduled_resets_to_pending(self, ledger, customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")
        ledger.update_status(appointment.id, principal_for(doctor), "scheduled")

        moved = ledger.reschedule(appointment.id, principal_for(customer), NEXT_DAY, "11:30")

        assert moved.status == AppointmentStatus.PENDING
        assert moved.date == NEXT_DAY
        assert moved.time == "11:30"
        assert moved.doctor_id == doctor.id
        assert moved.customer_id == customer.id

    def test_reschedule_frees_previous_slot(self, ledger, customer, other_customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")
        ledger.reschedule(appointment.id, principal_for(customer), DAY, "11:00")

        ledger.request_appointment(other_customer.id, doctor.id, DAY, "10:00")
        assert ledger.list_booked_slots(doctor.id) == [(DAY, "10:00"), (DAY, "11:00")]

    def test_reschedule_into_taken_slot_conflicts(self, db, ledger, customer, other_customer, doctor):
        ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")
        mine = ledger.request_appointment(other_customer.id, doctor.id, DAY, "11:00")

        with pytest.raises(SlotConflict):
            ledger.reschedule(mine.id, principal_for(other_customer), DAY, "10:00")

        unchanged = ledger.get_appointment(mine.id)
        assert unchanged.time == "11:00"
        assert _active_count(db, doctor.id, DAY, "10:00") == 1

    def test_partial_reschedule_keeps_other_field(self, ledger, customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        moved = ledger.reschedule(appointment.id, principal_for(customer), new_time="14:00")

        assert moved.date == DAY
        assert moved.time == "14:00"

    def test_admin_can_reschedule_any(self, ledger, customer, doctor, admin):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        moved = ledger.reschedule(appointment.id, principal_for(admin), NEXT_DAY, "09:00")
        assert moved.date == NEXT_DAY

    def test_other_customer_cannot_reschedule(self, ledger, customer, other_customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        with pytest.raises(Forbidden):
            ledger.reschedule(appointment.id, principal_for(other_customer), NEXT_DAY, "09:00")

    def test_doctor_cannot_reschedule(self, ledger, customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        with pytest.raises(Forbidden):
            ledger.reschedule(appointment.id, principal_for(doctor), NEXT_DAY, "09:00")

    def test_missing_appointment(self, ledger, customer):
        with pytest.raises(NotFound):
            ledger.reschedule(12345, principal_for(customer), DAY, "10:00")


class TestUpdateStatus:

    def test_doctor_schedules_own_patient(self, ledger, customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        updated = ledger.update_status(appointment.id, principal_for(doctor), "scheduled")
        assert updated.status == AppointmentStatus.SCHEDULED

    def test_customer_cannot_schedule(self, ledger, customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        with pytest.raises(Forbidden):
            ledger.update_status(appointment.id, principal_for(customer), "scheduled")
        assert ledger.get_appointment(appointment.id).status == AppointmentStatus.PENDING

    def test_customer_cancels_own(self, ledger, customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        updated = ledger.update_status(appointment.id, principal_for(customer), "cancelled")
        assert updated.status == AppointmentStatus.CANCELLED

    def test_customer_cannot_cancel_others(self, ledger, customer, other_customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        with pytest.raises(Forbidden):
            ledger.update_status(appointment.id, principal_for(other_customer), "cancelled")

    def test_other_doctor_forbidden(self, ledger, customer, doctor, other_doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        with pytest.raises(Forbidden):
            ledger.update_status(appointment.id, principal_for(other_doctor), "scheduled")

    def test_admin_sets_any_status(self, ledger, customer, doctor, admin):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        for value in ("scheduled", "completed", "pending", "cancelled"):
            updated = ledger.update_status(appointment.id, principal_for(admin), value)
            assert updated.status == AppointmentStatus(value)

    def test_unknown_status_rejected(self, ledger, customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        with pytest.raises(InvalidStatus):
            ledger.update_status(appointment.id, principal_for(doctor), "confirmed")

    def test_missing_appointment(self, ledger, doctor):
        with pytest.raises(NotFound):
            ledger.update_status(12345, principal_for(doctor), "scheduled")

    def test_reactivating_into_taken_slot_conflicts(self, db, ledger, customer, other_customer, doctor):
        first = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")
        ledger.update_status(first.id, principal_for(doctor), "cancelled")
        ledger.request_appointment(other_customer.id, doctor.id, DAY, "10:00")

        with pytest.raises(SlotConflict):
            ledger.update_status(first.id, principal_for(doctor), "pending")

        assert ledger.get_appointment(first.id).status == AppointmentStatus.CANCELLED
        assert _active_count(db, doctor.id, DAY, "10:00") == 1


class TestCancel:

    def test_customer_deletes_own(self, db, ledger, customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        ledger.cancel(appointment.id, principal_for(customer))

        assert db.query(Appointment).count() == 0
        with pytest.raises(NotFound):
            ledger.get_appointment(appointment.id)

    def test_delete_frees_slot(self, ledger, customer, other_customer, doctor, admin):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")
        ledger.cancel(appointment.id, principal_for(admin))

        ledger.request_appointment(other_customer.id, doctor.id, DAY, "10:00")

    def test_doctor_cannot_delete(self, ledger, customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        with pytest.raises(Forbidden):
            ledger.cancel(appointment.id, principal_for(doctor))

    def test_other_customer_cannot_delete(self, ledger, customer, other_customer, doctor):
        appointment = ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        with pytest.raises(Forbidden):
            ledger.cancel(appointment.id, principal_for(other_customer))

    def test_missing_appointment(self, ledger, admin):
        with pytest.raises(NotFound):
            ledger.cancel(12345, principal_for(admin))


class TestListings:

    def test_booked_slots_reflect_active_only(self, ledger, customer, doctor):
        kept = ledger.request_appointment(customer.id, doctor.id, NEXT_DAY, "09:00")
        ledger.request_appointment(customer.id, doctor.id, DAY, "15:00")
        dropped = ledger.request_appointment(customer.id, doctor.id, DAY, "08:00")
        ledger.update_status(kept.id, principal_for(doctor), "scheduled")
        ledger.update_status(dropped.id, principal_for(doctor), "cancelled")

        first = ledger.list_booked_slots(doctor.id)
        second = ledger.list_booked_slots(doctor.id)

        assert first == [(DAY, "15:00"), (NEXT_DAY, "09:00")]
        assert first == second

    def test_lists_carry_both_parties(self, ledger, customer, doctor):
        ledger.request_appointment(customer.id, doctor.id, DAY, "10:00")

        for listing in (
            ledger.list_for_customer(customer.id),
            ledger.list_for_doctor(doctor.id),
            ledger.list_all(),
        ):
            assert listing[0].customer.name == "Alice"
            assert listing[0].doctor.specialty == "Cardiology"

    def test_booked_slots_unknown_doctor(self, ledger, customer):
        with pytest.raises(NotFound):
            ledger.list_booked_slots(9999)
        with pytest.raises(NotFound):
            ledger.list_booked_slots(customer.id)

    def test_per_user_lists_are_ordered(self, ledger, customer, other_customer, doctor, other_doctor):
        ledger.request_appointment(customer.id, doctor.id, NEXT_DAY, "09:00")
        ledger.request_appointment(customer.id, other_doctor.id, DAY, "16:00")
        ledger.request_appointment(customer.id, doctor.id, DAY, "11:00")
        ledger.request_appointment(other_customer.id, doctor.id, DAY, "10:00")

        mine = ledger.list_for_customer(customer.id)
        assert [(a.date, a.time) for a in mine] == [
            (DAY, "11:00"), (DAY, "16:00"), (NEXT_DAY, "09:00")
        ]

        doctors = ledger.list_for_doctor(doctor.id)
        assert [(a.date, a.time) for a in doctors] == [
            (DAY, "10:00"), (DAY, "11:00"), (NEXT_DAY, "09:00")
        ]

        assert len(ledger.list_all()) == 4

    def test_slot_invariant_after_mixed_operations(self, db, ledger, make_user, doctor, admin):
        customers = [make_user(UserRole.CUSTOMER) for _ in range(3)]
        times = ["09:00", "10:00"]

        for c in customers:
            for t in times:
                try:
                    appointment = ledger.request_appointment(c.id, doctor.id, DAY, t)
                except SlotConflict:
                    continue
                ledger.update_status(appointment.id, principal_for(admin), "cancelled")
                try:
                    ledger.reschedule(appointment.id, principal_for(c), DAY, times[0])
                except SlotConflict:
                    pass

        for t in times:
            assert _active_count(db, doctor.id, DAY, t) <= 1


class TestSlotIndex:

    def test_single_index_over_slot_columns(self):
        slot_indexes = [
            index for index in Appointment.__table__.indexes
            if [c.name for c in index.columns] == ["doctor_id", "date", "time"]
        ]
        assert [index.name for index in slot_indexes] == ["uq_appointments_active_slot"]
        assert slot_indexes[0].unique
