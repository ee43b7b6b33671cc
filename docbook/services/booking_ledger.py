from datetime import date
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload
from typing import List, Optional, Tuple
import logging

from ..core.exceptions import InvalidTarget, NotFound, SlotConflict
from ..core.permissions import Action, Principal, authorize, resolve_status_grant
from ..models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus
from .directory import Directory

logger = logging.getLogger(__name__)

# Markers of the active-slot unique index in PostgreSQL and SQLite error text
_SLOT_INDEX_MARKERS = (
    "uq_appointments_active_slot",
    "appointments.doctor_id, appointments.date, appointments.time",
)


def _is_slot_violation(exc: IntegrityError) -> bool:
    text = str(exc.orig)
    return any(marker in text for marker in _SLOT_INDEX_MARKERS)


def _with_parties():
    # Listings embed both parties; load them in the same query
    return (joinedload(Appointment.customer), joinedload(Appointment.doctor))


class BookingLedger:
    """Appointment records for every doctor slot.

    A slot is (doctor_id, date, time). At most one pending or scheduled
    appointment may hold a slot. The pre-checks below give a readable error;
    the partial unique index on ``appointments`` is what makes the check and
    the write atomic when requests race.
    """

    def __init__(self, db: Session, directory: Optional[Directory] = None):
        self.db = db
        self.directory = directory or Directory(db)

    def request_appointment(
        self,
        customer_id: int,
        doctor_id: int,
        slot_date: date,
        slot_time: str,
        document_reference: Optional[str] = None,
    ) -> Appointment:
        """Book a slot for a customer; the new appointment starts pending."""
        if not self.directory.is_approved_doctor(doctor_id):
            raise InvalidTarget()

        if self._find_active(doctor_id, slot_date, slot_time) is not None:
            self._log_conflict(doctor_id, slot_date, slot_time)
            raise SlotConflict(doctor_id, slot_date, slot_time)

        appointment = Appointment(
            customer_id=customer_id,
            doctor_id=doctor_id,
            date=slot_date,
            time=slot_time,
            status=AppointmentStatus.PENDING,
            document_reference=document_reference,
        )
        self.db.add(appointment)
        self._commit_slot(doctor_id, slot_date, slot_time)
        self.db.refresh(appointment)

        logger.info(
            f"Appointment {appointment.id} requested by customer {customer_id} "
            f"with doctor {doctor_id} at {slot_date} {slot_time}"
        )
        return appointment

    def reschedule(
        self,
        appointment_id: int,
        principal: Principal,
        new_date: Optional[date] = None,
        new_time: Optional[str] = None,
    ) -> Appointment:
        """Move an appointment to another slot and send it back to pending.

        A missing ``new_date`` or ``new_time`` keeps the current value.
        """
        appointment = self._get_for_update(appointment_id)
        authorize(principal, Action.RESCHEDULE, appointment)

        target_date = new_date or appointment.date
        target_time = new_time or appointment.time

        conflict = self._find_active(
            appointment.doctor_id, target_date, target_time, exclude_id=appointment.id
        )
        if conflict is not None:
            self._log_conflict(appointment.doctor_id, target_date, target_time)
            raise SlotConflict(appointment.doctor_id, target_date, target_time)

        appointment.date = target_date
        appointment.time = target_time
        # A moved slot needs the doctor to confirm it again
        appointment.status = AppointmentStatus.PENDING
        self._commit_slot(appointment.doctor_id, target_date, target_time)
        self.db.refresh(appointment)

        logger.info(
            f"Appointment {appointment.id} rescheduled to {target_date} {target_time} "
            f"by {principal.role.value} {principal.user_id}"
        )
        return appointment

    def update_status(
        self,
        appointment_id: int,
        principal: Principal,
        new_status: str,
    ) -> Appointment:
        """Set a new status. Reactivating an appointment whose slot was rebooked raises SlotConflict."""
        appointment = self._get_for_update(appointment_id)
        authorize(principal, Action.UPDATE_STATUS, appointment)
        status = resolve_status_grant(principal.role, new_status)

        previous = appointment.status
        appointment.status = status
        # Reactivating a freed slot that has since been rebooked hits the index
        self._commit_slot(appointment.doctor_id, appointment.date, appointment.time)
        self.db.refresh(appointment)

        logger.info(
            f"Appointment {appointment.id} status {previous.value} -> {status.value} "
            f"by {principal.role.value} {principal.user_id}"
        )
        return appointment

    def cancel(self, appointment_id: int, principal: Principal) -> None:
        """Permanently remove an appointment."""
        appointment = self._get_for_update(appointment_id)
        authorize(principal, Action.CANCEL, appointment)

        self.db.delete(appointment)
        self.db.commit()

        logger.info(
            f"Appointment {appointment_id} deleted by {principal.role.value} {principal.user_id}"
        )

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).first()
        if not appointment:
            raise NotFound("Appointment not found")
        return appointment

    def list_booked_slots(self, doctor_id: int) -> List[Tuple[date, str]]:
        """(date, time) of every active appointment for a doctor.

        Advisory: a slot that is free here can still be taken before the
        caller books it.
        """
        self.directory.get_doctor(doctor_id)

        rows = self.db.query(Appointment.date, Appointment.time).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(ACTIVE_STATUSES)
        ).order_by(Appointment.date, Appointment.time).all()
        return [(row.date, row.time) for row in rows]

    def list_for_customer(self, customer_id: int) -> List[Appointment]:
        return self.db.query(Appointment).options(*_with_parties()).filter(
            Appointment.customer_id == customer_id
        ).order_by(Appointment.date, Appointment.time, Appointment.id).all()

    def list_for_doctor(self, doctor_id: int) -> List[Appointment]:
        return self.db.query(Appointment).options(*_with_parties()).filter(
            Appointment.doctor_id == doctor_id
        ).order_by(Appointment.date, Appointment.time, Appointment.id).all()

    def list_all(self) -> List[Appointment]:
        return self.db.query(Appointment).options(
            *_with_parties()
        ).order_by(Appointment.id).all()

    def _get_for_update(self, appointment_id: int) -> Appointment:
        # Row lock on PostgreSQL; SQLite serializes writers on the file lock
        appointment = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).with_for_update().first()
        if not appointment:
            raise NotFound("Appointment not found")
        return appointment

    def _find_active(
        self,
        doctor_id: int,
        slot_date: date,
        slot_time: str,
        exclude_id: Optional[int] = None,
    ) -> Optional[Appointment]:
        query = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.date == slot_date,
            Appointment.time == slot_time,
            Appointment.status.in_(ACTIVE_STATUSES)
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.first()

    def _commit_slot(self, doctor_id: int, slot_date: date, slot_time: str) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if not _is_slot_violation(exc):
                raise
            self._log_conflict(doctor_id, slot_date, slot_time)
            raise SlotConflict(doctor_id, slot_date, slot_time) from exc

    @staticmethod
    def _log_conflict(doctor_id: int, slot_date: date, slot_time: str) -> None:
        logger.warning(f"Slot conflict for doctor {doctor_id} at {slot_date} {slot_time}")
