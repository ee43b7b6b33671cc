from fastapi import APIRouter, Depends, status
from typing import List

from ...api.deps import get_ledger, get_principal
from ...core.permissions import Action, Principal, authorize
from ...schemas.appointment import (
    AppointmentCreate, AppointmentReschedule, AppointmentStatusUpdate,
    AppointmentResponse, BookedSlot
)
from ...services.booking_ledger import BookingLedger

router = APIRouter(prefix="/appointments", tags=["Appointments"])


@router.get("", response_model=List[AppointmentResponse])
def list_my_appointments(
    principal: Principal = Depends(get_principal),
    ledger: BookingLedger = Depends(get_ledger)
):
    """Appointments booked by the calling customer, earliest first."""
    authorize(principal, Action.LIST_FOR_CUSTOMER, subject_id=principal.user_id)
    return ledger.list_for_customer(principal.user_id)


@router.get("/doctor", response_model=List[AppointmentResponse])
def list_doctor_appointments(
    principal: Principal = Depends(get_principal),
    ledger: BookingLedger = Depends(get_ledger)
):
    """Appointments with the calling doctor, earliest first."""
    authorize(principal, Action.LIST_FOR_DOCTOR, subject_id=principal.user_id)
    return ledger.list_for_doctor(principal.user_id)


@router.get("/doctor/{doctor_id}/booked-slots", response_model=List[BookedSlot])
def list_booked_slots(
    doctor_id: int,
    principal: Principal = Depends(get_principal),
    ledger: BookingLedger = Depends(get_ledger)
):
    """Slots currently held by pending or scheduled appointments."""
    authorize(principal, Action.LIST_BOOKED_SLOTS)
    return [
        BookedSlot(date=slot_date, time=slot_time)
        for slot_date, slot_time in ledger.list_booked_slots(doctor_id)
    ]


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def request_appointment(
    booking: AppointmentCreate,
    principal: Principal = Depends(get_principal),
    ledger: BookingLedger = Depends(get_ledger)
):
    """Request an appointment; it stays pending until the doctor schedules it."""
    authorize(principal, Action.REQUEST_APPOINTMENT)
    return ledger.request_appointment(
        customer_id=principal.user_id,
        doctor_id=booking.doctor_id,
        slot_date=booking.date,
        slot_time=booking.time,
        document_reference=booking.document_reference,
    )


@router.patch("/{appointment_id}", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    update: AppointmentStatusUpdate,
    principal: Principal = Depends(get_principal),
    ledger: BookingLedger = Depends(get_ledger)
):
    """Change the status of an appointment."""
    return ledger.update_status(appointment_id, principal, update.status)


@router.put("/{appointment_id}", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    update: AppointmentReschedule,
    principal: Principal = Depends(get_principal),
    ledger: BookingLedger = Depends(get_ledger)
):
    """Move an appointment to a new slot. The appointment returns to pending."""
    return ledger.reschedule(appointment_id, principal, update.date, update.time)


@router.delete("/{appointment_id}")
def delete_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_principal),
    ledger: BookingLedger = Depends(get_ledger)
):
    """Permanently remove an appointment."""
    ledger.cancel(appointment_id, principal)
    return {"message": "Appointment cancelled successfully"}
