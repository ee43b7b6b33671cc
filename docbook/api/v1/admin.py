from fastapi import APIRouter, Depends
from typing import List

from ...api.deps import get_admin_user, get_directory, get_ledger, get_principal
from ...core.permissions import Action, Principal, authorize
from ...schemas.appointment import AppointmentResponse
from ...schemas.auth import UserResponse
from ...schemas.doctor import DoctorApprovalUpdate, DoctorResponse
from ...services.booking_ledger import BookingLedger
from ...services.directory import Directory

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(get_admin_user)]
)


@router.get("/users", response_model=List[UserResponse])
def list_users(
    skip: int = 0,
    limit: int = 100,
    directory: Directory = Depends(get_directory)
):
    """List all users (admin only)."""
    return directory.list_users(skip=skip, limit=limit)


@router.get("/doctors", response_model=List[DoctorResponse])
def list_all_doctors(directory: Directory = Depends(get_directory)):
    """Doctors awaiting approval as well as approved ones."""
    return directory.list_doctors()


@router.patch("/doctors/{doctor_id}/status")
def update_doctor_status(
    doctor_id: int,
    update: DoctorApprovalUpdate,
    directory: Directory = Depends(get_directory)
):
    """Approve a doctor or revoke the approval."""
    doctor = directory.set_doctor_approval(doctor_id, update.approved)
    return {
        "message": "Doctor status updated successfully",
        "doctor": DoctorResponse.model_validate(doctor)
    }


@router.delete("/doctors/{doctor_id}")
def delete_doctor(doctor_id: int, directory: Directory = Depends(get_directory)):
    """Remove a doctor along with their appointments."""
    removed = directory.delete_doctor(doctor_id)
    return {
        "message": "Doctor deleted successfully.",
        "appointments_removed": removed
    }


@router.get("/appointments", response_model=List[AppointmentResponse])
def list_all_appointments(
    principal: Principal = Depends(get_principal),
    ledger: BookingLedger = Depends(get_ledger)
):
    authorize(principal, Action.LIST_ALL)
    return ledger.list_all()
