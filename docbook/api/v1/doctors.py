from fastapi import APIRouter, Depends
from typing import List

from ...api.deps import get_current_user, get_directory
from ...schemas.doctor import DoctorResponse
from ...services.directory import Directory

router = APIRouter(
    prefix="/doctors",
    tags=["Doctors"],
    dependencies=[Depends(get_current_user)]
)


@router.get("", response_model=List[DoctorResponse])
def list_doctors(directory: Directory = Depends(get_directory)):
    """Approved doctors open for booking."""
    return directory.list_approved_doctors()


@router.get("/{doctor_id}", response_model=DoctorResponse)
def get_doctor(doctor_id: int, directory: Directory = Depends(get_directory)):
    return directory.get_doctor(doctor_id)
