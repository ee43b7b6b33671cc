from typing import Optional

from pydantic import BaseModel


class DoctorResponse(BaseModel):
    id: int
    name: str
    email: str
    specialty: Optional[str] = None
    location: Optional[str] = None
    availability: Optional[str] = None
    fees: Optional[float] = None
    phone_number: Optional[str] = None
    approved: bool

    class Config:
        from_attributes = True


class DoctorApprovalUpdate(BaseModel):
    approved: bool
