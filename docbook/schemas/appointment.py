import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from ..models.appointment import AppointmentStatus


class AppointmentCreate(BaseModel):
    """Booking request; the customer is taken from the caller's token."""

    doctor_id: int
    date: dt.date
    time: str = Field(..., min_length=1, max_length=20)
    document_reference: Optional[str] = Field(default=None, max_length=500)


class AppointmentReschedule(BaseModel):
    date: Optional[dt.date] = None
    time: Optional[str] = Field(default=None, min_length=1, max_length=20)

    @model_validator(mode="after")
    def require_new_slot(self):
        if self.date is None and self.time is None:
            raise ValueError("Provide a new date, a new time, or both")
        return self


class AppointmentStatusUpdate(BaseModel):
    # Plain string so unknown values reach the ledger and fail as invalid_status
    status: str


class PartySummary(BaseModel):
    """The customer or doctor on an appointment."""

    id: int
    name: str
    email: str
    specialty: Optional[str] = None

    class Config:
        from_attributes = True


class AppointmentResponse(BaseModel):
    id: int
    customer_id: int
    doctor_id: int
    date: dt.date
    time: str
    status: AppointmentStatus
    document_reference: Optional[str] = None
    customer: Optional[PartySummary] = None
    doctor: Optional[PartySummary] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class BookedSlot(BaseModel):
    date: dt.date
    time: str
