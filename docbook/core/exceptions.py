from datetime import date
from typing import Optional

from fastapi import status


class BookingError(Exception):
    """Base class for failures reported by the booking ledger."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "booking_error"
    default_message: str = "The booking request could not be completed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "The requested resource was not found"


class Forbidden(BookingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "Not authorized to perform this action"


class InvalidStatus(BookingError):
    code = "invalid_status"
    default_message = "Invalid status provided"


class InvalidTarget(BookingError):
    code = "invalid_target"
    default_message = "The selected doctor is not available for booking"


class SlotConflict(BookingError):
    """The slot already holds a pending or scheduled appointment."""

    status_code = status.HTTP_409_CONFLICT
    code = "slot_conflict"

    def __init__(self, doctor_id: int, slot_date: date, slot_time: str):
        self.doctor_id = doctor_id
        self.date = slot_date
        self.time = slot_time
        super().__init__(
            f"The slot {slot_date.isoformat()} {slot_time} is already booked "
            "for this doctor. Please choose another date or time."
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["slot"] = {
            "doctor_id": self.doctor_id,
            "date": self.date.isoformat(),
            "time": self.time,
        }
        return data
