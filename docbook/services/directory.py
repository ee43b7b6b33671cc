from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from ..core.exceptions import InvalidTarget, NotFound
from ..core.security import UserRole
from ..models.appointment import Appointment
from ..models.user import RefreshToken, User

logger = logging.getLogger(__name__)


class Directory:
    """Lookups over users and doctors, plus the admin-side doctor approval."""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_doctor(self, doctor_id: int) -> User:
        doctor = self.db.query(User).filter(
            User.id == doctor_id,
            User.role == UserRole.DOCTOR
        ).first()
        if not doctor:
            raise NotFound("Doctor not found")
        return doctor

    def is_approved_doctor(self, doctor_id: int) -> bool:
        doctor = self.db.query(User).filter(
            User.id == doctor_id,
            User.role == UserRole.DOCTOR,
            User.approved == True,  # noqa: E712
            User.is_active == True,  # noqa: E712
        ).first()
        return doctor is not None

    def list_approved_doctors(self) -> List[User]:
        return self.db.query(User).filter(
            User.role == UserRole.DOCTOR,
            User.approved == True,  # noqa: E712
            User.is_active == True,  # noqa: E712
        ).order_by(User.name).all()

    def list_doctors(self) -> List[User]:
        """All doctors, approved or not."""
        return self.db.query(User).filter(
            User.role == UserRole.DOCTOR
        ).order_by(User.id).all()

    def list_users(self, skip: int = 0, limit: int = 100) -> List[User]:
        return self.db.query(User).order_by(User.id).offset(skip).limit(limit).all()

    def set_doctor_approval(self, doctor_id: int, approved: bool) -> User:
        user = self.get_user(doctor_id)
        if not user:
            raise NotFound("Doctor not found")
        if user.role != UserRole.DOCTOR:
            raise InvalidTarget("User is not a doctor")

        user.approved = approved
        self.db.commit()
        self.db.refresh(user)

        logger.info(f"Doctor {doctor_id} approval set to {approved}")
        return user

    def delete_doctor(self, doctor_id: int) -> int:
        """Remove a doctor and every appointment booked with them.

        Returns the number of appointments removed.
        """
        user = self.get_user(doctor_id)
        if not user:
            raise NotFound("Doctor not found")
        if user.role != UserRole.DOCTOR:
            raise InvalidTarget("User is not a doctor")

        removed = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id
        ).delete(synchronize_session=False)
        # Refresh tokens go with the account
        self.db.query(RefreshToken).filter(
            RefreshToken.user_id == doctor_id
        ).delete(synchronize_session=False)
        self.db.delete(user)
        self.db.commit()

        logger.info(f"Doctor {doctor_id} deleted with {removed} appointment(s)")
        return removed
