from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, Index, Enum as SQLEnum, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base


class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Statuses that occupy a doctor's slot
ACTIVE_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.SCHEDULED)

_active_slot_clause = text("status IN ('pending', 'scheduled')")


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)

    # Parties, fixed at creation
    customer_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Slot
    date = Column(Date, nullable=False)
    time = Column(String(20), nullable=False)

    status = Column(
        SQLEnum(
            AppointmentStatus,
            values_callable=lambda e: [m.value for m in e],
            native_enum=False,
            length=20,
        ),
        nullable=False,
        default=AppointmentStatus.PENDING,
    )
    document_reference = Column(String(500), nullable=True)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    customer = relationship("User", foreign_keys=[customer_id], back_populates="customer_appointments")
    doctor = relationship("User", foreign_keys=[doctor_id], back_populates="doctor_appointments")

    __table_args__ = (
        # At most one pending/scheduled appointment per doctor slot
        Index(
            "uq_appointments_active_slot",
            "doctor_id", "date", "time",
            unique=True,
            postgresql_where=_active_slot_clause,
            sqlite_where=_active_slot_clause,
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self):
        return (
            f"<Appointment(id={self.id}, customer_id={self.customer_id}, doctor_id={self.doctor_id}, "
            f"date='{self.date}', time='{self.time}', status='{self.status}')>"
        )
