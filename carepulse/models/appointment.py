"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text
from carepulse.database import Base


class Appointment(Base):
    """Represents a patient's appointment with a doctor."""
    __tablename__ = "appointments"
    __table_args__ = (
        # One live booking per doctor and start time; cancelled rows free the slot.
        Index(
            "uq_appointments_doctor_slot",
            "doctor_id",
            "schedule",
            unique=True,
            sqlite_where=text("status <> 'cancelled'"),
            postgresql_where=text("status <> 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"))
    user_id = Column(Integer, ForeignKey("users.id"))
    doctor_id = Column(Integer, ForeignKey("doctors.id"))
    primary_physician = Column(String)
    schedule = Column(DateTime)
    status = Column(String, default="pending")  # pending/scheduled/cancelled/completed
    reason = Column(String)
    note = Column(String)
    cancellation_reason = Column(String)
    created_at = Column(DateTime, default=datetime.now)
