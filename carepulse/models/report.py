"""Medical report model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from carepulse.database import Base


class Report(Base):
    """Represents a medical report file attached to an appointment."""
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), index=True)
    storage_key = Column(String, nullable=False)
    file_name = Column(String)
    report_type = Column(String, default="Other")
    content_type = Column(String)
    uploaded_at = Column(DateTime, default=datetime.now)
