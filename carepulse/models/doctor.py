"""Doctor model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text
from carepulse.database import Base


class Doctor(Base):
    """Represents a doctor on the clinic roster.

    ``availability`` holds the weekly working hours in their stored form,
    a JSON object of weekday name to ``"HH:MM-HH:MM"`` strings. Use
    ``carepulse.scheduling.availability`` to decode and encode it.
    """
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    specialization = Column(String)
    experience = Column(Integer)
    email = Column(String)
    phone = Column(String)
    image_key = Column(String)
    availability = Column(Text, default="{}")
    created_at = Column(DateTime, default=datetime.now)
