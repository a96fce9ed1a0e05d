"""User model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String
from carepulse.database import Base


class User(Base):
    """Represents a portal account."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String)
    email = Column(String, unique=True, index=True)
    phone = Column(String)
    role = Column(String, default="patient")  # patient/admin
    created_at = Column(DateTime, default=datetime.now)
