"""Patient model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String
from carepulse.database import Base


class Patient(Base):
    """Represents a registered patient profile owned by a user."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True)
    name = Column(String)
    email = Column(String)
    phone = Column(String)
    birth_date = Column(Date)
    gender = Column(String)
    address = Column(String)
    occupation = Column(String)
    emergency_contact_name = Column(String)
    emergency_contact_number = Column(String)
    primary_physician = Column(String)
    insurance_provider = Column(String)
    insurance_policy_number = Column(String)
    allergies = Column(String)
    current_medication = Column(String)
    family_medical_history = Column(String)
    past_medical_history = Column(String)
    identification_type = Column(String)
    identification_number = Column(String)
    identification_document_key = Column(String)
    privacy_consent = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.now)
