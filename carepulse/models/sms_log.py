"""SMS delivery log model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text
from carepulse.database import Base


class SmsLog(Base):
    """Records every attempted SMS notification and its outcome."""
    __tablename__ = "sms_logs"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, index=True)
    appointment_id = Column(Integer)
    to_phone = Column(String)
    message_body = Column(Text)
    message_type = Column(String)
    provider_message_sid = Column(String)
    status = Column(String)  # sent/failed/skipped
    error_message = Column(String)
    created_at = Column(DateTime, default=datetime.now)
