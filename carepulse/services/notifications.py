"""
SMS notifications for appointment status changes.

Messages go out through Twilio's REST API. Every attempt, including the ones
skipped because SMS is not configured, is recorded in ``sms_logs``.
"""

import logging
from datetime import datetime
from typing import Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carepulse.core import config
from carepulse.models.appointment import Appointment
from carepulse.models.sms_log import SmsLog
from carepulse.models.user import User

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = 'https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json'
TWILIO_TIMEOUT_SECONDS = 10.0

MESSAGE_TYPES = ('schedule', 'cancel', 'complete')


def format_date_time(value: datetime) -> str:
    """Render a datetime as e.g. ``Oct 25, 2031, 9:30 AM``."""
    hour = value.hour % 12 or 12
    meridiem = 'AM' if value.hour < 12 else 'PM'
    return f'{value.strftime("%b")} {value.day}, {value.year}, {hour}:{value.minute:02d} {meridiem}'


def build_sms_message(message_type: str, appointment: Appointment, clinic_name: str | None = None) -> str:
    clinic = clinic_name or config.CLINIC_NAME
    when = format_date_time(appointment.schedule)

    if message_type == 'schedule':
        return (
            f'Greetings from {clinic}. Your appointment is confirmed for {when} '
            f'with Dr. {appointment.primary_physician}.'
        )
    if message_type == 'cancel':
        reason = appointment.cancellation_reason or 'Not specified'
        return (
            f'Greetings from {clinic}. We regret to inform that your appointment for {when} '
            f'is cancelled. Reason: {reason}.'
        )
    if message_type == 'complete':
        return (
            f'Greetings from {clinic}. Your appointment with Dr. {appointment.primary_physician} '
            f'on {when} has been marked as completed.'
        )

    raise ValueError(f'Unknown message type: {message_type}')


def build_http_client() -> httpx.Client:
    return httpx.Client(timeout=TWILIO_TIMEOUT_SECONDS)


def _record(
    db: Session,
    *,
    user_id: int | None,
    appointment_id: int | None,
    to_phone: str | None,
    message_body: str,
    message_type: str,
    status: str,
    error_message: str | None = None,
    provider_message_sid: str | None = None,
) -> None:
    try:
        db.add(
            SmsLog(
                user_id=user_id,
                appointment_id=appointment_id,
                to_phone=to_phone,
                message_body=message_body,
                message_type=message_type,
                status=status,
                error_message=error_message,
                provider_message_sid=provider_message_sid,
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Could not record %s SMS for appointment %s', message_type, appointment_id)


def send_sms(
    db: Session,
    user: User | None,
    message_body: str,
    message_type: str,
    appointment_id: Optional[int] = None,
) -> tuple[bool, Optional[str]]:
    """
    Send an SMS to a portal user.

    Returns:
        Tuple of (success, error_message). Failures are logged and recorded,
        never raised.
    """
    user_id = user.id if user else None
    to_phone = (user.phone or '').strip() if user else ''
    record = dict(
        user_id=user_id,
        appointment_id=appointment_id,
        to_phone=to_phone or None,
        message_body=message_body,
        message_type=message_type,
    )

    skip_reason = None
    if not config.SMS_ENABLED:
        skip_reason = 'SMS disabled'
    elif not (config.TWILIO_ACCOUNT_SID and config.TWILIO_AUTH_TOKEN and config.TWILIO_FROM_NUMBER):
        skip_reason = 'SMS provider not configured'
    elif not to_phone:
        skip_reason = 'No phone number provided'
    elif not to_phone.startswith('+'):
        skip_reason = 'Phone number must be in E.164 format'

    if skip_reason:
        logger.warning('Skipping %s SMS for user %s: %s', message_type, user_id, skip_reason)
        _record(db, status='skipped', error_message=skip_reason, **record)
        return False, skip_reason

    url = TWILIO_MESSAGES_URL.format(account_sid=config.TWILIO_ACCOUNT_SID)
    data = {'To': to_phone, 'From': config.TWILIO_FROM_NUMBER, 'Body': message_body}

    try:
        with build_http_client() as client:
            response = client.post(url, auth=(config.TWILIO_ACCOUNT_SID, config.TWILIO_AUTH_TOKEN), data=data)
    except httpx.HTTPError as exc:
        logger.error('SMS request for user %s failed: %s', user_id, exc)
        _record(db, status='failed', error_message=str(exc), **record)
        return False, str(exc)

    if response.status_code not in (200, 201):
        error_message = f'Provider returned HTTP {response.status_code}'
        logger.error('SMS for user %s rejected: %s %s', user_id, error_message, response.text)
        _record(db, status='failed', error_message=error_message, **record)
        return False, error_message

    try:
        message_sid = response.json().get('sid')
    except (ValueError, AttributeError):
        logger.warning('SMS for user %s accepted without a readable message sid', user_id)
        message_sid = None

    logger.info('Sent %s SMS to user %s (sid=%s)', message_type, user_id, message_sid)
    _record(db, status='sent', provider_message_sid=message_sid, **record)
    return True, None


def notify_appointment_change(db: Session, appointment: Appointment, message_type: str) -> tuple[bool, Optional[str]]:
    user = db.query(User).filter(User.id == appointment.user_id).first() if appointment.user_id else None
    message_body = build_sms_message(message_type, appointment)
    return send_sms(db, user, message_body, message_type, appointment_id=appointment.id)
