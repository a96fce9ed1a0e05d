import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from carepulse.database import SessionLocal, ensure_appointment_schema, ensure_doctor_schema, ensure_patient_schema
from carepulse.services import storage

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'
STORAGE_UNAVAILABLE_DETAIL = 'File storage unavailable.'


def database_unavailable() -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE_DETAIL)


def storage_unavailable() -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=STORAGE_UNAVAILABLE_DETAIL)


def ensure_database_ready() -> None:
    try:
        ensure_doctor_schema()
        ensure_appointment_schema()
        ensure_patient_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def normalize_phone(value: str | None, *, required: bool = False) -> str | None:
    normalized = (value or '').strip().replace(' ', '')
    if not normalized:
        if required:
            raise ValueError('Phone number is required.')
        return None
    if not normalized.startswith('+') or not normalized[1:].isdigit():
        raise ValueError('Phone number must be in international format (e.g., +919876543210).')
    return normalized


def normalize_email(value: str | None, *, required: bool = False) -> str | None:
    normalized = (value or '').strip().lower()
    if not normalized:
        if required:
            raise ValueError('Email is required.')
        return None
    local, _, domain = normalized.partition('@')
    if not local or '.' not in domain:
        raise ValueError('Invalid email address.')
    return normalized


def view_url_or_none(key: str | None) -> str | None:
    if not key:
        return None
    try:
        return storage.generate_presigned_url(key)
    except storage.StorageError:
        logger.warning('Could not sign view URL for %s', key)
        return None
