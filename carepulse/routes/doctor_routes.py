import logging
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, field_validator
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carepulse.auth.dependencies import require_admin
from carepulse.models.appointment import Appointment
from carepulse.models.doctor import Doctor
from carepulse.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    normalize_email,
    normalize_phone,
    storage_unavailable,
    view_url_or_none,
)
from carepulse.routes.report_routes import delete_reports_for_appointments, delete_stored_files
from carepulse.scheduling.availability import (
    TimeRange,
    availability_to_dict,
    decode_availability,
    encode_availability,
    normalize_weekday,
)
from carepulse.scheduling.slots import SLOT_GRANULARITY_MINUTES, derive_slots, parse_clock_time, selectable_dates
from carepulse.services import storage

router = APIRouter(tags=['doctors'])

logger = logging.getLogger(__name__)

DEFAULT_BOOKING_RANGE_DAYS = 14
MAX_BOOKING_RANGE_DAYS = 60
CANCELLED_STATUS = 'cancelled'


class TimeRangePayload(BaseModel):
    start: str
    end: str

    @field_validator('start', 'end')
    @classmethod
    def validate_clock_time(cls, value: str) -> str:
        parsed = parse_clock_time(value)
        if parsed is None:
            raise ValueError('Times must use the HH:MM 24-hour format.')
        return parsed.strftime('%H:%M')


class DoctorRequest(BaseModel):
    name: str
    specialization: str | None = None
    experience: int | None = None
    email: str | None = None
    phone: str | None = None
    availability: dict[str, list[TimeRangePayload]] | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if len(normalized) < 2:
            raise ValueError('Name is required.')
        return normalized

    @field_validator('specialization')
    @classmethod
    def validate_specialization(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator('experience')
    @classmethod
    def validate_experience(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError('Experience cannot be negative.')
        return value

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return normalize_email(value)

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: str | None) -> str | None:
        return normalize_phone(value)

    @field_validator('availability')
    @classmethod
    def validate_availability(
        cls, value: dict[str, list[TimeRangePayload]] | None
    ) -> dict[str, list[TimeRangePayload]] | None:
        if value is None:
            return None

        normalized: dict[str, list[TimeRangePayload]] = {}
        for day, ranges in value.items():
            weekday = normalize_weekday(day)
            if weekday is None:
                raise ValueError(f'Unknown weekday: {day}')
            normalized.setdefault(weekday, []).extend(ranges)
        return normalized

    def encoded_availability(self) -> str:
        ranges = {
            weekday: [TimeRange(start=item.start, end=item.end) for item in items]
            for weekday, items in (self.availability or {}).items()
        }
        return encode_availability(ranges)


class TimeRangeResponse(BaseModel):
    start: str
    end: str


class DoctorResponse(BaseModel):
    id: int
    name: str
    specialization: str | None = None
    experience: int | None = None
    email: str | None = None
    phone: str | None = None
    image_url: str | None = None
    availability: dict[str, list[TimeRangeResponse]]


class DoctorSlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    is_booked: bool


class DeleteDoctorResponse(BaseModel):
    success: bool
    message: str
    deleted_appointments: int


def to_doctor_response(doctor: Doctor) -> DoctorResponse:
    return DoctorResponse(
        id=doctor.id,
        name=doctor.name,
        specialization=doctor.specialization,
        experience=doctor.experience,
        email=doctor.email,
        phone=doctor.phone,
        image_url=view_url_or_none(doctor.image_key),
        availability=availability_to_dict(decode_availability(doctor.availability)),
    )


def get_doctor_or_404(doctor_id: int, db: Session) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
    if not doctor:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Doctor not found.',
        )
    return doctor


def get_booked_slot_starts(
    doctor_id: int,
    slot_date: date,
    db: Session,
    exclude_appointment_id: int | None = None,
) -> set[datetime]:
    day_start = datetime.combine(slot_date, datetime.min.time())
    query = db.query(Appointment.schedule).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status != CANCELLED_STATUS,
        Appointment.schedule >= day_start,
        Appointment.schedule < day_start + timedelta(days=1),
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)

    return {schedule.replace(second=0, microsecond=0) for (schedule,) in query.all()}


@router.get('', response_model=list[DoctorResponse])
def list_doctors(db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        doctors = db.query(Doctor).order_by(Doctor.name.asc()).all()
        return [to_doctor_response(doctor) for doctor in doctors]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{doctor_id}', response_model=DoctorResponse)
def get_doctor(doctor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return to_doctor_response(get_doctor_or_404(doctor_id, db))
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('', response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
def create_doctor(data: DoctorRequest, db: Session = Depends(get_db), admin: dict = Depends(require_admin)):
    ensure_database_ready()

    try:
        doctor = Doctor(
            name=data.name,
            specialization=data.specialization,
            experience=data.experience,
            email=data.email,
            phone=data.phone,
            availability=data.encoded_availability(),
        )
        db.add(doctor)
        db.commit()
        db.refresh(doctor)

        logger.info('Created doctor %s (%s)', doctor.id, doctor.name)
        return to_doctor_response(doctor)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{doctor_id}', response_model=DoctorResponse)
def update_doctor(
    doctor_id: int,
    data: DoctorRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    ensure_database_ready()

    try:
        doctor = get_doctor_or_404(doctor_id, db)
        doctor.name = data.name
        doctor.specialization = data.specialization
        doctor.experience = data.experience
        doctor.email = data.email
        doctor.phone = data.phone
        doctor.availability = data.encoded_availability()
        db.commit()
        db.refresh(doctor)

        logger.info('Updated doctor %s', doctor.id)
        return to_doctor_response(doctor)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{doctor_id}/image', response_model=DoctorResponse)
def upload_doctor_image(
    doctor_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='No file provided.',
        )
    if not (file.content_type or '').startswith('image/'):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Doctor images must be image files.',
        )

    ensure_database_ready()

    try:
        doctor = get_doctor_or_404(doctor_id, db)
        previous_key = doctor.image_key

        try:
            doctor.image_key = storage.upload_file(
                file.file.read(),
                storage.build_doctor_image_key(file.filename),
                file.content_type,
            )
        except storage.StorageError as exc:
            raise storage_unavailable() from exc

        db.commit()
        db.refresh(doctor)

        if previous_key and previous_key != doctor.image_key:
            try:
                storage.delete_file(previous_key)
            except storage.StorageError:
                logger.warning('Could not delete replaced image %s for doctor %s', previous_key, doctor.id)

        return to_doctor_response(doctor)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{doctor_id}', response_model=DeleteDoctorResponse)
def delete_doctor(doctor_id: int, db: Session = Depends(get_db), admin: dict = Depends(require_admin)):
    ensure_database_ready()

    try:
        doctor = get_doctor_or_404(doctor_id, db)
        doctor_name = doctor.name

        # Rows without doctor_id predate the column and only carry the name.
        appointments = db.query(Appointment).filter(
            or_(
                Appointment.doctor_id == doctor.id,
                and_(Appointment.doctor_id.is_(None), Appointment.primary_physician == doctor.name),
            )
        ).all()
        removed_keys = delete_reports_for_appointments([appointment.id for appointment in appointments], db)
        for appointment in appointments:
            db.delete(appointment)

        if doctor.image_key:
            removed_keys.append(doctor.image_key)

        db.delete(doctor)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    delete_stored_files(removed_keys)

    logger.info('Deleted doctor %s (%s) and %d appointments', doctor_id, doctor_name, len(appointments))
    return DeleteDoctorResponse(
        success=True,
        message=f'Doctor {doctor_name} and {len(appointments)} associated appointments deleted successfully',
        deleted_appointments=len(appointments),
    )


@router.get('/{doctor_id}/slots', response_model=list[DoctorSlotResponse])
def list_doctor_slots(
    doctor_id: int,
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = get_doctor_or_404(doctor_id, db)
        now = datetime.now()
        if slot_date < now.date():
            return []

        slots = derive_slots(decode_availability(doctor.availability), slot_date, now)
        booked = get_booked_slot_starts(doctor.id, slot_date, db)

        return [
            DoctorSlotResponse(
                start_time=slot,
                end_time=slot + timedelta(minutes=SLOT_GRANULARITY_MINUTES),
                is_booked=slot in booked,
            )
            for slot in slots
        ]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{doctor_id}/available-dates', response_model=list[date])
def list_available_dates(
    doctor_id: int,
    start: date | None = Query(default=None),
    days: int = Query(default=DEFAULT_BOOKING_RANGE_DAYS, ge=1, le=MAX_BOOKING_RANGE_DAYS),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = get_doctor_or_404(doctor_id, db)
        now = datetime.now()
        return selectable_dates(
            decode_availability(doctor.availability),
            max(start or now.date(), now.date()),
            days,
            now,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
