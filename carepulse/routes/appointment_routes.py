import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from carepulse.auth.dependencies import require_admin
from carepulse.models.appointment import Appointment
from carepulse.models.doctor import Doctor
from carepulse.models.patient import Patient
from carepulse.routes.common import database_unavailable, ensure_database_ready, get_db
from carepulse.routes.doctor_routes import get_booked_slot_starts, get_doctor_or_404
from carepulse.routes.patient_routes import find_patient
from carepulse.scheduling.availability import decode_availability
from carepulse.scheduling.slots import derive_slots
from carepulse.services.notifications import notify_appointment_change

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

PENDING_STATUS = 'pending'
SCHEDULED_STATUS = 'scheduled'
CANCELLED_STATUS = 'cancelled'
COMPLETED_STATUS = 'completed'
MAX_REASON_LENGTH = 500
MAX_NOTE_LENGTH = 600
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _clean_optional_text(value: str | None, max_length: int, label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'{label} must be {max_length} characters or fewer.')

    return normalized


def _to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class CreateAppointmentRequest(BaseModel):
    user_id: int
    patient_id: int
    doctor_id: int
    schedule: datetime
    reason: str
    note: str | None = None

    @field_validator('schedule')
    @classmethod
    def validate_schedule(cls, value: datetime) -> datetime:
        return _to_local_naive(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = _clean_optional_text(value, MAX_REASON_LENGTH, 'Reason')
        if normalized is None:
            raise ValueError('Reason for appointment is required.')
        return normalized

    @field_validator('note')
    @classmethod
    def validate_note(cls, value: str | None) -> str | None:
        return _clean_optional_text(value, MAX_NOTE_LENGTH, 'Notes')


class ScheduleAppointmentRequest(BaseModel):
    schedule: datetime
    doctor_id: int | None = None

    @field_validator('schedule')
    @classmethod
    def validate_schedule(cls, value: datetime) -> datetime:
        return _to_local_naive(value)


class CancelAppointmentRequest(BaseModel):
    cancellation_reason: str

    @field_validator('cancellation_reason')
    @classmethod
    def validate_cancellation_reason(cls, value: str) -> str:
        normalized = _clean_optional_text(value, MAX_REASON_LENGTH, 'Cancellation reason')
        if normalized is None:
            raise ValueError('Reason for cancellation is required.')
        return normalized


class AppointmentResponse(BaseModel):
    id: int
    user_id: int | None = None
    patient_id: int | None = None
    doctor_id: int | None = None
    primary_physician: str | None = None
    schedule: datetime
    status: str
    reason: str | None = None
    note: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class RecentAppointmentsResponse(BaseModel):
    total_count: int
    scheduled_count: int
    pending_count: int
    cancelled_count: int
    completed_count: int
    documents: list[AppointmentResponse]


class PatientName(BaseModel):
    name: str


class PatientAppointmentsResponse(BaseModel):
    appointments: list[AppointmentResponse]
    patients_map: dict[int, PatientName]


def get_appointment_or_404(appointment_id: int, db: Session) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Appointment not found.',
        )
    return appointment


def slot_already_booked() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail='This time is already booked.',
    )


def validate_bookable_slot(
    doctor: Doctor,
    schedule: datetime,
    now: datetime,
    db: Session,
    exclude_appointment_id: int | None = None,
) -> datetime:
    start_time = schedule.replace(second=0, microsecond=0)
    if start_time <= now:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Appointments must be scheduled in the future.',
        )

    available_slots = derive_slots(decode_availability(doctor.availability), start_time.date(), now)
    if start_time not in available_slots:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Dr. {doctor.name} is not available at the selected time.',
        )

    booked = get_booked_slot_starts(doctor.id, start_time.date(), db, exclude_appointment_id=exclude_appointment_id)
    if start_time in booked:
        raise slot_already_booked()

    return start_time


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(data: CreateAppointmentRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        patient = db.query(Patient).filter(Patient.id == data.patient_id).first()
        if not patient:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Patient not found.',
            )
        if patient.user_id != data.user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Patients can only book appointments for their own profile.',
            )

        doctor = get_doctor_or_404(data.doctor_id, db)
        start_time = validate_bookable_slot(doctor, data.schedule, datetime.now(), db)

        appointment = Appointment(
            user_id=data.user_id,
            patient_id=data.patient_id,
            doctor_id=doctor.id,
            primary_physician=doctor.name,
            schedule=start_time,
            status=PENDING_STATUS,
            reason=data.reason,
            note=data.note,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)

        logger.info('Created appointment %s with doctor %s at %s', appointment.id, doctor.id, start_time)
        return appointment
    except IntegrityError as exc:
        db.rollback()
        raise slot_already_booked() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/recent', response_model=RecentAppointmentsResponse)
def list_recent_appointments(
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    ensure_database_ready()

    try:
        status_counts = dict(
            db.query(Appointment.status, func.count(Appointment.id)).group_by(Appointment.status).all()
        )
        appointments = db.query(Appointment).order_by(
            Appointment.created_at.desc(),
            Appointment.id.desc(),
        ).offset(offset).limit(limit).all()

        return RecentAppointmentsResponse(
            total_count=sum(status_counts.values()),
            scheduled_count=status_counts.get(SCHEDULED_STATUS, 0),
            pending_count=status_counts.get(PENDING_STATUS, 0),
            cancelled_count=status_counts.get(CANCELLED_STATUS, 0),
            completed_count=status_counts.get(COMPLETED_STATUS, 0),
            documents=[AppointmentResponse.model_validate(appointment) for appointment in appointments],
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/patient/{patient_id}', response_model=PatientAppointmentsResponse)
def list_patient_appointments(patient_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointments = db.query(Appointment).filter(
            Appointment.patient_id == patient_id,
        ).order_by(Appointment.schedule.asc()).all()

        patients_map: dict[int, PatientName] = {}
        patient = find_patient(patient_id, db)
        if patient is None:
            logger.warning('No patient found for patient or user id %s', patient_id)
        elif patient.user_id is not None:
            siblings = db.query(Patient).filter(Patient.user_id == patient.user_id).all()
            patients_map = {
                sibling.id: PatientName(name=sibling.name or 'Unknown Patient')
                for sibling in siblings
            }

        return PatientAppointmentsResponse(
            appointments=[AppointmentResponse.model_validate(appointment) for appointment in appointments],
            patients_map=patients_map,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return get_appointment_or_404(appointment_id, db)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/{appointment_id}/schedule', response_model=AppointmentResponse)
def schedule_appointment(
    appointment_id: int,
    data: ScheduleAppointmentRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(appointment_id, db)
        if appointment.status in (CANCELLED_STATUS, COMPLETED_STATUS):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f'A {appointment.status} appointment cannot be scheduled.',
            )

        doctor_id = data.doctor_id or appointment.doctor_id
        if doctor_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='A doctor is required to schedule an appointment.',
            )
        doctor = get_doctor_or_404(doctor_id, db)
        start_time = validate_bookable_slot(
            doctor,
            data.schedule,
            datetime.now(),
            db,
            exclude_appointment_id=appointment.id,
        )

        appointment.doctor_id = doctor.id
        appointment.primary_physician = doctor.name
        appointment.schedule = start_time
        appointment.status = SCHEDULED_STATUS
        appointment.cancellation_reason = None
        db.commit()
        db.refresh(appointment)

        logger.info('Scheduled appointment %s with doctor %s at %s', appointment.id, doctor.id, start_time)
        notify_appointment_change(db, appointment, 'schedule')
        return appointment
    except IntegrityError as exc:
        db.rollback()
        raise slot_already_booked() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(appointment_id, db)
        if appointment.status in (CANCELLED_STATUS, COMPLETED_STATUS):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f'A {appointment.status} appointment cannot be cancelled.',
            )

        appointment.status = CANCELLED_STATUS
        appointment.cancellation_reason = data.cancellation_reason
        db.commit()
        db.refresh(appointment)

        logger.info('Cancelled appointment %s', appointment.id)
        notify_appointment_change(db, appointment, 'cancel')
        return appointment
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(appointment_id, db)
        if appointment.status != SCHEDULED_STATUS:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Only scheduled appointments can be marked as completed.',
            )

        appointment.status = COMPLETED_STATUS
        db.commit()
        db.refresh(appointment)

        logger.info('Completed appointment %s', appointment.id)
        notify_appointment_change(db, appointment, 'complete')
        return appointment
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
