import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from carepulse.models.patient import Patient
from carepulse.models.user import User
from carepulse.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    normalize_email,
    normalize_phone,
    storage_unavailable,
    view_url_or_none,
)
from carepulse.services import storage

router = APIRouter(tags=['patients'])

logger = logging.getLogger(__name__)

PATIENT_ROLE = 'patient'
GENDERS = ('male', 'female', 'other')
IDENTIFICATION_TYPES = (
    'Birth Certificate',
    "Driver's License",
    'Medical Insurance Card/Policy',
    'Military ID Card',
    'National Identity Card',
    'Passport',
    'Resident Alien Card (Green Card)',
    'Social Security Card',
    'State ID Card',
    'Student ID Card',
    'Voter ID Card',
)


class CreateUserRequest(BaseModel):
    name: str
    email: str
    phone: str

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if len(normalized) < 2:
            raise ValueError('Name must be at least 2 characters.')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value, required=True)

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: str) -> str:
        return normalize_phone(value, required=True)


class UserResponse(BaseModel):
    id: int
    name: str | None = None
    email: str
    phone: str | None = None
    role: str

    class Config:
        from_attributes = True


class RegisterPatientRequest(BaseModel):
    user_id: int
    name: str
    email: str
    phone: str
    birth_date: date
    gender: str
    address: str
    occupation: str
    emergency_contact_name: str
    emergency_contact_number: str
    primary_physician: str
    insurance_provider: str
    insurance_policy_number: str
    allergies: str | None = None
    current_medication: str | None = None
    family_medical_history: str | None = None
    past_medical_history: str | None = None
    identification_type: str | None = None
    identification_number: str | None = None
    privacy_consent: bool

    @field_validator(
        'name',
        'address',
        'occupation',
        'emergency_contact_name',
        'primary_physician',
        'insurance_provider',
        'insurance_policy_number',
    )
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('This field is required.')
        return normalized

    @field_validator(
        'allergies',
        'current_medication',
        'family_medical_history',
        'past_medical_history',
        'identification_number',
    )
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value, required=True)

    @field_validator('phone', 'emergency_contact_number')
    @classmethod
    def validate_phone(cls, value: str) -> str:
        return normalize_phone(value, required=True)

    @field_validator('birth_date')
    @classmethod
    def validate_birth_date(cls, value: date) -> date:
        if value > date.today():
            raise ValueError('Birth date cannot be in the future.')
        return value

    @field_validator('gender')
    @classmethod
    def validate_gender(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in GENDERS:
            raise ValueError('Invalid gender.')
        return normalized

    @field_validator('identification_type')
    @classmethod
    def validate_identification_type(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        if value.strip() not in IDENTIFICATION_TYPES:
            raise ValueError('Invalid identification type.')
        return value.strip()

    @field_validator('privacy_consent')
    @classmethod
    def validate_privacy_consent(cls, value: bool) -> bool:
        if not value:
            raise ValueError('You must consent to privacy in order to proceed.')
        return value


class PatientResponse(BaseModel):
    id: int
    user_id: int
    name: str
    email: str | None = None
    phone: str | None = None
    birth_date: date | None = None
    gender: str | None = None
    address: str | None = None
    occupation: str | None = None
    emergency_contact_name: str | None = None
    emergency_contact_number: str | None = None
    primary_physician: str | None = None
    insurance_provider: str | None = None
    insurance_policy_number: str | None = None
    allergies: str | None = None
    current_medication: str | None = None
    family_medical_history: str | None = None
    past_medical_history: str | None = None
    identification_type: str | None = None
    identification_number: str | None = None
    identification_document_url: str | None = None
    privacy_consent: bool
    created_at: datetime | None = None


def to_patient_response(patient: Patient) -> PatientResponse:
    return PatientResponse(
        id=patient.id,
        user_id=patient.user_id,
        name=patient.name,
        email=patient.email,
        phone=patient.phone,
        birth_date=patient.birth_date,
        gender=patient.gender,
        address=patient.address,
        occupation=patient.occupation,
        emergency_contact_name=patient.emergency_contact_name,
        emergency_contact_number=patient.emergency_contact_number,
        primary_physician=patient.primary_physician,
        insurance_provider=patient.insurance_provider,
        insurance_policy_number=patient.insurance_policy_number,
        allergies=patient.allergies,
        current_medication=patient.current_medication,
        family_medical_history=patient.family_medical_history,
        past_medical_history=patient.past_medical_history,
        identification_type=patient.identification_type,
        identification_number=patient.identification_number,
        identification_document_url=view_url_or_none(patient.identification_document_key),
        privacy_consent=bool(patient.privacy_consent),
        created_at=patient.created_at,
    )


def find_patient(patient_or_user_id: int, db: Session) -> Patient | None:
    patient = db.query(Patient).filter(Patient.id == patient_or_user_id).first()
    if patient:
        return patient

    return db.query(Patient).filter(
        Patient.user_id == patient_or_user_id,
    ).order_by(Patient.id.asc()).first()


@router.post('/users', response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(data: CreateUserRequest, response: Response, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        existing = db.query(User).filter(User.email == data.email).first()
        if existing:
            response.status_code = status.HTTP_200_OK
            return existing

        user = User(name=data.name, email=data.email, phone=data.phone, role=PATIENT_ROLE)
        db.add(user)
        db.commit()
        db.refresh(user)

        logger.info('Created user %s', user.id)
        return user
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/users/{user_id}', response_model=UserResponse)
def get_user(user_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        user = db.query(User).filter(User.id == user_id).first()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='User not found.',
        )
    return user


@router.post('', response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
def register_patient(data: RegisterPatientRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        user = db.query(User).filter(User.id == data.user_id).first()
        if not user:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='User not found.',
            )

        patient = Patient(**data.model_dump())
        db.add(patient)
        db.commit()
        db.refresh(patient)

        logger.info('Registered patient %s for user %s', patient.id, user.id)
        return to_patient_response(patient)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{patient_id}/identification-document', response_model=PatientResponse)
def upload_identification_document(
    patient_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='No file provided.',
        )

    ensure_database_ready()

    try:
        patient = db.query(Patient).filter(Patient.id == patient_id).first()
        if not patient:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Patient not found.',
            )

        try:
            patient.identification_document_key = storage.upload_file(
                file.file.read(),
                storage.build_object_key(f'identification/{patient.id}', file.filename),
                file.content_type,
            )
        except storage.StorageError as exc:
            raise storage_unavailable() from exc

        db.commit()
        db.refresh(patient)
        return to_patient_response(patient)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/by-user/{user_id}', response_model=PatientResponse)
def get_patient_by_user(user_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        patient = db.query(Patient).filter(Patient.user_id == user_id).order_by(Patient.id.asc()).first()
        if not patient:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Patient not found.',
            )
        return to_patient_response(patient)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{patient_or_user_id}', response_model=PatientResponse)
def get_patient(patient_or_user_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        patient = find_patient(patient_or_user_id, db)
        if not patient:
            logger.warning('No patient found for patient or user id %s', patient_or_user_id)
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Patient not found.',
            )
        return to_patient_response(patient)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
