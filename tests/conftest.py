import os
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from carepulse.database import Base  # noqa: E402
from carepulse.models.doctor import Doctor  # noqa: E402
from carepulse.models.patient import Patient  # noqa: E402
from carepulse.models.user import User  # noqa: E402
from carepulse.routes import (  # noqa: E402
    analytics_routes,
    appointment_routes,
    doctor_routes,
    patient_routes,
    report_routes,
)
from carepulse.services import storage  # noqa: E402

ROUTE_MODULES = (analytics_routes, appointment_routes, doctor_routes, patient_routes, report_routes)

class FakeS3Client:
    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []

    def put_object(self, Bucket, Key, Body, **kwargs):
        self.objects[Key] = Body

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)
        self.deleted.append(Key)

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://storage.example.com/{Params['Bucket']}/{Params['Key']}?expires={ExpiresIn}"


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    for module in ROUTE_MODULES:
        monkeypatch.setattr(module, 'ensure_database_ready', lambda: None)


@pytest.fixture(autouse=True)
def fake_storage(monkeypatch: pytest.MonkeyPatch) -> FakeS3Client:
    client = FakeS3Client()
    monkeypatch.setattr(storage, 'get_storage_client', lambda: client)
    return client


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db):
    def _make_user(email: str = 'jane@example.com', phone: str | None = '+15551234567') -> User:
        new_user = User(name='Jane Doe', email=email, phone=phone, role='patient')
        db.add(new_user)
        db.commit()
        db.refresh(new_user)
        return new_user

    return _make_user


@pytest.fixture
def make_patient(db):
    def _make_patient(owner: User, name: str = 'Jane Doe') -> Patient:
        new_patient = Patient(
            user_id=owner.id,
            name=name,
            email=owner.email,
            phone=owner.phone,
            birth_date=date(1990, 4, 12),
            gender='female',
            privacy_consent=True,
        )
        db.add(new_patient)
        db.commit()
        db.refresh(new_patient)
        return new_patient

    return _make_patient


@pytest.fixture
def make_doctor(db):
    def _make_doctor(name: str = 'Ada Lovelace', availability: str = '{"Monday": ["09:00-10:00"]}') -> Doctor:
        new_doctor = Doctor(name=name, specialization='Cardiology', availability=availability)
        db.add(new_doctor)
        db.commit()
        db.refresh(new_doctor)
        return new_doctor

    return _make_doctor
