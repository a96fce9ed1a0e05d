import logging
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker

from carepulse.core import config


connect_args = {'check_same_thread': False} if config.DATABASE_URL.startswith('sqlite') else {}

engine = create_engine(config.DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

logger = logging.getLogger(__name__)

_schema_lock = Lock()
_checked_tables: set[str] = set()

DOCTOR_MIGRATION_STEPS = [
    ('specialization', 'ALTER TABLE doctors ADD COLUMN specialization VARCHAR'),
    ('experience', 'ALTER TABLE doctors ADD COLUMN experience INTEGER'),
    ('image_key', 'ALTER TABLE doctors ADD COLUMN image_key VARCHAR'),
    ('availability', 'ALTER TABLE doctors ADD COLUMN availability TEXT'),
]
DOCTOR_INDEXES = [
    'CREATE INDEX IF NOT EXISTS idx_doctors_name ON doctors(name)',
]

APPOINTMENT_MIGRATION_STEPS = [
    ('doctor_id', 'ALTER TABLE appointments ADD COLUMN doctor_id INTEGER'),
    ('note', 'ALTER TABLE appointments ADD COLUMN note VARCHAR'),
    ('cancellation_reason', 'ALTER TABLE appointments ADD COLUMN cancellation_reason VARCHAR'),
]
APPOINTMENT_INDEXES = [
    'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_schedule ON appointments(doctor_id, schedule)',
    'CREATE INDEX IF NOT EXISTS idx_appointments_patient ON appointments(patient_id)',
    'CREATE INDEX IF NOT EXISTS idx_appointments_status ON appointments(status)',
]
# Fails on tables that already hold double bookings; those keep working without it.
APPOINTMENT_UNIQUE_INDEXES = [
    (
        'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_doctor_slot '
        "ON appointments(doctor_id, schedule) WHERE status <> 'cancelled'"
    ),
]

PATIENT_MIGRATION_STEPS = [
    ('identification_document_key', 'ALTER TABLE patients ADD COLUMN identification_document_key VARCHAR'),
    ('privacy_consent', 'ALTER TABLE patients ADD COLUMN privacy_consent BOOLEAN'),
]
PATIENT_INDEXES = [
    'CREATE INDEX IF NOT EXISTS idx_patients_user ON patients(user_id)',
]


def _ensure_table_schema(
    table_name: str,
    migration_steps: list[tuple[str, str]],
    indexes: list[str],
    unique_indexes: list[str] | None = None,
) -> None:
    if table_name in _checked_tables:
        return

    with _schema_lock:
        if table_name in _checked_tables:
            return

        inspector = inspect(engine)

        if table_name not in inspector.get_table_names():
            _checked_tables.add(table_name)
            return

        existing_columns = {column['name'] for column in inspector.get_columns(table_name)}

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            for statement in indexes:
                connection.execute(text(statement))

        for statement in unique_indexes or []:
            try:
                with engine.begin() as connection:
                    connection.execute(text(statement))
            except IntegrityError:
                logger.warning('Skipping unique index on %s, existing rows conflict: %s', table_name, statement)

        _checked_tables.add(table_name)


def ensure_doctor_schema() -> None:
    _ensure_table_schema('doctors', DOCTOR_MIGRATION_STEPS, DOCTOR_INDEXES)


def ensure_appointment_schema() -> None:
    _ensure_table_schema('appointments', APPOINTMENT_MIGRATION_STEPS, APPOINTMENT_INDEXES, APPOINTMENT_UNIQUE_INDEXES)


def ensure_patient_schema() -> None:
    _ensure_table_schema('patients', PATIENT_MIGRATION_STEPS, PATIENT_INDEXES)


def init_db() -> None:
    # Registers every model on Base.metadata before create_all.
    from carepulse.models import appointment, doctor, patient, report, sms_log, user  # noqa: F401

    Base.metadata.create_all(bind=engine)
    ensure_doctor_schema()
    ensure_appointment_schema()
    ensure_patient_schema()
