import io
import json
from datetime import date, datetime, timedelta

import pytest
from fastapi import HTTPException, UploadFile
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError
from starlette.datastructures import Headers

from carepulse.models.appointment import Appointment
from carepulse.models.doctor import Doctor
from carepulse.models.report import Report
from carepulse.routes.doctor_routes import (
    DoctorRequest,
    create_doctor,
    delete_doctor,
    get_doctor,
    list_available_dates,
    list_doctor_slots,
    list_doctors,
    update_doctor,
    upload_doctor_image,
)

# 2031-01-06 is a Monday.
MONDAY = date(2031, 1, 6)


def _upload(content: bytes, filename: str, content_type: str) -> UploadFile:
    return UploadFile(io.BytesIO(content), filename=filename, headers=Headers({'content-type': content_type}))


def test_doctor_request_normalizes_weekdays_and_times() -> None:
    request = DoctorRequest(
        name='  Ada Lovelace ',
        phone='+1 555 123 4567',
        availability={'monday': [{'start': '9:00', 'end': '12:00'}]},
    )

    assert request.name == 'Ada Lovelace'
    assert request.phone == '+15551234567'
    assert json.loads(request.encoded_availability()) == {'Monday': ['09:00-12:00']}


@pytest.mark.parametrize(
    'payload',
    [
        {'name': 'A'},
        {'name': 'Ada', 'experience': -1},
        {'name': 'Ada', 'phone': '5551234567'},
        {'name': 'Ada', 'email': 'not-an-email'},
        {'name': 'Ada', 'availability': {'Funday': []}},
        {'name': 'Ada', 'availability': {'Monday': [{'start': '9am', 'end': '10:00'}]}},
    ],
)
def test_doctor_request_rejects_invalid_payloads(payload: dict) -> None:
    with pytest.raises(ValidationError):
        DoctorRequest(**payload)


def test_create_doctor_stores_transport_encoding(db) -> None:
    request = DoctorRequest(
        name='Ada Lovelace',
        specialization='Cardiology',
        availability={'Tuesday': [{'start': '08:00', 'end': '09:00'}, {'start': '14:00', 'end': '15:00'}]},
    )

    response = create_doctor(request, db=db, admin={})

    stored = db.query(Doctor).filter(Doctor.id == response.id).one()
    assert json.loads(stored.availability) == {'Tuesday': ['08:00-09:00', '14:00-15:00']}
    assert response.availability['Tuesday'][1].start == '14:00'
    assert response.image_url is None


def test_update_doctor_replaces_availability(db, make_doctor) -> None:
    doctor = make_doctor()

    response = update_doctor(
        doctor.id,
        DoctorRequest(name='Ada King', availability={'Friday': [{'start': '10:00', 'end': '11:00'}]}),
        db=db,
        admin={},
    )

    assert response.name == 'Ada King'
    assert list(response.availability) == ['Friday']


def test_get_doctor_returns_not_found(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_doctor(404, db=db)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Doctor not found.'


def test_list_doctors_tolerates_corrupt_availability(db, make_doctor) -> None:
    make_doctor(name='Broken', availability='{not json')
    make_doctor(name='Working')

    doctors = list_doctors(db=db)

    assert [doctor.name for doctor in doctors] == ['Broken', 'Working']
    assert doctors[0].availability == {}


def test_list_doctor_slots_flags_booked_times(db, make_doctor) -> None:
    doctor = make_doctor()
    db.add_all(
        [
            Appointment(doctor_id=doctor.id, schedule=datetime(2031, 1, 6, 9, 30), status='scheduled'),
            Appointment(doctor_id=doctor.id, schedule=datetime(2031, 1, 6, 9, 0), status='cancelled'),
        ]
    )
    db.commit()

    slots = list_doctor_slots(doctor.id, slot_date=MONDAY, db=db)

    assert [(slot.start_time, slot.is_booked) for slot in slots] == [
        (datetime(2031, 1, 6, 9, 0), False),
        (datetime(2031, 1, 6, 9, 30), True),
    ]
    assert slots[0].end_time == datetime(2031, 1, 6, 9, 30)


def test_list_doctor_slots_for_unavailable_weekday_is_empty(db, make_doctor) -> None:
    doctor = make_doctor()

    assert list_doctor_slots(doctor.id, slot_date=date(2031, 1, 7), db=db) == []


def test_list_available_dates_only_returns_days_with_slots(db, make_doctor) -> None:
    doctor = make_doctor(availability='{"Monday": ["09:00-10:00"], "Thursday": ["bad-range"]}')

    dates = list_available_dates(doctor.id, start=MONDAY, days=14, db=db)

    assert dates == [date(2031, 1, 6), date(2031, 1, 13)]


def test_upload_doctor_image_rejects_non_images(db, make_doctor) -> None:
    doctor = make_doctor()

    with pytest.raises(HTTPException) as exception_info:
        upload_doctor_image(doctor.id, file=_upload(b'%PDF', 'cv.pdf', 'application/pdf'), db=db, admin={})

    assert exception_info.value.status_code == 400


def test_upload_doctor_image_replaces_previous_image(db, make_doctor, fake_storage) -> None:
    doctor = make_doctor()
    doctor.image_key = 'doctors/old.png'
    db.commit()
    fake_storage.objects['doctors/old.png'] = b'old'

    response = upload_doctor_image(doctor.id, file=_upload(b'png-bytes', 'portrait.png', 'image/png'), db=db, admin={})

    db.refresh(doctor)
    assert doctor.image_key.startswith('doctors/')
    assert doctor.image_key.endswith('portrait.png')
    assert fake_storage.objects[doctor.image_key] == b'png-bytes'
    assert fake_storage.deleted == ['doctors/old.png']
    assert response.image_url.startswith('https://storage.example.com/')


def test_delete_doctor_removes_appointments_reports_and_image(db, make_doctor, fake_storage) -> None:
    doctor = make_doctor()
    doctor.image_key = 'doctors/portrait.png'
    other = make_doctor(name='Grace Hopper')
    by_id = Appointment(doctor_id=doctor.id, primary_physician=doctor.name, schedule=datetime(2031, 1, 6, 9, 0))
    by_name = Appointment(primary_physician=doctor.name, schedule=datetime(2031, 1, 6, 9, 30))
    unrelated = Appointment(doctor_id=other.id, primary_physician=other.name, schedule=datetime(2031, 1, 6, 9, 0))
    db.add_all([by_id, by_name, unrelated])
    db.commit()
    db.add(Report(appointment_id=by_id.id, storage_key='reports/1/scan.pdf', file_name='scan.pdf'))
    db.commit()

    response = delete_doctor(doctor.id, db=db, admin={})

    assert response.success is True
    assert response.deleted_appointments == 2
    assert db.query(Doctor).filter(Doctor.id == doctor.id).first() is None
    assert db.query(Appointment).count() == 1
    assert db.query(Report).count() == 0
    assert set(fake_storage.deleted) == {'doctors/portrait.png', 'reports/1/scan.pdf'}


def test_list_doctors_returns_malformed_stored_ranges_as_is(db, make_doctor) -> None:
    doctor = make_doctor(availability='{"Monday": ["9am-10:00", "0900"]}')

    (listed,) = list_doctors(db=db)

    assert listed.model_dump()['availability'] == {
        'Monday': [{'start': '9am', 'end': '10:00'}, {'start': '0900', 'end': ''}],
    }
    assert list_doctor_slots(doctor.id, slot_date=MONDAY, db=db) == []


def test_list_doctor_slots_for_past_date_is_empty(db, make_doctor) -> None:
    doctor = make_doctor()
    today = date.today()
    last_monday = today - timedelta(days=today.weekday() + 7)

    assert list_doctor_slots(doctor.id, slot_date=last_monday, db=db) == []


def test_list_available_dates_never_starts_before_today(db, make_doctor) -> None:
    doctor = make_doctor()
    today = date.today()
    last_monday = today - timedelta(days=today.weekday() + 7)

    dates = list_available_dates(doctor.id, start=last_monday, days=14, db=db)

    assert dates
    assert all(day >= today for day in dates)
    assert all(day.weekday() == 0 for day in dates)


def test_delete_doctor_keeps_appointments_of_namesake(db, make_doctor, fake_storage) -> None:
    doctor = make_doctor()
    namesake = make_doctor()
    own = Appointment(doctor_id=doctor.id, primary_physician=doctor.name, schedule=datetime(2031, 1, 6, 9, 0))
    theirs = Appointment(doctor_id=namesake.id, primary_physician=namesake.name, schedule=datetime(2031, 1, 6, 9, 0))
    db.add_all([own, theirs])
    db.commit()
    db.add(Report(appointment_id=theirs.id, storage_key='reports/2/scan.pdf', file_name='scan.pdf'))
    db.commit()

    response = delete_doctor(doctor.id, db=db, admin={})

    assert response.deleted_appointments == 1
    assert [appointment.doctor_id for appointment in db.query(Appointment).all()] == [namesake.id]
    assert db.query(Report).count() == 1
    assert fake_storage.deleted == []


def test_delete_doctor_keeps_files_when_commit_fails(db, make_doctor, fake_storage, monkeypatch) -> None:
    doctor = make_doctor()
    doctor.image_key = 'doctors/portrait.png'
    appointment = Appointment(doctor_id=doctor.id, primary_physician=doctor.name, schedule=datetime(2031, 1, 6, 9, 0))
    db.add(appointment)
    db.commit()
    db.add(Report(appointment_id=appointment.id, storage_key='reports/1/scan.pdf', file_name='scan.pdf'))
    db.commit()
    fake_storage.objects.update({'doctors/portrait.png': b'png', 'reports/1/scan.pdf': b'pdf'})

    def failing_commit():
        raise OperationalError('COMMIT', {}, Exception('database is locked'))

    monkeypatch.setattr(db, 'commit', failing_commit)

    with pytest.raises(HTTPException) as exception_info:
        delete_doctor(doctor.id, db=db, admin={})

    assert exception_info.value.status_code == 503
    assert fake_storage.deleted == []
    assert set(fake_storage.objects) == {'doctors/portrait.png', 'reports/1/scan.pdf'}
    assert db.query(Doctor).count() == 1
    assert db.query(Report).count() == 1
