from datetime import datetime

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from carepulse.core import config
from carepulse.models.appointment import Appointment
from carepulse.models.sms_log import SmsLog
from carepulse.services import notifications


@pytest.fixture
def twilio(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(config, 'SMS_ENABLED', True)
    monkeypatch.setattr(config, 'TWILIO_ACCOUNT_SID', 'AC123')
    monkeypatch.setattr(config, 'TWILIO_AUTH_TOKEN', 'secret')
    monkeypatch.setattr(config, 'TWILIO_FROM_NUMBER', '+15550001111')

    requests: list[httpx.Request] = []

    def install(handler):
        def recording_handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        monkeypatch.setattr(
            notifications,
            'build_http_client',
            lambda: httpx.Client(transport=httpx.MockTransport(recording_handler)),
        )
        return requests

    return install


def _appointment(**overrides) -> Appointment:
    fields = {
        'id': 7,
        'schedule': datetime(2031, 10, 25, 14, 5),
        'primary_physician': 'Ada Lovelace',
        'status': 'scheduled',
    }
    fields.update(overrides)
    return Appointment(**fields)


@pytest.mark.parametrize(
    ('value', 'expected'),
    [
        (datetime(2031, 10, 25, 9, 30), 'Oct 25, 2031, 9:30 AM'),
        (datetime(2031, 1, 6, 0, 0), 'Jan 6, 2031, 12:00 AM'),
        (datetime(2031, 1, 6, 12, 0), 'Jan 6, 2031, 12:00 PM'),
    ],
)
def test_format_date_time(value: datetime, expected: str) -> None:
    assert notifications.format_date_time(value) == expected


def test_build_sms_message_for_each_status_change() -> None:
    appointment = _appointment(cancellation_reason='Doctor unavailable')

    assert notifications.build_sms_message('schedule', appointment, clinic_name='CarePulse') == (
        'Greetings from CarePulse. Your appointment is confirmed for Oct 25, 2031, 2:05 PM with Dr. Ada Lovelace.'
    )
    assert notifications.build_sms_message('cancel', appointment, clinic_name='CarePulse') == (
        'Greetings from CarePulse. We regret to inform that your appointment for Oct 25, 2031, 2:05 PM '
        'is cancelled. Reason: Doctor unavailable.'
    )
    assert notifications.build_sms_message('complete', appointment, clinic_name='CarePulse') == (
        'Greetings from CarePulse. Your appointment with Dr. Ada Lovelace on Oct 25, 2031, 2:05 PM '
        'has been marked as completed.'
    )


def test_build_sms_message_rejects_unknown_type() -> None:
    with pytest.raises(ValueError):
        notifications.build_sms_message('reminder', _appointment())


def test_send_sms_is_skipped_when_disabled(db, make_user, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'SMS_ENABLED', False)

    sent, error = notifications.send_sms(db, make_user(), 'Hello', 'schedule', appointment_id=7)

    log = db.query(SmsLog).one()
    assert (sent, error) == (False, 'SMS disabled')
    assert log.status == 'skipped'
    assert log.appointment_id == 7


def test_send_sms_is_skipped_for_non_international_numbers(db, make_user, twilio) -> None:
    requests = twilio(lambda request: httpx.Response(201, json={'sid': 'SM1'}))

    sent, error = notifications.send_sms(db, make_user(phone='5551234567'), 'Hello', 'schedule')

    assert sent is False
    assert error == 'Phone number must be in E.164 format'
    assert requests == []


def test_send_sms_posts_to_twilio_and_records_sid(db, make_user, twilio) -> None:
    requests = twilio(lambda request: httpx.Response(201, json={'sid': 'SM42'}))

    sent, error = notifications.send_sms(db, make_user(), 'Hello', 'schedule', appointment_id=3)

    (request,) = requests
    assert (sent, error) == (True, None)
    assert request.url.path == '/2010-04-01/Accounts/AC123/Messages.json'
    assert b'To=%2B15551234567' in request.content
    log = db.query(SmsLog).one()
    assert log.status == 'sent'
    assert log.provider_message_sid == 'SM42'


def test_send_sms_records_provider_rejection(db, make_user, twilio) -> None:
    twilio(lambda request: httpx.Response(400, json={'message': 'invalid number'}))

    sent, error = notifications.send_sms(db, make_user(), 'Hello', 'cancel')

    assert sent is False
    assert error == 'Provider returned HTTP 400'
    assert db.query(SmsLog).one().status == 'failed'


def test_send_sms_records_transport_errors(db, make_user, twilio) -> None:
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError('connection refused', request=request)

    twilio(unreachable)

    sent, error = notifications.send_sms(db, make_user(), 'Hello', 'complete')

    assert sent is False
    assert 'connection refused' in error
    assert db.query(SmsLog).one().status == 'failed'


def test_notify_appointment_change_texts_the_booking_user(db, make_user, twilio) -> None:
    owner = make_user()
    requests = twilio(lambda request: httpx.Response(201, json={'sid': 'SM7'}))
    appointment = _appointment(user_id=owner.id)

    sent, _ = notifications.notify_appointment_change(db, appointment, 'complete')

    assert sent is True
    assert b'marked+as+completed' in requests[0].content
    assert db.query(SmsLog).one().user_id == owner.id


def test_send_sms_accepts_reply_without_json_body(db, make_user, twilio) -> None:
    twilio(lambda request: httpx.Response(201, text='<html>ok</html>'))

    sent, error = notifications.send_sms(db, make_user(), 'Hello', 'schedule')

    log = db.query(SmsLog).one()
    assert (sent, error) == (True, None)
    assert log.status == 'sent'
    assert log.provider_message_sid is None


def test_send_sms_survives_log_write_failure(db, make_user, monkeypatch: pytest.MonkeyPatch) -> None:
    owner = make_user()
    monkeypatch.setattr(config, 'SMS_ENABLED', False)

    def failing_commit():
        raise OperationalError('INSERT', {}, Exception('disk I/O error'))

    monkeypatch.setattr(db, 'commit', failing_commit)

    sent, error = notifications.send_sms(db, owner, 'Hello', 'cancel', appointment_id=3)

    assert (sent, error) == (False, 'SMS disabled')
    assert db.query(SmsLog).count() == 0
