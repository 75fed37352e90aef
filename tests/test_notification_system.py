import base64
import sqlite3

import pytest

from conftest import FakeTransport, participant_draft
from eventportal.modules.notification_system import (
    NotificationError, NotificationSystem, decode_image_payload, format_event_date
)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def bulk_transport():
    return FakeTransport()


@pytest.fixture
def notifier(portal, bulk_transport, sleeps):
    system = NotificationSystem(
        portal['db'],
        portal['qr'],
        transport=bulk_transport,
        settings={'batch_size': 2, 'batch_delay': 1.5, 'async_enabled': False},
        sleep=sleeps.append
    )
    yield system
    system.shutdown()


@pytest.fixture
def guests(portal, event):
    ids = []
    for index in range(5):
        result = portal['participants'].register_participant(participant_draft(
            event['id'], name=f'Guest Number {index}', contact=f'guest{index}@x.com',
            phone=f'0801234567{index}'
        ))
        ids.append(result['participant_id'])
    return ids


def test_bulk_qr_send_isolates_failures(notifier, bulk_transport, event, guests, sleeps):
    bulk_transport.fail_for.add('guest3@x.com')

    result = notifier.send_qr_codes_to_all_participants(event['id'])

    assert result['success']
    assert result['total_participants'] == 5
    assert result['sent'] == 4
    assert result['failed'] == 1
    assert len(result['errors']) == 1
    assert result['errors'][0].startswith('guest3@x.com: ')
    assert result['batches_processed'] == 3
    assert sleeps == [1.5, 1.5]
    assert len(bulk_transport.sent) == 4


def test_bulk_qr_send_unknown_event(notifier):
    result = notifier.send_qr_codes_to_all_participants('0' * 32)
    assert result['error_type'] == 'event_not_found'


def test_single_qr_resend(notifier, bulk_transport, participant):
    result = notifier.send_qr_code_to_participant(participant['id'])

    assert result['success']
    assert bulk_transport.sent[0]['Subject'].startswith('Your QR Code:')
    assert notifier.send_qr_code_to_participant('0' * 32)['error_type'] == 'participant_not_found'


def test_single_qr_resend_failure(notifier, bulk_transport, participant):
    bulk_transport.fail_for.add(participant['contact'])
    result = notifier.send_qr_code_to_participant(participant['id'])
    assert result['error_type'] == 'system_error'


def test_thank_you_subset(notifier, bulk_transport, event, guests):
    image = base64.b64encode(b'\x89PNG fake image bytes').decode()
    result = notifier.send_thank_you_emails(
        event['id'],
        participant_ids=guests[:2],
        custom_message='See you next year',
        survey_link='https://example.com/survey',
        image=f'data:image/png;base64,{image}'
    )

    assert result['success']
    assert result['total_participants'] == 2
    assert result['sent'] == 2
    assert sorted(bulk_transport.recipients()) == ['guest0@x.com', 'guest1@x.com']

    parts = bulk_transport.sent[0].get_payload()
    assert parts[1]['Content-ID'] == '<thank-you-image>'
    html = parts[0].get_payload(decode=True).decode('utf-8')
    assert 'See you next year' in html
    assert 'https://example.com/survey' in html


def test_thank_you_everyone(notifier, bulk_transport, event, guests):
    result = notifier.send_thank_you_emails(event['id'])
    assert result['sent'] == 5
    assert result['batches_processed'] == 3


def test_thank_you_rejects_bad_image(notifier, event, participant):
    result = notifier.send_thank_you_emails(event['id'], image='data:text/plain;base64,aGk=')
    assert result['error_type'] == 'validation_error'

    result = notifier.send_thank_you_email(participant['id'], image='@@not base64@@')
    assert result['error_type'] == 'validation_error'


def test_single_thank_you(notifier, bulk_transport, participant):
    result = notifier.send_thank_you_email(participant['id'], custom_message='Thanks <b>all</b>')

    assert result['success']
    html = bulk_transport.sent[0].get_payload()[0].get_payload(decode=True).decode('utf-8')
    assert 'Thanks &lt;b&gt;all&lt;/b&gt;' in html


def test_disabled_email_is_recorded_as_failure(portal, event, bulk_transport):
    system = NotificationSystem(
        portal['db'], portal['qr'], transport=bulk_transport,
        settings={'async_enabled': False, 'email_enabled': False}
    )
    participant = portal['participants'].register_participant(participant_draft(event['id']))['participant']

    entry_id = system.queue_registration_email(participant['id'])
    entry = [e for e in system.get_outbox() if e['id'] == entry_id][0]
    assert entry['status'] == 'failed'
    assert entry['last_error'] == 'Email notifications are disabled'
    assert bulk_transport.sent == []


def test_background_worker_delivers(portal, event, bulk_transport):
    system = NotificationSystem(portal['db'], portal['qr'], transport=bulk_transport,
                                settings={'async_enabled': True})
    participant = portal['participants'].register_participant(participant_draft(event['id']))['participant']

    system.queue_registration_email(participant['id'])
    system.notification_queue.join()
    system.shutdown()

    assert bulk_transport.recipients() == ['alice@x.com']


def test_decode_image_payload():
    decoded = decode_image_payload('data:image/jpeg;base64,' + base64.b64encode(b'abc').decode())
    assert decoded == {'data': b'abc', 'subtype': 'jpeg'}
    with pytest.raises(NotificationError):
        decode_image_payload('')
    with pytest.raises(NotificationError):
        decode_image_payload(123)


def test_format_event_date():
    assert format_event_date('2025-03-05') == 'March 5, 2025'
    assert format_event_date('soon') == 'soon'


def test_bulk_send_survives_database_errors(notifier, portal, event, guests, monkeypatch):
    original = portal['db'].execute_update
    failures = []

    def locked_once(query, params=None):
        if 'qr_email_sent' in query and not failures:
            failures.append(params)
            raise sqlite3.OperationalError('database is locked')
        return original(query, params)

    monkeypatch.setattr(portal['db'], 'execute_update', locked_once)
    result = notifier.send_qr_codes_to_all_participants(event['id'])

    assert result['success']
    assert (result['sent'], result['failed']) == (4, 1)
    assert 'database is locked' in result['errors'][0]
    assert result['batches_processed'] == 3
