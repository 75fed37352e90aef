from datetime import date, timedelta

from conftest import event_draft, participant_draft


def _register(portal, event, index):
    result = portal['participants'].register_participant(participant_draft(
        event['id'], name=f'Guest Number {index}', contact=f'guest{index}@x.com',
        phone=f'0801234567{index}'
    ))
    assert result['success'], result
    return result['participant_id']


def test_marking_twice_today_is_already_marked(portal, event, participant):
    attendance = portal['attendance']

    first = attendance.mark_attendance(participant['id'], event['id'])
    assert first['success']
    assert first['attendance']['attendance_date'] == date.today().isoformat()
    assert first['attendance']['signed_by'] == 'Self'

    second = attendance.mark_attendance(participant['id'], event['id'])
    assert not second['success']
    assert second['error_type'] == 'already_marked'
    assert second['existing_record']['id'] == first['attendance']['id']
    assert len(attendance.get_attendance_by_event_id(event['id'])) == 1


def test_different_day_is_a_new_record(portal, event, participant):
    attendance = portal['attendance']
    tomorrow = (date.today() + timedelta(days=1)).isoformat()

    assert attendance.mark_attendance(participant['id'], event['id'])['success']
    assert attendance.mark_attendance(participant['id'], event['id'], tomorrow)['success']
    assert len(attendance.get_attendance_by_event_id(event['id'])) == 2
    assert len(attendance.get_attendance_by_event_id(event['id'], tomorrow)) == 1


def test_participant_must_belong_to_event(portal, event, participant):
    other = portal['events'].create_event(event_draft(slug='other-event'))['event']

    result = portal['attendance'].mark_attendance(participant['id'], other['id'])
    assert result['error_type'] == 'participant_not_found'

    result = portal['attendance'].mark_attendance('0' * 32, event['id'])
    assert result['error_type'] == 'participant_not_found'


def test_malformed_date(portal, event, participant):
    for bad in ('2025-13-01', '06/03/2025', '2025-3-6'):
        result = portal['attendance'].mark_attendance(participant['id'], event['id'], bad)
        assert result['error_type'] == 'validation_error'


def test_denormalized_fields(portal, event, participant, staff_user):
    result = portal['attendance'].mark_attendance(
        participant['id'], event['id'], checked_in_by=staff_user['id']
    )
    record = result['attendance']
    assert record['participant_name'] == 'Alice Johnson'
    assert record['participant_organization'] == 'Acme Ltd'
    assert record['participant_position'] == 'Engineer'
    assert record['checked_in_by'] == staff_user['id']


def test_signed_by_onboarding_staff(portal, event, staff_user):
    registered = portal['participants'].register_participant(
        participant_draft(event['id']), skip_duplicate_check=True, onboarded_by=staff_user['id']
    )
    result = portal['attendance'].mark_attendance(registered['participant_id'], event['id'])
    assert result['attendance']['signed_by'] == 'Sam Scanner'


def test_stats(portal, event):
    ids = [_register(portal, event, index) for index in range(3)]
    for participant_id in ids[:2]:
        portal['attendance'].mark_attendance(participant_id, event['id'])

    stats = portal['attendance'].get_attendance_stats(event['id'])
    assert stats == {'total_participants': 3, 'checked_in': 2, 'not_checked_in': 1}

    tomorrow = (date.today() + timedelta(days=1)).isoformat()
    assert portal['attendance'].get_attendance_stats(event['id'], tomorrow) == {
        'total_participants': 3, 'checked_in': 0, 'not_checked_in': 3
    }


def test_daily_breakdown(portal, event, participant):
    attendance = portal['attendance']
    today = date.today()
    outside = (today + timedelta(days=10)).isoformat()

    attendance.mark_attendance(participant['id'], event['id'])
    attendance.mark_attendance(participant['id'], event['id'], outside)

    days = attendance.get_daily_breakdown(event['id'])
    assert [(d['date'], d['checked_in'], d['within_event']) for d in days] == [
        ((today - timedelta(days=1)).isoformat(), 0, True),
        (today.isoformat(), 1, True),
        ((today + timedelta(days=1)).isoformat(), 0, True),
        (outside, 1, False),
    ]
    assert attendance.get_daily_breakdown('0' * 32) is None


def test_scan_decodes_token(portal, event, participant):
    token = portal['codec'].encode(participant['id'])

    result = portal['attendance'].process_attendance_scan(token, event['id'])
    assert result['success']
    assert result['participant']['id'] == participant['id']


def test_scan_rejects_bad_tokens(portal, event):
    attendance = portal['attendance']
    assert attendance.process_attendance_scan('hello', event['id'])['error_type'] == 'qr_format_error'
    assert attendance.process_attendance_scan(
        'eventportal://attendance/%%%', event['id']
    )['error_type'] == 'invalid_qr'
