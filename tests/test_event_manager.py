from datetime import date, timedelta

from conftest import event_draft, participant_draft
from eventportal.modules.event_manager import compute_is_active, parse_flag


def test_create_event_returns_stored_event(portal):
    result = portal['events'].create_event(event_draft())

    assert result['success']
    event = result['event']
    assert event['slug'] == 'climate-summit'
    assert event['assigned_staff'] == []
    assert event['is_active_override'] is None


def test_is_active_derived_from_date_range():
    today = date(2025, 3, 6)
    assert compute_is_active('2025-03-05', '2025-03-07', today=today)
    assert compute_is_active('2025-03-06', '2025-03-06', today=today)
    assert not compute_is_active('2025-03-01', '2025-03-05', today=today)
    assert not compute_is_active('2025-03-07', '2025-03-09', today=today)


def test_explicit_is_active_overrides_dates():
    today = date(2025, 3, 6)
    assert not compute_is_active('2025-03-05', '2025-03-07', override=False, today=today)
    assert compute_is_active('2020-01-01', '2020-01-02', override=True, today=today)


def test_active_events_listing(portal):
    past = date.today() - timedelta(days=30)
    portal['events'].create_event(event_draft())
    portal['events'].create_event(event_draft(
        slug='old-summit', start_date=past.isoformat(), end_date=past.isoformat()
    ))

    slugs = [event['slug'] for event in portal['events'].get_active_events()]
    assert slugs == ['climate-summit']
    assert len(portal['events'].get_events()) == 2


def test_validation_errors(portal):
    result = portal['events'].create_event(event_draft(
        name='Tiny', slug='bad slug!', location='X', end_date='2000-01-01'
    ))

    assert not result['success']
    assert result['error_type'] == 'validation_error'
    assert set(result['errors']) == {'name', 'slug', 'location', 'end_date'}


def test_missing_dates_rejected(portal):
    result = portal['events'].create_event(event_draft(start_date=None, end_date='not-a-date'))
    assert result['error_type'] == 'validation_error'
    assert {'start_date', 'end_date'} <= set(result['errors'])


def test_duplicate_slug_is_rejected(portal):
    assert portal['events'].create_event(event_draft())['success']

    result = portal['events'].create_event(event_draft(name='Another Summit Entirely'))
    assert not result['success']
    assert result['error_type'] == 'duplicate_slug'
    assert len(portal['events'].get_events()) == 1


def test_slug_is_case_sensitive(portal):
    assert portal['events'].create_event(event_draft())['success']
    assert portal['events'].create_event(event_draft(slug='Climate-Summit'))['success']


def test_update_keeps_own_slug(portal, event):
    result = portal['events'].update_event(event['id'], event_draft(name='Renamed Climate Summit'))

    assert result['success']
    assert result['event']['name'] == 'Renamed Climate Summit'


def test_update_cannot_take_another_slug(portal, event):
    other = portal['events'].create_event(event_draft(slug='other-event'))['event']
    result = portal['events'].update_event(other['id'], event_draft())
    assert result['error_type'] == 'duplicate_slug'


def test_update_unknown_event(portal):
    result = portal['events'].update_event('0' * 32, event_draft())
    assert result['error_type'] == 'not_found'


def test_delete_leaves_participants(portal, event):
    registered = portal['participants'].register_participant(participant_draft(event['id']))

    assert portal['events'].delete_event(event['id'])['success']
    assert portal['events'].get_event_by_id(event['id']) is None
    assert portal['participants'].get_participant_by_id(registered['participant_id']) is not None


def test_delete_unknown_event(portal):
    assert portal['events'].delete_event('0' * 32)['error_type'] == 'not_found'


def test_lookup_by_slug(portal, event):
    assert portal['events'].get_event_by_slug('climate-summit')['id'] == event['id']
    assert portal['events'].get_event_by_slug('missing') is None


def test_staff_assignment_lifecycle(portal, event, staff_user):
    events = portal['events']

    assert not events.can_mark_attendance(staff_user, event['id'])
    assert events.assign_staff(event['id'], staff_user['id'])['success']
    assert events.assign_staff(event['id'], staff_user['id'])['error_type'] == 'already_assigned'
    assert events.can_mark_attendance(staff_user, event['id'])
    assert [user['id'] for user in events.get_assigned_staff(event['id'])] == [staff_user['id']]

    assert events.unassign_staff(event['id'], staff_user['id'])['success']
    assert events.unassign_staff(event['id'], staff_user['id'])['error_type'] == 'not_assigned'
    assert events.get_assigned_staff(event['id']) == []


def test_assignment_errors(portal, event):
    events = portal['events']
    assert events.assign_staff('0' * 32, 'x')['error_type'] == 'not_found'
    assert events.assign_staff(event['id'], '0' * 32)['error_type'] == 'user_not_found'
    assert events.get_assigned_staff('0' * 32) is None


def test_admin_can_mark_any_event(portal, event):
    assert portal['events'].can_mark_attendance({'id': 'someone', 'role': 'admin'}, event['id'])


def test_events_for_user_filters_by_assignment(portal, event, staff_user):
    events = portal['events']
    assert events.get_events_for_user(staff_user) == []

    events.assign_staff(event['id'], staff_user['id'])
    assert [e['id'] for e in events.get_events_for_user(staff_user)] == [event['id']]


def test_parse_flag():
    assert [parse_flag(v) for v in ('true', 'On', '1', True, 1)] == [True] * 5
    assert [parse_flag(v) for v in ('false', 'off', '0', '', False, 0, None)] == [False] * 7


def test_string_internal_flag(portal):
    event = portal['events'].create_event(event_draft(is_internal='false', department='Ops'))['event']
    assert event['is_internal'] is False
    assert event['department'] is None


def test_non_text_fields_rejected(portal):
    result = portal['events'].create_event(event_draft(name=2025, slug=['a-b-c']))
    assert result['error_type'] == 'validation_error'
    assert set(result['errors']) == {'name', 'slug'}
