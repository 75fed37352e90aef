from conftest import participant_draft


def test_registration_sends_qr_email(portal, event, transport):
    result = portal['participants'].register_participant(participant_draft(event['id']))

    assert result['success']
    assert result['participant']['qr_email_sent'] is True
    assert transport.recipients() == ['alice@x.com']

    message = transport.sent[0]
    assert message['Subject'] == f"Registration Confirmed: {event['name']}"
    content_ids = [part['Content-ID'] for part in message.get_payload() if part['Content-ID']]
    assert content_ids == ['<qr-code>']

    outbox = portal['notifier'].get_outbox()
    assert [(entry['participant_id'], entry['status']) for entry in outbox] == [
        (result['participant_id'], 'sent')
    ]


def test_contact_is_normalized(portal, event):
    result = portal['participants'].register_participant(
        participant_draft(event['id'], contact='  Alice@X.COM ')
    )
    assert result['participant']['contact'] == 'alice@x.com'


def test_duplicate_email_is_case_insensitive(portal, event):
    participants = portal['participants']
    assert participants.register_participant(participant_draft(event['id']))['success']

    result = participants.register_participant(
        participant_draft(event['id'], contact='Alice@X.com', phone='08099999999')
    )
    assert not result['success']
    assert result['error_type'] == 'duplicate_email'
    assert participants.count_participants(event['id']) == 1


def test_duplicate_phone(portal, event):
    participants = portal['participants']
    participants.register_participant(participant_draft(event['id']))

    result = participants.register_participant(participant_draft(event['id'], contact='bob@x.com'))
    assert result['error_type'] == 'duplicate_phone'


def test_email_checked_before_phone(portal, event):
    participants = portal['participants']
    participants.register_participant(participant_draft(event['id']))

    result = participants.register_participant(participant_draft(event['id']))
    assert result['error_type'] == 'duplicate_email'


def test_same_person_may_register_for_another_event(portal, event):
    from conftest import event_draft

    other = portal['events'].create_event(event_draft(slug='second-event'))['event']
    participants = portal['participants']
    assert participants.register_participant(participant_draft(event['id']))['success']
    assert participants.register_participant(participant_draft(other['id']))['success']


def test_staff_onboarding_skips_duplicate_check(portal, event, staff_user):
    participants = portal['participants']
    participants.register_participant(participant_draft(event['id']))

    result = participants.register_participant(
        participant_draft(event['id']), skip_duplicate_check=True, onboarded_by=staff_user['id']
    )
    assert result['success']
    assert result['participant']['registration_source'] == 'staff'
    assert result['participant']['onboarded_by'] == staff_user['id']
    assert result['participant']['onboarding_date']
    assert participants.count_participants(event['id']) == 2


def test_validation(portal, event):
    result = portal['participants'].register_participant(
        participant_draft(event['id'], name='A', contact='not-an-email', phone='123')
    )
    assert result['error_type'] == 'validation_error'
    assert set(result['errors']) == {'name', 'contact', 'phone'}


def test_unknown_event(portal):
    result = portal['participants'].register_participant(participant_draft('0' * 32))
    assert result['error_type'] == 'event_not_found'


def test_email_failure_does_not_fail_registration(portal, event, transport):
    transport.fail_for.add('alice@x.com')

    result = portal['participants'].register_participant(participant_draft(event['id']))
    assert result['success']
    assert result['participant']['qr_email_sent'] is False

    failed = portal['notifier'].get_outbox('failed')
    assert len(failed) == 1
    assert failed[0]['attempts'] == 1
    assert 'mailbox unavailable' in failed[0]['last_error']

    transport.fail_for.clear()
    assert portal['notifier'].retry_failed_notifications() == {'retried': 1, 'sent': 1, 'failed': 0}
    assert portal['notifier'].get_outbox('failed') == []
    assert portal['participants'].get_participant_by_id(result['participant_id'])['qr_email_sent']


def test_listings_include_event_name(portal, event, participant):
    by_event = portal['participants'].get_participants_by_event_id(event['id'])
    assert [p['id'] for p in by_event] == [participant['id']]
    assert by_event[0]['event_name'] == event['name']
    assert portal['participants'].get_participants()[0]['event_name'] == event['name']


def test_normalize_contact_emails(portal, event, participant):
    portal['db'].execute_update(
        "UPDATE participants SET contact = ? WHERE id = ?",
        (' Alice@X.com', participant['id'])
    )

    result = portal['participants'].normalize_contact_emails()
    assert result == {'success': True, 'updated': 1, 'errors': []}
    assert portal['participants'].get_participant_by_id(participant['id'])['contact'] == 'alice@x.com'
    assert portal['participants'].normalize_contact_emails()['updated'] == 0


def test_self_registration_checks_staff_onboarded_rows(portal, event, staff_user):
    participants = portal['participants']
    participants.register_participant(
        participant_draft(event['id'], contact='bob@x.com', phone='08011112222'),
        skip_duplicate_check=True, onboarded_by=staff_user['id']
    )

    same_email = participants.register_participant(
        participant_draft(event['id'], contact='Bob@x.com', phone='08033334444')
    )
    same_phone = participants.register_participant(
        participant_draft(event['id'], contact='robert@x.com', phone='08011112222')
    )

    assert same_email['error_type'] == 'duplicate_email'
    assert same_phone['error_type'] == 'duplicate_phone'
    assert participants.count_participants(event['id']) == 1


def test_non_text_fields_are_validation_errors(portal, event):
    result = portal['participants'].register_participant(
        participant_draft(event['id'], phone=8012345678901, organization=['Acme'])
    )
    assert result['error_type'] == 'validation_error'
    assert set(result['errors']) == {'phone', 'organization'}
