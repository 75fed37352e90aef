"""Shared fixtures: a portal app on a temporary SQLite file with an in-memory mail transport."""

from datetime import date, timedelta

import pytest

from app import create_app, shutdown_app

ADMIN_EMAIL = 'admin@example.com'
ADMIN_PASSWORD = 'admin-pass'


class FakeTransport:
    """Collects messages instead of sending them; recipients in ``fail_for`` raise."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()

    def send(self, message):
        if message['To'] in self.fail_for:
            raise OSError(f"mailbox unavailable: {message['To']}")
        self.sent.append(message)

    def recipients(self):
        return [message['To'] for message in self.sent]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def app(tmp_path, transport):
    application = create_app(
        'testing',
        DATABASE_URL=str(tmp_path / 'portal.db'),
        MAIL_TRANSPORT=transport,
        DEFAULT_ADMIN_EMAIL=ADMIN_EMAIL,
        DEFAULT_ADMIN_PASSWORD=ADMIN_PASSWORD,
    )
    yield application
    shutdown_app(application)


@pytest.fixture
def portal(app):
    return app.extensions['eventportal']


@pytest.fixture
def client(app):
    return app.test_client()


def event_draft(**overrides):
    today = date.today()
    draft = {
        'name': 'Annual Climate Summit',
        'slug': 'climate-summit',
        'start_date': (today - timedelta(days=1)).isoformat(),
        'end_date': (today + timedelta(days=1)).isoformat(),
        'location': 'Main Hall',
        'description': 'Three days of talks',
        'theme': 'Weather for everyone',
    }
    draft.update(overrides)
    return draft


def participant_draft(event_id, **overrides):
    draft = {
        'name': 'Alice Johnson',
        'organization': 'Acme Ltd',
        'designation': 'Engineer',
        'contact': 'alice@x.com',
        'phone': '08012345678',
        'event_id': event_id,
    }
    draft.update(overrides)
    return draft


@pytest.fixture
def event(portal):
    result = portal['events'].create_event(event_draft())
    assert result['success'], result
    return result['event']


@pytest.fixture
def participant(portal, event):
    result = portal['participants'].register_participant(participant_draft(event['id']))
    assert result['success'], result
    return result['participant']


@pytest.fixture
def admin_token(client):
    response = client.post('/auth/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})
    assert response.status_code == 200
    return response.get_json()['token']


@pytest.fixture
def admin_headers(admin_token):
    return {'Authorization': f'Bearer {admin_token}'}


@pytest.fixture
def staff_user(portal):
    result = portal['auth'].create_user({
        'full_name': 'Sam Scanner',
        'email': 'sam@example.com',
        'password': 'scanner1',
        'role': 'user',
    })
    assert result['success'], result
    return result['user']


@pytest.fixture
def staff_headers(portal, staff_user):
    return {'Authorization': f"Bearer {portal['auth'].generate_token(staff_user)}"}
