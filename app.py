"""
Event Attendance Portal - Main Application

This module serves as the main entry point for the event attendance portal.
It builds the Flask application, wires the portal components together and
exposes the JSON API used by the admin dashboard, the public registration
page and the mobile scanner.

Features:
- Public event listing and self registration
- QR code and flyer downloads for participants
- QR code scanning for event check-in
- Admin management of events, staff, participants and users
- Bulk QR code and thank-you emails
- CSV / Excel exports
"""

from flask import Flask, Blueprint, request, jsonify, g, current_app, send_file
from datetime import date
from functools import wraps
import atexit
import io
import logging

from config import get_config, validate_config, token_lifetime
from eventportal.modules.database_manager import DatabaseManager
from eventportal.modules.identity_codec import IdentityCodec
from eventportal.modules.qr_generator import QRGenerator, RenderFailure
from eventportal.modules.event_manager import EventManager
from eventportal.modules.participant_manager import ParticipantManager
from eventportal.modules.attendance_manager import AttendanceManager
from eventportal.modules.notification_system import NotificationSystem
from eventportal.modules.auth_manager import AuthManager
from eventportal.modules.report_generator import ReportGenerator

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)

# HTTP status for each manager error_type
ERROR_STATUS = {
    'validation_error': 400,
    'invalid_qr': 400,
    'qr_format_error': 400,
    'invalid_credentials': 401,
    'forbidden': 403,
    'not_found': 404,
    'event_not_found': 404,
    'participant_not_found': 404,
    'user_not_found': 404,
    'not_assigned': 404,
    'duplicate_slug': 409,
    'duplicate_email': 409,
    'duplicate_phone': 409,
    'already_marked': 409,
    'already_assigned': 409,
    'system_error': 500,
}

AUTH_REQUIRED_MESSAGE = 'Authentication required'


def components():
    return current_app.extensions['eventportal']


def error_response(result):
    """Translate a failed manager result into a JSON response."""
    error_type = result.get('error_type', 'validation_error')
    body = {
        'success': False,
        'error': result.get('error', 'Request failed'),
        'error_type': error_type
    }
    for key in ('errors', 'existing_record'):
        if result.get(key):
            body[key] = result[key]
    return jsonify(body), ERROR_STATUS.get(error_type, 400)


def server_error(context, e):
    logger.error(f"{context}: {str(e)}")
    return jsonify({
        'success': False,
        'error': 'An internal error occurred',
        'error_type': 'system_error'
    }), 500


def request_data():
    return request.get_json(silent=True) or {}


def field(data, camel, snake=None):
    """Read a request field by its camelCase name, accepting snake_case too."""
    if camel in data:
        return data[camel]
    return data.get(snake) if snake else None


def _bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer':
        return None
    return token.strip() or None


def auth_required(role=None):
    """Decorator requiring a valid bearer token, and optionally a role"""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = components()['auth'].verify_user_token(_bearer_token())
            if not user:
                return jsonify({'success': False, 'error': AUTH_REQUIRED_MESSAGE}), 401

            if role and user['role'] != role:
                logger.warning(f"User {user['id']} denied access to {request.path}")
                return jsonify({'success': False, 'error': 'Insufficient permissions'}), 403

            g.current_user = user
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def _forbidden_for_event():
    return jsonify({
        'success': False,
        'error': 'You are not assigned to this event',
        'error_type': 'forbidden'
    }), 403


def _event_draft(data):
    return {
        'name': field(data, 'name'),
        'slug': field(data, 'slug'),
        'start_date': field(data, 'startDate', 'start_date'),
        'end_date': field(data, 'endDate', 'end_date'),
        'location': field(data, 'location'),
        'description': field(data, 'description'),
        'theme': field(data, 'theme'),
        'is_active': field(data, 'isActive', 'is_active'),
        'is_internal': field(data, 'isInternal', 'is_internal') or False,
        'department': field(data, 'department'),
        'position': field(data, 'position'),
    }


def _participant_draft(data, event_id):
    return {
        'name': field(data, 'name'),
        'organization': field(data, 'organization'),
        'designation': field(data, 'designation'),
        'department': field(data, 'department'),
        'position': field(data, 'position'),
        'contact': field(data, 'contact') or field(data, 'email'),
        'phone': field(data, 'phone'),
        'event_id': event_id,
    }


def _user_draft(data):
    return {
        'full_name': field(data, 'fullName', 'full_name'),
        'email': field(data, 'email'),
        'password': field(data, 'password'),
        'role': field(data, 'role') or 'user',
    }


def _public_event(event):
    return {key: value for key, value in event.items() if key != 'assigned_staff'}


def _download(result):
    return send_file(
        io.BytesIO(result['content']),
        mimetype=result['mimetype'],
        as_attachment=True,
        download_name=result['filename']
    )


# ----------------------------------------------------------------------
# Health and public routes
# ----------------------------------------------------------------------

@api.route('/health')
def health():
    """Liveness probe"""
    try:
        components()['db'].ping()
        return jsonify({'success': True, 'status': 'ok'})
    except Exception as e:
        logger.error(f"Health check failed: {str(e)}")
        return jsonify({'success': False, 'status': 'unavailable'}), 503


@api.route('/events')
def list_events():
    """Public event listing, ?active=true for active events only"""
    try:
        events = components()['events']
        if request.args.get('active', '').lower() in ('true', '1'):
            rows = events.get_active_events()
        else:
            rows = events.get_events()
        return jsonify({'success': True, 'events': [_public_event(event) for event in rows]})
    except Exception as e:
        return server_error("Error listing events", e)


@api.route('/events/slug/<slug>')
def get_event_by_slug(slug):
    try:
        event = components()['events'].get_event_by_slug(slug)
        if not event:
            return error_response({'error': 'Event not found', 'error_type': 'event_not_found'})
        return jsonify({'success': True, 'event': _public_event(event)})
    except Exception as e:
        return server_error(f"Error loading event {slug}", e)


@api.route('/register/<event_id>', methods=['POST'])
def register(event_id):
    """Public self registration"""
    try:
        result = components()['participants'].register_participant(
            _participant_draft(request_data(), event_id)
        )
        if not result['success']:
            return error_response(result)

        return jsonify({
            'success': True,
            'message': result['message'],
            'participant_id': result['participant_id'],
            'participant': result['participant']
        }), 201
    except Exception as e:
        return server_error("Registration error", e)


@api.route('/participants/<participant_id>/qr.png')
def participant_qr(participant_id):
    try:
        if not components()['participants'].get_participant_by_id(participant_id):
            return error_response({'error': 'Participant not found', 'error_type': 'participant_not_found'})

        qr = components()['qr'].generate_participant_qr(participant_id)
        return send_file(io.BytesIO(qr['png']), mimetype='image/png', download_name=qr['filename'])
    except RenderFailure as e:
        return server_error(f"QR rendering failed for {participant_id}", e)
    except Exception as e:
        return server_error("QR download error", e)


@api.route('/participants/<participant_id>/flyer.png')
def participant_flyer(participant_id):
    try:
        participant = components()['participants'].get_participant_by_id(participant_id)
        if not participant:
            return error_response({'error': 'Participant not found', 'error_type': 'participant_not_found'})

        event = components()['events'].get_event_by_id(participant['event_id'])
        if not event:
            return error_response({'error': 'Event not found', 'error_type': 'event_not_found'})

        qr = components()['qr']
        flyer = qr.render_flyer(participant['name'], event, qr.codec.encode(participant_id))
        return send_file(io.BytesIO(qr.to_png_bytes(flyer)), mimetype='image/png',
                         download_name=f"flyer_{participant_id}.png")
    except Exception as e:
        return server_error("Flyer download error", e)


# ----------------------------------------------------------------------
# Authentication
# ----------------------------------------------------------------------

@api.route('/auth/login', methods=['POST'])
def login():
    """Exchange email and password for a bearer token"""
    try:
        data = request_data()
        email = field(data, 'email') or ''
        password = field(data, 'password') or ''

        if not isinstance(email, str) or not isinstance(password, str) or not email.strip() or not password:
            return error_response({
                'error': 'Please provide both email and password.',
                'error_type': 'validation_error'
            })
        email = email.strip()

        auth = components()['auth']
        user = auth.authenticate_user(email, password)
        if not user:
            return error_response({'error': 'Invalid email or password', 'error_type': 'invalid_credentials'})

        logger.info(f"User {email} logged in successfully")
        return jsonify({'success': True, 'user': user, 'token': auth.generate_token(user)})
    except Exception as e:
        return server_error("Login error", e)


@api.route('/auth/verify')
@auth_required()
def verify():
    return jsonify({'success': True, 'user': g.current_user})


@api.route('/auth/refresh', methods=['POST'])
@auth_required()
def refresh():
    """Issue a fresh token for the current user"""
    try:
        token = components()['auth'].generate_token(g.current_user)
        return jsonify({'success': True, 'user': g.current_user, 'newToken': token})
    except Exception as e:
        return server_error("Token refresh error", e)


@api.route('/auth/change-password', methods=['POST'])
@auth_required()
def change_password():
    try:
        data = request_data()
        result = components()['auth'].change_password(
            g.current_user['id'],
            field(data, 'currentPassword', 'current_password'),
            field(data, 'newPassword', 'new_password')
        )
        if not result['success']:
            return error_response(result)
        return jsonify(result)
    except Exception as e:
        return server_error("Password change error", e)


# ----------------------------------------------------------------------
# Attendance
# ----------------------------------------------------------------------

def _record_attendance(data):
    """Shared body of the scanner endpoints: qrData or participantId for eventId"""
    event_id = field(data, 'eventId', 'event_id')
    qr_data = field(data, 'qrData', 'qr_data') or ''
    if not isinstance(qr_data, str):
        return error_response({'error': 'QR code data must be text', 'error_type': 'validation_error'})
    qr_data = qr_data.strip()
    participant_id = field(data, 'participantId', 'participant_id')
    attendance_date = field(data, 'attendanceDate', 'attendance_date')

    if not event_id:
        return error_response({'error': 'No event specified', 'error_type': 'validation_error'})
    if not qr_data and not participant_id:
        return error_response({'error': 'No QR code data provided', 'error_type': 'validation_error'})

    if not components()['events'].can_mark_attendance(g.current_user, event_id):
        return _forbidden_for_event()

    attendance = components()['attendance']
    if qr_data:
        result = attendance.process_attendance_scan(qr_data, event_id, attendance_date, g.current_user['id'])
    else:
        result = attendance.mark_attendance(participant_id, event_id, attendance_date, g.current_user['id'])

    if not result['success']:
        return error_response(result)
    return jsonify(result), 201


@api.route('/attendance', methods=['POST'])
@auth_required()
def mark_attendance():
    """Process QR code scan and record attendance"""
    try:
        return _record_attendance(request_data())
    except Exception as e:
        return server_error("Scan processing error", e)


@api.route('/attendance')
@auth_required()
def list_attendance():
    try:
        event_id = request.args.get('eventId')
        if not event_id:
            return error_response({'error': 'eventId is required', 'error_type': 'validation_error'})
        if not components()['events'].can_mark_attendance(g.current_user, event_id):
            return _forbidden_for_event()

        records = components()['attendance'].get_attendance_by_event_id(
            event_id, request.args.get('attendanceDate')
        )
        return jsonify({'success': True, 'attendance': records})
    except Exception as e:
        return server_error("Attendance listing error", e)


@api.route('/attendance/stats')
@auth_required()
def attendance_stats():
    try:
        event_id = request.args.get('eventId')
        if not event_id:
            return error_response({'error': 'eventId is required', 'error_type': 'validation_error'})
        if not components()['events'].can_mark_attendance(g.current_user, event_id):
            return _forbidden_for_event()

        stats = components()['attendance'].get_attendance_stats(
            event_id, request.args.get('attendanceDate')
        )
        return jsonify({'success': True, 'stats': stats})
    except Exception as e:
        return server_error("Attendance stats error", e)


@api.route('/attendance/daily')
@auth_required()
def attendance_daily():
    try:
        event_id = request.args.get('eventId')
        if not event_id:
            return error_response({'error': 'eventId is required', 'error_type': 'validation_error'})
        if not components()['events'].can_mark_attendance(g.current_user, event_id):
            return _forbidden_for_event()

        breakdown = components()['attendance'].get_daily_breakdown(event_id)
        if breakdown is None:
            return error_response({'error': 'Event not found', 'error_type': 'event_not_found'})
        return jsonify({'success': True, 'days': breakdown})
    except Exception as e:
        return server_error("Daily breakdown error", e)


# ----------------------------------------------------------------------
# Admin: events and staff
# ----------------------------------------------------------------------

@api.route('/admin/events', methods=['GET', 'POST'])
@auth_required(role='admin')
def admin_events():
    try:
        events = components()['events']
        if request.method == 'GET':
            return jsonify({'success': True, 'events': events.get_events()})

        result = events.create_event(_event_draft(request_data()), created_by=g.current_user['id'])
        if not result['success']:
            return error_response(result)
        return jsonify(result), 201
    except Exception as e:
        return server_error("Event administration error", e)


@api.route('/admin/events/<event_id>', methods=['GET', 'PUT', 'DELETE'])
@auth_required(role='admin')
def admin_event(event_id):
    try:
        events = components()['events']
        if request.method == 'GET':
            event = events.get_event_by_id(event_id)
            if not event:
                return error_response({'error': 'Event not found', 'error_type': 'not_found'})
            return jsonify({'success': True, 'event': event})

        if request.method == 'PUT':
            result = events.update_event(event_id, _event_draft(request_data()),
                                         updated_by=g.current_user['id'])
        else:
            result = events.delete_event(event_id, deleted_by=g.current_user['id'])

        if not result['success']:
            return error_response(result)
        return jsonify(result)
    except Exception as e:
        return server_error(f"Event administration error for {event_id}", e)


@api.route('/admin/events/<event_id>/staff', methods=['GET', 'POST', 'DELETE'])
@auth_required(role='admin')
def admin_event_staff(event_id):
    try:
        events = components()['events']
        if request.method == 'GET':
            staff = events.get_assigned_staff(event_id)
            if staff is None:
                return error_response({'error': 'Event not found', 'error_type': 'not_found'})
            return jsonify({'success': True, 'staff': staff})

        user_id = field(request_data(), 'userId', 'user_id') or request.args.get('userId')
        if not user_id:
            return error_response({'error': 'userId is required', 'error_type': 'validation_error'})

        if request.method == 'POST':
            result = events.assign_staff(event_id, user_id, assigned_by=g.current_user['id'])
        else:
            result = events.unassign_staff(event_id, user_id, removed_by=g.current_user['id'])

        if not result['success']:
            return error_response(result)
        return jsonify(result)
    except Exception as e:
        return server_error(f"Staff assignment error for {event_id}", e)


# ----------------------------------------------------------------------
# Admin: participants and notifications
# ----------------------------------------------------------------------

@api.route('/admin/events/<event_id>/participants')
@auth_required(role='admin')
def admin_event_participants(event_id):
    try:
        if not components()['events'].get_event_by_id(event_id):
            return error_response({'error': 'Event not found', 'error_type': 'event_not_found'})
        participants = components()['participants'].get_participants_by_event_id(event_id)
        return jsonify({'success': True, 'participants': participants})
    except Exception as e:
        return server_error("Participant listing error", e)


@api.route('/admin/participants')
@auth_required(role='admin')
def admin_participants():
    try:
        return jsonify({'success': True, 'participants': components()['participants'].get_participants()})
    except Exception as e:
        return server_error("Participant listing error", e)


@api.route('/admin/events/<event_id>/send-qr-codes', methods=['POST'])
@auth_required(role='admin')
def admin_send_qr_codes(event_id):
    try:
        result = components()['notifier'].send_qr_codes_to_all_participants(event_id)
        if not result['success']:
            return error_response(result)
        return jsonify(result)
    except Exception as e:
        return server_error("Bulk QR send error", e)


@api.route('/admin/participants/<participant_id>/send-qr', methods=['POST'])
@auth_required(role='admin')
def admin_send_qr(participant_id):
    try:
        result = components()['notifier'].send_qr_code_to_participant(participant_id)
        if not result['success']:
            return error_response(result)
        return jsonify(result)
    except Exception as e:
        return server_error("QR send error", e)


@api.route('/admin/events/<event_id>/thank-you', methods=['POST'])
@auth_required(role='admin')
def admin_event_thank_you(event_id):
    try:
        data = request_data()
        result = components()['notifier'].send_thank_you_emails(
            event_id,
            participant_ids=field(data, 'participantIds', 'participant_ids'),
            custom_message=field(data, 'customMessage', 'custom_message'),
            survey_link=field(data, 'surveyLink', 'survey_link'),
            image=field(data, 'image')
        )
        if not result['success']:
            return error_response(result)
        return jsonify(result)
    except Exception as e:
        return server_error("Thank-you send error", e)


@api.route('/admin/participants/<participant_id>/thank-you', methods=['POST'])
@auth_required(role='admin')
def admin_participant_thank_you(participant_id):
    try:
        data = request_data()
        result = components()['notifier'].send_thank_you_email(
            participant_id,
            custom_message=field(data, 'customMessage', 'custom_message'),
            survey_link=field(data, 'surveyLink', 'survey_link'),
            image=field(data, 'image')
        )
        if not result['success']:
            return error_response(result)
        return jsonify(result)
    except Exception as e:
        return server_error("Thank-you send error", e)


@api.route('/admin/notifications/outbox')
@auth_required(role='admin')
def admin_outbox():
    try:
        entries = components()['notifier'].get_outbox(request.args.get('status'))
        return jsonify({'success': True, 'outbox': entries})
    except Exception as e:
        return server_error("Outbox listing error", e)


@api.route('/admin/notifications/retry', methods=['POST'])
@auth_required(role='admin')
def admin_retry_notifications():
    try:
        return jsonify({'success': True, **components()['notifier'].retry_failed_notifications()})
    except Exception as e:
        return server_error("Notification retry error", e)


@api.route('/admin/maintenance/fix-email-case', methods=['POST'])
@auth_required(role='admin')
def admin_fix_email_case():
    try:
        result = components()['participants'].normalize_contact_emails()
        return jsonify(result), 200 if result['success'] else 500
    except Exception as e:
        return server_error("Email case fix error", e)


# ----------------------------------------------------------------------
# Admin: exports
# ----------------------------------------------------------------------

@api.route('/admin/events/<event_id>/export/participants')
@auth_required(role='admin')
def admin_export_participants(event_id):
    try:
        result = components()['reports'].export_participants(event_id, request.args.get('format', 'csv'))
        if not result['success']:
            return error_response(result)
        return _download(result)
    except Exception as e:
        return server_error("Participant export error", e)


@api.route('/admin/events/<event_id>/export/attendance')
@auth_required(role='admin')
def admin_export_attendance(event_id):
    try:
        result = components()['reports'].export_attendance(
            event_id,
            request.args.get('format', 'csv'),
            request.args.get('attendanceDate')
        )
        if not result['success']:
            return error_response(result)
        return _download(result)
    except Exception as e:
        return server_error("Attendance export error", e)


# ----------------------------------------------------------------------
# Admin: users
# ----------------------------------------------------------------------

@api.route('/admin/users', methods=['GET', 'POST'])
@auth_required(role='admin')
def admin_users():
    try:
        auth = components()['auth']
        if request.method == 'GET':
            return jsonify({'success': True, 'users': auth.get_users()})

        result = auth.create_user(_user_draft(request_data()), created_by=g.current_user['id'])
        if not result['success']:
            return error_response(result)
        return jsonify(result), 201
    except Exception as e:
        return server_error("User administration error", e)


@api.route('/admin/users/<user_id>', methods=['PUT', 'DELETE'])
@auth_required(role='admin')
def admin_user(user_id):
    try:
        auth = components()['auth']
        if request.method == 'PUT':
            result = auth.update_user(user_id, _user_draft(request_data()), updated_by=g.current_user['id'])
        else:
            result = auth.delete_user(user_id, deleted_by=g.current_user['id'])

        if not result['success']:
            return error_response(result)
        return jsonify(result)
    except Exception as e:
        return server_error(f"User administration error for {user_id}", e)


# ----------------------------------------------------------------------
# Mobile scanner
# ----------------------------------------------------------------------

@api.route('/mobile/events')
@auth_required()
def mobile_events():
    """Active events the current user may scan for"""
    try:
        events = components()['events'].get_events_for_user(g.current_user)
        return jsonify({'success': True, 'events': events})
    except Exception as e:
        return server_error("Mobile events error", e)


@api.route('/mobile/participants/<event_id>')
@auth_required()
def mobile_participants(event_id):
    try:
        if not components()['events'].get_event_by_id(event_id):
            return error_response({'error': 'Event not found', 'error_type': 'event_not_found'})
        if not components()['events'].can_mark_attendance(g.current_user, event_id):
            return _forbidden_for_event()

        participants = components()['participants'].get_participants_by_event_id(event_id)
        return jsonify({'success': True, 'participants': participants})
    except Exception as e:
        return server_error("Mobile participants error", e)


@api.route('/mobile/scan', methods=['POST'])
@auth_required()
def mobile_scan():
    try:
        return _record_attendance(request_data())
    except Exception as e:
        return server_error("Mobile scan error", e)


@api.route('/mobile/onboard', methods=['POST'])
@auth_required()
def mobile_onboard():
    """Register a walk-in participant and check them in for today"""
    try:
        data = request_data()
        event_id = field(data, 'eventId', 'event_id')
        first_name = field(data, 'firstName', 'first_name') or ''
        last_name = field(data, 'lastName', 'last_name') or ''
        if not isinstance(first_name, str) or not isinstance(last_name, str):
            return error_response({'error': 'Names must be text', 'error_type': 'validation_error'})
        first_name, last_name = first_name.strip(), last_name.strip()
        email = field(data, 'email')
        organization = field(data, 'organization')
        phone = field(data, 'phone')

        if not all([event_id, first_name, last_name, email, organization, phone]):
            return error_response({'error': 'Missing required fields', 'error_type': 'validation_error'})

        if not components()['events'].can_mark_attendance(g.current_user, event_id):
            return _forbidden_for_event()

        staff_id = g.current_user['id']
        draft = {
            'name': f"{first_name} {last_name}",
            'contact': email,
            'phone': phone,
            'organization': organization,
            'designation': field(data, 'designation') or '',
            'position': field(data, 'position') or None,
            'event_id': event_id,
        }
        result = components()['participants'].register_participant(
            draft, skip_duplicate_check=True, onboarded_by=staff_id
        )
        if not result['success']:
            return error_response(result)

        attendance = components()['attendance'].mark_attendance(
            result['participant_id'], event_id, date.today().isoformat(), staff_id
        )
        if not attendance['success']:
            logger.error(f"Auto-attendance failed during onboarding of {result['participant_id']}: "
                         f"{attendance['error']}")

        return jsonify({
            'success': True,
            'participant_id': result['participant_id'],
            'participant': result['participant'],
            'attendance': attendance
        }), 201
    except Exception as e:
        return server_error("Mobile onboard error", e)


@api.app_errorhandler(404)
def not_found(e):
    return jsonify({'success': False, 'error': 'Resource not found', 'error_type': 'not_found'}), 404


@api.app_errorhandler(405)
def method_not_allowed(e):
    return jsonify({'success': False, 'error': 'Method not allowed'}), 405


# ----------------------------------------------------------------------
# Application factory
# ----------------------------------------------------------------------

def shutdown_app(app):
    """Stop the notification worker and close database connections"""
    portal = app.extensions.get('eventportal')
    if not portal:
        return
    portal['notifier'].shutdown()
    portal['db'].close_all_connections()


def create_app(config_name=None, **overrides):
    """
    Build the portal application.

    Args:
        config_name (str): development, testing or production, FLASK_ENV when None
        **overrides: Configuration values applied on top of the selected class

    Returns:
        Flask: Configured application with an initialized database

    Raises:
        RuntimeError: Configuration validation failed
    """
    config_class = get_config(config_name)

    app = Flask(__name__)
    config_class.init_app(app)
    app.config.update(overrides)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    )

    errors = validate_config(app.config)
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise RuntimeError(f"Configuration validation failed: {'; '.join(errors)}")

    # Initialize system components
    db_manager = DatabaseManager(app.config['DATABASE_URL'], default_admin={
        'email': app.config['DEFAULT_ADMIN_EMAIL'],
        'password': app.config['DEFAULT_ADMIN_PASSWORD'],
        'full_name': app.config['DEFAULT_ADMIN_NAME'],
    })
    db_manager.initialize_database()

    codec = IdentityCodec(app.config['QR_ENCRYPTION_KEY'], app.config['QR_SCHEME'])
    qr_generator = QRGenerator(codec, {
        'size': app.config['QR_CODE_SIZE'],
        'margin': app.config['QR_CODE_MARGIN'],
        'error_correction': app.config['QR_CODE_ERROR_CORRECT'],
        'flyer_background': app.config['FLYER_BACKGROUND'],
        'flyer_width': app.config['FLYER_WIDTH'],
        'flyer_height': app.config['FLYER_HEIGHT'],
    })
    event_manager = EventManager(db_manager)
    notification_system = NotificationSystem(
        db_manager,
        qr_generator,
        transport=app.config.get('MAIL_TRANSPORT'),
        settings={
            'sender': app.config['MAIL_DEFAULT_SENDER'],
            'organization_name': app.config['ORGANIZATION_NAME'],
            'public_base_url': app.config['PUBLIC_BASE_URL'],
            'batch_size': app.config['NOTIFICATION_BATCH_SIZE'],
            'batch_delay': app.config['NOTIFICATION_BATCH_DELAY_SECONDS'],
            'async_enabled': app.config['NOTIFICATIONS_ASYNC'],
            'email_enabled': app.config['NOTIFICATIONS_EMAIL_ENABLED'],
            'smtp_server': app.config['MAIL_SERVER'],
            'smtp_port': app.config['MAIL_PORT'],
            'smtp_username': app.config['MAIL_USERNAME'],
            'smtp_password': app.config['MAIL_PASSWORD'],
            'smtp_use_tls': app.config['MAIL_USE_TLS'],
            'smtp_timeout': app.config['MAIL_TIMEOUT'],
        }
    )
    participant_manager = ParticipantManager(db_manager, event_manager, notification_system, {
        'name_min_length': app.config['PARTICIPANT_NAME_MIN_LENGTH'],
        'phone_min_length': app.config['PARTICIPANT_PHONE_MIN_LENGTH'],
    })
    attendance_manager = AttendanceManager(db_manager, event_manager, codec)
    auth_manager = AuthManager(
        db_manager,
        app.config['SECRET_KEY'],
        app.config['TOKEN_ALGORITHM'],
        token_lifetime(app.config),
        app.config['PASSWORD_MIN_LENGTH']
    )
    report_generator = ReportGenerator(event_manager, participant_manager, attendance_manager)

    app.extensions['eventportal'] = {
        'db': db_manager,
        'codec': codec,
        'qr': qr_generator,
        'events': event_manager,
        'participants': participant_manager,
        'attendance': attendance_manager,
        'notifier': notification_system,
        'auth': auth_manager,
        'reports': report_generator,
    }

    app.register_blueprint(api)
    atexit.register(shutdown_app, app)

    logger.info(f"Event Attendance Portal ready ({config_class.__name__})")
    return app


if __name__ == '__main__':
    application = create_app()
    application.run(debug=application.config['DEBUG'], host='0.0.0.0', port=5000)
