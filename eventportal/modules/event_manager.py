"""
Event Manager Module - Event Attendance Portal

This module handles event administration for the portal: creating, editing
and deleting events, resolving events by id or public slug, deriving the
active flag from the event's date range and managing which staff members
may mark attendance for an event.

Features:
- Event creation, update and hard delete
- Slug uniqueness (global, case-sensitive)
- Active status derived from [start_date, end_date] unless overridden
- Staff assignment per event
"""

import json
import logging
import re
import sqlite3
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from eventportal.modules.database_manager import generate_id, timestamp_now

SLUG_PATTERN = re.compile(r'^[a-zA-Z0-9-]+$')
TEXT_FIELDS = ('name', 'slug', 'location', 'description', 'theme', 'department', 'position')


def parse_flag(value) -> bool:
    """Read a boolean that may arrive as a JSON bool or as a string like 'false'."""
    if isinstance(value, str):
        return value.strip().lower() in ('true', 'on', '1', 'yes')
    return bool(value)


def parse_iso_date(value) -> Optional[date]:
    """Parse a YYYY-MM-DD string (or date) into a date, None when invalid."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value.strip()[:10], '%Y-%m-%d').date()
    except ValueError:
        return None


def compute_is_active(start_date, end_date, override=None, today: Optional[date] = None) -> bool:
    """
    Resolve an event's active flag.

    An explicit override wins; otherwise the event is active when today lies
    within [start_date, end_date], both ends inclusive.
    """
    if override is not None:
        return bool(override)

    start = parse_iso_date(start_date)
    end = parse_iso_date(end_date)
    if not start or not end:
        return False

    today = today or date.today()
    return start <= today <= end


class EventManager:
    """
    Event registry backed by the ``events`` table.
    """

    def __init__(self, database_manager):
        """
        Initialize the event manager with database connection.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

        self.NAME_MIN_LENGTH = 5
        self.SLUG_MIN_LENGTH = 3
        self.LOCATION_MIN_LENGTH = 3

    def _validate_event_data(self, event_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate an event draft.

        Args:
            event_data (Dict[str, Any]): Event draft

        Returns:
            Dict[str, Any]: ``{'valid': bool, 'errors': {field: message}}``
        """
        errors = {}

        for key in TEXT_FIELDS:
            value = event_data.get(key)
            if value is not None and not isinstance(value, str):
                errors[key] = f"{key.replace('_', ' ').capitalize()} must be text."
        if errors:
            return {'valid': False, 'errors': errors}

        name = (event_data.get('name') or '').strip()
        if len(name) < self.NAME_MIN_LENGTH:
            errors['name'] = f'Event name must be at least {self.NAME_MIN_LENGTH} characters.'

        slug = (event_data.get('slug') or '').strip()
        if len(slug) < self.SLUG_MIN_LENGTH:
            errors['slug'] = f'URL slug must be at least {self.SLUG_MIN_LENGTH} characters.'
        elif not SLUG_PATTERN.match(slug):
            errors['slug'] = 'URL slug can only contain letters, numbers, and hyphens.'

        location = (event_data.get('location') or '').strip()
        if len(location) < self.LOCATION_MIN_LENGTH:
            errors['location'] = f'Location must be at least {self.LOCATION_MIN_LENGTH} characters.'

        start = parse_iso_date(event_data.get('start_date'))
        end = parse_iso_date(event_data.get('end_date'))
        if not start:
            errors['start_date'] = 'Start date is required.'
        if not end:
            errors['end_date'] = 'End date is required.'
        if start and end and end < start:
            errors['end_date'] = 'End date cannot be before the start date.'

        return {'valid': not errors, 'errors': errors}

    def _validation_failure(self, validation: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'success': False,
            'error': next(iter(validation['errors'].values())),
            'error_type': 'validation_error',
            'errors': validation['errors']
        }

    def _normalize_draft(self, event_data: Dict[str, Any]) -> Dict[str, Any]:
        is_active = event_data.get('is_active')
        is_internal = parse_flag(event_data.get('is_internal', False))
        return {
            'name': event_data['name'].strip(),
            'slug': event_data['slug'].strip(),
            'start_date': parse_iso_date(event_data['start_date']).isoformat(),
            'end_date': parse_iso_date(event_data['end_date']).isoformat(),
            'location': event_data['location'].strip(),
            'description': (event_data.get('description') or '').strip(),
            'theme': (event_data.get('theme') or '').strip(),
            'is_active': None if is_active is None else int(parse_flag(is_active)),
            'is_internal': int(is_internal),
            'department': (event_data.get('department') or None) if is_internal else None,
            'position': (event_data.get('position') or None) if is_internal else None,
        }

    def _row_to_event(self, row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not row:
            return None

        event = dict(row)
        override = event.pop('is_active')
        event['is_active_override'] = None if override is None else bool(override)
        event['is_active'] = compute_is_active(event['start_date'], event['end_date'], override)
        event['is_internal'] = bool(event['is_internal'])
        event['assigned_staff'] = json.loads(event.get('assigned_staff') or '[]')
        return event

    def _slug_taken(self, slug: str, exclude_id: Optional[str] = None) -> bool:
        if exclude_id:
            existing = self.db.execute_query(
                "SELECT id FROM events WHERE slug = ? AND id != ?",
                (slug, exclude_id),
                fetch_all=False
            )
        else:
            existing = self.db.execute_query(
                "SELECT id FROM events WHERE slug = ?",
                (slug,),
                fetch_all=False
            )
        return existing is not None

    def create_event(self, event_data: Dict[str, Any], created_by: str = None) -> Dict[str, Any]:
        """
        Create a new event.

        Args:
            event_data (Dict[str, Any]): Event draft
            created_by (str): ID of the admin creating the event

        Returns:
            Dict[str, Any]: Creation result with the stored event
        """
        validation = self._validate_event_data(event_data)
        if not validation['valid']:
            return self._validation_failure(validation)

        draft = self._normalize_draft(event_data)
        duplicate = {
            'success': False,
            'error': 'An event with this URL slug already exists.',
            'error_type': 'duplicate_slug'
        }

        try:
            if self._slug_taken(draft['slug']):
                return duplicate

            event_id = generate_id()
            now = timestamp_now()
            self.db.execute_update(
                """INSERT INTO events (id, name, slug, start_date, end_date, location, description,
                                       theme, is_active, is_internal, department, position,
                                       assigned_staff, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, '[]', ?, ?)""",
                (event_id, draft['name'], draft['slug'], draft['start_date'], draft['end_date'],
                 draft['location'], draft['description'], draft['theme'], draft['is_active'],
                 draft['is_internal'], draft['department'], draft['position'], now, now)
            )

            self.logger.info(f"Event created: {draft['slug']} (ID: {event_id}) by {created_by}")
            return {
                'success': True,
                'event': self.get_event_by_id(event_id),
                'message': 'Event created successfully'
            }

        except sqlite3.IntegrityError:
            return duplicate
        except Exception as e:
            self.logger.error(f"Event creation failed for {draft['slug']}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to create event',
                'error_type': 'system_error'
            }

    def update_event(self, event_id: str, event_data: Dict[str, Any],
                     updated_by: str = None) -> Dict[str, Any]:
        """
        Update an event.

        Args:
            event_id (str): Event ID
            event_data (Dict[str, Any]): Full event draft
            updated_by (str): ID of the admin making the update

        Returns:
            Dict[str, Any]: Update result with the stored event
        """
        validation = self._validate_event_data(event_data)
        if not validation['valid']:
            return self._validation_failure(validation)

        draft = self._normalize_draft(event_data)
        duplicate = {
            'success': False,
            'error': 'An event with this URL slug already exists.',
            'error_type': 'duplicate_slug'
        }

        try:
            if not self.get_event_by_id(event_id):
                return {
                    'success': False,
                    'error': 'Event not found',
                    'error_type': 'not_found'
                }

            if self._slug_taken(draft['slug'], exclude_id=event_id):
                return duplicate

            self.db.execute_update(
                """UPDATE events
                   SET name = ?, slug = ?, start_date = ?, end_date = ?, location = ?,
                       description = ?, theme = ?, is_active = ?, is_internal = ?,
                       department = ?, position = ?, updated_at = ?
                   WHERE id = ?""",
                (draft['name'], draft['slug'], draft['start_date'], draft['end_date'],
                 draft['location'], draft['description'], draft['theme'], draft['is_active'],
                 draft['is_internal'], draft['department'], draft['position'],
                 timestamp_now(), event_id)
            )

            self.logger.info(f"Event {event_id} updated by {updated_by}")
            return {
                'success': True,
                'event': self.get_event_by_id(event_id),
                'message': 'Event updated successfully'
            }

        except sqlite3.IntegrityError:
            return duplicate
        except Exception as e:
            self.logger.error(f"Event update failed for ID {event_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to update event',
                'error_type': 'system_error'
            }

    def delete_event(self, event_id: str, deleted_by: str = None) -> Dict[str, Any]:
        """
        Hard delete an event. Participants and attendance rows are left in place.

        Args:
            event_id (str): Event ID
            deleted_by (str): ID of the admin deleting the event

        Returns:
            Dict[str, Any]: Deletion result
        """
        try:
            affected_rows = self.db.execute_update("DELETE FROM events WHERE id = ?", (event_id,))

            if affected_rows == 0:
                return {
                    'success': False,
                    'error': 'Event not found',
                    'error_type': 'not_found'
                }

            self.logger.info(f"Event {event_id} deleted by {deleted_by}")
            return {'success': True, 'message': 'Event deleted successfully'}

        except Exception as e:
            self.logger.error(f"Failed to delete event {event_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to delete event',
                'error_type': 'system_error'
            }

    def get_event_by_id(self, event_id: str) -> Optional[Dict[str, Any]]:
        row = self.db.execute_query("SELECT * FROM events WHERE id = ?", (event_id,), fetch_all=False)
        return self._row_to_event(row)

    def get_event_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        """Resolve the public registration page's event."""
        row = self.db.execute_query("SELECT * FROM events WHERE slug = ?", (slug,), fetch_all=False)
        return self._row_to_event(row)

    def get_events(self) -> List[Dict[str, Any]]:
        rows = self.db.execute_query("SELECT * FROM events ORDER BY start_date DESC, name")
        return [self._row_to_event(row) for row in rows]

    def get_active_events(self) -> List[Dict[str, Any]]:
        return [event for event in self.get_events() if event['is_active']]

    def assign_staff(self, event_id: str, user_id: str, assigned_by: str = None) -> Dict[str, Any]:
        """
        Add a user to an event's staff list.

        Args:
            event_id (str): Event ID
            user_id (str): User to assign
            assigned_by (str): ID of the admin making the assignment

        Returns:
            Dict[str, Any]: Assignment result
        """
        try:
            with self.db.transaction() as conn:
                event = conn.execute(
                    "SELECT assigned_staff FROM events WHERE id = ?", (event_id,)
                ).fetchone()
                if not event:
                    return {'success': False, 'error': 'Event not found', 'error_type': 'not_found'}

                user = conn.execute("SELECT id FROM users WHERE id = ?", (user_id,)).fetchone()
                if not user:
                    return {'success': False, 'error': 'User not found', 'error_type': 'user_not_found'}

                staff = json.loads(event['assigned_staff'] or '[]')
                if user_id in staff:
                    return {
                        'success': False,
                        'error': 'Staff member is already assigned to this event',
                        'error_type': 'already_assigned'
                    }

                staff.append(user_id)
                conn.execute(
                    "UPDATE events SET assigned_staff = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(staff), timestamp_now(), event_id)
                )

            self.logger.info(f"User {user_id} assigned to event {event_id} by {assigned_by}")
            return {'success': True, 'message': 'Staff assigned successfully'}

        except Exception as e:
            self.logger.error(f"Staff assignment failed for event {event_id}: {str(e)}")
            return {'success': False, 'error': 'Failed to assign staff', 'error_type': 'system_error'}

    def unassign_staff(self, event_id: str, user_id: str, removed_by: str = None) -> Dict[str, Any]:
        """
        Remove a user from an event's staff list.

        Args:
            event_id (str): Event ID
            user_id (str): User to remove
            removed_by (str): ID of the admin removing the assignment

        Returns:
            Dict[str, Any]: Removal result
        """
        try:
            with self.db.transaction() as conn:
                event = conn.execute(
                    "SELECT assigned_staff FROM events WHERE id = ?", (event_id,)
                ).fetchone()
                if not event:
                    return {'success': False, 'error': 'Event not found', 'error_type': 'not_found'}

                staff = json.loads(event['assigned_staff'] or '[]')
                if user_id not in staff:
                    return {
                        'success': False,
                        'error': 'Staff member is not assigned to this event',
                        'error_type': 'not_assigned'
                    }

                staff.remove(user_id)
                conn.execute(
                    "UPDATE events SET assigned_staff = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(staff), timestamp_now(), event_id)
                )

            self.logger.info(f"User {user_id} unassigned from event {event_id} by {removed_by}")
            return {'success': True, 'message': 'Staff unassigned successfully'}

        except Exception as e:
            self.logger.error(f"Staff removal failed for event {event_id}: {str(e)}")
            return {'success': False, 'error': 'Failed to unassign staff', 'error_type': 'system_error'}

    def get_assigned_staff(self, event_id: str) -> Optional[List[Dict[str, Any]]]:
        """
        Get the users assigned to an event, None if the event does not exist.
        """
        event = self.get_event_by_id(event_id)
        if event is None:
            return None
        if not event['assigned_staff']:
            return []

        placeholders = ', '.join('?' for _ in event['assigned_staff'])
        return self.db.execute_query(
            f"""SELECT id, full_name, email, role, created_at, updated_at
                FROM users WHERE id IN ({placeholders}) ORDER BY full_name""",
            tuple(event['assigned_staff'])
        )

    def can_mark_attendance(self, user: Dict[str, Any], event_id: str) -> bool:
        """Admins may mark any event; other users only events they are assigned to."""
        if user.get('role') == 'admin':
            return True

        event = self.get_event_by_id(event_id)
        return bool(event) and user.get('id') in event['assigned_staff']

    def get_events_for_user(self, user: Dict[str, Any], active_only: bool = True) -> List[Dict[str, Any]]:
        events = self.get_active_events() if active_only else self.get_events()
        if user.get('role') == 'admin':
            return events
        return [event for event in events if user.get('id') in event['assigned_staff']]
