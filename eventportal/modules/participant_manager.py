"""
Participant Manager Module - Event Attendance Portal

This module handles participant registration for events. It validates the
public registration form, enforces the one-registration-per-email and
per-phone rule for public registrations and hands new registrations to the
notification system for the QR code email.

Features:
- Self registration with duplicate email/phone checks
- Staff-assisted onboarding that bypasses the duplicate checks
- Participant listings per event and across events
- Contact email normalization maintenance
"""

from typing import Dict, List, Any, Optional
import logging
import re
import sqlite3

from eventportal.modules.database_manager import generate_id, timestamp_now

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
TEXT_FIELDS = ('name', 'contact', 'phone', 'event_id', 'organization', 'designation', 'department', 'position')


def normalize_email(value: Optional[str]) -> str:
    return (value or '').strip().lower()


class ParticipantManager:
    """
    Participant registry backed by the ``participants`` table.
    """

    def __init__(self, database_manager, event_manager, notifier=None, settings: Dict[str, Any] = None):
        """
        Initialize the participant manager.

        Args:
            database_manager: Database manager instance
            event_manager: Event manager used to resolve the target event
            notifier: Notification system receiving new registrations
            settings (dict): Optional validation limits
        """
        self.db = database_manager
        self.events = event_manager
        self.notifier = notifier
        self.logger = logging.getLogger(__name__)

        settings = settings or {}
        self.NAME_MIN_LENGTH = settings.get('name_min_length', 2)
        self.PHONE_MIN_LENGTH = settings.get('phone_min_length', 11)

    def _validate_participant_data(self, participant_data: Dict[str, Any]) -> Dict[str, Any]:
        errors = {}

        for key in TEXT_FIELDS:
            value = participant_data.get(key)
            if value is not None and not isinstance(value, str):
                errors[key] = f"{key.replace('_', ' ').capitalize()} must be text."
        if errors:
            return {'valid': False, 'errors': errors}

        if len((participant_data.get('name') or '').strip()) < self.NAME_MIN_LENGTH:
            errors['name'] = f'Name must be at least {self.NAME_MIN_LENGTH} characters.'

        contact = normalize_email(participant_data.get('contact'))
        if not EMAIL_PATTERN.match(contact):
            errors['contact'] = 'Please enter a valid email address.'

        if len((participant_data.get('phone') or '').strip()) < self.PHONE_MIN_LENGTH:
            errors['phone'] = f'Phone number must be at least {self.PHONE_MIN_LENGTH} characters.'

        if not participant_data.get('event_id'):
            errors['event_id'] = 'Event is required.'

        return {'valid': not errors, 'errors': errors}

    def _find_duplicate(self, event_id: str, contact: str, phone: str) -> Optional[Dict[str, Any]]:
        """Return the failure result for the first duplicate found, email before phone."""
        existing_email = self.db.execute_query(
            """SELECT id FROM participants
               WHERE event_id = ? AND contact = ?""",
            (event_id, contact),
            fetch_all=False
        )
        if existing_email:
            return {
                'success': False,
                'error': 'This email address has already been used to register for this event.',
                'error_type': 'duplicate_email'
            }

        existing_phone = self.db.execute_query(
            """SELECT id FROM participants
               WHERE event_id = ? AND phone = ?""",
            (event_id, phone),
            fetch_all=False
        )
        if existing_phone:
            return {
                'success': False,
                'error': 'This phone number has already been used to register for this event.',
                'error_type': 'duplicate_phone'
            }

        return None

    def register_participant(self, participant_data: Dict[str, Any], skip_duplicate_check: bool = False,
                             onboarded_by: str = None) -> Dict[str, Any]:
        """
        Register a participant for an event.

        Args:
            participant_data (Dict[str, Any]): Registration form (name, contact, phone,
                event_id, organization, designation, department, position)
            skip_duplicate_check (bool): Staff-assisted path, allows repeat email/phone
            onboarded_by (str): ID of the staff member onboarding the participant

        Returns:
            Dict[str, Any]: Registration result with ``participant_id``
        """
        validation = self._validate_participant_data(participant_data)
        if not validation['valid']:
            return {
                'success': False,
                'error': next(iter(validation['errors'].values())),
                'error_type': 'validation_error',
                'errors': validation['errors']
            }

        event_id = participant_data['event_id']
        contact = normalize_email(participant_data['contact'])
        phone = participant_data['phone'].strip()

        try:
            event = self.events.get_event_by_id(event_id)
            if not event:
                return {
                    'success': False,
                    'error': 'Event not found',
                    'error_type': 'event_not_found'
                }

            if not skip_duplicate_check:
                duplicate = self._find_duplicate(event_id, contact, phone)
                if duplicate:
                    self.logger.warning(f"Duplicate registration rejected for event {event_id}: "
                                        f"{duplicate['error_type']}")
                    return duplicate

            participant_id = generate_id()
            now = timestamp_now()
            self.db.execute_update(
                """INSERT INTO participants (id, name, organization, designation, department, position,
                                             contact, phone, event_id, qr_email_sent, onboarded_by,
                                             onboarding_date, registration_source, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?)""",
                (
                    participant_id,
                    participant_data['name'].strip(),
                    (participant_data.get('organization') or '').strip(),
                    (participant_data.get('designation') or '').strip(),
                    participant_data.get('department') or None,
                    participant_data.get('position') or None,
                    contact,
                    phone,
                    event_id,
                    onboarded_by,
                    now if onboarded_by else None,
                    'staff' if skip_duplicate_check else 'self',
                    now
                )
            )

        except sqlite3.IntegrityError as e:
            # Lost a race with a concurrent registration
            if 'contact' in str(e):
                return {
                    'success': False,
                    'error': 'This email address has already been used to register for this event.',
                    'error_type': 'duplicate_email'
                }
            return {
                'success': False,
                'error': 'This phone number has already been used to register for this event.',
                'error_type': 'duplicate_phone'
            }
        except Exception as e:
            self.logger.error(f"Participant registration failed for event {event_id}: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to register participant',
                'error_type': 'system_error'
            }

        self.logger.info(f"Participant registered: {participant_id} for event {event_id}"
                         + (f" (onboarded by {onboarded_by})" if onboarded_by else ""))

        if self.notifier is not None:
            try:
                self.notifier.queue_registration_email(participant_id)
            except Exception as e:
                self.logger.error(f"Could not queue registration email for {participant_id}: {str(e)}")

        return {
            'success': True,
            'participant_id': participant_id,
            'participant': self.get_participant_by_id(participant_id),
            'message': 'Registration successful'
        }

    def _row_to_participant(self, row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not row:
            return None
        participant = dict(row)
        participant['qr_email_sent'] = bool(participant['qr_email_sent'])
        return participant

    def get_participant_by_id(self, participant_id: str) -> Optional[Dict[str, Any]]:
        row = self.db.execute_query(
            """SELECT p.*, e.name AS event_name
               FROM participants p
               LEFT JOIN events e ON e.id = p.event_id
               WHERE p.id = ?""",
            (participant_id,),
            fetch_all=False
        )
        return self._row_to_participant(row)

    def get_participants(self) -> List[Dict[str, Any]]:
        """All participants across events, newest first, with their event name."""
        rows = self.db.execute_query(
            """SELECT p.*, e.name AS event_name
               FROM participants p
               LEFT JOIN events e ON e.id = p.event_id
               ORDER BY p.created_at DESC, p.name"""
        )
        return [self._row_to_participant(row) for row in rows]

    def get_participants_by_event_id(self, event_id: str) -> List[Dict[str, Any]]:
        rows = self.db.execute_query(
            """SELECT p.*, e.name AS event_name
               FROM participants p
               LEFT JOIN events e ON e.id = p.event_id
               WHERE p.event_id = ?
               ORDER BY p.name""",
            (event_id,)
        )
        return [self._row_to_participant(row) for row in rows]

    def count_participants(self, event_id: str) -> int:
        row = self.db.execute_query(
            "SELECT COUNT(*) AS total FROM participants WHERE event_id = ?",
            (event_id,),
            fetch_all=False
        )
        return row['total'] if row else 0

    def mark_qr_email_sent(self, participant_id: str) -> bool:
        return self.db.execute_update(
            "UPDATE participants SET qr_email_sent = 1 WHERE id = ?",
            (participant_id,)
        ) > 0

    def normalize_contact_emails(self) -> Dict[str, Any]:
        """
        Lowercase and trim every stored participant contact.

        Returns:
            Dict[str, Any]: ``{'success', 'updated', 'errors'}`` where errors lists
            the contacts that could not be rewritten
        """
        updated = 0
        errors = []

        try:
            rows = self.db.execute_query("SELECT id, contact FROM participants")
        except Exception as e:
            self.logger.error(f"Email case fix failed: {str(e)}")
            return {
                'success': False,
                'updated': 0,
                'errors': [f'Failed to fix email case: {str(e)}']
            }

        for row in rows:
            original = row['contact'] or ''
            normalized = normalize_email(original)
            if original == normalized:
                continue

            try:
                self.db.execute_update(
                    "UPDATE participants SET contact = ? WHERE id = ?",
                    (normalized, row['id'])
                )
                updated += 1
                self.logger.info(f"Contact normalized: {original} -> {normalized}")
            except sqlite3.Error as e:
                message = f"Failed to update {original}: {str(e)}"
                errors.append(message)
                self.logger.error(message)

        self.logger.info(f"Email case fix completed: {updated} emails updated, {len(errors)} errors")
        return {'success': True, 'updated': updated, 'errors': errors}
