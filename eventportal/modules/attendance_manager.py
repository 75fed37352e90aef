"""
Attendance Manager Module - Event Attendance Portal

This module handles attendance operations for events. It records one check-in
per participant, event and calendar day, turns scanned QR tokens into
check-ins and provides per-event listings, statistics and a day by day
breakdown for multi-day events.

Features:
- QR code scan processing and validation
- Duplicate check-in prevention (per day)
- Attendance listings and statistics per event and date
- Daily breakdown across an event's date range
"""

from datetime import date, datetime, timedelta
import logging
import sqlite3
from typing import Dict, List, Optional, Any

from eventportal.modules.database_manager import generate_id, timestamp_now
from eventportal.modules.event_manager import parse_iso_date
from eventportal.modules.identity_codec import InvalidToken, QRFormatError


class AttendanceManager:
    """
    Attendance ledger for QR code based check-in.
    Records are append-only: never updated or deleted.
    """

    def __init__(self, database_manager, event_manager, codec=None):
        """
        Initialize the attendance manager with database connection.

        Args:
            database_manager: Database manager instance
            event_manager: Event manager used for date ranges
            codec: IdentityCodec used to decode scanned QR tokens
        """
        self.db = database_manager
        self.events = event_manager
        self.codec = codec
        self.logger = logging.getLogger(__name__)

    def _resolve_date(self, attendance_date) -> Optional[str]:
        if attendance_date is None or attendance_date == '':
            return date.today().isoformat()
        if isinstance(attendance_date, str) and len(attendance_date.strip()) != 10:
            return None
        parsed = parse_iso_date(attendance_date)
        return parsed.isoformat() if parsed else None

    def _check_existing_attendance(self, participant_id: str, event_id: str,
                                   attendance_date: str) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            """SELECT * FROM attendance
               WHERE participant_id = ? AND event_id = ? AND attendance_date = ?""",
            (participant_id, event_id, attendance_date),
            fetch_all=False
        )

    def _signed_by(self, participant: Dict[str, Any]) -> str:
        if not participant.get('onboarded_by'):
            return 'Self'
        staff = self.db.execute_query(
            "SELECT full_name FROM users WHERE id = ?",
            (participant['onboarded_by'],),
            fetch_all=False
        )
        return staff['full_name'] if staff else 'Staff'

    def mark_attendance(self, participant_id: str, event_id: str, attendance_date: str = None,
                        checked_in_by: str = None) -> Dict[str, Any]:
        """
        Record a participant's check-in for an event day.

        Args:
            participant_id (str): Participant ID
            event_id (str): Event ID
            attendance_date (str): Day being marked (YYYY-MM-DD), defaults to today
            checked_in_by (str): ID of the staff member marking attendance

        Returns:
            Dict[str, Any]: Result with the new ``attendance`` record, or
            ``already_marked`` with the ``existing_record``
        """
        effective_date = self._resolve_date(attendance_date)
        if effective_date is None:
            return {
                'success': False,
                'error': 'Attendance date must be in YYYY-MM-DD format',
                'error_type': 'validation_error',
                'errors': {'attendance_date': 'Attendance date must be in YYYY-MM-DD format'}
            }

        try:
            participant = self.db.execute_query(
                "SELECT * FROM participants WHERE id = ? AND event_id = ?",
                (participant_id, event_id),
                fetch_all=False
            )
            if not participant:
                return {
                    'success': False,
                    'error': 'Participant not found for this event',
                    'error_type': 'participant_not_found'
                }

            existing = self._check_existing_attendance(participant_id, event_id, effective_date)
            if existing:
                return self._already_marked(participant, existing, effective_date)

            record = {
                'id': generate_id(),
                'participant_id': participant_id,
                'event_id': event_id,
                'checked_in_at': timestamp_now(),
                'attendance_date': effective_date,
                'participant_name': participant['name'],
                'participant_organization': participant['organization'] or participant['department'] or '',
                'participant_position': participant['designation'] or participant['position'] or '',
                'checked_in_by': checked_in_by,
                'signed_by': self._signed_by(participant),
            }

            try:
                self.db.execute_update(
                    """INSERT INTO attendance (id, participant_id, event_id, checked_in_at, attendance_date,
                                               participant_name, participant_organization,
                                               participant_position, checked_in_by, signed_by)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    tuple(record[key] for key in (
                        'id', 'participant_id', 'event_id', 'checked_in_at', 'attendance_date',
                        'participant_name', 'participant_organization', 'participant_position',
                        'checked_in_by', 'signed_by'
                    ))
                )
            except sqlite3.IntegrityError:
                existing = self._check_existing_attendance(participant_id, event_id, effective_date)
                return self._already_marked(participant, existing, effective_date)

            self.logger.info(f"Attendance recorded: participant {participant_id}, event {event_id}, "
                             f"date {effective_date}")
            return {
                'success': True,
                'message': f"Attendance recorded successfully for {participant['name']}",
                'attendance': record,
                'participant': {
                    'id': participant['id'],
                    'name': participant['name'],
                    'organization': record['participant_organization'],
                },
            }

        except Exception as e:
            self.logger.error(f"Attendance marking failed for participant {participant_id}: {str(e)}")
            return {
                'success': False,
                'error': 'An error occurred while marking attendance',
                'error_type': 'system_error'
            }

    def _already_marked(self, participant, existing, effective_date):
        return {
            'success': False,
            'error': f"Attendance already marked for {participant['name']} on {effective_date}",
            'error_type': 'already_marked',
            'existing_record': existing
        }

    def process_attendance_scan(self, qr_data: str, event_id: str, attendance_date: str = None,
                                checked_in_by: str = None) -> Dict[str, Any]:
        """
        Process a scanned QR code for attendance recording.

        Args:
            qr_data (str): Scanned QR token
            event_id (str): Event being checked into
            attendance_date (str): Day being marked, defaults to today
            checked_in_by (str): ID of the staff member scanning

        Returns:
            Dict[str, Any]: Same shape as ``mark_attendance``
        """
        if self.codec is None:
            raise RuntimeError("No identity codec configured")

        try:
            participant_id = self.codec.decode(qr_data)
        except QRFormatError as e:
            return {'success': False, 'error': str(e), 'error_type': 'qr_format_error'}
        except InvalidToken as e:
            self.logger.warning(f"Rejected QR scan for event {event_id}: {str(e)}")
            return {'success': False, 'error': str(e), 'error_type': 'invalid_qr'}

        return self.mark_attendance(participant_id, event_id, attendance_date, checked_in_by)

    def get_attendance_by_event_id(self, event_id: str, attendance_date: str = None) -> List[Dict[str, Any]]:
        """
        List check-ins for an event, optionally for one day, newest first.
        """
        if attendance_date:
            return self.db.execute_query(
                """SELECT * FROM attendance WHERE event_id = ? AND attendance_date = ?
                   ORDER BY checked_in_at DESC""",
                (event_id, attendance_date)
            )
        return self.db.execute_query(
            "SELECT * FROM attendance WHERE event_id = ? ORDER BY checked_in_at DESC",
            (event_id,)
        )

    def get_attendance_stats(self, event_id: str, attendance_date: str = None) -> Dict[str, int]:
        """
        Get check-in totals for an event.

        Args:
            event_id (str): Event ID
            attendance_date (str): Restrict check-ins to one day

        Returns:
            Dict[str, int]: total_participants, checked_in, not_checked_in
        """
        total = self.db.execute_query(
            "SELECT COUNT(*) AS total FROM participants WHERE event_id = ?",
            (event_id,),
            fetch_all=False
        )['total']

        if attendance_date:
            checked_in = self.db.execute_query(
                """SELECT COUNT(DISTINCT participant_id) AS checked_in FROM attendance
                   WHERE event_id = ? AND attendance_date = ?""",
                (event_id, attendance_date),
                fetch_all=False
            )['checked_in']
        else:
            checked_in = self.db.execute_query(
                "SELECT COUNT(DISTINCT participant_id) AS checked_in FROM attendance WHERE event_id = ?",
                (event_id,),
                fetch_all=False
            )['checked_in']

        return {
            'total_participants': total,
            'checked_in': checked_in,
            'not_checked_in': max(total - checked_in, 0)
        }

    def get_daily_breakdown(self, event_id: str) -> Optional[List[Dict[str, Any]]]:
        """
        Count check-ins per day across an event.

        Every day from start to end date appears, zero-filled. Days with stored
        check-ins outside that range are included with ``within_event`` False.

        Returns:
            list: Rows of date, checked_in, within_event sorted by date, or None
            when the event does not exist
        """
        event = self.events.get_event_by_id(event_id)
        if not event:
            return None

        counts = {
            row['attendance_date']: row['checked_in']
            for row in self.db.execute_query(
                """SELECT attendance_date, COUNT(*) AS checked_in FROM attendance
                   WHERE event_id = ? GROUP BY attendance_date""",
                (event_id,)
            )
        }

        breakdown = {}
        start = parse_iso_date(event['start_date'])
        end = parse_iso_date(event['end_date'])
        if start and end:
            current = start
            while current <= end:
                day = current.isoformat()
                breakdown[day] = {'date': day, 'checked_in': counts.get(day, 0), 'within_event': True}
                current += timedelta(days=1)

        for day, checked_in in counts.items():
            if day not in breakdown:
                breakdown[day] = {'date': day, 'checked_in': checked_in, 'within_event': False}

        return [breakdown[day] for day in sorted(breakdown)]
