"""
Report Generator Module - Event Attendance Portal

This module builds downloadable exports for an event: the participant list
and the attendance list (optionally for a single day), as CSV or Excel files
produced in memory.
"""

import pandas as pd
import io
import logging
from datetime import datetime
from typing import Dict, List, Any

PARTICIPANT_COLUMNS = ['S/N', 'Name', 'Organization', 'Designation', 'Contact', 'Phone']
ATTENDANCE_COLUMNS = ['S/N', 'Participant Name', 'Organization', 'Checked In At']

MIMETYPES = {
    'csv': 'text/csv',
    'excel': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
}
EXTENSIONS = {'csv': 'csv', 'excel': 'xlsx'}


class ReportGenerator:
    """
    CSV / Excel exports of event participants and attendance.
    """

    def __init__(self, event_manager, participant_manager, attendance_manager):
        """
        Initialize the report generator.

        Args:
            event_manager: Event manager instance
            participant_manager: Participant manager instance
            attendance_manager: Attendance manager instance
        """
        self.events = event_manager
        self.participants = participant_manager
        self.attendance = attendance_manager
        self.logger = logging.getLogger(__name__)

        self.supported_formats = list(MIMETYPES)

    def export_participants(self, event_id: str, output_format: str = 'csv') -> Dict[str, Any]:
        """
        Export an event's participant list.

        Args:
            event_id (str): Event ID
            output_format (str): csv or excel

        Returns:
            Dict[str, Any]: filename, mimetype and content bytes
        """
        event = self.events.get_event_by_id(event_id)
        if not event:
            return {'success': False, 'error': 'Event not found', 'error_type': 'event_not_found'}

        records = [
            {
                'S/N': index,
                'Name': participant['name'],
                'Organization': participant['organization'] or participant['department'] or '',
                'Designation': participant['designation'] or participant['position'] or '',
                'Contact': participant['contact'],
                'Phone': participant['phone'],
            }
            for index, participant in enumerate(self.participants.get_participants_by_event_id(event_id), 1)
        ]

        return self._build_export(event, 'participants', records, PARTICIPANT_COLUMNS, output_format)

    def export_attendance(self, event_id: str, output_format: str = 'csv',
                          attendance_date: str = None) -> Dict[str, Any]:
        """
        Export an event's attendance list, optionally for one day.

        Args:
            event_id (str): Event ID
            output_format (str): csv or excel
            attendance_date (str): YYYY-MM-DD filter

        Returns:
            Dict[str, Any]: filename, mimetype and content bytes
        """
        event = self.events.get_event_by_id(event_id)
        if not event:
            return {'success': False, 'error': 'Event not found', 'error_type': 'event_not_found'}

        rows = self.attendance.get_attendance_by_event_id(event_id, attendance_date)
        records = [
            {
                'S/N': index,
                'Participant Name': row['participant_name'],
                'Organization': row['participant_organization'] or '',
                'Checked In At': (row['checked_in_at'] or '').replace('T', ' '),
            }
            for index, row in enumerate(sorted(rows, key=lambda r: r['checked_in_at']), 1)
        ]

        suffix = f"attendance_{attendance_date}" if attendance_date else 'attendance'
        return self._build_export(event, suffix, records, ATTENDANCE_COLUMNS, output_format)

    def _build_export(self, event: Dict[str, Any], report_type: str, records: List[Dict[str, Any]],
                      columns: List[str], output_format: str) -> Dict[str, Any]:
        if output_format not in self.supported_formats:
            return {
                'success': False,
                'error': f'Unsupported output format: {output_format}',
                'error_type': 'validation_error'
            }

        df = pd.DataFrame(records, columns=columns)
        filename = (f"{event['slug']}_{report_type}_{datetime.now().strftime('%Y%m%d_%H%M%S')}."
                    f"{EXTENSIONS[output_format]}")

        try:
            if output_format == 'excel':
                content = self._to_excel(event['name'], df)
            else:
                content = self._to_csv(event['name'], df)
        except Exception as e:
            self.logger.error(f"Export generation failed for event {event['id']}: {str(e)}")
            return {'success': False, 'error': 'Failed to generate export', 'error_type': 'system_error'}

        self.logger.info(f"Export generated: {filename} ({len(records)} rows)")
        return {
            'success': True,
            'filename': filename,
            'format': output_format,
            'mimetype': MIMETYPES[output_format],
            'content': content,
            'rows': len(records)
        }

    def _to_csv(self, title: str, df: pd.DataFrame) -> bytes:
        buffer = io.StringIO()
        pd.DataFrame([[title]]).to_csv(buffer, index=False, header=False)
        df.to_csv(buffer, index=False)
        return buffer.getvalue().encode('utf-8')

    def _to_excel(self, title: str, df: pd.DataFrame) -> bytes:
        buffer = io.BytesIO()
        sheet_name = 'Export'
        with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
            df.to_excel(writer, sheet_name=sheet_name, index=False, startrow=2)
            writer.sheets[sheet_name].cell(row=1, column=1, value=title)
        return buffer.getvalue()
