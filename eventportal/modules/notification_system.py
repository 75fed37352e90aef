"""
Notification System Module - Event Attendance Portal

This module handles outgoing email for the portal: the registration
confirmation carrying the participant's QR code, QR code re-sends, bulk QR
code and thank-you mailings, and the notification outbox that records every
registration email so failures can be inspected and retried.

Features:
- HTML email templates (Jinja2) with the QR code embedded inline
- SMTP delivery with pluggable transport
- Batched bulk sending with per-recipient error isolation
- Durable outbox with background worker and retry
"""

import base64
import binascii
import logging
import smtplib
import ssl
import threading
import time
from datetime import datetime
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from queue import Queue
from typing import Any, Callable, Dict, List, Optional

from jinja2 import Template

from eventportal.modules.database_manager import generate_id, timestamp_now
from eventportal.modules.event_manager import parse_iso_date


class NotificationError(Exception):
    """Raised when an email cannot be built or delivered."""


class SMTPTransport:
    """Delivers MIME messages through an SMTP server."""

    def __init__(self, server: str, port: int, username: str = None, password: str = None,
                 use_tls: bool = True, timeout: int = 30):
        self.server = server
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, message) -> None:
        with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                context = ssl.create_default_context()
                server.starttls(context=context)

            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(message)


def format_event_date(value) -> str:
    """Format a YYYY-MM-DD date as 'March 5, 2025', falling back to the raw value."""
    parsed = parse_iso_date(value)
    if not parsed:
        return value or ''
    return f"{parsed:%B} {parsed.day}, {parsed.year}"


def decode_image_payload(image: str) -> Dict[str, Any]:
    """
    Decode a base64 image, either bare or as a ``data:image/<type>;base64,`` URL.

    Raises:
        NotificationError: The payload is not valid base64 image data
    """
    if not isinstance(image, str):
        raise NotificationError("Image must be a base64 encoded image")

    subtype = 'png'
    payload = image.strip()
    if payload.startswith('data:'):
        header, _, payload = payload.partition(',')
        if not header.startswith('data:image/') or ';base64' not in header:
            raise NotificationError("Image must be a base64 encoded image")
        subtype = header[len('data:image/'):].split(';', 1)[0] or 'png'

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise NotificationError("Image is not valid base64 data") from e

    if not data:
        raise NotificationError("Image is empty")
    return {'data': data, 'subtype': subtype}


class NotificationSystem:
    """
    Email dispatcher for registration confirmations, QR codes and thank-you notes.
    """

    def __init__(self, database_manager, qr_generator, transport=None,
                 settings: Dict[str, Any] = None, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the notification system.

        Args:
            database_manager: Database manager instance
            qr_generator: QRGenerator used for participant QR codes
            transport: Object with ``send(message)``, defaults to SMTP from settings
            settings (dict): sender, organization_name, public_base_url, batch_size,
                batch_delay, async_enabled, email_enabled and SMTP options
            sleep: Pause between bulk batches
        """
        self.db = database_manager
        self.qr_generator = qr_generator
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)

        self.settings = {
            'sender': 'noreply@eventportal.local',
            'organization_name': 'Event Attendance Portal',
            'public_base_url': 'http://localhost:5000',
            'batch_size': 25,
            'batch_delay': 2.0,
            'async_enabled': True,
            'email_enabled': True,
            'smtp_server': 'localhost',
            'smtp_port': 587,
            'smtp_username': None,
            'smtp_password': None,
            'smtp_use_tls': True,
            'smtp_timeout': 30,
        }
        if settings:
            self.settings.update(settings)

        self.transport = transport or SMTPTransport(
            self.settings['smtp_server'],
            self.settings['smtp_port'],
            self.settings['smtp_username'],
            self.settings['smtp_password'],
            self.settings['smtp_use_tls'],
            self.settings['smtp_timeout']
        )

        self.templates = {
            'registration': Template(self._get_registration_template()),
            'thank_you': Template(self._get_thank_you_template()),
        }

        # Outbox entries waiting for the background worker
        self.notification_queue = Queue()
        self.notification_processor = None
        if self.settings['async_enabled']:
            self.notification_processor = threading.Thread(
                target=self._process_notifications,
                name='notification-outbox',
                daemon=True
            )
            self.notification_processor.start()

        self.logger.info("Notification system initialized")

    # ------------------------------------------------------------------
    # Message building and delivery
    # ------------------------------------------------------------------

    def _build_message(self, recipient: str, subject: str, html: str,
                       inline_images: List[Dict[str, Any]] = None) -> MIMEMultipart:
        msg = MIMEMultipart('related')
        msg['From'] = self.settings['sender']
        msg['To'] = recipient
        msg['Subject'] = subject
        msg.attach(MIMEText(html, 'html', 'utf-8'))

        for image in inline_images or []:
            part = MIMEImage(image['data'], _subtype=image.get('subtype', 'png'))
            part.add_header('Content-ID', f"<{image['cid']}>")
            part.add_header('Content-Disposition', 'inline', filename=image['filename'])
            msg.attach(part)

        return msg

    def _deliver(self, msg) -> None:
        if not self.settings['email_enabled']:
            raise NotificationError("Email notifications are disabled")

        try:
            self.transport.send(msg)
        except NotificationError:
            raise
        except Exception as e:
            raise NotificationError(f"Failed to send email to {msg['To']}: {str(e)}") from e

    def _load_participant(self, participant_id: str) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM participants WHERE id = ?",
            (participant_id,),
            fetch_all=False
        )

    def _load_event(self, event_id: str) -> Optional[Dict[str, Any]]:
        return self.db.execute_query(
            "SELECT * FROM events WHERE id = ?",
            (event_id,),
            fetch_all=False
        )

    # ------------------------------------------------------------------
    # QR code emails
    # ------------------------------------------------------------------

    def send_registration_email(self, participant: Dict[str, Any], event: Dict[str, Any],
                                resend: bool = False) -> None:
        """
        Email a participant their attendance QR code.

        Args:
            participant (dict): Participant row
            event (dict): Event row
            resend (bool): Word the email as a QR code re-send

        Raises:
            NotificationError: The QR code could not be rendered or the email not delivered
        """
        try:
            qr = self.qr_generator.generate_participant_qr(participant['id'])
        except Exception as e:
            raise NotificationError(f"QR code generation failed: {str(e)}") from e

        html = self.templates['registration'].render(
            participant=participant,
            event=event,
            start_date=format_event_date(event.get('start_date')),
            end_date=format_event_date(event.get('end_date')),
            event_url=f"{self.settings['public_base_url'].rstrip('/')}/{event.get('slug', '')}",
            organization_name=self.settings['organization_name'],
            resend=resend,
            year=datetime.now().year
        )
        subject = (f"Your QR Code: {event['name']}" if resend
                   else f"Registration Confirmed: {event['name']}")

        msg = self._build_message(
            participant['contact'],
            subject,
            html,
            [{'cid': 'qr-code', 'data': qr['png'], 'filename': 'event-qr-code.png'}]
        )
        self._deliver(msg)

        self.db.execute_update(
            "UPDATE participants SET qr_email_sent = 1 WHERE id = ?",
            (participant['id'],)
        )
        self.logger.info(f"QR code email sent to {participant['contact']} for event {event['id']}")

    def send_qr_code_to_participant(self, participant_id: str) -> Dict[str, Any]:
        """
        Re-send a participant's QR code.

        Args:
            participant_id (str): Participant ID

        Returns:
            Dict[str, Any]: Send result
        """
        participant = self._load_participant(participant_id)
        if not participant:
            return {'success': False, 'error': 'Participant not found', 'error_type': 'participant_not_found'}

        event = self._load_event(participant['event_id'])
        if not event:
            return {'success': False, 'error': 'Event not found', 'error_type': 'event_not_found'}

        try:
            self.send_registration_email(participant, event, resend=True)
        except NotificationError as e:
            self.logger.error(str(e))
            return {'success': False, 'error': 'Failed to send QR code email', 'error_type': 'system_error'}

        return {'success': True, 'message': f"QR code sent to {participant['contact']}"}

    def _send_in_batches(self, participants: List[Dict[str, Any]],
                         send_one: Callable[[Dict[str, Any]], None]) -> Dict[str, Any]:
        """
        Send to participants in fixed-size batches, pausing between batches.
        A failing recipient is recorded and does not stop the run.
        """
        batch_size = max(int(self.settings['batch_size']), 1)
        summary = {
            'total_participants': len(participants),
            'sent': 0,
            'failed': 0,
            'errors': [],
            'batches_processed': 0
        }

        for start in range(0, len(participants), batch_size):
            if start:
                self.sleep(self.settings['batch_delay'])

            for participant in participants[start:start + batch_size]:
                try:
                    send_one(participant)
                    summary['sent'] += 1
                except Exception as e:
                    summary['failed'] += 1
                    summary['errors'].append(f"{participant['contact']}: {str(e)}")
                    self.logger.warning(f"Bulk email failed for {participant['contact']}: {str(e)}")

            summary['batches_processed'] += 1
            self.logger.info(f"Processed batch {summary['batches_processed']}: "
                             f"{summary['sent']} sent, {summary['failed']} failed so far")

        return summary

    def send_qr_codes_to_all_participants(self, event_id: str) -> Dict[str, Any]:
        """
        Email every participant of an event their QR code.

        Args:
            event_id (str): Event ID

        Returns:
            Dict[str, Any]: total_participants, sent, failed, errors, batches_processed
        """
        event = self._load_event(event_id)
        if not event:
            return {'success': False, 'error': 'Event not found', 'error_type': 'event_not_found'}

        participants = self.db.execute_query(
            "SELECT * FROM participants WHERE event_id = ? ORDER BY created_at",
            (event_id,)
        )
        summary = self._send_in_batches(
            participants,
            lambda participant: self.send_registration_email(participant, event, resend=True)
        )

        self.logger.info(f"Bulk QR send for event {event_id}: {summary['sent']} sent, "
                         f"{summary['failed']} failed")
        return {'success': True, **summary}

    # ------------------------------------------------------------------
    # Thank-you emails
    # ------------------------------------------------------------------

    def _send_thank_you(self, participant: Dict[str, Any], event: Dict[str, Any],
                        custom_message: str = None, survey_link: str = None,
                        image: Dict[str, Any] = None) -> None:
        html = self.templates['thank_you'].render(
            participant=participant,
            event=event,
            custom_message=custom_message,
            survey_link=survey_link,
            has_image=image is not None,
            organization_name=self.settings['organization_name'],
            year=datetime.now().year
        )

        inline_images = []
        if image is not None:
            inline_images.append({
                'cid': 'thank-you-image',
                'data': image['data'],
                'subtype': image['subtype'],
                'filename': f"thank-you.{image['subtype']}"
            })

        msg = self._build_message(
            participant['contact'],
            f"Thank You for Attending {event['name']}",
            html,
            inline_images
        )
        self._deliver(msg)
        self.logger.info(f"Thank-you email sent to {participant['contact']}")

    def send_thank_you_email(self, participant_id: str, custom_message: str = None,
                             survey_link: str = None, image: str = None) -> Dict[str, Any]:
        """
        Send a thank-you email to one participant.

        Args:
            participant_id (str): Participant ID
            custom_message (str): Optional message from the organizers
            survey_link (str): Optional feedback survey URL
            image (str): Optional base64 image (or data URL) embedded in the email

        Returns:
            Dict[str, Any]: Send result
        """
        try:
            decoded_image = decode_image_payload(image) if image else None
        except NotificationError as e:
            return {'success': False, 'error': str(e), 'error_type': 'validation_error'}

        participant = self._load_participant(participant_id)
        if not participant:
            return {'success': False, 'error': 'Participant not found', 'error_type': 'participant_not_found'}

        event = self._load_event(participant['event_id'])
        if not event:
            return {'success': False, 'error': 'Event not found', 'error_type': 'event_not_found'}

        try:
            self._send_thank_you(participant, event, custom_message, survey_link, decoded_image)
        except NotificationError as e:
            self.logger.error(str(e))
            return {'success': False, 'error': 'Failed to send thank-you email', 'error_type': 'system_error'}

        return {'success': True, 'message': f"Thank-you email sent to {participant['contact']}"}

    def send_thank_you_emails(self, event_id: str, participant_ids: List[str] = None,
                              custom_message: str = None, survey_link: str = None,
                              image: str = None) -> Dict[str, Any]:
        """
        Send thank-you emails for an event.

        Args:
            event_id (str): Event ID
            participant_ids (list): Restrict to these participants, everyone when None
            custom_message (str): Optional message from the organizers
            survey_link (str): Optional feedback survey URL
            image (str): Optional base64 image (or data URL)

        Returns:
            Dict[str, Any]: total_participants, sent, failed, errors, batches_processed
        """
        try:
            decoded_image = decode_image_payload(image) if image else None
        except NotificationError as e:
            return {'success': False, 'error': str(e), 'error_type': 'validation_error'}

        event = self._load_event(event_id)
        if not event:
            return {'success': False, 'error': 'Event not found', 'error_type': 'event_not_found'}

        participants = self.db.execute_query(
            "SELECT * FROM participants WHERE event_id = ? ORDER BY created_at",
            (event_id,)
        )
        if participant_ids is not None:
            wanted = set(participant_ids)
            participants = [p for p in participants if p['id'] in wanted]

        summary = self._send_in_batches(
            participants,
            lambda participant: self._send_thank_you(
                participant, event, custom_message, survey_link, decoded_image
            )
        )

        self.logger.info(f"Thank-you emails for event {event_id}: {summary['sent']} sent, "
                         f"{summary['failed']} failed")
        return {'success': True, **summary}

    # ------------------------------------------------------------------
    # Outbox
    # ------------------------------------------------------------------

    def queue_registration_email(self, participant_id: str) -> str:
        """
        Record a registration email in the outbox and dispatch it.

        Args:
            participant_id (str): Newly registered participant

        Returns:
            str: Outbox entry ID
        """
        entry_id = generate_id()
        now = timestamp_now()
        self.db.execute_update(
            """INSERT INTO notification_outbox (id, kind, participant_id, status, attempts, created_at, updated_at)
               VALUES (?, 'registration', ?, 'pending', 0, ?, ?)""",
            (entry_id, participant_id, now, now)
        )

        if self.notification_processor is not None and self.notification_processor.is_alive():
            self.notification_queue.put(entry_id)
        else:
            self._process_outbox_entry(entry_id)

        return entry_id

    def _process_outbox_entry(self, entry_id: str) -> bool:
        """Attempt delivery of one outbox entry and record the outcome."""
        entry = self.db.execute_query(
            "SELECT * FROM notification_outbox WHERE id = ?",
            (entry_id,),
            fetch_all=False
        )
        if not entry or entry['status'] == 'sent':
            return False

        try:
            participant = self._load_participant(entry['participant_id'])
            if not participant:
                raise NotificationError(f"Participant {entry['participant_id']} no longer exists")

            event = self._load_event(participant['event_id'])
            if not event:
                raise NotificationError(f"Event {participant['event_id']} no longer exists")

            self.send_registration_email(participant, event)

        except NotificationError as e:
            self.db.execute_update(
                """UPDATE notification_outbox
                   SET status = 'failed', attempts = attempts + 1, last_error = ?, updated_at = ?
                   WHERE id = ?""",
                (str(e), timestamp_now(), entry_id)
            )
            self.logger.error(f"Registration email failed (outbox {entry_id}): {str(e)}")
            return False

        self.db.execute_update(
            """UPDATE notification_outbox
               SET status = 'sent', attempts = attempts + 1, last_error = NULL, updated_at = ?
               WHERE id = ?""",
            (timestamp_now(), entry_id)
        )
        return True

    def retry_failed_notifications(self) -> Dict[str, int]:
        """
        Retry every failed outbox entry synchronously.

        Returns:
            Dict[str, int]: retried, sent, failed
        """
        entries = self.db.execute_query(
            "SELECT id FROM notification_outbox WHERE status = 'failed' ORDER BY created_at"
        )

        sent = 0
        for entry in entries:
            if self._process_outbox_entry(entry['id']):
                sent += 1

        self.logger.info(f"Retried {len(entries)} failed notifications, {sent} sent")
        return {'retried': len(entries), 'sent': sent, 'failed': len(entries) - sent}

    def get_outbox(self, status: str = None) -> List[Dict[str, Any]]:
        if status:
            return self.db.execute_query(
                "SELECT * FROM notification_outbox WHERE status = ? ORDER BY created_at DESC",
                (status,)
            )
        return self.db.execute_query("SELECT * FROM notification_outbox ORDER BY created_at DESC")

    def _process_notifications(self) -> None:
        """Background thread to process the outbox queue."""
        while True:
            entry_id = self.notification_queue.get()
            try:
                if entry_id is None:  # Shutdown signal
                    break
                self._process_outbox_entry(entry_id)
            except Exception as e:
                self.logger.error(f"Error processing notification {entry_id}: {str(e)}")
            finally:
                self.notification_queue.task_done()

    def shutdown(self) -> None:
        """Stop the background worker after it drains the queue."""
        if self.notification_processor is not None and self.notification_processor.is_alive():
            self.notification_queue.put(None)
            self.notification_processor.join(timeout=5)
        self.logger.info("Notification system shut down")

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def _get_registration_template(self) -> str:
        """Get email template for registration confirmations and QR re-sends."""
        return """
        <!DOCTYPE html>
        <html>
        <head><meta charset="utf-8"><title>{{ event.name|e }}</title></head>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
            <div style="text-align: center; background-color: #f8f9fa; padding: 20px; border-radius: 8px;">
                {% if resend %}
                <h1 style="color: #22c55e;">Your Event QR Code</h1>
                {% else %}
                <h1 style="color: #22c55e;">Registration Confirmed!</h1>
                {% endif %}
                <p style="font-size: 20px;">Dear <strong>{{ participant.name|e }}</strong>,</p>
                {% if not resend %}
                <p>Your registration for the event has been successfully confirmed.</p>
                {% endif %}
            </div>

            <div style="border: 1px solid #e9ecef; border-radius: 8px; padding: 20px; margin: 20px 0;">
                <h2>Event Details</h2>
                <p><strong>Event Name:</strong> {{ event.name|e }}</p>
                <p><strong>Start Date:</strong> {{ start_date }}</p>
                <p><strong>End Date:</strong> {{ end_date }}</p>
                <p><strong>Location:</strong> {{ event.location|e }}</p>
                {% if event.description %}
                <p><strong>Description:</strong> {{ event.description|e }}</p>
                {% endif %}
            </div>

            <div style="text-align: center; background-color: #f8f9fa; padding: 20px; border-radius: 8px;">
                <h3>Your Attendance QR Code</h3>
                <p>Present this QR code at the venue to check in:</p>
                <img src="cid:qr-code" alt="Attendance QR Code" style="max-width: 200px;">
                <p><strong>Event page:</strong> <a href="{{ event_url }}">{{ event_url }}</a></p>
            </div>

            <div style="text-align: center; color: #6c757d; font-size: 14px; margin-top: 30px;">
                <p>Thank you for registering with {{ organization_name|e }}!</p>
                <p>&copy; {{ year }} {{ organization_name|e }}. All rights reserved.</p>
            </div>
        </body>
        </html>
        """

    def _get_thank_you_template(self) -> str:
        """Get email template for post-event thank-you notes."""
        return """
        <!DOCTYPE html>
        <html>
        <head><meta charset="utf-8"><title>Thank you</title></head>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
            <h1 style="color: #22c55e;">Thank You for Attending!</h1>
            <p>Dear <strong>{{ participant.name|e }}</strong>,</p>
            <p>Thank you for attending <strong>{{ event.name|e }}</strong> at {{ event.location|e }}.</p>
            {% if custom_message %}
            <p>{{ custom_message|e }}</p>
            {% endif %}
            {% if has_image %}
            <p style="text-align: center;"><img src="cid:thank-you-image" alt="{{ event.name|e }}" style="max-width: 100%;"></p>
            {% endif %}
            {% if survey_link %}
            <p>We would love your feedback: <a href="{{ survey_link|e }}">take the survey</a>.</p>
            {% endif %}
            <hr>
            <p style="color: #6c757d; font-size: 12px;">&copy; {{ year }} {{ organization_name|e }}</p>
        </body>
        </html>
        """
