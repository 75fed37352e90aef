# Event Attendance Portal - Package
"""
Main package for the Event Attendance Portal.
Event registration with QR code check-in, served by the Flask app in app.py.
"""

__version__ = "1.0.0"
__description__ = "Event registration and QR code attendance tracking"

# Import core components for easy access
from .modules.database_manager import DatabaseManager
from .modules.identity_codec import IdentityCodec, InvalidToken, QRFormatError
from .modules.qr_generator import QRGenerator, RenderFailure
from .modules.event_manager import EventManager
from .modules.participant_manager import ParticipantManager
from .modules.attendance_manager import AttendanceManager
from .modules.notification_system import NotificationSystem, NotificationError, SMTPTransport
from .modules.auth_manager import AuthManager
from .modules.report_generator import ReportGenerator

__all__ = [
    'DatabaseManager',
    'IdentityCodec',
    'InvalidToken',
    'QRFormatError',
    'QRGenerator',
    'RenderFailure',
    'EventManager',
    'ParticipantManager',
    'AttendanceManager',
    'NotificationSystem',
    'NotificationError',
    'SMTPTransport',
    'AuthManager',
    'ReportGenerator'
]
