# Event Attendance Portal - Modules Package
"""
Core business logic modules for the Event Attendance Portal.
Contains the registries, the attendance ledger and the supporting services.
"""

__version__ = "1.0.0"
__description__ = "Core modules for event registration and QR attendance"

# Module descriptions
MODULES = {
    'database_manager': 'Database lifecycle and schema migrations',
    'identity_codec': 'Participant id obfuscation for QR tokens',
    'qr_generator': 'QR code and flyer rendering',
    'event_manager': 'Event administration and staff assignment',
    'participant_manager': 'Participant registration and listings',
    'attendance_manager': 'Attendance recording and statistics',
    'notification_system': 'Email delivery and notification outbox',
    'auth_manager': 'User accounts and bearer tokens',
    'report_generator': 'CSV and Excel exports'
}

def get_module_info():
    """Get information about available modules"""
    return MODULES
