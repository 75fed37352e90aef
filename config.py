# Event Attendance Portal Configuration

import os
from datetime import timedelta
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Base configuration class"""

    # Flask / token signing
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'event-portal-secret-key-change-me'
    TOKEN_ALGORITHM = 'HS256'
    TOKEN_EXPIRY_HOURS = int(os.environ.get('TOKEN_EXPIRY_HOURS') or 24)

    # Database Configuration (path of the SQLite file)
    DATABASE_URL = os.environ.get('DATABASE_URL')

    # Bootstrap admin seeded on first startup
    DEFAULT_ADMIN_EMAIL = os.environ.get('DEFAULT_ADMIN_EMAIL') or 'admin@eventportal.local'
    DEFAULT_ADMIN_PASSWORD = os.environ.get('DEFAULT_ADMIN_PASSWORD') or 'admin123'
    DEFAULT_ADMIN_NAME = 'System Administrator'

    # QR Code Configuration
    QR_ENCRYPTION_KEY = os.environ.get('QR_ENCRYPTION_KEY') or 'eventportal-default-qr-key'
    QR_SCHEME = os.environ.get('QR_SCHEME') or 'eventportal'
    QR_CODE_SIZE = 200
    QR_CODE_MARGIN = 2
    QR_CODE_ERROR_CORRECT = 'M'  # Medium error correction

    # Flyer rendering
    FLYER_BACKGROUND = os.environ.get('FLYER_BACKGROUND')
    FLYER_WIDTH = 900
    FLYER_HEIGHT = 1200

    # Public URL used in outgoing emails
    PUBLIC_BASE_URL = os.environ.get('PUBLIC_BASE_URL') or 'http://localhost:5000'
    ORGANIZATION_NAME = os.environ.get('ORGANIZATION_NAME') or 'Event Attendance Portal'

    # Email Configuration
    MAIL_SERVER = os.environ.get('MAIL_SERVER') or 'localhost'
    MAIL_PORT = int(os.environ.get('MAIL_PORT') or 587)
    MAIL_USE_TLS = _env_flag('MAIL_USE_TLS', 'true')
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER') or 'noreply@eventportal.local'
    MAIL_TIMEOUT = 30  # seconds
    MAIL_TRANSPORT = None  # object with send(message); SMTP when unset

    # Notification Configuration
    NOTIFICATIONS_EMAIL_ENABLED = _env_flag('NOTIFICATIONS_EMAIL_ENABLED', 'true')
    NOTIFICATIONS_ASYNC = True
    NOTIFICATION_BATCH_SIZE = 25
    NOTIFICATION_BATCH_DELAY_SECONDS = 2.0

    # Participant / user validation
    PARTICIPANT_NAME_MIN_LENGTH = 2
    PARTICIPANT_PHONE_MIN_LENGTH = 11
    PASSWORD_MIN_LENGTH = 6

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = BASE_DIR / 'logs' / 'eventportal.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB, thank-you images travel in JSON

    DEBUG = _env_flag('DEBUG')
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        app.config.from_object(cls)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    DATABASE_URL = os.environ.get('DATABASE_URL') or str(BASE_DIR / 'database' / 'eventportal_dev.db')

    LOG_LEVEL = 'DEBUG'

    # MailHog / local SMTP catcher
    MAIL_SERVER = 'localhost'
    MAIL_PORT = 1025
    MAIL_USE_TLS = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    SECRET_KEY = 'testing-secret-key'
    QR_ENCRYPTION_KEY = 'testing-qr-key'

    # Send inline so tests observe outcomes deterministically
    NOTIFICATIONS_ASYNC = False
    NOTIFICATION_BATCH_DELAY_SECONDS = 0


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False

    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        import logging
        from logging.handlers import RotatingFileHandler

        # Setup file logging
        if not app.debug:
            Path(cls.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('Event Attendance Portal startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Get configuration class based on name or FLASK_ENV"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


# Validation functions
def validate_config(settings):
    """
    Validate configuration settings.

    Args:
        settings: Mapping of configuration values (usually ``app.config``)

    Returns:
        list: Human readable configuration errors
    """
    errors = []

    if not settings.get('DATABASE_URL'):
        errors.append("DATABASE_URL is required")

    if not settings.get('SECRET_KEY'):
        errors.append("SECRET_KEY is required for token signing")

    if not settings.get('QR_ENCRYPTION_KEY'):
        errors.append("QR_ENCRYPTION_KEY is required")

    batch_size = settings.get('NOTIFICATION_BATCH_SIZE') or 0
    if batch_size < 1:
        errors.append("NOTIFICATION_BATCH_SIZE must be at least 1")

    # Check email configuration if enabled outside of tests
    if settings.get('NOTIFICATIONS_EMAIL_ENABLED') and not settings.get('TESTING'):
        if not settings.get('MAIL_SERVER'):
            errors.append("MAIL_SERVER is required when email notifications are enabled")

    if not settings.get('DEBUG') and not settings.get('TESTING'):
        if settings.get('SECRET_KEY') == Config.SECRET_KEY:
            errors.append("SECRET_KEY must be overridden in production")
        if settings.get('MAIL_SERVER') and not settings.get('MAIL_USERNAME'):
            errors.append("MAIL_USERNAME is required in production")

    return errors


def token_lifetime(settings):
    """Lifetime of issued bearer tokens."""
    return timedelta(hours=settings.get('TOKEN_EXPIRY_HOURS', 24))
