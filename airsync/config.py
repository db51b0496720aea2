"""
Application configuration
Values are read from environment variables (a .env file is loaded first)
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = '0') -> bool:
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name: str, default: str = '') -> list:
    return [item.strip() for item in os.environ.get(name, default).split(',') if item.strip()]


class Config:
    """Base configuration"""

    # ==================== Airtable ====================
    AIRTABLE_BASE_ID = os.environ.get('AIRTABLE_BASE_ID')
    AIRTABLE_API_KEY = os.environ.get('AIRTABLE_API_KEY')
    AIRTABLE_API_URL = os.environ.get('AIRTABLE_API_URL', 'https://api.airtable.com/v0')
    # Comma-separated table names, each fetched with an empty base query
    AIRTABLE_TABLES = _env_list('AIRTABLE_TABLES')

    # ==================== Sync engine ====================
    # Starts per interval and concurrent requests. Airtable documents 5 req/s
    # per base; 15 has held up in practice.
    SYNC_MAX_REQUESTS_PER_SEC = int(os.environ.get('SYNC_MAX_REQUESTS_PER_SEC', '15'))
    SYNC_INTERVAL = float(os.environ.get('SYNC_INTERVAL', '1.0'))
    SYNC_TASK_TIMEOUT = float(os.environ.get('SYNC_TASK_TIMEOUT', '60'))
    # Pause after a 429; must stay below SYNC_TASK_TIMEOUT since the
    # rate-limited task waits inside its own time budget
    SYNC_RATE_LIMIT_DELAY = float(os.environ.get('SYNC_RATE_LIMIT_DELAY', '30'))
    SYNC_SETTLE_DELAY = float(os.environ.get('SYNC_SETTLE_DELAY', '0.15'))
    SYNC_DEBUG = _env_bool('SYNC_DEBUG')

    # ==================== HTTP transport ====================
    HTTP_TIMEOUT = float(os.environ.get('HTTP_TIMEOUT', '30'))
    HTTP_MAX_RETRIES = int(os.environ.get('HTTP_MAX_RETRIES', '3'))

    # ==================== API ====================
    API_KEY = os.environ.get('API_KEY')
    CORS_ORIGINS = os.environ.get(
        'CORS_ORIGINS',
        'http://localhost:5173,http://127.0.0.1:5173'
    ).split(',')

    # ==================== Logging ====================
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FILE = os.environ.get('LOG_FILE')

    @classmethod
    def get_cors_config(cls):
        """CORS settings for flask-cors"""
        return {
            "origins": cls.CORS_ORIGINS,
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type", "X-API-Key", "Authorization"],
        }

    @classmethod
    def sync_settings(cls) -> dict:
        """Keyword arguments for SyncService's engine settings."""
        return {
            'max_requests_per_sec': cls.SYNC_MAX_REQUESTS_PER_SEC,
            'interval': cls.SYNC_INTERVAL,
            'task_timeout': cls.SYNC_TASK_TIMEOUT,
            'rate_limit_delay': cls.SYNC_RATE_LIMIT_DELAY,
            'settle_delay': cls.SYNC_SETTLE_DELAY,
        }


class DevelopmentConfig(Config):
    """Development"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    """Production"""
    DEBUG = False
    LOG_LEVEL = 'WARNING'

    @classmethod
    def validate(cls):
        """Check the settings production cannot run without"""
        errors = []

        if not cls.AIRTABLE_BASE_ID:
            errors.append('AIRTABLE_BASE_ID is not set')
        if not cls.AIRTABLE_API_KEY:
            errors.append('AIRTABLE_API_KEY is not set')
        if not cls.API_KEY:
            errors.append('API_KEY is not set (sync endpoints are unprotected)')
        if cls.SYNC_RATE_LIMIT_DELAY >= cls.SYNC_TASK_TIMEOUT:
            errors.append('SYNC_RATE_LIMIT_DELAY must be lower than SYNC_TASK_TIMEOUT')

        return errors


class TestingConfig(Config):
    """Tests"""
    TESTING = True
    AIRTABLE_BASE_ID = 'appTest'
    AIRTABLE_API_KEY = 'keyTest'
    AIRTABLE_TABLES = ['Widgets']
    API_KEY = None
    SYNC_RATE_LIMIT_DELAY = 0.01
    SYNC_SETTLE_DELAY = 0.0


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config():
    """Pick the configuration class from FLASK_ENV"""
    env = os.environ.get('FLASK_ENV', 'development')
    return config.get(env, config['default'])
