# File: app/config.py
import os
import secrets


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ['true', '1', 'yes', 'on']


def _env_int(name, default):
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    """Base configuration class."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)

    # Default to SQLite in the instance folder.
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(os.path.abspath(os.path.dirname(os.path.dirname(__file__))), 'instance', 'ifilm.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    APP_NAME = "iFilm"
    APP_VERSION = "1.0.0"

    # Upstream Jellyfin timeouts (seconds)
    JELLYFIN_TIMEOUT = _env_int('JELLYFIN_TIMEOUT', 10)
    JELLYFIN_STREAM_TIMEOUT = _env_int('JELLYFIN_STREAM_TIMEOUT', 30)
    JELLYFIN_VALIDATION_TIMEOUT = _env_int('JELLYFIN_VALIDATION_TIMEOUT', 1)

    # Optional bootstrap credentials, used only when nothing is stored in the database
    JELLYFIN_SERVER_URL = os.environ.get('JELLYFIN_SERVER_URL', '')
    JELLYFIN_API_KEY = os.environ.get('JELLYFIN_API_KEY', '')

    # Response cache
    CACHE_DEFAULT_TTL = _env_int('CACHE_DEFAULT_TTL', 300)
    CACHE_SHORT_TTL = _env_int('CACHE_SHORT_TTL', 10)
    CACHE_MAX_ENTRIES = _env_int('CACHE_MAX_ENTRIES', 10000)

    # Per-item existence check on every list fetch. Expensive, one upstream call per item.
    JELLYFIN_VALIDATE_LIST_ITEMS = _env_bool('JELLYFIN_VALIDATE_LIST_ITEMS', False)

    # Low-privilege account used for HLS playback
    STREAM_TOKEN_TTL = _env_int('STREAM_TOKEN_TTL', 3600)
    JELLYFIN_STREAM_USERNAME = os.environ.get('JELLYFIN_STREAM_USERNAME', 'public')
    JELLYFIN_STREAM_PASSWORD = os.environ.get('JELLYFIN_STREAM_PASSWORD', 'public')
    JELLYFIN_CLIENT_NAME = 'iFilm'
    JELLYFIN_DEVICE_NAME = 'Web Browser'
    JELLYFIN_DEVICE_ID = 'ifilm-web'
    JELLYFIN_CLIENT_VERSION = '1.0.0'

    # Absolute origin for rewritten manifest URLs, e.g. https://films.example.com
    # Left empty, manifests point at proxy-relative paths.
    PUBLIC_BASE_URL = os.environ.get('PUBLIC_BASE_URL', '')

    # Shared secret for /api/admin. Empty disables the check.
    ADMIN_API_TOKEN = os.environ.get('ADMIN_API_TOKEN', '')

    # Background library sync, 0 disables it
    LIBRARY_SYNC_INTERVAL_MINUTES = _env_int('LIBRARY_SYNC_INTERVAL_MINUTES', 0)
    SCHEDULER_API_ENABLED = False

    DEFAULT_ITEMS_PER_PAGE = 20

    INSTANCE_FOLDER_PATH = os.path.join(os.path.abspath(os.path.dirname(os.path.dirname(__file__))), 'instance')

    @staticmethod
    def init_app(app):
        if not os.path.exists(app.instance_path):
            try:
                os.makedirs(app.instance_path)
                print(f"Instance folder created at {app.instance_path}")
            except OSError as e:
                print(f"Error creating instance folder at {app.instance_path}: {e}")


class DevelopmentConfig(Config):
    DEBUG = True
    # SQLALCHEMY_ECHO = True # Useful for debugging SQL queries


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SECRET_KEY = 'test_secret_key'
    JELLYFIN_SERVER_URL = ''
    JELLYFIN_API_KEY = ''
    ADMIN_API_TOKEN = ''
    PUBLIC_BASE_URL = ''
    LIBRARY_SYNC_INTERVAL_MINUTES = 0
    JELLYFIN_VALIDATE_LIST_ITEMS = False


class ProductionConfig(Config):
    DEBUG = False


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
