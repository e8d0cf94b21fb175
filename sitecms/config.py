import os
from datetime import timedelta
from urllib.parse import urlparse

basedir = os.path.abspath(os.path.dirname(__file__))


def _app_env():
    return (os.environ.get('APP_ENV') or os.environ.get('FLASK_ENV') or 'development').strip().lower()


def _is_production_runtime():
    return _app_env() == 'production'


def _as_bool(value, default=False):
    if value is None:
        return default
    return str(value).strip().lower() in {'1', 'true', 'yes', 'on'}


def _as_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value, default):
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_list(value):
    return tuple(part.strip() for part in (value or '').split(',') if part.strip())


def _database_url():
    raw = (os.environ.get('DATABASE_URL') or '').strip()
    if raw.startswith('postgres://'):
        raw = raw.replace('postgres://', 'postgresql://', 1)
    if raw:
        return raw
    return 'sqlite:///' + os.path.join(basedir, 'site.db')


def _database_engine_options(database_url):
    if database_url.startswith('sqlite'):
        return {}
    options = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }
    if urlparse(database_url).scheme.startswith('postgresql'):
        connect_timeout_seconds = max(1, _as_int(os.environ.get('DB_CONNECT_TIMEOUT_SECONDS'), 5))
        options['connect_args'] = {'connect_timeout': connect_timeout_seconds}
    return options


class Config:
    APP_ENV = _app_env()
    IS_PRODUCTION = _is_production_runtime()
    SECRET_KEY = os.environ.get('SECRET_KEY') or ''

    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_ENGINE_OPTIONS = _database_engine_options(SQLALCHEMY_DATABASE_URI)
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DOCUMENT_STORE_BACKEND = (os.environ.get('DOCUMENT_STORE_BACKEND') or 'sql').strip().lower()
    FIRESTORE_PROJECT_ID = (os.environ.get('FIRESTORE_PROJECT_ID') or '').strip()
    FIRESTORE_DATABASE = (os.environ.get('FIRESTORE_DATABASE') or '').strip()

    UPLOAD_FOLDER = (os.environ.get('UPLOAD_FOLDER') or '').strip() or os.path.join(basedir, 'uploads')
    UPLOAD_URL_PREFIX = (os.environ.get('UPLOAD_URL_PREFIX') or '/uploads').rstrip('/') or '/uploads'
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024  # base64 images arrive inside JSON bodies
    MAX_UPLOAD_IMAGE_PIXELS = _as_int(os.environ.get('MAX_UPLOAD_IMAGE_PIXELS'), 40_000_000)

    ADMIN_USERNAME = (os.environ.get('ADMIN_USERNAME') or 'admin').strip()
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD') or ''
    SEED_ON_STARTUP = _as_bool(os.environ.get('SEED_ON_STARTUP'), True)

    ALLOWED_ORIGINS = _as_list(os.environ.get('ALLOWED_ORIGINS'))
    API_BASE_URL = (os.environ.get('API_BASE_URL') or '').rstrip('/')
    API_TIMEOUT_SECONDS = _as_int(os.environ.get('API_TIMEOUT_SECONDS'), 30)
    GA_MEASUREMENT_ID = (os.environ.get('GA_MEASUREMENT_ID') or '').strip()
    PUBLIC_CACHE_CONTROL = (
        os.environ.get('PUBLIC_CACHE_CONTROL') or 'public, max-age=120, s-maxage=300'
    ).strip()

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_COOKIE_SECURE = _as_bool(os.environ.get('SESSION_COOKIE_SECURE'), IS_PRODUCTION)
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = 'Lax'
    REMEMBER_COOKIE_SECURE = SESSION_COOKIE_SECURE
    REMEMBER_COOKIE_DURATION = timedelta(days=_as_int(os.environ.get('REMEMBER_COOKIE_DAYS'), 30))
    TRUST_PROXY_HEADERS = _as_bool(os.environ.get('TRUST_PROXY_HEADERS'), False)
    HSTS_ENABLED = _as_bool(os.environ.get('HSTS_ENABLED'), True)
    HSTS_MAX_AGE = _as_int(os.environ.get('HSTS_MAX_AGE'), 31536000)

    SENTRY_DSN = (os.environ.get('SENTRY_DSN') or '').strip()
    SENTRY_ENVIRONMENT = (os.environ.get('SENTRY_ENVIRONMENT') or '').strip()
    SENTRY_TRACES_SAMPLE_RATE = _as_float(os.environ.get('SENTRY_TRACES_SAMPLE_RATE'), 0.0)
    LOG_JSON = _as_bool(os.environ.get('LOG_JSON'), True)
    LOG_LEVEL = (os.environ.get('LOG_LEVEL') or 'INFO').strip().upper()
