import json
import logging
import os
import re
import secrets
import time
import warnings

import click
from flask import Flask, abort, g, has_request_context, jsonify, request, send_from_directory, session
from markupsafe import Markup, escape
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .auth import login_manager
from .config import Config
from .models import db
from .store import DocumentStore

REQUEST_ID_PATTERN = re.compile(r'^[A-Za-z0-9._:-]{8,80}$')
CSRF_SESSION_KEY = '_csrf_token'
CSRF_PROTECTED_BLUEPRINTS = ('admin',)
UNSAFE_METHODS = frozenset({'POST', 'PUT', 'PATCH', 'DELETE'})
BASE_SECURITY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'DENY',
    'Referrer-Policy': 'strict-origin-when-cross-origin',
}
ADMIN_CONTENT_SECURITY_POLICY = '; '.join([
    "default-src 'self'",
    "frame-ancestors 'none'",
    "object-src 'none'",
    "img-src 'self' data: https:",
    "style-src 'self' https://cdn.jsdelivr.net",
    "form-action 'self'",
])
CORS_ALLOW_HEADERS = 'Content-Type, If-Match, X-Request-ID'
CORS_ALLOW_METHODS = 'GET, POST, PUT, PATCH, DELETE, OPTIONS'

_sentry_ready = False


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line, with request details when there is a request."""

    def format(self, record):
        entry = {
            'ts': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'msg': record.getMessage(),
        }
        if has_request_context():
            entry['request_id'] = g.get('request_id', '')
            entry['http'] = {'method': request.method, 'path': request.path, 'ip': request.remote_addr}
        if record.exc_info:
            entry['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def configure_logging(app):
    # app.logger is the "sitecms" logger; sitecms.store, sitecms.services etc. inherit its handlers.
    level = getattr(logging, str(app.config.get('LOG_LEVEL') or 'INFO').upper(), None)
    app.logger.setLevel(level if isinstance(level, int) else logging.INFO)
    if app.config.get('LOG_JSON', True):
        for handler in app.logger.handlers:
            handler.setFormatter(JsonLogFormatter())


def get_csrf_token():
    if not session.get(CSRF_SESSION_KEY):
        session[CSRF_SESSION_KEY] = secrets.token_urlsafe(32)
    return session[CSRF_SESSION_KEY]


def csrf_input():
    return Markup(  # nosec B704
        f'<input type="hidden" name="{CSRF_SESSION_KEY}" value="{escape(get_csrf_token())}">'
    )


def _csrf_token_valid():
    expected = session.get(CSRF_SESSION_KEY)
    submitted = request.form.get(CSRF_SESSION_KEY) or request.headers.get('X-CSRF-Token')
    return bool(expected and submitted) and secrets.compare_digest(expected, submitted)


def init_sentry(app):
    """Start Sentry once per process when SENTRY_DSN is configured."""
    global _sentry_ready
    dsn = (app.config.get('SENTRY_DSN') or '').strip()
    if _sentry_ready or not dsn:
        return

    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration(), SqlalchemyIntegration()],
            traces_sample_rate=float(app.config.get('SENTRY_TRACES_SAMPLE_RATE') or 0.0),
            environment=app.config.get('SENTRY_ENVIRONMENT') or app.config.get('APP_ENV') or None,
        )
    except Exception:
        app.logger.exception('Sentry could not be initialised; continuing without it.')
        return
    _sentry_ready = True
    app.logger.info('Sentry error reporting is on.')


def apply_response_headers(app, response):
    response.headers['X-Request-ID'] = g.get('request_id', '')
    for name, value in BASE_SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    if request.is_secure and app.config.get('HSTS_ENABLED', True):
        max_age = max(0, int(app.config.get('HSTS_MAX_AGE', 31536000)))
        response.headers.setdefault('Strict-Transport-Security', f'max-age={max_age}; includeSubDomains')

    origin = request.headers.get('Origin')
    if origin and request.path.startswith('/api/') and origin in app.config.get('ALLOWED_ORIGINS', ()):
        response.headers['Access-Control-Allow-Origin'] = origin
        response.headers['Access-Control-Allow-Credentials'] = 'true'
        response.headers['Access-Control-Allow-Headers'] = CORS_ALLOW_HEADERS
        response.headers['Access-Control-Allow-Methods'] = CORS_ALLOW_METHODS
        response.headers.add('Vary', 'Origin')

    if request.path.startswith('/admin'):
        response.headers.setdefault('X-Robots-Tag', 'noindex, nofollow, noarchive')
    if (response.content_type or '').startswith('text/html'):
        response.headers['Cache-Control'] = 'no-store, max-age=0'
        response.headers['Content-Security-Policy'] = ADMIN_CONTENT_SECURITY_POLICY
    elif request.path.startswith(app.config['UPLOAD_URL_PREFIX'] + '/') and response.status_code in (200, 304):
        response.headers['Cache-Control'] = 'public, max-age=604800'
    return response


def register_request_hooks(app):
    @app.before_request
    def assign_request_id():
        incoming = (request.headers.get('X-Request-ID') or '').strip()
        g.request_id = incoming if REQUEST_ID_PATTERN.match(incoming) else secrets.token_hex(16)

    @app.before_request
    def enforce_csrf():
        if request.method in UNSAFE_METHODS and request.blueprint in CSRF_PROTECTED_BLUEPRINTS:
            if not _csrf_token_valid():
                abort(400, description='Invalid or missing CSRF token.')

    @app.context_processor
    def template_globals():
        from .admin_table import ADMIN_TABLES

        return {
            'csrf_input': csrf_input,
            'admin_tables': ADMIN_TABLES,
        }

    @app.after_request
    def response_headers(response):
        return apply_response_headers(app, response)

    @app.errorhandler(HTTPException)
    def http_error(error):
        if request.path.startswith('/api/'):
            return jsonify({'message': error.description or error.name}), error.code
        return error


def register_commands(app):
    @app.cli.command('seed')
    def seed_command():
        """Create the admin user and the default blog categories."""
        from .seed import seed_database

        seed_database()
        click.echo('Seed complete.')


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    app.config.update(config_overrides or {})
    app.config['IS_PRODUCTION'] = str(app.config.get('APP_ENV') or '').lower() == 'production'
    configure_logging(app)

    if not app.config.get('SECRET_KEY'):
        app.config['SECRET_KEY'] = secrets.token_urlsafe(32)
        warnings.warn(
            'SECRET_KEY is not set; generated a throwaway key, so sessions end on restart.',
            stacklevel=2,
        )

    if app.config.get('TRUST_PROXY_HEADERS'):
        # One hop only: the platform's edge proxy.
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    init_sentry(app)
    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    db.init_app(app)
    login_manager.init_app(app)
    store = DocumentStore(app=app)
    app.extensions['started_at'] = time.monotonic()

    @app.teardown_appcontext
    def release_store_session(exception=None):
        if store.backend.name == 'sql':
            store.dispose()

    register_request_hooks(app)

    @app.get('/healthz')
    def healthz():
        return {'status': 'ok', 'backend': store.backend.name}

    @app.get(app.config['UPLOAD_URL_PREFIX'] + '/<path:filename>')
    def serve_upload(filename):
        return send_from_directory(app.config['UPLOAD_FOLDER'], filename, conditional=True, etag=True)

    from .routes.admin import admin_bp
    from .routes.api import api_bp

    app.register_blueprint(api_bp)
    app.register_blueprint(admin_bp, url_prefix='/admin')
    register_commands(app)

    with app.app_context():
        if store.backend.name == 'sql':
            db.create_all()
        if app.config.get('SEED_ON_STARTUP', True):
            from .seed import seed_database

            try:
                seed_database()
            except Exception:
                app.logger.exception('Startup seeding failed; the app will run without seed data.')

    return app
