import re
import time

from flask import Blueprint, abort, current_app, jsonify, request, session
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.exceptions import HTTPException

from ..auth import authenticate
from ..errors import ContentError, DuplicateRecord, ReadOnlyCollection, StoreError, ValidationFailed
from ..schemas import (
    BLOG_POSTS,
    CATEGORIES,
    CONTACT_MESSAGES,
    PROJECTS,
    SERVICES,
    SUBSCRIBERS,
    TEAM_MEMBERS,
    TESTIMONIALS,
    FieldError,
)
from ..services import blog_post_with_category, blog_posts_with_categories, get_service
from ..uploads import save_image
from ..utils import clean_text, isoformat, parse_int, utc_now

api_bp = Blueprint('api', __name__)
SERVER_NAME = 'sitecms API'
DEFAULT_SERVICE_ICON = 'globe'
SERVICE_ICON_RE = re.compile(r'[^a-z0-9]')
ADMIN_COLLECTIONS = (
    CATEGORIES,
    BLOG_POSTS,
    PROJECTS,
    SERVICES,
    TEAM_MEMBERS,
    TESTIMONIALS,
    CONTACT_MESSAGES,
    SUBSCRIBERS,
)


def _public_json(payload, status=200):
    response = jsonify(payload)
    response.status_code = status
    response.headers['Cache-Control'] = current_app.config.get(
        'PUBLIC_CACHE_CONTROL', 'public, max-age=120, s-maxage=300'
    )
    return response


def _json_body():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationFailed([FieldError('__root__', 'Expected a JSON object')])
    return payload


def _expected_version(payload):
    header = (request.headers.get('If-Match') or '').strip()
    if header:
        header = header[2:] if header.startswith('W/') else header
        version = parse_int(header.strip('"'), default=None)
        if version is None:
            abort(400, description='If-Match must carry a numeric version.')
        return version
    if payload.get('version') in (None, ''):
        return None
    version = parse_int(payload.get('version'), default=None)
    if version is None:
        raise ValidationFailed([FieldError('version', 'Version must be an integer')])
    return version


def normalize_service_icon(icon):
    normalized = SERVICE_ICON_RE.sub('', str(icon or '').lower())
    return normalized or DEFAULT_SERVICE_ICON


def _public_service(record):
    item = dict(record)
    item['icon'] = normalize_service_icon(item.get('icon'))
    return item


# Error handling


@api_bp.errorhandler(ContentError)
def handle_content_error(error):
    payload = {'message': error.message}
    if isinstance(error, ValidationFailed):
        payload['errors'] = error.as_list()
    if isinstance(error, DuplicateRecord):
        payload['status'] = 'duplicate'
        payload['field'] = error.field
    current_app.logger.warning(f'API request rejected ({error.status_code}): {error.message}')
    return jsonify(payload), error.status_code


@api_bp.errorhandler(StoreError)
def handle_store_error(error):
    if error.status_code >= 500:
        current_app.logger.error(f'Content store error: {error.message}')
        return jsonify({'message': error.public_message}), error.status_code
    return jsonify({'message': error.message}), error.status_code


@api_bp.errorhandler(HTTPException)
def handle_http_error(error):
    return jsonify({'message': error.description or error.name}), error.code


@api_bp.errorhandler(Exception)
def handle_unexpected_error(error):
    current_app.logger.exception('Unhandled API error.')
    payload = {'error': 'Internal Server Error'}
    if not current_app.config.get('IS_PRODUCTION'):
        payload['message'] = str(error)
    return jsonify(payload), 500


# Status


@api_bp.get('/api/health')
def health():
    started_at = current_app.extensions.get('started_at', time.monotonic())
    return jsonify({
        'status': 'healthy',
        'timestamp': isoformat(utc_now()),
        'uptime': round(time.monotonic() - started_at, 3),
        'environment': current_app.config.get('APP_ENV', 'development'),
    })


@api_bp.route('/api/ping', methods=['GET', 'HEAD'])
def ping():
    now = isoformat(utc_now())
    if request.method == 'HEAD':
        response = current_app.response_class(status=200)
    else:
        response = jsonify({'status': 'ok', 'timestamp': now, 'server': SERVER_NAME})
    response.headers['X-Server-Time'] = now
    response.headers['X-Server'] = SERVER_NAME
    return response


@api_bp.get('/api/debug')
def debug_info():
    if current_app.config.get('IS_PRODUCTION'):
        abort(404)
    config = current_app.config
    return jsonify({
        'appEnv': config.get('APP_ENV'),
        'documentStoreBackend': config.get('DOCUMENT_STORE_BACKEND'),
        'hasFirestoreConfig': bool(config.get('FIRESTORE_PROJECT_ID')),
        'hasSentry': bool(config.get('SENTRY_DSN')),
        'hasGaMeasurementId': bool(config.get('GA_MEASUREMENT_ID')),
        'allowedOrigins': list(config.get('ALLOWED_ORIGINS') or ()) or 'not set',
        'apiBaseUrl': config.get('API_BASE_URL') or None,
        'apiTimeoutSeconds': config.get('API_TIMEOUT_SECONDS'),
    })


# Public content


@api_bp.get('/api/blog-posts')
def blog_posts():
    return _public_json(blog_posts_with_categories(published_only=True))


@api_bp.get('/api/blog-posts/<slug>')
def blog_post(slug):
    post = blog_post_with_category(clean_text(slug, 300))
    if not post.get('published'):
        abort(404)
    return _public_json(post)


@api_bp.get('/api/services')
def services():
    return _public_json([_public_service(item) for item in get_service(SERVICES).get_all()])


@api_bp.get('/api/services/<slug>')
def service_detail(slug):
    return _public_json(_public_service(get_service(SERVICES).get_by_slug(clean_text(slug, 200))))


@api_bp.get('/api/categories', defaults={'collection': CATEGORIES})
@api_bp.get('/api/team-members', defaults={'collection': TEAM_MEMBERS})
@api_bp.get('/api/projects', defaults={'collection': PROJECTS})
@api_bp.get('/api/testimonials', defaults={'collection': TESTIMONIALS})
def public_collection(collection):
    return _public_json(get_service(collection).get_all())


@api_bp.post('/api/contact')
def contact():
    try:
        record = get_service(CONTACT_MESSAGES).add(_json_body())
    except ValidationFailed as exc:
        raise ValidationFailed(exc.errors, 'Invalid form data') from None
    return jsonify(record), 201


@api_bp.post('/api/subscribe')
def subscribe():
    try:
        record = get_service(SUBSCRIBERS).add(_json_body())
    except ValidationFailed as exc:
        raise ValidationFailed(exc.errors, 'Invalid email') from None
    except DuplicateRecord:
        return jsonify({'message': 'Email already subscribed'}), 400
    return jsonify(record), 201


# Session auth


@api_bp.post('/api/login')
def login():
    payload = _json_body()
    user = authenticate(payload.get('username'), payload.get('password'))
    if user is None:
        current_app.logger.warning('Failed API login attempt.')
        return jsonify({'message': 'Invalid username or password'}), 401
    remember = bool(payload.get('rememberMe'))
    session.clear()
    login_user(user, remember=remember, duration=current_app.config.get('REMEMBER_COOKIE_DURATION'))
    current_app.logger.info(f'User "{user.username}" logged in (remember={remember}).')
    return jsonify(user.to_public())


@api_bp.post('/api/logout')
def logout():
    logout_user()
    return jsonify({'message': 'Logged out'})


@api_bp.get('/api/user')
@login_required
def current_user_info():
    return jsonify(current_user.to_public())


# Admin CRUD


def _admin_service(collection):
    if collection not in ADMIN_COLLECTIONS:
        abort(404)
    return get_service(collection)


@api_bp.route('/api/admin/<collection>', methods=['GET', 'POST'])
@login_required
def admin_collection(collection):
    service = _admin_service(collection)
    if request.method == 'GET':
        return jsonify(service.get_all())
    if service.rules.read_only:
        raise ReadOnlyCollection(collection)
    return jsonify(service.add(_json_body())), 201


@api_bp.route('/api/admin/<collection>/<doc_id>', methods=['GET', 'PUT', 'PATCH', 'DELETE'])
@login_required
def admin_document(collection, doc_id):
    service = _admin_service(collection)
    if request.method == 'GET':
        return jsonify(service.get_one(doc_id))
    if request.method == 'DELETE':
        service.remove(doc_id)
        return '', 204
    if service.rules.read_only:
        raise ReadOnlyCollection(collection)
    payload = _json_body()
    record = service.update(doc_id, payload, expected_version=_expected_version(payload))
    return jsonify(record)


@api_bp.post('/api/upload')
@login_required
def upload():
    payload = _json_body()
    if not payload.get('image'):
        return jsonify({'message': 'No image provided'}), 400
    url = save_image(payload['image'], payload.get('folder'))
    return jsonify({'url': url})
