from flask import jsonify, redirect, request, url_for
from flask_login import LoginManager, UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from .errors import DocumentNotFound
from .schemas import USERS, load_document, public_user
from .services import get_service
from .store import get_store
from .utils import clean_text

login_manager = LoginManager()
login_manager.login_view = 'admin.login'
AUTH_DUMMY_HASH = generate_password_hash('sitecms::dummy-auth-check')


class AdminUser(UserMixin):
    """Flask-Login wrapper around a record from the ``users`` collection."""

    def __init__(self, record):
        self.record = record
        self.id = record['id']
        self.username = record['username']
        self.name = record.get('name') or record['username']

    def to_public(self):
        return public_user(self.record)


@login_manager.user_loader
def load_user(user_id):
    try:
        record = load_document(USERS, get_store().get_one(USERS, user_id))
    except DocumentNotFound:
        return None
    return AdminUser(record)


@login_manager.unauthorized_handler
def unauthorized():
    if request.path.startswith('/api/'):
        return jsonify({'message': 'Not authenticated'}), 401
    return redirect(url_for('admin.login'))


def find_user(username):
    matches = get_store().find_by(USERS, 'username', clean_text(username, 80))
    if not matches:
        return None
    return load_document(USERS, matches[0])


def authenticate(username, password):
    record = find_user(username)
    if record is None:
        # Keep response timing closer for unknown usernames.
        check_password_hash(AUTH_DUMMY_HASH, password or '')
        return None
    if not check_password_hash(record['passwordHash'], password or ''):
        return None
    return AdminUser(record)


def ensure_admin_user(username, password, name='Administrator'):
    """Create the admin account unless a user with that username exists."""
    if find_user(username) is not None:
        return None
    return get_service(USERS).add({
        'username': username,
        'passwordHash': generate_password_hash(password),
        'name': name,
    })
