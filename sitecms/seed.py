import secrets

from flask import current_app
from werkzeug.security import check_password_hash, generate_password_hash

from .auth import ensure_admin_user, find_user
from .schemas import CATEGORIES, USERS
from .services import get_service

DEFAULT_DEV_ADMIN_PASSWORD = 'admin123'
DEFAULT_CATEGORIES = [
    {
        'name': 'Web & Mobile Development',
        'slug': 'web-mobile-development',
        'description': 'Website development, mobile apps, responsive design and modern web technologies.',
    },
    {
        'name': 'Digital Marketing & SEO',
        'slug': 'digital-marketing-seo',
        'description': 'SEO tips, social media marketing, search ads and digital marketing strategy for small businesses.',
    },
    {
        'name': 'ERP, Billing & Custom Software',
        'slug': 'erp-billing-custom-software',
        'description': 'ERP systems, billing software, CRM solutions and custom software development.',
    },
    {
        'name': 'Design & Branding',
        'slug': 'design-branding',
        'description': 'Logo design, UI/UX, graphic design, branding strategy and visual identity.',
    },
]


def _admin_password():
    password = current_app.config.get('ADMIN_PASSWORD') or ''
    if password:
        return password
    if current_app.config.get('IS_PRODUCTION'):
        current_app.logger.warning(
            'ADMIN_PASSWORD not set. Seeded admin with a random password. '
            'Set ADMIN_PASSWORD and restart to rotate it to a known value.'
        )
        return secrets.token_urlsafe(16)
    return DEFAULT_DEV_ADMIN_PASSWORD


def seed_admin_user():
    username = current_app.config.get('ADMIN_USERNAME') or 'admin'
    env_password = current_app.config.get('ADMIN_PASSWORD') or ''
    existing = find_user(username)
    if existing is not None:
        # Keep the stored password in sync with ADMIN_PASSWORD when it is set.
        if env_password and not check_password_hash(existing['passwordHash'], env_password):
            get_service(USERS).update(existing['id'], {'passwordHash': generate_password_hash(env_password)})
        return existing
    created = ensure_admin_user(username, _admin_password())
    current_app.logger.info(f'Seeded admin user "{username}".')
    return created


def seed_categories():
    service = get_service(CATEGORIES)
    existing = {item['slug'] for item in service.get_all()}
    created = 0
    for category in DEFAULT_CATEGORIES:
        if category['slug'] in existing:
            continue
        service.add(category)
        created += 1
    if created:
        current_app.logger.info(f'Seeded {created} blog categories.')
    return created


def seed_database():
    seed_admin_user()
    seed_categories()
