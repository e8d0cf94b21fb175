"""Per-collection CRUD services.

Both the admin surface and the public API go through ``CollectionService``:
it validates every write against the shared schemas, applies the
collection rules (slug generation, uniqueness, category references,
append-only collections) and re-validates documents on the way out.
"""
import logging

from . import schemas
from .errors import (
    ContentError,
    DocumentNotFound,
    DocumentValidationError,
    DuplicateRecord,
    ReadOnlyCollection,
    ReferenceNotFound,
    ValidationFailed,
    VersionConflict,
)
from .schemas import META_FIELDS, load_document, validate_record
from .store import get_store
from .utils import make_slug

logger = logging.getLogger(__name__)

STATE_IDLE = 'idle'
STATE_LOADING = 'loading'
STATE_SUCCESS = 'success'
STATE_ERROR = 'error'
EXPECTED_ERRORS = (ContentError, DocumentNotFound, VersionConflict)


class OperationState:
    """Tracks the last call made through a service: idle -> loading -> success | error."""

    def __init__(self):
        self.status = STATE_IDLE
        self.operation = None
        self.data = None
        self.error = None

    @property
    def loading(self):
        return self.status == STATE_LOADING

    def start(self, operation):
        self.status = STATE_LOADING
        self.operation = operation
        self.error = None

    def succeed(self, data):
        self.status = STATE_SUCCESS
        self.data = data

    def fail(self, error):
        self.status = STATE_ERROR
        self.error = error


class CollectionRules:
    def __init__(
        self,
        label,
        slug_source=None,
        unique=(),
        references=None,
        read_only=False,
        order_by='createdAt',
        descending=False,
        duplicate_messages=None,
    ):
        self.label = label
        self.slug_source = slug_source
        self.unique = tuple(unique)
        self.references = references or {}
        self.read_only = read_only
        self.order_by = order_by
        self.descending = descending
        self.duplicate_messages = duplicate_messages or {}

    def duplicate_message(self, field):
        default = f'A {self.label} with this {field} already exists.'
        return self.duplicate_messages.get(field, default)


COLLECTION_RULES = {
    schemas.USERS: CollectionRules(
        'user',
        unique=('username',),
        duplicate_messages={'username': 'Username already exists'},
    ),
    schemas.CATEGORIES: CollectionRules('category', slug_source='name', unique=('slug',)),
    schemas.BLOG_POSTS: CollectionRules(
        'blog post',
        slug_source='title',
        unique=('slug',),
        references={'categoryId': schemas.CATEGORIES},
        order_by='publishedAt',
        descending=True,
    ),
    schemas.PROJECTS: CollectionRules(
        'project',
        unique=('title',),
        order_by='order',
        duplicate_messages={'title': 'A project with this title already exists'},
    ),
    schemas.SERVICES: CollectionRules('service', slug_source='title', unique=('slug',)),
    schemas.TEAM_MEMBERS: CollectionRules('team member'),
    schemas.TESTIMONIALS: CollectionRules('testimonial'),
    schemas.CONTACT_MESSAGES: CollectionRules(
        'contact message',
        read_only=True,
        descending=True,
    ),
    schemas.SUBSCRIBERS: CollectionRules(
        'subscriber',
        unique=('email',),
        read_only=True,
        descending=True,
        duplicate_messages={'email': 'Email already subscribed'},
    ),
}


def _unique_key(value):
    return str(value).strip().casefold()


class CollectionService:
    def __init__(self, store, collection):
        if collection not in COLLECTION_RULES:
            raise LookupError(f'Unknown collection: {collection}')
        self.store = store
        self.collection = collection
        self.rules = COLLECTION_RULES[collection]
        self.state = OperationState()

    def _run(self, operation, func, *args):
        self.state.start(operation)
        try:
            result = func(*args)
        except EXPECTED_ERRORS as exc:
            self.state.fail(exc)
            logger.warning('%s %s failed: %s', self.collection, operation, exc)
            raise
        except Exception as exc:
            self.state.fail(exc)
            logger.exception('%s %s failed.', self.collection, operation)
            raise
        self.state.succeed(result)
        return result

    # Reads

    def get_all(self):
        return self._run('get_all', self._get_all)

    def get_one(self, doc_id):
        return self._run('get_one', self._get_one, doc_id)

    def get_by_slug(self, slug):
        return self._run('get_by_slug', self._get_by_slug, slug)

    def _get_all(self):
        documents = self.store.get_all(
            self.collection,
            order_by=self.rules.order_by,
            descending=self.rules.descending,
        )
        records = []
        for document in documents:
            try:
                records.append(load_document(self.collection, document))
            except DocumentValidationError as exc:
                logger.warning(
                    'Skipping malformed document %s/%s: %s',
                    self.collection,
                    document.get('id'),
                    [error.as_dict() for error in exc.errors],
                )
        return records

    def _get_one(self, doc_id):
        return load_document(self.collection, self.store.get_one(self.collection, doc_id))

    def _get_by_slug(self, slug):
        matches = self.store.find_by(self.collection, 'slug', (slug or '').strip().lower())
        if not matches:
            raise DocumentNotFound(self.collection, slug)
        return load_document(self.collection, matches[0])

    # Writes

    def add(self, data):
        return self._run('add', self._add, data)

    def update(self, doc_id, data, expected_version=None):
        return self._run('update', self._update, doc_id, data, expected_version)

    def remove(self, doc_id):
        return self._run('remove', self._remove, doc_id)

    def _fill_slug(self, payload, fallback_source=None):
        source_field = self.rules.slug_source
        if not source_field or (payload.get('slug') or '').strip():
            return payload
        source = payload.get(source_field) or fallback_source or ''
        payload['slug'] = make_slug(source)
        return payload

    def _add(self, data):
        payload = self._fill_slug(dict(data or {}))
        record, errors = validate_record(self.collection, payload)
        if errors:
            raise ValidationFailed(errors)
        self._check_unique(record)
        self._check_references(record, record.keys())
        doc_id = self.store.add(self.collection, record)
        logger.info('Added %s/%s', self.collection, doc_id)
        return self._get_one(doc_id)

    def _update(self, doc_id, data, expected_version):
        if self.rules.read_only:
            raise ReadOnlyCollection(self.collection)
        existing = self.store.get_one(self.collection, doc_id)
        if expected_version is not None and existing.get('version') != expected_version:
            raise VersionConflict(self.collection, doc_id, expected_version, existing.get('version'))
        payload = {k: v for k, v in (data or {}).items() if k not in META_FIELDS}
        if 'slug' in payload:
            self._fill_slug(payload, existing.get(self.rules.slug_source) if self.rules.slug_source else None)
        record, errors = validate_record(self.collection, payload, base=existing)
        if errors:
            raise ValidationFailed(errors)
        changes = {
            key: value
            for key, value in record.items()
            if key not in existing or existing[key] != value
        }
        if not changes:
            return load_document(self.collection, existing)
        self._check_unique(record, exclude_id=existing['id'])
        self._check_references(record, changes.keys())
        self.store.update(self.collection, doc_id, changes, expected_version=expected_version)
        logger.info('Updated %s/%s fields=%s', self.collection, doc_id, sorted(changes))
        return self._get_one(doc_id)

    def _remove(self, doc_id):
        # No cascade: records pointing at this one keep their reference.
        self.store.remove(self.collection, doc_id)
        logger.info('Removed %s/%s', self.collection, doc_id)
        return doc_id

    def _check_unique(self, record, exclude_id=None):
        if not self.rules.unique:
            return
        documents = self.store.get_all(self.collection)
        for field in self.rules.unique:
            value = record.get(field)
            if value in (None, ''):
                continue
            key = _unique_key(value)
            for document in documents:
                if document.get('id') == exclude_id:
                    continue
                if document.get(field) is not None and _unique_key(document[field]) == key:
                    raise DuplicateRecord(field, self.rules.duplicate_message(field))

    def _check_references(self, record, fields):
        for field, target in self.rules.references.items():
            value = record.get(field)
            if field not in fields or not value:
                continue
            try:
                self.store.get_one(target, value)
            except DocumentNotFound:
                raise ReferenceNotFound(field, f'{field} does not match an existing record.') from None


def get_service(collection, store=None):
    return CollectionService(store or get_store(), collection)


def services_for(app):
    store = app.extensions['document_store']
    return {collection: CollectionService(store, collection) for collection in COLLECTION_RULES}


def attach_category(post, categories_by_id):
    expanded = dict(post)
    category_id = post.get('categoryId')
    expanded['category'] = categories_by_id.get(category_id) if category_id else None
    return expanded


def blog_posts_with_categories(store=None, published_only=False):
    store = store or get_store()
    posts = CollectionService(store, schemas.BLOG_POSTS).get_all()
    categories = {item['id']: item for item in CollectionService(store, schemas.CATEGORIES).get_all()}
    if published_only:
        posts = [post for post in posts if post.get('published')]
    return [attach_category(post, categories) for post in posts]


def blog_post_with_category(slug, store=None):
    store = store or get_store()
    post = CollectionService(store, schemas.BLOG_POSTS).get_by_slug(slug)
    category_id = post.get('categoryId')
    categories = {}
    if category_id:
        try:
            categories[category_id] = CollectionService(store, schemas.CATEGORIES).get_one(category_id)
        except DocumentNotFound:
            pass
    return attach_category(post, categories)
