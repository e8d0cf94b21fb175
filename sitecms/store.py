"""Document-store client.

``DocumentStore`` translates get/add/update/remove calls on named
collections into calls against a backend. Each call either returns the
requested data/id or raises a ``StoreError``; there are no retries, no
caching and no cross-document transactions.
"""
import json
import logging
import uuid
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .errors import DocumentNotFound, StoreUnavailable, VersionConflict
from .models import StoredDocument, db, utc_now_naive
from .utils import isoformat

logger = logging.getLogger(__name__)
EXTENSION_KEY = 'document_store'


def _safe_json_loads(raw_value, fallback):
    if raw_value is None:
        return fallback
    if isinstance(raw_value, dict):
        return raw_value
    value = str(raw_value).strip()
    if not value:
        return fallback
    try:
        loaded = json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return fallback
    return loaded if isinstance(loaded, dict) else fallback


@contextmanager
def _sql_errors(action):
    try:
        yield
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception('Document store %s failed.', action)
        raise StoreUnavailable() from exc


class SqlDocumentBackend:
    """Stores every document as a JSON blob in the ``stored_document`` table."""

    name = 'sql'

    def _to_document(self, row):
        document = _safe_json_loads(row.data_json, {})
        document.update(
            id=row.doc_id,
            version=row.version,
            createdAt=isoformat(row.created_at),
            updatedAt=isoformat(row.updated_at),
        )
        return document

    def _get_row(self, collection, doc_id):
        row = StoredDocument.query.filter_by(collection=collection, doc_id=str(doc_id)).first()
        if row is None:
            raise DocumentNotFound(collection, doc_id)
        return row

    def get_all(self, collection):
        with _sql_errors('read'):
            rows = StoredDocument.query.filter_by(collection=collection).order_by(
                StoredDocument.created_at.asc(),
                StoredDocument.id.asc(),
            ).all()
            return [self._to_document(row) for row in rows]

    def get_one(self, collection, doc_id):
        with _sql_errors('read'):
            return self._to_document(self._get_row(collection, doc_id))

    def find_by(self, collection, field, value):
        # Documents are opaque JSON to the database, so equality lookups run here.
        return [doc for doc in self.get_all(collection) if doc.get(field) == value]

    def add(self, collection, data):
        doc_id = uuid.uuid4().hex
        with _sql_errors('add'):
            db.session.add(StoredDocument(
                collection=collection,
                doc_id=doc_id,
                data_json=json.dumps(data, ensure_ascii=False),
                version=1,
            ))
            db.session.commit()
        return doc_id

    def update(self, collection, doc_id, data, expected_version=None):
        with _sql_errors('update'):
            row = self._get_row(collection, doc_id)
            current_version = row.version
            if expected_version is not None and current_version != expected_version:
                raise VersionConflict(collection, doc_id, expected_version, current_version)
            merged = _safe_json_loads(row.data_json, {})
            merged.update(data)
            query = StoredDocument.query.filter_by(id=row.id)
            if expected_version is not None:
                query = query.filter_by(version=current_version)
            changed = query.update(
                {
                    'data_json': json.dumps(merged, ensure_ascii=False),
                    'version': current_version + 1,
                    'updated_at': utc_now_naive(),
                },
                synchronize_session=False,
            )
            if not changed:
                db.session.rollback()
                actual = self._get_row(collection, doc_id).version
                raise VersionConflict(collection, doc_id, expected_version, actual)
            db.session.commit()
        return current_version + 1

    def remove(self, collection, doc_id):
        with _sql_errors('remove'):
            db.session.delete(self._get_row(collection, doc_id))
            db.session.commit()

    def dispose(self):
        db.session.remove()


def _sort_documents(documents, order_by, descending):
    present = [doc for doc in documents if doc.get(order_by) is not None]
    missing = [doc for doc in documents if doc.get(order_by) is None]
    present.sort(key=lambda doc: doc[order_by], reverse=descending)
    return present + missing


class DocumentStore:
    def __init__(self, backend=None, app=None):
        self.backend = backend
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        if self.backend is None:
            self.backend = build_backend(app.config)
        app.extensions[EXTENSION_KEY] = self
        app.logger.info(f'Document store ready (backend={self.backend.name}).')

    def dispose(self):
        if self.backend is not None:
            self.backend.dispose()

    def get_all(self, collection, order_by=None, descending=False):
        documents = self.backend.get_all(collection)
        if order_by:
            documents = _sort_documents(documents, order_by, descending)
        return documents

    def get_one(self, collection, doc_id):
        return self.backend.get_one(collection, doc_id)

    def find_by(self, collection, field, value):
        return self.backend.find_by(collection, field, value)

    def add(self, collection, data):
        return self.backend.add(collection, data)

    def update(self, collection, doc_id, data, expected_version=None):
        return self.backend.update(collection, doc_id, data, expected_version=expected_version)

    def remove(self, collection, doc_id):
        self.backend.remove(collection, doc_id)


def build_backend(config):
    kind = (config.get('DOCUMENT_STORE_BACKEND') or 'sql').strip().lower()
    if kind == 'sql':
        return SqlDocumentBackend()
    if kind == 'firestore':
        from .firestore_backend import FirestoreDocumentBackend

        return FirestoreDocumentBackend.from_config(config)
    raise ValueError(f'Unsupported DOCUMENT_STORE_BACKEND: {kind}')


def get_store():
    return current_app.extensions[EXTENSION_KEY]
