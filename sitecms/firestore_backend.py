"""Google Cloud Firestore backend for the document store.

Installed with the ``firestore`` extra and selected with
``DOCUMENT_STORE_BACKEND=firestore``. Credentials come from the usual
Google application-default chain (``GOOGLE_APPLICATION_CREDENTIALS``).
"""
import logging

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from .errors import DocumentNotFound, StoreUnavailable, VersionConflict
from .utils import isoformat, utc_now

logger = logging.getLogger(__name__)


class FirestoreDocumentBackend:
    name = 'firestore'

    def __init__(self, client):
        self.client = client

    @classmethod
    def from_config(cls, config):
        client = firestore.Client(
            project=(config.get('FIRESTORE_PROJECT_ID') or None),
            database=(config.get('FIRESTORE_DATABASE') or None),
        )
        return cls(client)

    def _to_document(self, snapshot):
        document = dict(snapshot.to_dict() or {})
        for key in ('createdAt', 'updatedAt'):
            value = document.get(key)
            if hasattr(value, 'isoformat'):
                document[key] = isoformat(value)
        document['id'] = snapshot.id
        document['version'] = int(document.get('version') or 1)
        return document

    def _snapshot(self, collection, doc_id):
        snapshot = self.client.collection(collection).document(str(doc_id)).get()
        if not snapshot.exists:
            raise DocumentNotFound(collection, doc_id)
        return snapshot

    def _call(self, action, func, *args, **kwargs):
        try:
            return func(*args, **kwargs)
        except google_exceptions.GoogleAPICallError as exc:
            logger.exception('Firestore %s failed.', action)
            raise StoreUnavailable() from exc

    def get_all(self, collection):
        snapshots = self._call('read', lambda: list(self.client.collection(collection).stream()))
        return [self._to_document(snapshot) for snapshot in snapshots]

    def get_one(self, collection, doc_id):
        return self._to_document(self._call('read', self._snapshot, collection, doc_id))

    def find_by(self, collection, field, value):
        query = self.client.collection(collection).where(filter=FieldFilter(field, '==', value))
        snapshots = self._call('query', lambda: list(query.stream()))
        return [self._to_document(snapshot) for snapshot in snapshots]

    def add(self, collection, data):
        now = utc_now()
        payload = dict(data, version=1, createdAt=now, updatedAt=now)
        _, reference = self._call('add', self.client.collection(collection).add, payload)
        return reference.id

    def update(self, collection, doc_id, data, expected_version=None):
        snapshot = self._call('read', self._snapshot, collection, doc_id)
        current_version = int((snapshot.to_dict() or {}).get('version') or 1)
        if expected_version is not None and current_version != expected_version:
            raise VersionConflict(collection, doc_id, expected_version, current_version)
        payload = dict(data, version=current_version + 1, updatedAt=utc_now())
        kwargs = {}
        if expected_version is not None:
            kwargs['option'] = self.client.write_option(last_update_time=snapshot.update_time)
        try:
            snapshot.reference.update(payload, **kwargs)
        except google_exceptions.FailedPrecondition as exc:
            raise VersionConflict(collection, doc_id, expected_version, None) from exc
        except google_exceptions.NotFound as exc:
            raise DocumentNotFound(collection, doc_id) from exc
        except google_exceptions.GoogleAPICallError as exc:
            logger.exception('Firestore update failed.')
            raise StoreUnavailable() from exc
        return current_version + 1

    def remove(self, collection, doc_id):
        snapshot = self._call('read', self._snapshot, collection, doc_id)
        self._call('remove', snapshot.reference.delete)

    def dispose(self):
        close = getattr(self.client, 'close', None)
        if close is not None:
            close()
