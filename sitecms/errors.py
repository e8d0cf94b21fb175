"""Error taxonomy shared by the store, service and HTTP layers."""


class StoreError(Exception):
    status_code = 500
    public_message = 'The content store reported an error.'

    def __init__(self, message=None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class StoreUnavailable(StoreError):
    public_message = 'The content store is unavailable.'


class DocumentNotFound(StoreError):
    status_code = 404

    def __init__(self, collection, doc_id):
        super().__init__(f'{collection}/{doc_id} not found.')
        self.collection = collection
        self.doc_id = doc_id


class VersionConflict(StoreError):
    status_code = 409

    def __init__(self, collection, doc_id, expected, actual):
        super().__init__(
            f'{collection}/{doc_id} was modified by someone else '
            f'(expected version {expected}, found {actual}).'
        )
        self.collection = collection
        self.doc_id = doc_id
        self.expected = expected
        self.actual = actual


class DocumentValidationError(StoreError):
    """A stored document no longer matches its schema."""

    def __init__(self, collection, doc_id, errors):
        super().__init__(f'{collection}/{doc_id} failed schema validation.')
        self.collection = collection
        self.doc_id = doc_id
        self.errors = errors


class ContentError(Exception):
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationFailed(ContentError):
    def __init__(self, errors, message='Invalid data'):
        super().__init__(message)
        self.errors = errors

    def as_list(self):
        return [error.as_dict() for error in self.errors]


class DuplicateRecord(ContentError):
    status_code = 409

    def __init__(self, field, message):
        super().__init__(message)
        self.field = field


class ReferenceNotFound(ContentError):
    def __init__(self, field, message):
        super().__init__(message)
        self.field = field


class ReadOnlyCollection(ContentError):
    status_code = 405

    def __init__(self, collection):
        super().__init__(f'{collection} records cannot be modified after creation.')
        self.collection = collection


class InvalidUpload(ContentError):
    pass
