from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utc_now_naive():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StoredDocument(db.Model):
    """One schemaless JSON document inside a named collection."""

    __tablename__ = 'stored_document'

    id = db.Column(db.Integer, primary_key=True)
    collection = db.Column(db.String(80), nullable=False, index=True)
    doc_id = db.Column(db.String(64), nullable=False)
    data_json = db.Column(db.Text, nullable=False, default='{}')
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=utc_now_naive, index=True)
    updated_at = db.Column(db.DateTime, default=utc_now_naive, onupdate=utc_now_naive, index=True)

    __table_args__ = (
        db.UniqueConstraint('collection', 'doc_id', name='uq_stored_document_collection_doc'),
        db.Index('ix_stored_document_collection_created', 'collection', 'created_at'),
    )
