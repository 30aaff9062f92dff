from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Database-backed counter for human-readable document numbers.

    One row per scope, e.g. "INV-20261019". next_number is the number the
    next document in that scope will receive.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("scope", name="uq_document_sequences_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(64), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
