from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Atomic counter for human-readable document numbers.

    One row per (document_type, period). next_number is bumped with a single
    UPDATE ... SET next_number = next_number + 1, so numbers are never handed
    out twice and never reused after the document is deleted.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "period", name="uq_document_sequences_type_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    period = db.Column(db.String(16), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<DocumentSequence {self.document_type}/{self.period} next={self.next_number}>"
