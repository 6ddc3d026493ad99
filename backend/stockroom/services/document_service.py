# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current_number(document_type: str, period: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, period=period)
        .scalar()
    )


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    period: str | None = None,
    pad: int = 5,
) -> str:
    """
    Atomically allocate the next document number for a type/period.

    Runs inside the caller's transaction and does not commit. The counter row
    is bumped with a single UPDATE, so concurrent callers serialize on the row
    and a number is never handed out twice. Numbers are not reused after a
    document is deleted; a rolled-back caller may leave a gap.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if period is None:
        period = str(utcnow().year)

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_number(document_type, period) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, period=period, next_number=2))
            next_num = 1
        except IntegrityError:
            # Another caller created the row first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_number(document_type, period) - 1

    return f"{prefix}-{period}-{next_num:0{pad}d}"


def next_invoice_number() -> str:
    """INV-<year>-<5-digit sequence>, restarting each calendar year."""
    return next_document_number(document_type="INVOICE", prefix="INV")
