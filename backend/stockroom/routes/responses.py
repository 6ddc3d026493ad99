# backend/stockroom/routes/responses.py
"""Translate engine errors into JSON error responses."""

from ..errors import (
    StockError,
    NotFoundError,
    InsufficientStockError,
    InvalidStateError,
    PartialFailureError,
)
from ..validation import ValidationError, ConflictError

# Most specific first
ERROR_STATUS = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (InsufficientStockError, 409),
    (InvalidStateError, 409),
    (PartialFailureError, 409),
    (StockError, 400),
)

HANDLED_ERRORS = (ValidationError, ConflictError, StockError)


def error_response(exc: Exception):
    status = 400
    for exc_type, code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            status = code
            break

    body = {"error": str(exc), "type": type(exc).__name__}
    details = getattr(exc, "details", None)
    if details:
        body["details"] = details
    return body, status
