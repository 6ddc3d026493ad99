# backend/stockroom/errors.py
"""
Stock engine error taxonomy.

Every failure of an engine operation is raised as one of these and is never
fatal to the process. The request layer maps them to responses:

- NotFoundError          -> 404 (product / invoice / order / supplier absent)
- InsufficientStockError -> 409 (decrement would breach the non-negative floor)
- InvalidStateError      -> 409 (record is in the wrong lifecycle state)
- PartialFailureError    -> 409 (a batch failed mid-apply; see its report)

Input problems are raised as validation.ValidationError before any mutation.
"""
from __future__ import annotations


class StockError(Exception):
    """Base class for stock engine errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(StockError):
    """Raised when a referenced record does not exist."""


class InsufficientStockError(StockError):
    """Raised when on-hand quantity cannot cover a decrement."""


class InvalidStateError(StockError):
    """Raised when an operation is invalid for the record's current status."""


class PartialFailureError(StockError):
    """
    Raised when a stock batch fails during its apply pass.

    applied: lines that had been applied before the failure
    failed: the line that failed, with its reason
    compensation_failures: reversals that could not be applied
    rolled_back: True when a DB transaction undid the batch instead of compensation
    """
    def __init__(
        self,
        message: str,
        *,
        applied: list | None = None,
        failed: dict | None = None,
        compensation_failures: list | None = None,
        rolled_back: bool = False,
        cause: Exception | None = None,
    ):
        self.applied = list(applied or [])
        self.failed = failed or {}
        self.compensation_failures = list(compensation_failures or [])
        self.rolled_back = rolled_back
        self.cause = cause
        super().__init__(message, details=self.to_dict())

    def add_compensation_failure(self, entry: dict) -> None:
        self.compensation_failures.append(entry)
        self.details = self.to_dict()

    @property
    def failed_product_id(self) -> int | None:
        return self.failed.get("product_id")

    def to_dict(self) -> dict:
        return {
            "applied": [line.to_dict() for line in self.applied],
            "failed": self.failed,
            "compensation_failures": self.compensation_failures,
            "rolled_back": self.rolled_back,
        }
