# Overview: Typed failures raised by the ledger, inventory and anomaly services.

"""
Error taxonomy.

Every service failure is a LedgerError subclass carrying the HTTP status the
API layer should answer with. Business-rule rejections (credit, stock,
overpayment) are surfaced as-is; nothing is clamped or coerced.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all service-layer failures."""

    status_code = 400
    code = "LEDGER_ERROR"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = {k: _jsonable(v) for k, v in self.details.items()}
        return payload


class NotFoundError(LedgerError):
    """Referenced entity does not exist (or is soft-deleted)."""

    status_code = 404
    code = "NOT_FOUND"


class ValidationError(LedgerError, ValueError):
    """Malformed or missing input (zero delta, missing owner, bad month...)."""

    status_code = 400
    code = "VALIDATION_ERROR"


class CreditLimitExceededError(LedgerError):
    status_code = 409
    code = "CREDIT_LIMIT_EXCEEDED"


class InsufficientStockError(LedgerError):
    status_code = 409
    code = "INSUFFICIENT_STOCK"


class OverpaymentError(LedgerError):
    status_code = 409
    code = "OVERPAYMENT"


class ShiftLockedError(LedgerError):
    """Shift is LOCKED; its readings, cash count and sales are final."""

    status_code = 409
    code = "SHIFT_LOCKED"


class ConcurrencyConflictError(LedgerError):
    """Lost update detected on same-key contention (stale version)."""

    status_code = 409
    code = "CONCURRENCY_CONFLICT"


class PersistenceError(LedgerError):
    """Underlying store failed; the unit of work was rolled back."""

    status_code = 503
    code = "PERSISTENCE_ERROR"


def _jsonable(value):
    # Decimal and other numeric types go out as strings to keep precision
    if isinstance(value, (int, str, bool)) or value is None:
        return value
    return str(value)
