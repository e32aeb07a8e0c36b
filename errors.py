"""
errors.py
Error taxonomy for the fund ledger

Boundary layers map http_status onto their response codes.
"""

from typing import List, Optional


class WaterfallError(Exception):
    """Base class for all ledger errors."""
    http_status = 500


class ValidationError(WaterfallError, ValueError):
    """Input rejected before any computation or write.

    Carries every problem found, not just the first one.
    """
    http_status = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors) if errors else [message]
        super().__init__(message)


class ConflictError(WaterfallError):
    """Request is valid but the record is in the wrong state."""
    http_status = 409


class NotFoundError(WaterfallError, LookupError):
    """A structure, call, distribution or tier id did not resolve."""
    http_status = 404

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class LedgerConsistencyError(WaterfallError, AssertionError):
    """An internal ledger invariant does not hold. Never persisted."""
    http_status = 500


class AccessDeniedError(WaterfallError, PermissionError):
    http_status = 403
