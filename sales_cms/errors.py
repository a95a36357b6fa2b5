"""
Error Taxonomy

Every engine error carries the entity it concerns and the attempted operation
so the caller can decide what to do next. ValidationError and NotFoundError
also subclass the builtin ValueError / LookupError they specialise.
"""

from typing import Optional


class SalesCMSError(Exception):
    """Base class for all case-management errors"""

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        operation: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation = operation

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "operation": self.operation,
        }


class ValidationError(SalesCMSError, ValueError):
    """Malformed or out-of-range input. Never retried."""


class NotFoundError(SalesCMSError, LookupError):
    """Referenced case, installment or record does not exist"""


class ConcurrencyConflict(SalesCMSError):
    """
    A versioned write lost a race with another writer.

    The only error with a sanctioned automatic retry (bounded) at the
    allocation boundary.
    """
