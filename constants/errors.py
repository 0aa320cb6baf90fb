"""
Exceptions raised by the fulfillment engines and the storage layer.

Validation problems are raised before any ledger call is made. Storage and
reconciliation errors wrap whatever the backend raised.
"""

from typing import Optional


class FulfillmentError(Exception):
    """Base class for all fulfillment dashboard errors"""


class TransitionValidationError(FulfillmentError):
    """A transition was requested with missing or out-of-range input"""


class ConfirmationRequired(FulfillmentError):
    """
    A soft warning the user has to accept before the transition can run.

    The caller retries the same transition with the confirmation flag that
    matches ``kind`` set on the transition extras.
    """

    LOW_STOCK = "low_stock"
    DISPATCH_CASCADE = "dispatch_cascade"

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class StorageError(FulfillmentError):
    """A store call failed"""

    def __init__(self, message: str, written: Optional[int] = None, total: Optional[int] = None):
        super().__init__(message)
        self.written = written
        self.total = total


class ReconciliationError(FulfillmentError):
    """A read failed during a reconciliation pass; no partial result is returned"""


class ExclusionError(FulfillmentError):
    """Duplicate exclusion or a failing exclusion ledger call"""
