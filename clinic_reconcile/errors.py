"""
Error taxonomy for clinic_reconcile.

Each class maps to one way a reconciliation run can go wrong and to the
handling the pipeline applies to it.
"""

from typing import Optional


class ClinicReconcileError(Exception):
    """Base class for all reconciliation errors."""


class DataError(ClinicReconcileError):
    """Malformed or missing address/coordinate data on a single record."""

    def __init__(self, message: str, field: Optional[str] = None, value=None):
        super().__init__(message)
        self.field = field
        self.value = value


class ExternalServiceError(ClinicReconcileError):
    """Failure reaching or decoding a response from the places provider."""

    def __init__(self, message: str, status: Optional[str] = None,
                 request_key: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.request_key = request_key


class TransientServiceError(ExternalServiceError):
    """Timeouts, connection failures, quota and 5xx responses. Retried."""


class PermanentServiceError(ExternalServiceError):
    """Not found, invalid request, access denied. Never retried."""


class PersistenceError(ClinicReconcileError):
    """The clinic or audit store rejected a read or write."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 context: Optional[dict] = None):
        super().__init__(message)
        self.operation = operation
        self.context = context or {}


class ReportIntegrityError(ClinicReconcileError):
    """A run cannot produce a serializable report. Fatal for the run."""
