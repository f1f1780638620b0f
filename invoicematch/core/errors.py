from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for failures raised by the reconciliation core."""


class ValidationError(ReconciliationError):
    """Raised when an inbound submission cannot be accepted (client-caused)."""


class MissingKeyField(ValidationError):
    """Raised when the invoice number is absent from an evaluation."""

    def __init__(self, field_label: str) -> None:
        super().__init__(f"invoice number field '{field_label}' not found in evaluation")
        self.field_label = field_label


class CollaboratorUnavailable(ReconciliationError):
    """Raised when an external collaborator cannot be reached or misbehaves."""


class EvaluationUnavailable(CollaboratorUnavailable):
    """The evaluation platform fetch failed."""


class LedgerUnavailable(CollaboratorUnavailable):
    """The ledger was unreachable or returned malformed data."""


class LedgerConflict(ReconciliationError):
    """Raised when a ledger row was finalized by a concurrent submission."""

    def __init__(self, row_number: int) -> None:
        super().__init__(f"ledger row {row_number} was already finalized")
        self.row_number = row_number


class DispatchFailure(ReconciliationError):
    """Raised by alert sinks; never escapes the alert dispatcher."""

    retryable = True


class SinkUnavailable(DispatchFailure):
    """The chat sink could not be reached (network error, timeout, not configured)."""


class SinkRejected(DispatchFailure):
    """The chat sink answered with a non-success status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"alert sink rejected payload with HTTP {status_code}")
        self.status_code = status_code
        self.body = body
        self.retryable = status_code == 429 or status_code >= 500


__all__ = [
    "CollaboratorUnavailable",
    "DispatchFailure",
    "EvaluationUnavailable",
    "LedgerConflict",
    "LedgerUnavailable",
    "MissingKeyField",
    "ReconciliationError",
    "SinkRejected",
    "SinkUnavailable",
    "ValidationError",
]
