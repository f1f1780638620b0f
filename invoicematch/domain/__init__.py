"""Domain layer definitions."""

from .events import Event, EventKind
from .submissions import (
    FinalizeResult,
    LedgerRow,
    OutcomeKind,
    PendingRow,
    ReconciliationOutcome,
    Role,
    SubmissionRecord,
)

__all__ = [
    "Event",
    "EventKind",
    "FinalizeResult",
    "LedgerRow",
    "OutcomeKind",
    "PendingRow",
    "ReconciliationOutcome",
    "Role",
    "SubmissionRecord",
]
