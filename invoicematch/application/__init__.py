"""Application services."""

from .alerts import AlertDispatcher, DispatchResult
from .intake import IgnoredEvaluation, SubmissionIntake
from .reconciliation import (
    ReconciliationResult,
    ReconciliationService,
    configure_reconciliation_service,
    get_event_bus,
    get_reconciliation_service,
    reset_reconciliation_state,
)

__all__ = [
    "AlertDispatcher",
    "DispatchResult",
    "IgnoredEvaluation",
    "ReconciliationResult",
    "ReconciliationService",
    "SubmissionIntake",
    "configure_reconciliation_service",
    "get_event_bus",
    "get_reconciliation_service",
    "reset_reconciliation_state",
]
