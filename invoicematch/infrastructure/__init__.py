"""Infrastructure layer exports."""

from .alerts import (
    AlertSink,
    MismatchAlert,
    PendingInvoiceAlert,
    TeamsWebhookSink,
    UnconfiguredAlertSink,
    configure_alert_sink,
    get_alert_sink,
)
from .evaluations import (
    EvaluationClient,
    HttpEvaluationClient,
    InMemoryEvaluationClient,
    configure_evaluation_client,
    get_evaluation_client,
)
from .ledger import InMemoryLedgerRepository, LedgerRepository, configure_ledger, get_ledger
from .sheets import SheetsLedgerRepository

__all__ = [
    "AlertSink",
    "EvaluationClient",
    "HttpEvaluationClient",
    "InMemoryEvaluationClient",
    "InMemoryLedgerRepository",
    "LedgerRepository",
    "MismatchAlert",
    "PendingInvoiceAlert",
    "SheetsLedgerRepository",
    "TeamsWebhookSink",
    "UnconfiguredAlertSink",
    "configure_alert_sink",
    "configure_evaluation_client",
    "configure_ledger",
    "get_alert_sink",
    "get_evaluation_client",
    "get_ledger",
]
