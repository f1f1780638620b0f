"""Alert dispatch with a structured result instead of raised errors."""
from __future__ import annotations

import logging

from pydantic import BaseModel

from invoicematch.core.errors import DispatchFailure
from invoicematch.infrastructure import AlertSink, MismatchAlert, PendingInvoiceAlert, get_alert_sink

logger = logging.getLogger(__name__)


class DispatchResult(BaseModel):
    """Result of one alert delivery attempt."""

    success: bool
    error: str | None = None
    retryable: bool = False


class AlertDispatcher:
    """Sends alerts to the configured chat sink and reports, never raises, sink failures."""

    def __init__(self, sink: AlertSink | None = None) -> None:
        self._sink = sink

    @property
    def sink(self) -> AlertSink:
        return self._sink or get_alert_sink()

    async def dispatch(self, alert: MismatchAlert | PendingInvoiceAlert) -> DispatchResult:
        kind = type(alert).__name__
        try:
            await self.sink.send(alert.to_payload())
        except DispatchFailure as exc:
            logger.error("Alert dispatch failed for invoice %s (%s): %s", alert.invoice_number, kind, exc)
            return DispatchResult(success=False, error=str(exc), retryable=exc.retryable)
        except Exception as exc:
            logger.exception("Unexpected error while sending alert for invoice %s (%s)", alert.invoice_number, kind)
            return DispatchResult(success=False, error=f"{exc.__class__.__name__}: {exc}", retryable=False)
        logger.info("Alert sent for invoice %s (%s)", alert.invoice_number, kind)
        return DispatchResult(success=True)
