"""Outbound chat alerts (Microsoft Teams incoming webhook)."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

import httpx

from invoicematch.core.errors import SinkRejected, SinkUnavailable

ALERT_COLOR = "D9534F"
PENDING_COLOR = "F0AD4E"


def _money(value: Decimal) -> str:
    return f"R$ {value:.2f}"


@dataclass(frozen=True, slots=True)
class MismatchAlert:
    """Both sides reported different values for the same invoice."""

    invoice_number: str
    unit_name: str
    supplier: str
    primary_name: str
    primary_value: Decimal
    secondary_name: str
    secondary_value: Decimal
    delta: Decimal
    attachment_ref: str | None = None

    def to_payload(self) -> dict[str, Any]:
        facts = [
            {"name": "Invoice", "value": self.invoice_number},
            {"name": "Unit", "value": self.unit_name or "-"},
            {"name": "Supplier", "value": self.supplier or "-"},
            {"name": "Warehouse worker", "value": f"{self.primary_name} ({_money(self.primary_value)})"},
            {"name": "Trainee", "value": f"{self.secondary_name} ({_money(self.secondary_value)})"},
            {"name": "Difference", "value": _money(self.delta)},
        ]
        payload: dict[str, Any] = {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "themeColor": ALERT_COLOR,
            "summary": f"Invoice {self.invoice_number}: values differ",
            "sections": [
                {
                    "activityTitle": f"Invoice {self.invoice_number}: values differ",
                    "activitySubtitle": self.unit_name or None,
                    "facts": facts,
                    "markdown": True,
                }
            ],
        }
        if self.attachment_ref:
            payload["potentialAction"] = [
                {
                    "@type": "OpenUri",
                    "name": "Open invoice photo",
                    "targets": [{"os": "default", "uri": self.attachment_ref}],
                }
            ]
        return payload


@dataclass(frozen=True, slots=True)
class PendingInvoiceAlert:
    """A trainee submission whose invoice is not on the ledger."""

    invoice_number: str
    secondary_name: str
    secondary_value: Decimal
    submitted_at: str
    entry_number: str | None = None
    unit_name: str | None = None

    def to_payload(self) -> dict[str, Any]:
        facts = [
            {"name": "Invoice", "value": self.invoice_number},
            {"name": "Unit", "value": self.unit_name or "-"},
            {"name": "Trainee", "value": self.secondary_name or "-"},
            {"name": "Value", "value": _money(self.secondary_value)},
            {"name": "Entry number", "value": self.entry_number or "-"},
            {"name": "Submitted at", "value": self.submitted_at},
        ]
        return {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "themeColor": PENDING_COLOR,
            "summary": f"Invoice {self.invoice_number} not found",
            "sections": [
                {
                    "activityTitle": f"Invoice {self.invoice_number} not found on the ledger",
                    "activitySubtitle": "Saved to the pending tab for manual review",
                    "facts": facts,
                    "markdown": True,
                }
            ],
        }


class AlertSink(Protocol):
    """Contract for chat sinks; raise ``SinkUnavailable`` or ``SinkRejected`` on failure."""

    async def send(self, payload: dict[str, Any]) -> None: ...


class TeamsWebhookSink:
    """Posts MessageCards to a Teams incoming webhook."""

    def __init__(
        self,
        webhook_url: str,
        *,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not webhook_url.startswith(("http://", "https://")):
            raise ValueError("webhook_url must include scheme and host")
        self._webhook_url = webhook_url
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def send(self, payload: dict[str, Any]) -> None:
        try:
            response = await self._client.post(self._webhook_url, json=payload)
        except httpx.TimeoutException as exc:
            raise SinkUnavailable("alert webhook timed out") from exc
        except httpx.HTTPError as exc:
            raise SinkUnavailable(f"alert webhook unreachable: {exc.__class__.__name__}") from exc

        if response.status_code >= 300:
            raise SinkRejected(response.status_code, response.text[:200])

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class UnconfiguredAlertSink:
    """Fallback sink used when no webhook is configured; every send fails visibly."""

    async def send(self, payload: dict[str, Any]) -> None:
        raise SinkUnavailable("alert webhook not configured")


_sink: AlertSink = UnconfiguredAlertSink()


def configure_alert_sink(sink: AlertSink) -> None:
    """Install the chat sink used by the alert dispatcher."""

    global _sink
    _sink = sink


def get_alert_sink() -> AlertSink:
    return _sink


__all__ = [
    "AlertSink",
    "MismatchAlert",
    "PendingInvoiceAlert",
    "TeamsWebhookSink",
    "UnconfiguredAlertSink",
    "configure_alert_sink",
    "get_alert_sink",
]
