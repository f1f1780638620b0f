"""Turns webhook calls into submission records and routes them to the ledger or the matcher."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from invoicematch.core.config import Settings
from invoicematch.core.extraction import extract, get_field_value, is_target_checklist
from invoicematch.domain import EventKind, Role
from invoicematch.infrastructure import EvaluationClient, get_evaluation_client

from .reconciliation import ReconciliationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IgnoredEvaluation:
    evaluation_id: int
    checklist_id: Any

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "message": "Ignored - different checklist",
            "checklistId": self.checklist_id,
        }


class SubmissionIntake:
    """Fetches evaluations and hands the normalised records to the right component."""

    def __init__(
        self,
        settings: Settings,
        service: ReconciliationService,
        client: EvaluationClient | None = None,
    ) -> None:
        self._settings = settings
        self._service = service
        self._client = client

    @property
    def client(self) -> EvaluationClient:
        return self._client or get_evaluation_client()

    async def _fetch(self, evaluation_id: int, checklist_id: int | None) -> tuple[dict[str, Any], IgnoredEvaluation | None]:
        evaluation = await self.client.get_evaluation(evaluation_id)
        checklist = evaluation.get("checklist") or {}
        logger.info("Evaluation %s loaded (checklist %s)", evaluation_id, checklist.get("name"))
        if not is_target_checklist(evaluation, checklist_id):
            logger.info("Evaluation %s ignored: not the expected checklist", evaluation_id)
            return evaluation, IgnoredEvaluation(evaluation_id, checklist.get("id"))
        return evaluation, None

    async def handle_secondary(self, evaluation_id: int) -> dict[str, Any]:
        settings = self._settings
        evaluation, ignored = await self._fetch(evaluation_id, settings.secondary_checklist_id)
        if ignored is not None:
            return ignored.to_response()

        record = extract(
            evaluation,
            role=Role.SECONDARY,
            invoice_label=settings.invoice_field_label,
            entry_label=settings.entry_field_label,
            value_label=settings.value_field_label,
            submission_id=evaluation_id,
        )
        logger.info(
            "Secondary submission %s: invoice=%s value=%s submitter=%s",
            evaluation_id,
            record.key,
            record.value,
            record.submitter_name,
        )
        result = await self._service.reconcile(record)
        return result.to_response()

    async def handle_primary(self, evaluation_id: int) -> dict[str, Any]:
        settings = self._settings
        evaluation, ignored = await self._fetch(evaluation_id, settings.primary_checklist_id)
        if ignored is not None:
            return ignored.to_response()

        record = extract(
            evaluation,
            role=Role.PRIMARY,
            invoice_label=settings.invoice_field_label,
            entry_label=settings.entry_field_label,
            value_label=settings.primary_value_field_label,
            submission_id=evaluation_id,
        )
        supplier = str(get_field_value(evaluation, settings.supplier_field_label) or "")
        row_number = await self._service.ledger.add_primary(record, supplier=supplier)
        self._service.events.append(
            EventKind.INFO,
            "Invoice Registered",
            f"Invoice {record.key} recorded by {record.submitter_name or 'warehouse'}",
            record.unit_name or None,
            f"Value: R$ {record.value:.2f} | Ledger row {row_number}",
        )
        return {
            "success": True,
            "message": "Invoice registered",
            "invoiceNumber": record.key,
            "ledgerRow": row_number,
        }
