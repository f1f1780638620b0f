"""Matching engine: pairs trainee submissions with warehouse rows on the ledger."""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from threading import Lock
from typing import Any

from invoicematch.core.errors import LedgerConflict, LedgerUnavailable
from invoicematch.core.events import EventBus
from invoicematch.core.matching import outcome_for_status
from invoicematch.domain import (
    EventKind,
    LedgerRow,
    OutcomeKind,
    ReconciliationOutcome,
    SubmissionRecord,
)
from invoicematch.infrastructure import (
    InMemoryLedgerRepository,
    LedgerRepository,
    MismatchAlert,
    PendingInvoiceAlert,
    get_ledger,
)

from .alerts import AlertDispatcher, DispatchResult

logger = logging.getLogger(__name__)

FINALIZE_ATTEMPTS = 2


def _money(value: Decimal) -> str:
    return f"R$ {value:.2f}"


@dataclass(frozen=True, slots=True)
class ReconciliationResult:
    """What the webhook caller learns about one submission."""

    outcome: ReconciliationOutcome
    alert: DispatchResult | None = None
    duplicate: bool = False

    @property
    def alert_dispatched(self) -> bool | None:
        return None if self.alert is None else self.alert.success

    def as_duplicate(self) -> "ReconciliationResult":
        return replace(self, duplicate=True)

    def message(self) -> str:
        if self.duplicate:
            return "Submission already processed"
        kind = self.outcome.kind
        if kind is OutcomeKind.UNMATCHED_KEY:
            return "Invoice not found - saved to pending for manual review"
        return "Validation complete"

    def to_response(self) -> dict[str, Any]:
        outcome = self.outcome
        return {
            "success": True,
            "message": self.message(),
            "status": outcome.kind.value,
            "invoiceNumber": outcome.key,
            "unitName": outcome.unit_name or None,
            "delta": str(outcome.delta) if outcome.delta is not None else None,
            "pendingRow": outcome.pending_row,
            "alertDispatched": self.alert_dispatched,
            "duplicate": self.duplicate,
        }


class ReconciliationService:
    """Resolves each SECONDARY arrival to exactly one outcome and reports it.

    Submissions are deduplicated on ``external_submission_id``: a delivery
    that is still in flight or already resolved returns the first delivery's
    result without touching the ledger, the event bus or the alert sink.
    """

    def __init__(
        self,
        event_bus: EventBus,
        *,
        ledger: LedgerRepository | None = None,
        dispatcher: AlertDispatcher | None = None,
        tolerance: Decimal = Decimal("0"),
        remembered_submissions: int = 1024,
    ) -> None:
        self._events = event_bus
        self._ledger = ledger
        self._dispatcher = dispatcher or AlertDispatcher()
        self.tolerance = tolerance
        self._remembered = remembered_submissions
        self._claims = Lock()
        self._inflight: dict[int, asyncio.Future[ReconciliationResult]] = {}
        self._completed: OrderedDict[int, ReconciliationResult] = OrderedDict()

    @property
    def ledger(self) -> LedgerRepository:
        return self._ledger or get_ledger()

    @property
    def events(self) -> EventBus:
        return self._events

    # ------------------------------------------------------------------
    # entry point
    # ------------------------------------------------------------------
    async def reconcile(self, record: SubmissionRecord) -> ReconciliationResult:
        submission_id = record.external_submission_id
        loop = asyncio.get_running_loop()
        with self._claims:
            cached = self._completed.get(submission_id)
            waiter = self._inflight.get(submission_id) if cached is None else None
            if cached is None and waiter is None:
                claim: asyncio.Future[ReconciliationResult] = loop.create_future()
                self._inflight[submission_id] = claim

        if cached is not None:
            logger.info("Submission %s already resolved; ignoring redelivery", submission_id)
            return cached.as_duplicate()
        if waiter is not None:
            logger.info("Submission %s is already being processed; awaiting it", submission_id)
            result = await asyncio.shield(waiter)
            return result.as_duplicate()

        try:
            result = await self._resolve(record)
        except BaseException as exc:
            # failed submissions stay unclaimed so the sender's retry is processed
            with self._claims:
                self._inflight.pop(submission_id, None)
            if isinstance(exc, Exception):
                claim.set_exception(exc)
                claim.exception()  # mark retrieved when no duplicate is waiting
            else:
                claim.cancel()
            raise

        with self._claims:
            self._inflight.pop(submission_id, None)
            self._completed[submission_id] = result
            while len(self._completed) > self._remembered:
                self._completed.popitem(last=False)
        claim.set_result(result)
        return result

    # ------------------------------------------------------------------
    # branches
    # ------------------------------------------------------------------
    async def _resolve(self, record: SubmissionRecord) -> ReconciliationResult:
        previous = await self._recorded(record)
        if previous is not None:
            return previous
        for _ in range(FINALIZE_ATTEMPTS):
            primary = await self.ledger.find_by_key(record.key)
            if primary is None:
                return await self._unmatched(record)
            try:
                finalized = await self.ledger.finalize(
                    primary.row_number,
                    record,
                    primary.primary_value,
                    primary.attachment_ref,
                    primary.primary_submission_id,
                    tolerance=self.tolerance,
                )
            except LedgerConflict:
                logger.warning(
                    "Ledger row %s for invoice %s was taken by a concurrent submission; looking up again",
                    primary.row_number,
                    record.key,
                )
                continue
            outcome = ReconciliationOutcome(
                kind=finalized.kind,
                secondary=record,
                primary=primary,
                delta=finalized.delta,
            )
            return await self._paired(outcome, primary)
        raise LedgerUnavailable(f"invoice {record.key} kept conflicting on the ledger")

    async def _recorded(self, record: SubmissionRecord) -> ReconciliationResult | None:
        """Rebuild the result of a submission the ledger already holds (restart or forgotten id)."""

        submission_id = record.external_submission_id
        finalized = await self.ledger.find_finalized(submission_id)
        if finalized is not None:
            logger.info("Submission %s already finalized on ledger row %s", submission_id, finalized.row_number)
            outcome = ReconciliationOutcome(
                kind=outcome_for_status(finalized.status),
                secondary=record,
                primary=finalized,
                delta=finalized.delta,
            )
            return ReconciliationResult(outcome=outcome, duplicate=True)
        pending = await self.ledger.find_pending(submission_id)
        if pending is not None:
            logger.info("Submission %s already on pending row %s", submission_id, pending.row_number)
            outcome = ReconciliationOutcome(
                kind=OutcomeKind.UNMATCHED_KEY,
                secondary=record,
                pending_row=pending.row_number,
            )
            return ReconciliationResult(outcome=outcome, duplicate=True)
        return None

    async def _unmatched(self, record: SubmissionRecord) -> ReconciliationResult:
        logger.info("Invoice %s not on the ledger; saving to pending", record.key)
        submitted_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
        row_number = await self.ledger.create_pending(record)
        outcome = ReconciliationOutcome(
            kind=OutcomeKind.UNMATCHED_KEY,
            secondary=record,
            pending_row=row_number,
        )
        self._events.append(
            EventKind.ALERT,
            "Invoice Not Found",
            f"Invoice {record.key} is not on the ledger",
            outcome.unit_name or None,
            f"Trainee: {record.submitter_name} | Value: {_money(record.value)} | Pending row {row_number}",
        )
        alert = PendingInvoiceAlert(
            invoice_number=record.key,
            secondary_name=record.submitter_name,
            secondary_value=record.value,
            submitted_at=submitted_at,
            entry_number=record.entry_number,
            unit_name=record.unit_name or None,
        )
        return await self._notify(outcome, alert)

    async def _paired(self, outcome: ReconciliationOutcome, primary: LedgerRow) -> ReconciliationResult:
        record = outcome.secondary
        delta = outcome.delta if outcome.delta is not None else Decimal("0")
        if outcome.kind is OutcomeKind.MATCHED:
            self._events.append(
                EventKind.SUCCESS,
                "Validation OK",
                f"Invoice {record.key} - values match",
                outcome.unit_name or None,
                f"Warehouse worker: {primary.primary_name} | Trainee: {record.submitter_name} | {_money(record.value)}",
            )
            return ReconciliationResult(outcome=outcome)

        self._events.append(
            EventKind.ALERT,
            "Values Differ",
            f"Invoice {record.key} - difference {_money(delta)}",
            outcome.unit_name or None,
            f"Warehouse worker: {_money(primary.primary_value)} | Trainee: {_money(record.value)}",
        )
        alert = MismatchAlert(
            invoice_number=record.key,
            unit_name=outcome.unit_name,
            supplier=primary.supplier,
            primary_name=primary.primary_name,
            primary_value=primary.primary_value,
            secondary_name=record.submitter_name,
            secondary_value=record.value,
            delta=delta,
            attachment_ref=primary.attachment_ref,
        )
        return await self._notify(outcome, alert)

    async def _notify(
        self,
        outcome: ReconciliationOutcome,
        alert: MismatchAlert | PendingInvoiceAlert,
    ) -> ReconciliationResult:
        dispatch = await self._dispatcher.dispatch(alert)
        if not dispatch.success:
            failed = outcome.as_dispatch_failure(dispatch.error or "unknown error")
            self._events.append(
                EventKind.ERROR,
                "Alert Dispatch Failed",
                f"Failed to send alert for invoice {failed.key}",
                failed.unit_name or None,
                f"{failed.details['failed_outcome']}: {dispatch.error}",
            )
        return ReconciliationResult(outcome=outcome, alert=dispatch)

    # ------------------------------------------------------------------
    # testing helpers
    # ------------------------------------------------------------------
    def reset(self) -> None:
        with self._claims:
            self._inflight.clear()
            self._completed.clear()


_service = ReconciliationService(EventBus())


def get_event_bus() -> EventBus:
    """Return the event bus shared by the process."""

    return _service.events


def get_reconciliation_service() -> ReconciliationService:
    """Return the singleton reconciliation service for the process."""

    return _service


def configure_reconciliation_service(service: ReconciliationService) -> None:
    """Replace the process-wide service (called once by the app factory)."""

    global _service
    _service = service


def reset_reconciliation_state() -> None:
    """Reset the event log, idempotency memory and in-memory ledger (used in tests)."""

    _service.events.reset()
    _service.reset()
    ledger = _service.ledger
    if isinstance(ledger, InMemoryLedgerRepository):
        ledger.reset()
