from __future__ import annotations

import asyncio
import sys
from decimal import Decimal
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from invoicematch.application import AlertDispatcher, ReconciliationService
from invoicematch.core.errors import LedgerUnavailable, SinkRejected, SinkUnavailable
from invoicematch.core.events import EventBus
from invoicematch.domain import EventKind, OutcomeKind, Role, SubmissionRecord
from invoicematch.infrastructure import InMemoryLedgerRepository


class RecordingSink:
    def __init__(self, error: Exception | None = None) -> None:
        self.payloads: list[dict] = []
        self.error = error

    async def send(self, payload: dict) -> None:
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        self.payloads.append(payload)


class InterleavingLedger(InMemoryLedgerRepository):
    """Yields to the event loop after each lookup so concurrent submissions interleave."""

    async def find_by_key(self, key):
        row = await super().find_by_key(key)
        await asyncio.sleep(0)
        return row

    async def create_pending(self, record):
        await asyncio.sleep(0)
        return await super().create_pending(record)


class BrokenLedger(InMemoryLedgerRepository):
    def __init__(self) -> None:
        super().__init__()
        self.broken = True

    async def find_by_key(self, key):
        if self.broken:
            raise LedgerUnavailable("ledger unreachable: timeout")
        return await super().find_by_key(key)


def _record(key: str, value: str, submission_id: int, *, role: Role = Role.SECONDARY, name: str = "Bruno") -> SubmissionRecord:
    return SubmissionRecord(
        key=key,
        role=role,
        submitter_name=name,
        unit_name="Loja Centro",
        value=Decimal(value),
        external_submission_id=submission_id,
        attachment_ref="https://files.example.com/photo.jpg" if role is Role.PRIMARY else None,
    )


def _build(ledger=None, sink=None, tolerance=Decimal("0")):
    ledger = ledger or InMemoryLedgerRepository()
    sink = sink or RecordingSink()
    bus = EventBus()
    service = ReconciliationService(
        bus,
        ledger=ledger,
        dispatcher=AlertDispatcher(sink),
        tolerance=tolerance,
    )
    return service, ledger, sink, bus


def _seed_primary(ledger, key: str, value: str, submission_id: int = 1) -> int:
    primary = _record(key, value, submission_id, role=Role.PRIMARY, name="Carla")
    return asyncio.run(ledger.add_primary(primary, supplier="Distribuidora Sul"))


def test_equal_values_match_without_alert():
    service, ledger, sink, bus = _build()
    _seed_primary(ledger, "NF-100", "150.00")

    result = asyncio.run(service.reconcile(_record("NF-100", "150.00", 10)))

    assert result.outcome.kind is OutcomeKind.MATCHED
    assert result.outcome.delta == Decimal("0")
    assert result.alert is None
    assert sink.payloads == []

    events = bus.read_since(None)
    assert len(events) == 1
    assert events[0].kind is EventKind.SUCCESS
    assert "NF-100" in events[0].message

    row = ledger.list_rows()[0]
    assert row.status == "OK"
    assert row.secondary_submission_id == 10
    assert row.secondary_value == Decimal("150.00")


def test_different_values_mismatch_with_exact_delta_and_one_alert():
    service, ledger, sink, bus = _build()
    _seed_primary(ledger, "NF-300", "100.00")

    result = asyncio.run(service.reconcile(_record("NF-300", "90.00", 11)))

    assert result.outcome.kind is OutcomeKind.MISMATCHED
    assert result.outcome.delta == Decimal("10.00")
    assert result.alert_dispatched is True
    assert len(sink.payloads) == 1

    events = bus.read_since(None)
    assert [event.kind for event in events] == [EventKind.ALERT]
    assert "R$ 100.00" in events[0].details
    assert "R$ 90.00" in events[0].details

    facts = {fact["name"]: fact["value"] for fact in sink.payloads[0]["sections"][0]["facts"]}
    assert facts["Difference"] == "R$ 10.00"
    assert facts["Supplier"] == "Distribuidora Sul"
    assert sink.payloads[0]["potentialAction"][0]["targets"][0]["uri"] == "https://files.example.com/photo.jpg"

    row = ledger.list_rows()[0]
    assert row.status == "FAILED"
    assert row.delta == Decimal("10.00")


def test_unknown_invoice_creates_one_pending_row_and_alert():
    service, ledger, sink, bus = _build()

    result = asyncio.run(service.reconcile(_record("NF-200", "200.00", 12)))

    assert result.outcome.kind is OutcomeKind.UNMATCHED_KEY
    assert result.outcome.pending_row == 2
    assert len(ledger.list_pending()) == 1
    assert len(sink.payloads) == 1
    assert [event.kind for event in bus.read_since(None)] == [EventKind.ALERT]


def test_tolerance_is_configurable():
    service, ledger, sink, _ = _build(tolerance=Decimal("0.05"))
    _seed_primary(ledger, "NF-500", "100.00")

    result = asyncio.run(service.reconcile(_record("NF-500", "100.04", 13)))

    assert result.outcome.kind is OutcomeKind.MATCHED
    assert result.outcome.delta == Decimal("0.04")
    assert sink.payloads == []


def test_exact_equality_is_the_default():
    service, ledger, _, _ = _build()
    _seed_primary(ledger, "NF-501", "100.00")

    result = asyncio.run(service.reconcile(_record("NF-501", "100.01", 14)))

    assert result.outcome.kind is OutcomeKind.MISMATCHED
    assert result.outcome.delta == Decimal("0.01")


@pytest.mark.parametrize("error", [SinkUnavailable("alert webhook timed out"), SinkRejected(400, "bad card")])
def test_dispatch_failure_keeps_outcome_and_adds_error_event(error):
    service, ledger, sink, bus = _build(sink=RecordingSink(error=error))
    _seed_primary(ledger, "NF-301", "100.00")

    result = asyncio.run(service.reconcile(_record("NF-301", "90.00", 15)))

    assert result.outcome.kind is OutcomeKind.MISMATCHED
    assert result.alert_dispatched is False
    assert result.to_response()["success"] is True

    events = bus.read_since(None)
    assert [event.kind for event in events] == [EventKind.ALERT, EventKind.ERROR]
    assert "NF-301" in events[1].message
    assert "mismatched" in events[1].details


def test_unexpected_sink_error_is_reported_not_raised():
    service, _, _, bus = _build(sink=RecordingSink(error=RuntimeError("boom")))

    result = asyncio.run(service.reconcile(_record("NF-201", "5.00", 16)))

    assert result.outcome.kind is OutcomeKind.UNMATCHED_KEY
    assert result.alert_dispatched is False
    assert [event.kind for event in bus.read_since(None)] == [EventKind.ALERT, EventKind.ERROR]


def test_redelivery_is_idempotent():
    service, ledger, sink, bus = _build()
    _seed_primary(ledger, "NF-302", "100.00")
    record = _record("NF-302", "90.00", 17)

    first = asyncio.run(service.reconcile(record))
    second = asyncio.run(service.reconcile(record))

    assert first.duplicate is False
    assert second.duplicate is True
    assert second.outcome == first.outcome
    assert len(sink.payloads) == 1
    assert len(bus.read_since(None)) == 1
    assert ledger.list_rows()[0].secondary_submission_id == 17


def test_concurrent_duplicate_delivery_creates_pending_once():
    service, ledger, sink, bus = _build(ledger=InterleavingLedger())
    record = _record("NF-202", "200.00", 18)

    async def deliver_twice():
        return await asyncio.gather(service.reconcile(record), service.reconcile(record))

    results = asyncio.run(deliver_twice())

    assert sorted(result.duplicate for result in results) == [False, True]
    assert all(result.outcome.kind is OutcomeKind.UNMATCHED_KEY for result in results)
    assert len(ledger.list_pending()) == 1
    assert len(sink.payloads) == 1
    assert len(bus.read_since(None)) == 1


def test_racing_submissions_for_same_invoice_resolve_once_each():
    service, ledger, _, bus = _build(ledger=InterleavingLedger())
    _seed_primary(ledger, "NF-400", "50.00")

    async def race():
        return await asyncio.gather(
            service.reconcile(_record("NF-400", "50.00", 19)),
            service.reconcile(_record("NF-400", "50.00", 20)),
        )

    first, second = asyncio.run(race())

    assert first.outcome.kind is OutcomeKind.MATCHED
    assert second.outcome.kind is OutcomeKind.UNMATCHED_KEY
    assert ledger.list_rows()[0].secondary_submission_id == 19
    assert len(ledger.list_pending()) == 1
    assert len(bus.read_since(None)) == 2


def test_ledger_failure_propagates_without_event_and_allows_retry():
    ledger = BrokenLedger()
    service, _, sink, bus = _build(ledger=ledger)
    record = _record("NF-600", "10.00", 21)

    with pytest.raises(LedgerUnavailable):
        asyncio.run(service.reconcile(record))
    assert bus.read_since(None) == []
    assert sink.payloads == []

    ledger.broken = False
    result = asyncio.run(service.reconcile(record))
    assert result.duplicate is False
    assert result.outcome.kind is OutcomeKind.UNMATCHED_KEY


def test_remembered_submissions_are_bounded():
    ledger = InMemoryLedgerRepository()
    bus = EventBus()
    service = ReconciliationService(
        bus, ledger=ledger, dispatcher=AlertDispatcher(RecordingSink()), remembered_submissions=2
    )

    for submission_id in (30, 31, 32):
        asyncio.run(service.reconcile(_record(f"NF-7{submission_id}", "1.00", submission_id)))

    assert asyncio.run(service.reconcile(_record("NF-732", "1.00", 32))).duplicate is True
    # the oldest id was forgotten in memory; the pending tab still knows it
    replay = asyncio.run(service.reconcile(_record("NF-730", "1.00", 30)))
    assert replay.duplicate is True
    assert replay.outcome.kind is OutcomeKind.UNMATCHED_KEY
    assert replay.outcome.pending_row == 2
    assert len(ledger.list_pending()) == 3
    assert len(bus.read_since(None)) == 3


def test_forgotten_matched_submission_is_recovered_from_the_ledger():
    ledger = InMemoryLedgerRepository()
    sink = RecordingSink()
    bus = EventBus()
    service = ReconciliationService(bus, ledger=ledger, dispatcher=AlertDispatcher(sink), remembered_submissions=1)
    _seed_primary(ledger, "NF-1", "25.00")

    first = asyncio.run(service.reconcile(_record("NF-1", "25.00", 10)))
    asyncio.run(service.reconcile(_record("NF-2", "5.00", 11)))
    replay = asyncio.run(service.reconcile(_record("NF-1", "25.00", 10)))

    assert first.outcome.kind is OutcomeKind.MATCHED
    assert replay.duplicate is True
    assert replay.outcome.kind is OutcomeKind.MATCHED
    assert replay.outcome.delta == Decimal("0")
    assert replay.to_response()["status"] == "matched"
    assert [(row.key, row.external_submission_id) for row in ledger.list_pending()] == [("NF-2", 11)]
    assert len(sink.payloads) == 1
    assert [event.kind for event in bus.read_since(None)] == [EventKind.SUCCESS, EventKind.ALERT]


def test_restarted_service_recovers_mismatch_from_the_ledger():
    service, ledger, sink, _ = _build()
    _seed_primary(ledger, "NF-303", "100.00")
    asyncio.run(service.reconcile(_record("NF-303", "70.00", 40)))

    restarted, _, restarted_sink, restarted_bus = _build(ledger=ledger)
    replay = asyncio.run(restarted.reconcile(_record("NF-303", "70.00", 40)))

    assert replay.duplicate is True
    assert replay.outcome.kind is OutcomeKind.MISMATCHED
    assert replay.outcome.delta == Decimal("30.00")
    assert replay.alert_dispatched is None
    assert restarted_sink.payloads == []
    assert restarted_bus.read_since(None) == []
    assert ledger.list_pending() == []


def test_primary_redelivery_after_finalize_does_not_reopen_invoice():
    service, ledger, _, _ = _build()
    first_row = _seed_primary(ledger, "NF-9", "12.00", submission_id=1)
    asyncio.run(service.reconcile(_record("NF-9", "12.00", 50)))

    again = _seed_primary(ledger, "NF-9", "12.00", submission_id=1)

    assert again == first_row
    assert [(row.row_number, row.key, row.status) for row in ledger.list_rows()] == [(2, "NF-9", "OK")]


def test_key_locks_are_released_after_use():
    service, ledger, _, _ = _build(ledger=InterleavingLedger())
    _seed_primary(ledger, "NF-410", "5.00")

    async def race():
        return await asyncio.gather(
            service.reconcile(_record("NF-410", "5.00", 60)),
            service.reconcile(_record("NF-411", "5.00", 61)),
        )

    asyncio.run(race())

    assert len(ledger._locks) == 0
