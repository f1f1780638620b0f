from __future__ import annotations

from decimal import Decimal

from invoicematch.domain import FinalizeResult, OutcomeKind

STATUS_AWAITING = "AWAITING"
STATUS_OK = "OK"
STATUS_FAILED = "FAILED"

_STATUS_BY_KIND = {
    OutcomeKind.MATCHED: STATUS_OK,
    OutcomeKind.MISMATCHED: STATUS_FAILED,
}


def compare_values(primary: Decimal, secondary: Decimal, tolerance: Decimal = Decimal("0")) -> FinalizeResult:
    """Compare both recorded values; equal within ``tolerance`` (inclusive) means matched."""

    delta = abs(secondary - primary)
    kind = OutcomeKind.MATCHED if delta <= tolerance else OutcomeKind.MISMATCHED
    return FinalizeResult(kind=kind, delta=delta)


def ledger_status(kind: OutcomeKind) -> str:
    return _STATUS_BY_KIND[kind]


def outcome_for_status(status: str | None) -> OutcomeKind:
    """Map a finalized ledger status back to the outcome that wrote it."""

    return OutcomeKind.MATCHED if status == STATUS_OK else OutcomeKind.MISMATCHED
