"""Domain entities for invoice value reconciliation."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum


class Role(str, Enum):
    """Which side of the transaction a submission comes from."""

    PRIMARY = "primary"  # warehouse worker
    SECONDARY = "secondary"  # trainee


class OutcomeKind(str, Enum):
    MATCHED = "matched"
    MISMATCHED = "mismatched"
    UNMATCHED_KEY = "unmatched_key"
    DISPATCH_FAILED = "dispatch_failed"


@dataclass(frozen=True, slots=True)
class SubmissionRecord:
    """One side's report of an invoice, normalised from the evaluation platform."""

    key: str
    role: Role
    submitter_name: str
    unit_name: str
    value: Decimal
    external_submission_id: int
    attachment_ref: str | None = None
    entry_number: str | None = None


@dataclass(slots=True)
class LedgerRow:
    """A PRIMARY row on the ledger awaiting (or holding) its SECONDARY counterpart."""

    row_number: int
    key: str
    unit_name: str
    supplier: str
    primary_name: str
    primary_value: Decimal
    primary_submission_id: int | None = None
    attachment_ref: str | None = None
    secondary_name: str | None = None
    secondary_value: Decimal | None = None
    secondary_submission_id: int | None = None
    entry_number: str | None = None
    status: str | None = None
    delta: Decimal | None = None
    recorded_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.secondary_submission_id is None


@dataclass(slots=True)
class PendingRow:
    """A SECONDARY submission whose invoice had no PRIMARY row on file."""

    row_number: int
    key: str
    submitter_name: str
    value: Decimal
    external_submission_id: int
    entry_number: str | None = None
    recorded_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class FinalizeResult:
    kind: OutcomeKind
    delta: Decimal


@dataclass(frozen=True, slots=True)
class ReconciliationOutcome:
    """Decision reached for one SECONDARY arrival."""

    kind: OutcomeKind
    secondary: SubmissionRecord
    primary: LedgerRow | None = None
    delta: Decimal | None = None
    pending_row: int | None = None
    details: dict[str, object] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.secondary.key

    @property
    def unit_name(self) -> str:
        if self.primary is not None and self.primary.unit_name:
            return self.primary.unit_name
        return self.secondary.unit_name

    def as_dispatch_failure(self, error: str) -> "ReconciliationOutcome":
        """Derive the DISPATCH_FAILED outcome reported when the alert was dropped."""

        return replace(
            self,
            kind=OutcomeKind.DISPATCH_FAILED,
            details={**self.details, "failed_outcome": self.kind.value, "error": error},
        )
