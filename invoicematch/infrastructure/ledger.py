"""Ledger persistence for reconciled and pending invoice rows."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncIterator, Protocol

from invoicematch.core.errors import LedgerConflict, LedgerUnavailable
from invoicematch.core.matching import STATUS_AWAITING, compare_values, ledger_status
from invoicematch.domain import FinalizeResult, LedgerRow, PendingRow, SubmissionRecord

logger = logging.getLogger(__name__)


class LedgerRepository(Protocol):
    """Persistence contract for the reconciliation ledger."""

    async def find_by_key(self, key: str) -> LedgerRow | None: ...

    async def create_pending(self, record: SubmissionRecord) -> int: ...

    async def finalize(
        self,
        row_number: int,
        secondary: SubmissionRecord,
        primary_value: Decimal,
        primary_attachment_ref: str | None,
        primary_submission_id: int | None,
        *,
        tolerance: Decimal = Decimal("0"),
    ) -> FinalizeResult: ...

    async def add_primary(self, record: SubmissionRecord, *, supplier: str = "") -> int: ...

    async def find_finalized(self, submission_id: int) -> LedgerRow | None: ...

    async def find_pending(self, submission_id: int) -> PendingRow | None: ...


class KeyLocks:
    """``asyncio.Lock`` per invoice key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def __call__(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users.pop(key, 1) - 1
            if remaining:
                self._users[key] = remaining
            else:
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)

    def clear(self) -> None:
        self._locks.clear()
        self._users.clear()


class InMemoryLedgerRepository:
    """Simple in-memory ledger for fast iteration and tests.

    Row numbers mimic a spreadsheet: the header occupies row 1, so the first
    data row is row 2 in both the ledger and the pending tab.
    """

    def __init__(self) -> None:
        self._rows: dict[int, LedgerRow] = {}
        self._pending: dict[int, PendingRow] = {}
        self._locks = KeyLocks()

    # ------------------------------------------------------------------
    # internal helpers
    # ------------------------------------------------------------------
    def _open_row_for(self, key: str) -> LedgerRow | None:
        for row in self._rows.values():
            if row.key == key and row.is_open:
                return row
        return None

    # ------------------------------------------------------------------
    # repository operations
    # ------------------------------------------------------------------
    async def find_by_key(self, key: str) -> LedgerRow | None:
        async with self._locks(key):
            return self._open_row_for(key)

    async def create_pending(self, record: SubmissionRecord) -> int:
        async with self._locks(record.key):
            for pending in self._pending.values():
                if pending.external_submission_id == record.external_submission_id:
                    return pending.row_number
            row_number = len(self._pending) + 2
            self._pending[row_number] = PendingRow(
                row_number=row_number,
                key=record.key,
                submitter_name=record.submitter_name,
                value=record.value,
                external_submission_id=record.external_submission_id,
                entry_number=record.entry_number,
                recorded_at=datetime.now(timezone.utc),
            )
            return row_number

    async def finalize(
        self,
        row_number: int,
        secondary: SubmissionRecord,
        primary_value: Decimal,
        primary_attachment_ref: str | None,
        primary_submission_id: int | None,
        *,
        tolerance: Decimal = Decimal("0"),
    ) -> FinalizeResult:
        row = self._rows.get(row_number)
        if row is None:
            raise LedgerUnavailable(f"ledger row {row_number} does not exist")
        async with self._locks(row.key):
            if not row.is_open:
                raise LedgerConflict(row_number)
            result = compare_values(primary_value, secondary.value, tolerance)
            row.secondary_name = secondary.submitter_name
            row.secondary_value = secondary.value
            row.secondary_submission_id = secondary.external_submission_id
            row.entry_number = secondary.entry_number
            row.attachment_ref = primary_attachment_ref
            row.primary_submission_id = primary_submission_id
            row.status = ledger_status(result.kind)
            row.delta = result.delta
            return result

    async def add_primary(self, record: SubmissionRecord, *, supplier: str = "") -> int:
        async with self._locks(record.key):
            for row in self._rows.values():
                if row.primary_submission_id == record.external_submission_id:
                    return row.row_number
            existing = self._open_row_for(record.key)
            if existing is not None:
                return existing.row_number
            row_number = len(self._rows) + 2
            self._rows[row_number] = LedgerRow(
                row_number=row_number,
                key=record.key,
                unit_name=record.unit_name,
                supplier=supplier,
                primary_name=record.submitter_name,
                primary_value=record.value,
                primary_submission_id=record.external_submission_id,
                attachment_ref=record.attachment_ref,
                status=STATUS_AWAITING,
                recorded_at=datetime.now(timezone.utc),
            )
            logger.info("Ledger row %s opened for invoice %s", row_number, record.key)
            return row_number

    async def find_finalized(self, submission_id: int) -> LedgerRow | None:
        for row in self._rows.values():
            if row.secondary_submission_id == submission_id:
                return row
        return None

    async def find_pending(self, submission_id: int) -> PendingRow | None:
        for pending in self._pending.values():
            if pending.external_submission_id == submission_id:
                return pending
        return None

    # ------------------------------------------------------------------
    # inspection helpers
    # ------------------------------------------------------------------
    def list_rows(self) -> list[LedgerRow]:
        return [self._rows[number] for number in sorted(self._rows)]

    def list_pending(self) -> list[PendingRow]:
        return [self._pending[number] for number in sorted(self._pending)]

    def reset(self) -> None:
        self._rows.clear()
        self._pending.clear()
        self._locks.clear()


_repository: LedgerRepository = InMemoryLedgerRepository()


def configure_ledger(repository: LedgerRepository) -> None:
    """Install the ledger repository used by the reconciliation service."""

    global _repository
    _repository = repository


def get_ledger() -> LedgerRepository:
    return _repository
