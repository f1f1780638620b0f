"""Ledger backed by a Google Sheets spreadsheet (Sheets API v4, ``values`` resource).

Layout of the ledger tab (row 1 is the header)::

    A recorded_at | B unit | C supplier | D invoice | E primary name
    F primary value | G primary submission id | H attachment ref
    I secondary name | J secondary value | K entry number
    L secondary submission id | M status | N delta

Layout of the pending tab::

    A recorded_at | B secondary name | C invoice | D value
    E entry number | F secondary submission id
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from urllib.parse import quote

import httpx

from invoicematch.core.errors import LedgerConflict, LedgerUnavailable
from invoicematch.core.extraction import parse_decimal
from invoicematch.core.matching import STATUS_AWAITING, compare_values, ledger_status
from invoicematch.domain import FinalizeResult, LedgerRow, PendingRow, SubmissionRecord

from .ledger import KeyLocks

logger = logging.getLogger(__name__)

_UPDATED_ROW = re.compile(r"![A-Z]+(\d+)")


def _cell(row: list[Any], index: int) -> str:
    if index < len(row) and row[index] is not None:
        return str(row[index]).strip()
    return ""


def _optional_int(value: str) -> int | None:
    try:
        return int(value) if value else None
    except ValueError:
        return None


class SheetsLedgerRepository:
    """Ledger repository talking to the Sheets REST API over ``httpx``.

    The spreadsheet offers no row-level compare-and-set, so mutations for a
    key are serialised in-process and ``finalize`` re-reads the row before
    writing to detect a concurrent finalisation.
    """

    def __init__(
        self,
        spreadsheet_id: str,
        access_token: str,
        *,
        ledger_sheet: str = "Validacoes",
        pending_sheet: str = "Pendentes",
        api_base: str = "https://sheets.googleapis.com/v4/spreadsheets",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = f"{api_base.rstrip('/')}/{spreadsheet_id}/values"
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._ledger_sheet = ledger_sheet
        self._pending_sheet = pending_sheet
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._locks = KeyLocks()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _url(self, range_: str, suffix: str = "") -> str:
        return f"{self._base_url}/{quote(range_, safe='!:')}{suffix}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise LedgerUnavailable(f"ledger request failed with HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise LedgerUnavailable(f"ledger unreachable: {exc}") from exc
        except ValueError as exc:
            raise LedgerUnavailable("ledger returned malformed JSON") from exc
        if not isinstance(payload, dict):
            raise LedgerUnavailable("ledger returned an unexpected document")
        return payload

    async def _read(self, range_: str) -> list[list[Any]]:
        payload = await self._request("GET", self._url(range_))
        values = payload.get("values") or []
        if not isinstance(values, list):
            raise LedgerUnavailable(f"ledger range {range_} is malformed")
        return values

    async def _append(self, sheet: str, row: list[Any]) -> int:
        payload = await self._request(
            "POST",
            self._url(f"{sheet}!A:A", ":append"),
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"values": [row]},
        )
        updated = str((payload.get("updates") or {}).get("updatedRange") or "")
        match = _UPDATED_ROW.search(updated)
        if not match:
            raise LedgerUnavailable(f"ledger append returned no row reference ({updated!r})")
        return int(match.group(1))

    @staticmethod
    def _timestamp() -> str:
        return datetime.now(timezone.utc).isoformat(timespec="seconds")

    def _parse_row(self, row_number: int, row: list[Any]) -> LedgerRow:
        return LedgerRow(
            row_number=row_number,
            unit_name=_cell(row, 1),
            supplier=_cell(row, 2),
            key=_cell(row, 3),
            primary_name=_cell(row, 4),
            primary_value=parse_decimal(_cell(row, 5)),
            primary_submission_id=_optional_int(_cell(row, 6)),
            attachment_ref=_cell(row, 7) or None,
            secondary_name=_cell(row, 8) or None,
            secondary_value=parse_decimal(_cell(row, 9)) if _cell(row, 9) else None,
            entry_number=_cell(row, 10) or None,
            secondary_submission_id=_optional_int(_cell(row, 11)),
            status=_cell(row, 12) or None,
            delta=parse_decimal(_cell(row, 13)) if _cell(row, 13) else None,
        )

    @staticmethod
    def _parse_pending(row_number: int, row: list[Any]) -> PendingRow:
        return PendingRow(
            row_number=row_number,
            submitter_name=_cell(row, 1),
            key=_cell(row, 2),
            value=parse_decimal(_cell(row, 3)),
            entry_number=_cell(row, 4) or None,
            external_submission_id=_optional_int(_cell(row, 5)) or 0,
        )

    async def _ledger_rows(self) -> list[list[Any]]:
        return await self._read(f"{self._ledger_sheet}!A2:N")

    def _open_in(self, rows: list[list[Any]], key: str) -> LedgerRow | None:
        for offset, raw in enumerate(rows):
            if _cell(raw, 3) != key:
                continue
            row = self._parse_row(offset + 2, raw)
            if row.is_open:
                return row
        return None

    async def _find_open(self, key: str) -> LedgerRow | None:
        return self._open_in(await self._ledger_rows(), key)

    # ------------------------------------------------------------------
    # repository operations
    # ------------------------------------------------------------------
    async def find_by_key(self, key: str) -> LedgerRow | None:
        return await self._find_open(key)

    async def create_pending(self, record: SubmissionRecord) -> int:
        async with self._locks(record.key):
            rows = await self._read(f"{self._pending_sheet}!A2:F")
            for offset, raw in enumerate(rows):
                if _optional_int(_cell(raw, 5)) == record.external_submission_id:
                    return offset + 2
            return await self._append(
                self._pending_sheet,
                [
                    self._timestamp(),
                    record.submitter_name,
                    record.key,
                    str(record.value),
                    record.entry_number or "",
                    record.external_submission_id,
                ],
            )

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
        async with self._locks(secondary.key):
            current = await self._read(f"{self._ledger_sheet}!A{row_number}:N{row_number}")
            if not current:
                raise LedgerUnavailable(f"ledger row {row_number} does not exist")
            if not self._parse_row(row_number, current[0]).is_open:
                raise LedgerConflict(row_number)

            result = compare_values(primary_value, secondary.value, tolerance)
            await self._request(
                "PUT",
                self._url(f"{self._ledger_sheet}!G{row_number}:N{row_number}"),
                params={"valueInputOption": "USER_ENTERED"},
                json={
                    "values": [
                        [
                            primary_submission_id if primary_submission_id is not None else "",
                            primary_attachment_ref or "",
                            secondary.submitter_name,
                            str(secondary.value),
                            secondary.entry_number or "",
                            secondary.external_submission_id,
                            ledger_status(result.kind),
                            str(result.delta),
                        ]
                    ]
                },
            )
            logger.info("Ledger row %s finalized as %s", row_number, result.kind.value)
            return result

    async def add_primary(self, record: SubmissionRecord, *, supplier: str = "") -> int:
        async with self._locks(record.key):
            rows = await self._ledger_rows()
            for offset, raw in enumerate(rows):
                if _optional_int(_cell(raw, 6)) == record.external_submission_id:
                    return offset + 2
            existing = self._open_in(rows, record.key)
            if existing is not None:
                return existing.row_number
            return await self._append(
                self._ledger_sheet,
                [
                    self._timestamp(),
                    record.unit_name,
                    supplier,
                    record.key,
                    record.submitter_name,
                    str(record.value),
                    record.external_submission_id,
                    record.attachment_ref or "",
                    "",
                    "",
                    "",
                    "",
                    STATUS_AWAITING,
                    "",
                ],
            )

    async def find_finalized(self, submission_id: int) -> LedgerRow | None:
        for offset, raw in enumerate(await self._ledger_rows()):
            if _optional_int(_cell(raw, 11)) == submission_id:
                return self._parse_row(offset + 2, raw)
        return None

    async def find_pending(self, submission_id: int) -> PendingRow | None:
        rows = await self._read(f"{self._pending_sheet}!A2:F")
        for offset, raw in enumerate(rows):
            if _optional_int(_cell(raw, 5)) == submission_id:
                return self._parse_pending(offset + 2, raw)
        return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["SheetsLedgerRepository"]
