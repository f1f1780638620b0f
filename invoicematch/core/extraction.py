"""Normalise evaluation-platform payloads into :class:`SubmissionRecord` values.

Evaluations arrive as nested JSON documents: answered items live under
``categories[].items[]`` and carry their answer in one of several keys
depending on the item type.  Only the invoice number is mandatory; every
other field is read best-effort so that an incomplete checklist still reaches
the matching step.
"""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Iterator

from invoicematch.core.errors import MissingKeyField
from invoicematch.core.name_normalize import normalize
from invoicematch.domain import Role, SubmissionRecord

_ANSWER_KEYS = ("text", "value", "number", "answer", "response")
_CURRENCY_NOISE = re.compile(r"[^\d,.\-]")


def _iter_items(evaluation: dict[str, Any]) -> Iterator[dict[str, Any]]:
    for category in evaluation.get("categories") or []:
        if not isinstance(category, dict):
            continue
        for item in category.get("items") or []:
            if isinstance(item, dict):
                yield item
    for item in evaluation.get("items") or []:
        if isinstance(item, dict):
            yield item


def _item_label(item: dict[str, Any]) -> str:
    return str(item.get("name") or item.get("title") or item.get("label") or "")


def _answer_of(item: dict[str, Any]) -> Any:
    for key in _ANSWER_KEYS:
        value = item.get(key)
        if value not in (None, ""):
            return value
    answers = item.get("answers")
    if isinstance(answers, list):
        for answer in answers:
            if isinstance(answer, dict):
                value = _answer_of(answer)
            else:
                value = answer
            if value not in (None, ""):
                return value
    return None


def get_field_value(evaluation: dict[str, Any], label: str) -> Any:
    """Return the raw answer for the item whose label matches ``label``."""

    wanted = normalize(label)
    for item in _iter_items(evaluation):
        if normalize(_item_label(item)) == wanted:
            return _answer_of(item)
    return None


def parse_decimal(value: Any, default: str = "0") -> Decimal:
    """Parse numbers written as ``1234.56``, ``1.234,56`` or ``R$ 1.234,56``."""

    if value is None or isinstance(value, bool):
        return Decimal(default)
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))

    text = _CURRENCY_NOISE.sub("", str(value))
    if not text:
        return Decimal(default)
    if "," in text:
        # Brazilian notation: dots group thousands, the comma is the decimal mark
        text = text.replace(".", "").replace(",", ".")
    elif text.count(".") > 1:
        text = text.replace(".", "")
    try:
        result = Decimal(text)
    except InvalidOperation:
        return Decimal(default)
    if not result.is_finite():
        return Decimal(default)
    return result


def get_user_name(evaluation: dict[str, Any]) -> str:
    user = evaluation.get("user") or {}
    if isinstance(user, dict):
        return str(user.get("name") or user.get("fullName") or user.get("email") or "")
    return str(user)


def get_unit_name(evaluation: dict[str, Any]) -> str:
    unit = evaluation.get("unit") or {}
    if isinstance(unit, dict):
        return str(unit.get("name") or "")
    return str(unit)


def get_attachment_ref(evaluation: dict[str, Any]) -> str | None:
    for key in ("attachments", "images", "photos"):
        entries = evaluation.get(key)
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if isinstance(entry, dict) and entry.get("url"):
                return str(entry["url"])
            if isinstance(entry, str) and entry:
                return entry
    for item in _iter_items(evaluation):
        for key in ("images", "attachments"):
            entries = item.get(key)
            if isinstance(entries, list):
                for entry in entries:
                    if isinstance(entry, dict) and entry.get("url"):
                        return str(entry["url"])
    return None


def is_target_checklist(evaluation: dict[str, Any], checklist_id: int | None) -> bool:
    if checklist_id is None:
        return True
    checklist = evaluation.get("checklist") or {}
    raw_id = checklist.get("id") if isinstance(checklist, dict) else None
    try:
        return int(raw_id) == checklist_id
    except (TypeError, ValueError):
        return False


def extract(
    evaluation: dict[str, Any],
    *,
    role: Role = Role.SECONDARY,
    invoice_label: str = "Número da Nota Fiscal",
    entry_label: str = "Número do Lançamento",
    value_label: str = "Valor que Você Lançou",
    submission_id: int | None = None,
) -> SubmissionRecord:
    """Build a :class:`SubmissionRecord`; fail closed on a missing invoice number."""

    raw_key = get_field_value(evaluation, invoice_label)
    key = str(raw_key).strip() if raw_key is not None else ""
    if not key:
        raise MissingKeyField(invoice_label)

    entry = get_field_value(evaluation, entry_label)
    entry_number = str(entry).strip() if entry not in (None, "") else None

    if submission_id is None:
        try:
            submission_id = int(evaluation.get("id") or 0)
        except (TypeError, ValueError):
            submission_id = 0

    return SubmissionRecord(
        key=key,
        role=role,
        submitter_name=get_user_name(evaluation),
        unit_name=get_unit_name(evaluation),
        value=parse_decimal(get_field_value(evaluation, value_label)),
        external_submission_id=submission_id,
        attachment_ref=get_attachment_ref(evaluation),
        entry_number=entry_number or None,
    )


__all__ = [
    "extract",
    "get_field_value",
    "get_unit_name",
    "get_user_name",
    "is_target_checklist",
    "parse_decimal",
]
