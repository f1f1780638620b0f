from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation


DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def _env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_decimal(name: str, default: str) -> Decimal:
    raw = _env(name) or default
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"{name} must be a decimal, got {raw!r}") from exc
    if not value.is_finite() or value < 0:
        raise ValueError(f"{name} must be a non-negative decimal")
    return value


@dataclass(slots=True)
class Settings:
    """Runtime configuration, read from the environment at start-up."""

    evaluation_api_base: str | None = None
    evaluation_api_token: str | None = None
    primary_checklist_id: int | None = None
    secondary_checklist_id: int | None = None
    invoice_field_label: str = "Número da Nota Fiscal"
    entry_field_label: str = "Número do Lançamento"
    value_field_label: str = "Valor que Você Lançou"
    primary_value_field_label: str = "Valor da Nota Fiscal"
    supplier_field_label: str = "Fornecedor"
    ledger_spreadsheet_id: str | None = None
    ledger_access_token: str | None = None
    ledger_sheet: str = "Validacoes"
    pending_sheet: str = "Pendentes"
    alert_webhook_url: str | None = None
    match_tolerance: Decimal = Decimal("0")
    event_capacity: int = 100
    collaborator_timeout: float = 10.0
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        checklist = _env("SECONDARY_CHECKLIST_ID")
        primary_checklist = _env("PRIMARY_CHECKLIST_ID")
        origins_env = _env("API_CORS_ORIGINS") or ""
        origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]

        settings = cls(
            evaluation_api_base=_env("EVALUATION_API_BASE"),
            evaluation_api_token=_env("EVALUATION_API_TOKEN"),
            primary_checklist_id=int(primary_checklist) if primary_checklist else None,
            secondary_checklist_id=int(checklist) if checklist else None,
            ledger_spreadsheet_id=_env("LEDGER_SPREADSHEET_ID"),
            ledger_access_token=_env("LEDGER_ACCESS_TOKEN"),
            alert_webhook_url=_env("ALERT_WEBHOOK_URL"),
            match_tolerance=_env_decimal("MATCH_TOLERANCE", "0"),
            event_capacity=_env_int("EVENT_CAPACITY", 100),
            collaborator_timeout=_env_float("COLLABORATOR_TIMEOUT", 10.0),
            cors_origins=origins or list(DEFAULT_CORS_ORIGINS),
            log_level=(_env("LOG_LEVEL") or "INFO").upper(),
        )
        for attr, name in (
            ("invoice_field_label", "INVOICE_FIELD_LABEL"),
            ("entry_field_label", "ENTRY_FIELD_LABEL"),
            ("value_field_label", "VALUE_FIELD_LABEL"),
            ("primary_value_field_label", "PRIMARY_VALUE_FIELD_LABEL"),
            ("supplier_field_label", "SUPPLIER_FIELD_LABEL"),
            ("ledger_sheet", "LEDGER_SHEET"),
            ("pending_sheet", "PENDING_SHEET"),
        ):
            override = _env(name)
            if override:
                setattr(settings, attr, override)
        return settings
