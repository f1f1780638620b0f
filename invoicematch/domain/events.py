"""Outcome notifications surfaced to the dashboard."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    SUCCESS = "success"
    ALERT = "alert"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True, slots=True)
class Event:
    id: str
    timestamp: datetime
    kind: EventKind
    title: str
    message: str
    unit_name: str | None = None
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.kind.value,
            "title": self.title,
            "message": self.message,
            "unitName": self.unit_name,
            "details": self.details,
        }
