from __future__ import annotations

from fastapi import APIRouter, Query

from invoicematch.application import get_event_bus

router = APIRouter(tags=["events"])


@router.get("/events")
async def list_events(after: str | None = Query(default=None)) -> dict:
    """Replay events newer than ``after``, oldest first."""
    bus = get_event_bus()
    events = bus.read_since(after or None)
    return {"events": [event.to_dict() for event in events]}


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}
