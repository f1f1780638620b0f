from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from invoicematch.application import SubmissionIntake
from invoicematch.core.errors import CollaboratorUnavailable, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"success": False, "message": message, "error": message}, status_code=status_code)


def _evaluation_id(payload: dict) -> int | None:
    raw = payload.get("evaluationId")
    # bool is an int subclass; floats and strings are rejected rather than coerced
    if isinstance(raw, bool) or not isinstance(raw, int):
        return None
    return raw


async def _handle(request: Request, payload: dict, side: str) -> JSONResponse:
    evaluation_id = _evaluation_id(payload)
    if evaluation_id is None:
        return _error(400, "evaluationId is required")

    intake: SubmissionIntake = request.app.state.intake
    handler = intake.handle_secondary if side == "secondary" else intake.handle_primary
    try:
        body = await handler(evaluation_id)
    except ValidationError as exc:
        logger.warning("Evaluation %s rejected: %s", evaluation_id, exc)
        return _error(400, str(exc))
    except CollaboratorUnavailable as exc:
        logger.error("Evaluation %s could not be processed: %s", evaluation_id, exc)
        return _error(500, str(exc))
    except Exception as exc:
        logger.exception("Unexpected error while processing evaluation %s", evaluation_id)
        return _error(500, str(exc) or exc.__class__.__name__)
    return JSONResponse(body)


@router.post("/secondary")
async def receive_secondary(request: Request, payload: dict) -> JSONResponse:
    """Reconcile a trainee submission against the warehouse row for the same invoice."""
    return await _handle(request, payload, "secondary")


@router.post("/primary")
async def receive_primary(request: Request, payload: dict) -> JSONResponse:
    """Record a warehouse submission on the ledger so a trainee submission can be matched."""
    return await _handle(request, payload, "primary")
