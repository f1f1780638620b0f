import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from invoicematch.application import (
    AlertDispatcher,
    ReconciliationService,
    SubmissionIntake,
    configure_reconciliation_service,
)
from invoicematch.core.config import Settings
from invoicematch.core.events import EventBus
from invoicematch.infrastructure import (
    HttpEvaluationClient,
    SheetsLedgerRepository,
    TeamsWebhookSink,
    configure_alert_sink,
    configure_evaluation_client,
    configure_ledger,
)
from invoicematch.routes import events, webhook

logger = logging.getLogger(__name__)


class _Closeable(Protocol):
    async def aclose(self) -> None: ...


def _configure_collaborators(settings: Settings) -> list[_Closeable]:
    """Install the HTTP-backed collaborators the settings provide and return them for shutdown."""

    timeout = settings.collaborator_timeout
    opened: list[_Closeable] = []
    if settings.evaluation_api_base:
        evaluations = HttpEvaluationClient(settings.evaluation_api_base, settings.evaluation_api_token, timeout=timeout)
        configure_evaluation_client(evaluations)
        opened.append(evaluations)
    if settings.ledger_spreadsheet_id and settings.ledger_access_token:
        ledger = SheetsLedgerRepository(
            settings.ledger_spreadsheet_id,
            settings.ledger_access_token,
            ledger_sheet=settings.ledger_sheet,
            pending_sheet=settings.pending_sheet,
            timeout=timeout,
        )
        configure_ledger(ledger)
        opened.append(ledger)
    else:
        logger.warning("Ledger spreadsheet not configured; using the in-memory ledger")
    if settings.alert_webhook_url:
        sink = TeamsWebhookSink(settings.alert_webhook_url, timeout=timeout)
        configure_alert_sink(sink)
        opened.append(sink)
    else:
        logger.warning("ALERT_WEBHOOK_URL not set; alerts will be reported as dispatch failures")
    return opened


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    opened = _configure_collaborators(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        for collaborator in opened:
            await collaborator.aclose()
        logger.info("Closed %d collaborator client(s)", len(opened))

    app = FastAPI(title="Invoice Match API", version="0.1.0", lifespan=lifespan)
    service = ReconciliationService(
        EventBus(capacity=settings.event_capacity),
        dispatcher=AlertDispatcher(),
        tolerance=settings.match_tolerance,
    )
    configure_reconciliation_service(service)
    app.state.settings = settings
    app.state.intake = SubmissionIntake(settings, service)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhook.router, prefix="/api")
    app.include_router(events.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Invoice Match API",
                "docs": "/docs",
                "health": "/api/health",
                "events": "/api/events",
            }
        )

    return app


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual start-up
    import os

    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
