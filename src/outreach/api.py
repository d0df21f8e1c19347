"""FastAPI application for campaign commands, dashboards and call webhooks.

Endpoints:
- POST /campaigns - Create a batch campaign (202)
- POST /campaigns/manual-one - Start a campaign for one supplied business (202)
- POST /campaigns/search-one - Find one business and start a campaign (202)
- GET /campaigns/{id}/metrics - Lead counts and dashboard lines
- GET /campaigns/{id}/leads - Leads, newest first
- GET /leads/{id}/events - Event history of a lead
- POST /leads/{id}/resume - Re-enqueue the stage a lead is waiting for (202)
- POST /leads/{id}/outcome - Record a reply or booking
- POST /webhooks/calls/{provider} - Call result callback (JSON, or Twilio form fields)
- GET /health - Health check
- /demo - Locally deployed demo sites

Example:
    uvicorn outreach.api:create_app --factory --port 3000
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError

from .campaigns import (
    CampaignCommand,
    LeadOutcomeCommand,
    ManualLeadCommand,
    SearchOneCommand,
    campaign_metrics,
    create_campaign,
    create_manual_lead_campaign,
    list_campaign_leads,
    list_lead_events,
    mark_lead_outcome,
    resume_lead,
    search_one_lead_campaign,
)
from .config import Config
from .exceptions import ConflictError, InvalidRequestError, NotFoundError
from .runtime import Runtime
from .webhooks import CallWebhookBody, ingest_call_result


logger = logging.getLogger(__name__)


def _error_details(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request payload", "details": _error_details(exc)},
        )

    @app.exception_handler(InvalidRequestError)
    async def invalid_request_handler(request: Request, exc: InvalidRequestError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": str(exc), "details": exc.details},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": str(exc)})

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error: %s %s - %s",
            request.method,
            request.url.path,
            str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "details": str(exc)},
        )


def get_runtime(request: Request) -> Runtime:
    """Dependency returning the process runtime."""
    runtime: Optional[Runtime] = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise RuntimeError("Runtime not started")
    return runtime


FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def read_call_webhook_body(request: Request) -> CallWebhookBody:
    """Parse a call-result callback posted as JSON or as a form.

    Twilio posts its status callbacks form-encoded and without our ids, so
    ``leadId`` and ``campaignId`` from the callback URL's query string fill
    in whatever the body leaves out.

    Raises:
        RequestValidationError: If the body is malformed or lacks a status.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_CONTENT_TYPES):
        data: Any = dict(await request.form())
    else:
        try:
            data = await request.json()
        except ValueError:
            raise RequestValidationError(
                [{"loc": ["body"], "msg": "Body must be valid JSON", "type": "json_invalid"}]
            )
    if not isinstance(data, dict):
        raise RequestValidationError(
            [{"loc": ["body"], "msg": "Body must be an object", "type": "dict_type"}]
        )

    for name in ("leadId", "campaignId"):
        if not data.get(name) and request.query_params.get(name):
            data[name] = request.query_params[name]

    try:
        return CallWebhookBody.model_validate(data)
    except ValidationError as e:
        raise RequestValidationError(e.errors())


def create_app(
    runtime: Optional[Runtime] = None,
    config: Optional[Config] = None,
    run_workers: bool = False,
) -> FastAPI:
    """Create the API application.

    Args:
        runtime: Pre-built runtime (tests). When omitted, one is started
            from ``config`` during application startup and closed on shutdown.
        config: Configuration used when ``runtime`` is omitted.
        run_workers: Also run the stage worker pool inside this process,
            which is how the in-memory queue backend gets processed.

    Returns:
        Configured FastAPI application.
    """
    app_config = runtime.config if runtime is not None else (config or Config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.runtime is None
        if owned:
            app.state.runtime = await Runtime.start(app_config, create_tables=True)

        pool = None
        pool_task = None
        if run_workers:
            pool = app.state.runtime.worker_pool()
            pool_task = asyncio.create_task(pool.run(recover_stalled=True))
            logger.info("In-process worker pool started")

        yield

        if pool is not None:
            pool.stop()
            await pool_task
        if owned:
            await app.state.runtime.close()
            app.state.runtime = None

    app = FastAPI(
        title="Outreach Pipeline",
        description="Lead outreach pipeline commands, dashboards and webhooks",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    _install_error_handlers(app)

    @app.get("/")
    async def root() -> dict[str, str]:
        return {"status": "Pipeline running..."}

    @app.get("/health")
    async def health_check() -> dict[str, bool]:
        return {"ok": True}

    @app.post("/campaigns", status_code=status.HTTP_202_ACCEPTED)
    async def post_campaign(
        command: CampaignCommand,
        rt: Runtime = Depends(get_runtime),
    ) -> dict[str, Any]:
        started = await create_campaign(rt.ctx.session_factory, rt.ctx.queues, command)
        return started.to_dict()

    @app.post("/campaigns/manual-one", status_code=status.HTTP_202_ACCEPTED)
    async def post_manual_one(
        command: ManualLeadCommand,
        rt: Runtime = Depends(get_runtime),
    ) -> dict[str, Any]:
        started = await create_manual_lead_campaign(
            rt.ctx.session_factory, rt.ctx.queues, command
        )
        return started.to_dict()

    @app.post("/campaigns/search-one", status_code=status.HTTP_202_ACCEPTED)
    async def post_search_one(
        command: SearchOneCommand,
        rt: Runtime = Depends(get_runtime),
    ) -> dict[str, Any]:
        started = await search_one_lead_campaign(
            rt.ctx.session_factory, rt.ctx.queues, rt.providers.listings, command
        )
        return started.to_dict()

    @app.get("/campaigns/{campaign_id}/metrics")
    async def get_campaign_metrics(
        campaign_id: str,
        rt: Runtime = Depends(get_runtime),
    ) -> dict[str, Any]:
        metrics = await campaign_metrics(rt.ctx.session_factory, campaign_id)
        return metrics.to_dict()

    @app.get("/campaigns/{campaign_id}/leads")
    async def get_campaign_leads(
        campaign_id: str,
        rt: Runtime = Depends(get_runtime),
    ) -> dict[str, Any]:
        leads = await list_campaign_leads(rt.ctx.session_factory, campaign_id)
        return {"campaignId": campaign_id, "leads": leads}

    @app.get("/leads/{lead_id}/events")
    async def get_lead_events(
        lead_id: str,
        rt: Runtime = Depends(get_runtime),
    ) -> dict[str, Any]:
        events = await list_lead_events(rt.ctx.session_factory, lead_id)
        return {"leadId": lead_id, "events": events}

    @app.post("/leads/{lead_id}/resume", status_code=status.HTTP_202_ACCEPTED)
    async def post_resume_lead(
        lead_id: str,
        rt: Runtime = Depends(get_runtime),
    ) -> dict[str, Any]:
        job = await resume_lead(rt.ctx.session_factory, rt.ctx.queues, lead_id)
        return {"leadId": lead_id, "queue": job.queue, "jobId": job.id}

    @app.post("/leads/{lead_id}/outcome")
    async def post_lead_outcome(
        lead_id: str,
        command: LeadOutcomeCommand,
        rt: Runtime = Depends(get_runtime),
    ) -> dict[str, Any]:
        return await mark_lead_outcome(rt.ctx.session_factory, lead_id, command)

    @app.post("/webhooks/calls/{provider}")
    async def post_call_webhook(
        provider: str,
        request: Request,
        rt: Runtime = Depends(get_runtime),
    ) -> dict[str, Any]:
        body = await read_call_webhook_body(request)
        outcome = await ingest_call_result(rt.ctx.session_factory, provider, body)
        return outcome.to_dict()

    os.makedirs(app_config.DEMO_ROOT, exist_ok=True)
    app.mount(
        "/demo",
        StaticFiles(directory=app_config.DEMO_ROOT, html=True),
        name="demo",
    )

    return app
