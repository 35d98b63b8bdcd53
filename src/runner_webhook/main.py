"""FastAPI application entry point for the runner webhook.

Receives GitHub ``workflow_job`` webhooks and starts a just-in-time
self-hosted runner on Cloud Build for every queued job that requests the
runner label.

Endpoints:
- POST /webhook: GitHub webhook receiver
- GET /healthz: Liveness probe
- GET /version: Build version
- GET /metrics: Prometheus metrics
"""

import html
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from .config import get_settings
from .logging_config import configure_logging
from .metrics import generate_metrics_output
from .services import WebhookServices, build_services
from .version import VERSION, human_version
from .webhook.models import WebhookEnvelope

logger = structlog.get_logger()

SIGNATURE_HEADER = "X-Hub-Signature-256"
EVENT_HEADER = "X-GitHub-Event"
DELIVERY_HEADER = "X-GitHub-Delivery"


def create_app(services: Optional[WebhookServices] = None) -> FastAPI:
    """Create the webhook application.

    Args:
        services: Pre-built services. When None, settings are loaded from
            the environment and services are built during startup.

    Returns:
        The FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup and shutdown.

        Handles:
        - Configuration loading and validation
        - Logging configuration (with secrets redacted)
        - Client creation and dependency wiring
        - Closing every client on shutdown
        """
        owned = services is None
        if owned:
            settings = get_settings()
            configure_logging(settings.log_level, settings.log_format)
            app.state.services = build_services(settings)
        else:
            app.state.services = services

        logger.info("Runner webhook started", version=human_version())

        yield

        logger.info("Runner webhook shutting down")
        if owned:
            await app.state.services.close()
        logger.info("Runner webhook shutdown complete")

    app = FastAPI(
        title="GitHub Actions Runner Webhook",
        description="Starts just-in-time self-hosted runners on Cloud Build",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_api_route("/webhook", receive_webhook, methods=["POST"])
    app.add_api_route("/healthz", healthz, methods=["GET"])
    app.add_api_route("/version", version, methods=["GET"])
    app.add_api_route("/metrics", metrics, methods=["GET"])

    return app


def get_services(request: Request) -> WebhookServices:
    return request.app.state.services


async def receive_webhook(
    request: Request,
    services: WebhookServices = Depends(get_services),
) -> PlainTextResponse:
    """GitHub webhook receiver endpoint.

    The body is read as raw bytes so the signature is checked against
    exactly what GitHub signed. The response body is the outcome message,
    HTML-escaped, as plain text; error details stay in the server logs.
    """
    envelope = WebhookEnvelope(
        body=await request.body(),
        signature=request.headers.get(SIGNATURE_HEADER),
        event_type=request.headers.get(EVENT_HEADER),
        delivery_id=request.headers.get(DELIVERY_HEADER),
        content_type=request.headers.get("content-type"),
    )

    outcome = await services.orchestrator.process(envelope)

    return PlainTextResponse(
        html.escape(outcome.message),
        status_code=outcome.status_code,
    )


async def healthz():
    """Liveness probe endpoint."""
    return {"status": "ok"}


async def version():
    """Build version endpoint."""
    return {"version": human_version()}


async def metrics(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    services = request.app.state.services
    registry = services.metrics.registry if services is not None else None
    return Response(
        content=generate_metrics_output(registry),
        media_type=CONTENT_TYPE_LATEST,
    )


app = create_app()
