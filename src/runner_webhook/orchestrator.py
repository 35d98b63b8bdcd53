"""Webhook orchestrator connecting all stages of a delivery.

Drives one delivery through the full flow and produces the HTTP outcome:
verify signature → decode → classify → exchange credentials → dispatch build.

Every stage either returns a value for the next stage or raises a
``WebhookError``; the orchestrator maps the first error to its status code
and public message. Nothing after a failed stage runs: a build is only
submitted once a JIT config exists.

Source:
- src/runner_webhook/webhook/signature.py (verify_signature)
- src/runner_webhook/webhook/handler.py (WebhookHandler)
- src/runner_webhook/github/jit.py (CredentialExchanger)
- src/runner_webhook/dispatcher.py (BuildDispatcher)
"""

from dataclasses import dataclass
from typing import Optional, Protocol

import structlog

from .errors import WebhookError
from .github.models import JITRunnerConfig
from .metrics import WebhookMetrics
from .webhook.handler import DispatchRequest, NoAction, WebhookHandler
from .webhook.models import WebhookEnvelope
from .webhook.signature import verify_signature

logger = structlog.get_logger()

RUNNER_STARTED_MESSAGE = "runner started"

INTERNAL_ERROR_MESSAGE = "internal error"


class Exchanger(Protocol):
    async def exchange(
        self,
        installation_id: int,
        org: str,
        repo: Optional[str],
        runner_name: str,
    ) -> JITRunnerConfig: ...


class Dispatcher(Protocol):
    async def dispatch(
        self,
        jit_config: JITRunnerConfig,
        runner_id: str,
        image_tag: Optional[str] = None,
    ) -> str: ...


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of processing one delivery.

    Attributes:
        status_code: HTTP status to answer with.
        message: Caller-safe response text.
        error: Internal error detail for logs, never sent to the caller.
        runner_id: Runner name when the delivery was a dispatchable job.
    """

    status_code: int
    message: str
    error: Optional[str] = None
    runner_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status_code < 400


class WebhookOrchestrator:
    """Turns raw deliveries into HTTP outcomes.

    Accepts all dependencies via constructor injection so tests can swap
    GitHub and Cloud Build for doubles.

    Attributes:
        secret: Shared webhook secret used to verify signatures.
        handler: Decodes and classifies deliveries.
        exchanger: Mints JIT runner configs.
        dispatcher: Submits runner builds.
        metrics: Optional metrics sink.
    """

    def __init__(
        self,
        secret: bytes,
        handler: WebhookHandler,
        exchanger: Exchanger,
        dispatcher: Dispatcher,
        metrics: Optional[WebhookMetrics] = None,
    ):
        self.secret = secret
        self.handler = handler
        self.exchanger = exchanger
        self.dispatcher = dispatcher
        self.metrics = metrics

    async def process(self, envelope: WebhookEnvelope) -> DispatchOutcome:
        """Drive a delivery through every stage and report the outcome.

        Args:
            envelope: The raw delivery.

        Returns:
            The status code and message to answer with. Never raises.
        """
        log = logger.bind(
            delivery_id=envelope.delivery_id,
            event_type=envelope.event_type,
        )

        try:
            outcome = await self._process(envelope, log)
        except WebhookError as e:
            outcome = DispatchOutcome(
                status_code=e.status_code,
                message=e.public_message,
                error=str(e),
            )
            log.warning(
                "Webhook delivery rejected",
                status_code=e.status_code,
                error_type=type(e).__name__,
                error=str(e),
            )
        except Exception as e:
            outcome = DispatchOutcome(
                status_code=500,
                message=INTERNAL_ERROR_MESSAGE,
                error=str(e),
            )
            log.exception("Unexpected error processing webhook delivery")

        if self.metrics is not None:
            self.metrics.record_request(envelope.event_type, outcome.status_code)
        return outcome

    async def _process(self, envelope: WebhookEnvelope, log) -> DispatchOutcome:
        verify_signature(envelope.body, envelope.signature, self.secret)

        event = self.handler.parse_event(envelope)
        decision = self.handler.classify(event)

        if isinstance(decision, NoAction):
            return DispatchOutcome(status_code=200, message=decision.message)

        return await self._dispatch(decision, log.bind(runner_id=decision.runner_id))

    async def _dispatch(self, request: DispatchRequest, log) -> DispatchOutcome:
        """Exchange credentials for the job, then start its runner build."""
        log.info(
            "Dispatching runner for queued job",
            org=request.org_login,
            repo=request.repo_name,
            image_tag=request.image_tag,
        )

        try:
            jit_config = await self.exchanger.exchange(
                installation_id=request.installation_id,
                org=request.org_login,
                repo=request.repo_name,
                runner_name=request.runner_id,
            )
        except WebhookError:
            self._record_dispatch("exchange_failed")
            raise

        try:
            await self.dispatcher.dispatch(
                jit_config,
                runner_id=request.runner_id,
                image_tag=request.image_tag,
            )
        except WebhookError:
            self._record_dispatch("build_failed")
            raise

        self._record_dispatch("started")
        log.info("Runner started")
        return DispatchOutcome(
            status_code=200,
            message=RUNNER_STARTED_MESSAGE,
            runner_id=request.runner_id,
        )

    def _record_dispatch(self, result: str) -> None:
        if self.metrics is not None:
            self.metrics.record_dispatch(result)
