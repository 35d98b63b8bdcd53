"""GitHub webhook decoding and routing for the runner webhook.

This module turns a signature-verified delivery into a typed event and
decides what to do with it, independently of how a runner is built:

- ``parse_event`` decodes the body into ``WorkflowJobEvent`` or
  ``UnhandledEvent`` based on the ``X-GitHub-Event`` header.
- ``classify`` routes a ``WorkflowJobEvent`` on its action and labels and
  returns either ``NoAction`` or a ``DispatchRequest``.

GitHub Webhook Payload Structure (workflow_job event):
{
  "action": "queued",
  "workflow_job": {
    "id": 789,
    "run_id": 456,
    "name": "build-job",
    "labels": ["self-hosted"],
    "created_at": "2025-07-12T00:00:00Z",
    "started_at": null,
    "completed_at": null,
    "conclusion": null
  },
  "installation": {"id": 123},
  "organization": {"login": "google"},
  "repository": {"name": "webhook", "owner": {"login": "google"}}
}
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union
from urllib.parse import parse_qs

import structlog
from pydantic import ValidationError

from ..errors import MalformedPayloadError
from ..metrics import WebhookMetrics
from .models import (
    WORKFLOW_JOB_EVENT,
    UnhandledEvent,
    WebhookEnvelope,
    WebhookEvent,
    WorkflowJob,
    WorkflowJobAction,
    WorkflowJobEvent,
)

logger = structlog.get_logger()

DEFAULT_RUNNER_LABEL = "self-hosted"

# Labels every JIT runner registers with besides the default label.
PLATFORM_LABELS = ("Linux", "X64")

# Docker tag grammar
_IMAGE_TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

IN_PROGRESS_MESSAGE = "workflow job in progress event logged"
COMPLETED_MESSAGE = "workflow job completed event logged"


@dataclass(frozen=True)
class NoAction:
    """Terminal no-op decision; answered with a success status."""

    message: str


@dataclass(frozen=True)
class DispatchRequest:
    """Decision to provision a JIT runner for a queued job.

    Attributes:
        runner_id: Runner name, also the log correlation id.
        installation_id: GitHub App installation to act as.
        org_login: Organization owning the repository.
        repo_name: Repository the runner registers against.
        image_tag: Runner image tag selected by a job label, None for the
            configured default.
    """

    runner_id: str
    installation_id: int
    org_login: str
    repo_name: str
    image_tag: Optional[str] = None


Decision = Union[NoAction, DispatchRequest]


class WebhookHandler:
    """Decodes webhook deliveries and decides whether to dispatch a runner.

    Attributes:
        runner_label: The label a queued job must request to get a runner.
        metrics: Optional metrics sink for job durations.
    """

    def __init__(
        self,
        runner_label: str = DEFAULT_RUNNER_LABEL,
        metrics: Optional[WebhookMetrics] = None,
    ) -> None:
        self.runner_label = runner_label
        self.metrics = metrics

    def parse_event(self, envelope: WebhookEnvelope) -> WebhookEvent:
        """Decode a verified delivery into a typed event.

        Args:
            envelope: The delivery. Its signature must already be verified.

        Returns:
            WorkflowJobEvent for ``workflow_job`` deliveries, UnhandledEvent
            for every other event type.

        Raises:
            MalformedPayloadError: If the event type header is missing or
                a ``workflow_job`` body is not a JSON object.
        """
        if not envelope.event_type:
            raise MalformedPayloadError("missing X-GitHub-Event header")

        # other event types are acknowledged whatever their body
        if envelope.event_type != WORKFLOW_JOB_EVENT:
            return UnhandledEvent(event_type=envelope.event_type)

        payload = self._decode_body(envelope.body, envelope.content_type)
        return self.parse_workflow_job_event(payload)

    def parse_workflow_job_event(self, payload: Dict[str, Any]) -> WorkflowJobEvent:
        """Extract a WorkflowJobEvent from a decoded payload.

        Fields with the wrong shape are treated as absent; whether an
        absent field matters is decided by ``classify``.
        """
        action = payload.get("action")
        if not isinstance(action, str):
            action = None

        job_data = payload.get("workflow_job")
        try:
            job = self._parse_job(job_data if isinstance(job_data, dict) else {})
        except ValidationError as e:
            raise MalformedPayloadError(f"invalid workflow_job object: {e}") from e

        installation_id = _positive_int(_nested(payload, "installation", "id"))

        org_login = _non_empty_str(_nested(payload, "organization", "login"))
        if org_login is None:
            # user-owned repositories carry no organization object
            org_login = _non_empty_str(_nested(payload, "repository", "owner", "login"))

        repo_name = _non_empty_str(_nested(payload, "repository", "name"))

        return WorkflowJobEvent(
            action=action,
            workflow_job=job,
            installation_id=installation_id,
            org_login=org_login,
            repo_name=repo_name,
        )

    def classify(self, event: WebhookEvent) -> Decision:
        """Decide what to do with a decoded event.

        Args:
            event: A decoded webhook event.

        Returns:
            NoAction for everything except a queued job requesting the
            runner label, which yields a DispatchRequest.

        Raises:
            MalformedPayloadError: If a queued job requesting the runner
                label lacks the installation, organization, repository or
                job identity.
        """
        if isinstance(event, UnhandledEvent):
            logger.info("No action taken for event type", event_type=event.event_type)
            return NoAction(f'no action taken for event type: "{event.event_type}"')

        action = event.job_action
        log = logger.bind(
            action=event.action,
            job_id=event.workflow_job.id,
            run_id=event.workflow_job.run_id,
            job_name=event.workflow_job.name,
        )

        if action is WorkflowJobAction.QUEUED:
            return self._classify_queued(event)

        if action is WorkflowJobAction.IN_PROGRESS:
            queued = event.queued_duration
            log.info(
                "Workflow job in progress",
                queued_seconds=_seconds(queued),
            )
            if self.metrics is not None and queued is not None:
                self.metrics.observe_queued_duration(queued.total_seconds())
            return NoAction(IN_PROGRESS_MESSAGE)

        if action is WorkflowJobAction.COMPLETED:
            run = event.run_duration
            total = event.total_duration
            log.info(
                "Workflow job completed",
                conclusion=event.workflow_job.conclusion,
                run_seconds=_seconds(run),
                total_seconds=_seconds(total),
            )
            if self.metrics is not None and run is not None:
                self.metrics.observe_run_duration(
                    run.total_seconds(), event.workflow_job.conclusion
                )
            return NoAction(COMPLETED_MESSAGE)

        if event.action is None:
            log.info("No action taken for missing action type")
            return NoAction("no action taken for missing action type")

        log.info("No action taken for action type")
        return NoAction(f'no action taken for action type: "{event.action}"')

    def _classify_queued(self, event: WorkflowJobEvent) -> Decision:
        labels = event.workflow_job.labels
        if not event.has_label(self.runner_label):
            logger.info("No action taken for labels", labels=list(labels))
            return NoAction(f"no action taken for labels: {format_labels(labels)}")

        missing = [
            name
            for name, value in (
                ("installation.id", event.installation_id),
                ("organization.login", event.org_login),
                ("repository.name", event.repo_name),
                ("workflow_job.id", event.runner_id),
            )
            if value is None
        ]
        if missing:
            raise MalformedPayloadError(
                f"queued workflow job is missing {', '.join(missing)}",
                public_message="malformed workflow job payload",
            )

        image_tag = select_image_tag_label(labels, self.runner_label)
        return DispatchRequest(
            runner_id=event.runner_id,
            installation_id=event.installation_id,
            org_login=event.org_login,
            repo_name=event.repo_name,
            image_tag=image_tag,
        )

    def _decode_body(self, body: bytes, content_type: Optional[str]) -> Dict[str, Any]:
        """Decode a JSON or form-encoded delivery body into a dict."""
        media_type = (content_type or "").split(";")[0].strip().lower()

        try:
            if media_type == FORM_CONTENT_TYPE:
                form = parse_qs(body.decode("utf-8"))
                values = form.get("payload")
                if not values:
                    raise MalformedPayloadError("form delivery has no payload field")
                payload = json.loads(values[0])
            else:
                payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedPayloadError(f"undecodable payload: {e}") from e

        if not isinstance(payload, dict):
            raise MalformedPayloadError(
                f"expected a JSON object, got {type(payload).__name__}"
            )
        return payload

    def _parse_job(self, job_data: Dict[str, Any]) -> WorkflowJob:
        labels = job_data.get("labels")
        return WorkflowJob(
            id=_positive_int(job_data.get("id")),
            run_id=_positive_int(job_data.get("run_id")),
            name=_non_empty_str(job_data.get("name")),
            labels=tuple(
                label for label in labels if isinstance(label, str)
            ) if isinstance(labels, list) else (),
            created_at=job_data.get("created_at") or None,
            started_at=job_data.get("started_at") or None,
            completed_at=job_data.get("completed_at") or None,
            conclusion=_non_empty_str(job_data.get("conclusion")),
        )


def format_labels(labels: Tuple[str, ...]) -> str:
    """Format labels as ``[a b c]`` for response messages."""
    return "[" + " ".join(labels) + "]"


def select_image_tag_label(labels: Tuple[str, ...], runner_label: str) -> Optional[str]:
    """Pick the label that selects a runner image tag, if any.

    The first label that is neither the runner label nor a platform label
    and is a valid image tag wins.
    """
    platform = {p.lower() for p in PLATFORM_LABELS}
    for label in labels:
        if label == runner_label or label.lower() in platform:
            continue
        if _IMAGE_TAG_PATTERN.match(label):
            return label
        logger.warning("Ignoring label that is not a valid image tag", label=label)
    return None


def _nested(data: Dict[str, Any], *keys: str) -> Any:
    current: Any = data
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return None
    return value


def _non_empty_str(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def _seconds(duration) -> Optional[float]:
    return duration.total_seconds() if duration is not None else None
