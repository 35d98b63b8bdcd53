"""GitHub webhook event models for the runner webhook.

A delivery decodes into one of two variants:

- ``WorkflowJobEvent`` for ``X-GitHub-Event: workflow_job``
- ``UnhandledEvent`` for every other event type (``ping``, ``push``, ...)

Every field of a workflow job payload is optional because GitHub populates
different subsets per action (``started_at`` is absent while queued,
``conclusion`` only exists once completed). Accessors that combine fields
return ``None`` instead of assuming presence.

The models use Pydantic and are frozen once decoded.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

WORKFLOW_JOB_EVENT = "workflow_job"

RUNNER_NAME_PREFIX = "GCP"


class WorkflowJobAction(str, Enum):
    """Workflow job actions the classifier routes on.

    Attributes:
        QUEUED: The job is waiting for a runner. Triggers a dispatch when
                the job requests the self-hosted label.
        IN_PROGRESS: A runner picked up the job. Logged only.
        COMPLETED: The job finished. Logged only.
        WAITING: The job waits on an environment protection rule. No-op.
    """

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    WAITING = "waiting"


@dataclass(frozen=True)
class WebhookEnvelope:
    """A raw webhook delivery as received over HTTP.

    Attributes:
        body: The exact request body bytes.
        signature: ``X-Hub-Signature-256`` header value, if sent.
        event_type: ``X-GitHub-Event`` header value, if sent.
        delivery_id: ``X-GitHub-Delivery`` header value, if sent.
        content_type: ``Content-Type`` header value, if sent.
    """

    body: bytes
    signature: Optional[str] = None
    event_type: Optional[str] = None
    delivery_id: Optional[str] = None
    content_type: Optional[str] = None


class WorkflowJob(BaseModel):
    """The ``workflow_job`` object of a workflow job event."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    run_id: Optional[int] = None
    name: Optional[str] = None
    labels: Tuple[str, ...] = Field(default_factory=tuple)
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    conclusion: Optional[str] = None


class WorkflowJobEvent(BaseModel):
    """Decoded ``workflow_job`` webhook event.

    Attributes:
        action: Raw action string, or None when the payload has none.
        workflow_job: The job the event is about.
        installation_id: GitHub App installation that received the event.
        org_login: Login of the organization owning the repository.
        repo_name: Repository name without owner prefix.
    """

    model_config = ConfigDict(frozen=True)

    action: Optional[str] = None
    workflow_job: WorkflowJob = Field(default_factory=WorkflowJob)
    installation_id: Optional[int] = None
    org_login: Optional[str] = None
    repo_name: Optional[str] = None

    @property
    def job_action(self) -> Optional[WorkflowJobAction]:
        """The action as an enum, or None when absent or unrecognized."""
        if self.action is None:
            return None
        try:
            return WorkflowJobAction(self.action)
        except ValueError:
            return None

    @property
    def runner_id(self) -> Optional[str]:
        """Runner name and log correlation id for this job.

        Keys off the job id since one run can hold many jobs; falls back
        to the run id for payloads without a job id.

        Returns:
            str: ``"GCP-<job_id>"`` or ``"GCP-<run_id>"``, None if neither
            id is present.
        """
        job = self.workflow_job
        key = job.id if job.id is not None else job.run_id
        if key is None:
            return None
        return f"{RUNNER_NAME_PREFIX}-{key}"

    def has_label(self, label_name: str) -> bool:
        """Check if the job requests a runner label (case-sensitive)."""
        return label_name in self.workflow_job.labels

    @property
    def queued_duration(self) -> Optional[timedelta]:
        """Time between queueing and pickup, when both are known."""
        return _elapsed(self.workflow_job.created_at, self.workflow_job.started_at)

    @property
    def run_duration(self) -> Optional[timedelta]:
        """Time between pickup and completion, when both are known."""
        return _elapsed(self.workflow_job.started_at, self.workflow_job.completed_at)

    @property
    def total_duration(self) -> Optional[timedelta]:
        """Time between queueing and completion, when both are known."""
        return _elapsed(self.workflow_job.created_at, self.workflow_job.completed_at)


class UnhandledEvent(BaseModel):
    """Any webhook event type this service does not act on."""

    model_config = ConfigDict(frozen=True)

    event_type: str


WebhookEvent = Union[WorkflowJobEvent, UnhandledEvent]


def _elapsed(
    start: Optional[datetime], end: Optional[datetime]
) -> Optional[timedelta]:
    if start is None or end is None:
        return None
    return _as_utc(end) - _as_utc(start)


def _as_utc(value: datetime) -> datetime:
    # GitHub sends UTC; a timestamp without an offset is read as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
