"""GitHub webhook handling for the runner webhook.

This package verifies, decodes and routes GitHub deliveries:
- workflow_job.queued - Provision a JIT runner when the job requests the
  self-hosted label
- workflow_job.in_progress - Log how long the job waited for a runner
- workflow_job.completed - Log run duration and conclusion

Every other event type is acknowledged without action.
"""

from .handler import DispatchRequest, NoAction, WebhookHandler
from .models import (
    UnhandledEvent,
    WebhookEnvelope,
    WorkflowJob,
    WorkflowJobAction,
    WorkflowJobEvent,
)
from .signature import sign_payload, verify_signature

__all__ = [
    "DispatchRequest",
    "NoAction",
    "UnhandledEvent",
    "WebhookEnvelope",
    "WebhookHandler",
    "WorkflowJob",
    "WorkflowJobAction",
    "WorkflowJobEvent",
    "sign_payload",
    "verify_signature",
]
