"""Error taxonomy for webhook processing.

Every error raised while handling a webhook delivery maps to exactly one
HTTP status class. The ``public_message`` is the only text ever returned to
the caller; the exception message itself (and any chained cause) is for
server-side logs only.

Unsupported event types are not errors: they decode to the
``UnhandledEvent`` variant and are answered with a success status.
"""

from typing import Optional


class WebhookError(Exception):
    """Base class for all webhook processing failures.

    Attributes:
        status_code: HTTP status returned for this failure.
        public_message: Generic, caller-safe description of the failure.
    """

    status_code: int = 500
    default_public_message: str = "internal error"

    def __init__(self, message: str, public_message: Optional[str] = None):
        self.public_message = public_message or self.default_public_message
        super().__init__(message)


class AuthenticationError(WebhookError):
    """The delivery signature is missing, malformed, or does not match.

    Answered with a server error so the response does not reveal whether
    the secret or the payload was at fault.
    """

    status_code = 500
    default_public_message = "failed to validate payload"


class MalformedPayloadError(WebhookError):
    """The verified payload cannot be decoded or lacks required fields."""

    status_code = 400
    default_public_message = "failed to parse webhook"


class DependencyError(WebhookError):
    """A downstream call (GitHub, Cloud Build, KMS) failed."""

    status_code = 500
    default_public_message = "failed to process webhook"
