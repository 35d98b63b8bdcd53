"""HMAC-SHA256 verification of GitHub webhook deliveries.

GitHub signs the raw request body with the webhook secret and sends the
hex digest in the ``X-Hub-Signature-256`` header as ``sha256=<hex>``. The
digest must be computed over the exact bytes received; re-serializing the
JSON changes the digest.
"""

import hashlib
import hmac
from typing import Optional

from ..errors import AuthenticationError

SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: bytes) -> str:
    """Return the hex HMAC-SHA256 digest of ``body`` keyed by ``secret``."""
    return hmac.new(secret, body, hashlib.sha256).hexdigest()


def sign_payload(body: bytes, secret: bytes) -> str:
    """Build an ``X-Hub-Signature-256`` header value for ``body``."""
    return SIGNATURE_PREFIX + compute_signature(body, secret)


def verify_signature(
    body: bytes,
    signature_header: Optional[str],
    secret: bytes,
) -> None:
    """Verify a delivery signature.

    Args:
        body: The raw, unmodified request body.
        signature_header: Value of the ``X-Hub-Signature-256`` header.
        secret: The shared webhook secret.

    Raises:
        AuthenticationError: If the header is missing, lacks the
            ``sha256=`` prefix, or does not match the body. The exception
            message names the cause for logs; the public message does not.
    """
    if not signature_header:
        raise AuthenticationError("missing signature header")

    if not signature_header.startswith(SIGNATURE_PREFIX):
        raise AuthenticationError("signature header is not a sha256 signature")

    received = signature_header[len(SIGNATURE_PREFIX):]
    expected = compute_signature(body, secret)

    # compare_digest rejects non-ASCII str input, so compare bytes
    if not hmac.compare_digest(
        expected.encode("ascii"),
        received.encode("utf-8", errors="replace"),
    ):
        raise AuthenticationError("payload signature does not match")
