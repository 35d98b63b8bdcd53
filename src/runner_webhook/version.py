"""Build version metadata served at /version."""

import os
from importlib.metadata import PackageNotFoundError, version as _package_version

NAME = "gha-runner-webhook"

try:
    VERSION = _package_version(NAME)
except PackageNotFoundError:
    VERSION = "0.0.0-dev"

COMMIT = os.getenv("COMMIT_SHA", "unknown")


def human_version() -> str:
    """Return ``"<name> <version> (<commit>)"``."""
    return f"{NAME} {VERSION} ({COMMIT})"
