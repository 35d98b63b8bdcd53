"""Runner webhook configuration using pydantic-settings.

This module defines the WebhookSettings class that reads configuration
from environment variables. Required fields must be set for the service
to start; a missing or empty value aborts startup with a validation error.
"""

from pathlib import PurePosixPath
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .webhook.handler import DEFAULT_RUNNER_LABEL

LOG_FORMATS = ("json", "console")


class WebhookSettings(BaseSettings):
    """Runner webhook configuration from environment variables.

    Required fields (must be set via environment variables):
    - build_location: Cloud Build region the runner builds execute in
    - github_app_id: ID of the GitHub App that mints JIT configs
    - webhook_key_mount_path / webhook_key_name: Where the webhook secret
      file is mounted
    - kms_app_private_key_id: Cloud KMS key version holding the App key
    - runner_project_id: Project the runner builds execute in
    - runner_repository_id: Artifact Registry repository of the runner image
    - runner_service_account: Service account the runner builds run as
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    github_app_id: str

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_api_base_url: str = "https://api.github.com"

    # Directory and file name of the mounted webhook secret
    webhook_key_mount_path: str
    webhook_key_name: str

    # projects/<p>/locations/<l>/keyRings/<r>/cryptoKeys/<k>/cryptoKeyVersions/<v>
    kms_app_private_key_id: str

    # Label a queued job must request to get a runner
    runner_label: str = DEFAULT_RUNNER_LABEL

    # -------------------------------------------------------------------------
    # Runner Build Configuration
    # -------------------------------------------------------------------------
    build_location: str
    runner_project_id: str
    runner_repository_id: str
    runner_service_account: str
    runner_image_name: str = "default-runner"
    runner_image_tag: str = "latest"

    # Worker pool id or full resource name; unset runs on shared capacity
    runner_worker_pool_id: Optional[str] = None

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_format: str = "json"

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator(
        "github_app_id",
        "webhook_key_mount_path",
        "webhook_key_name",
        "kms_app_private_key_id",
        "runner_label",
        "build_location",
        "runner_project_id",
        "runner_repository_id",
        "runner_service_account",
        "runner_image_name",
        "runner_image_tag",
    )
    @classmethod
    def validate_not_empty(cls, v: str, info) -> str:
        """Validate that required values are not blank."""
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty")
        return v.strip()

    @field_validator("runner_worker_pool_id")
    @classmethod
    def validate_worker_pool(cls, v: Optional[str]) -> Optional[str]:
        """Treat a blank worker pool as unset."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("github_api_base_url")
    @classmethod
    def validate_github_api_base_url(cls, v: str) -> str:
        """Validate that the GitHub API URL is an http(s) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("github_api_base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {', '.join(LOG_FORMATS)}")
        return v

    @property
    def webhook_secret_path(self) -> str:
        """Full path of the mounted webhook secret file."""
        return str(PurePosixPath(self.webhook_key_mount_path) / self.webhook_key_name)


def get_settings() -> WebhookSettings:
    """Create and return WebhookSettings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return WebhookSettings()
