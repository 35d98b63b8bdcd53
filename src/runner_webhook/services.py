"""Dependency wiring for the runner webhook.

``build_services`` creates every long-lived client once at startup and
bundles them with the orchestrator that uses them. The bundle is stored on
``app.state`` and closed on shutdown.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from .config import WebhookSettings
from .dispatcher import BuildDispatcher
from .files import FileReader, OSFileReader
from .gcp.cloudbuild import CloudBuildClient
from .gcp.kms import KMSSigner
from .github.auth import GitHubApp, Signer
from .github.jit import CredentialExchanger
from .logging_config import redact_secret
from .metrics import WebhookMetrics, get_metrics
from .orchestrator import WebhookOrchestrator
from .version import NAME, VERSION
from .webhook.handler import WebhookHandler

logger = structlog.get_logger()


@dataclass
class WebhookServices:
    """Long-lived collaborators of the webhook route.

    Attributes:
        orchestrator: Processes deliveries.
        metrics: Metrics the orchestrator records into.
        github_app: GitHub App identity, owns the shared HTTP client.
        cloud_build: Client that submits runner builds.
        signer: App JWT signer.
    """

    orchestrator: WebhookOrchestrator
    metrics: WebhookMetrics
    github_app: Optional[GitHubApp] = None
    cloud_build: Optional[CloudBuildClient] = None
    signer: Optional[Signer] = None

    async def close(self) -> None:
        """Close every client this bundle holds.

        Each client is closed even when closing an earlier one fails; the
        first failure is raised once all of them were attempted.
        """
        try:
            if self.github_app is not None:
                await self.github_app.close()
        finally:
            try:
                if self.cloud_build is not None:
                    await self.cloud_build.close()
            finally:
                close = getattr(self.signer, "close", None)
                if close is not None:
                    await close()


def load_webhook_secret(settings: WebhookSettings, file_reader: FileReader) -> bytes:
    """Read the webhook secret from its mounted file.

    Surrounding whitespace, such as a trailing newline left by the secret
    mount, is not part of the secret.

    Raises:
        OSError: If the secret file cannot be read.
        ValueError: If the secret file is empty.
    """
    secret = file_reader.read_file(settings.webhook_secret_path).strip()
    if not secret:
        raise ValueError(f"webhook secret file {settings.webhook_secret_path} is empty")
    return secret


def log_configuration(settings: WebhookSettings, secret: bytes) -> None:
    """Log configuration values with secrets redacted."""
    logger.info(
        "Runner webhook configuration",
        github_app_id=settings.github_app_id,
        github_api_base_url=settings.github_api_base_url,
        webhook_secret_path=settings.webhook_secret_path,
        webhook_secret=redact_secret(secret.decode("utf-8", errors="replace"), 0),
        kms_app_private_key_id=settings.kms_app_private_key_id,
        runner_label=settings.runner_label,
        build_location=settings.build_location,
        runner_project_id=settings.runner_project_id,
        runner_repository_id=settings.runner_repository_id,
        runner_service_account=settings.runner_service_account,
        runner_image=f"{settings.runner_image_name}:{settings.runner_image_tag}",
        runner_worker_pool_id=settings.runner_worker_pool_id,
    )


def build_services(
    settings: WebhookSettings,
    file_reader: Optional[FileReader] = None,
    signer: Optional[Signer] = None,
    cloud_build_client: Optional[CloudBuildClient] = None,
    metrics: Optional[WebhookMetrics] = None,
) -> WebhookServices:
    """Wire all webhook dependencies into a WebhookServices bundle.

    Args:
        settings: Validated settings.
        file_reader: Reads the webhook secret. Defaults to the filesystem.
        signer: App JWT signer. Defaults to the configured Cloud KMS key.
        cloud_build_client: Cloud Build client. Defaults to a new client.
        metrics: Metrics sink. Defaults to the process-wide instance.

    Returns:
        Fully wired services.

    Raises:
        OSError: If the webhook secret cannot be read.
        ValueError: If the webhook secret is empty.
    """
    secret = load_webhook_secret(settings, file_reader or OSFileReader())
    log_configuration(settings, secret)

    user_agent = f"{NAME}/{VERSION}"
    metrics = metrics or get_metrics()
    signer = signer or KMSSigner(settings.kms_app_private_key_id, user_agent=user_agent)
    cloud_build = cloud_build_client or CloudBuildClient(user_agent=user_agent)

    github_app = GitHubApp(
        app_id=settings.github_app_id,
        signer=signer,
        base_url=settings.github_api_base_url,
    )

    orchestrator = WebhookOrchestrator(
        secret=secret,
        handler=WebhookHandler(runner_label=settings.runner_label, metrics=metrics),
        exchanger=CredentialExchanger(github_app, runner_label=settings.runner_label),
        dispatcher=BuildDispatcher(
            cloud_build=cloud_build,
            project_id=settings.runner_project_id,
            location=settings.build_location,
            service_account=settings.runner_service_account,
            repository_id=settings.runner_repository_id,
            image_name=settings.runner_image_name,
            image_tag=settings.runner_image_tag,
            worker_pool_id=settings.runner_worker_pool_id,
        ),
        metrics=metrics,
    )

    return WebhookServices(
        orchestrator=orchestrator,
        metrics=metrics,
        github_app=github_app,
        cloud_build=cloud_build,
        signer=signer,
    )
