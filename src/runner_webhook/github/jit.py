"""Exchange of a GitHub App installation for a JIT runner config.

The runner name is derived from the queued job, but GitHub does not bind
the job to the runner: any queued job with matching labels may land on it.
Concurrent queued jobs each provision their own runner and GitHub's own
matching decides which job runs where.
"""

from typing import Optional

import structlog

from ..errors import DependencyError
from ..webhook.handler import DEFAULT_RUNNER_LABEL, PLATFORM_LABELS
from .auth import GitHubApp
from .client import GitHubAPIError, GitHubClient
from .models import JITConfigRequest, JITRunnerConfig

logger = structlog.get_logger()

RUNNER_PERMISSIONS = {"administration": "write"}

DEFAULT_RUNNER_GROUP_ID = 1


class CredentialExchanger:
    """Turns an installation reference into a scoped JIT runner config.

    Attributes:
        app: The GitHub App identity.
        runner_label: Default label every runner registers with.
        runner_group_id: Runner group new runners join.
    """

    def __init__(
        self,
        app: GitHubApp,
        runner_label: str = DEFAULT_RUNNER_LABEL,
        runner_group_id: int = DEFAULT_RUNNER_GROUP_ID,
    ):
        self.app = app
        self.runner_label = runner_label
        self.runner_group_id = runner_group_id

    def runner_labels(self) -> list:
        """Labels every runner registers with: the default label, then platform."""
        return [self.runner_label, *PLATFORM_LABELS]

    async def exchange(
        self,
        installation_id: int,
        org: str,
        repo: Optional[str],
        runner_name: str,
    ) -> JITRunnerConfig:
        """Mint a JIT runner config for one runner registration.

        Args:
            installation_id: Installation that received the webhook.
            org: Organization login.
            repo: Repository name; None registers the runner at org scope.
            runner_name: Name the runner registers under.

        Returns:
            The JIT runner config. Its credential must not be logged.

        Raises:
            DependencyError: If the installation cannot be resolved or
                GitHub refuses the JIT config request.
        """
        log = logger.bind(
            runner_id=runner_name,
            installation_id=installation_id,
            org=org,
            repo=repo,
        )

        try:
            installation = await self.app.installation_for_id(installation_id)
            token = await installation.access_token(RUNNER_PERMISSIONS)
        except GitHubAPIError as e:
            raise DependencyError(
                f"failed to set up installation client: {e}",
                public_message="failed to setup installation client",
            ) from e

        request = JITConfigRequest(
            name=runner_name,
            runner_group_id=self.runner_group_id,
            labels=self.runner_labels(),
        )
        # shares the App's connection pool; close() leaves it open
        client = GitHubClient(
            token=token,
            base_url=self.app.base_url,
            http_client=self.app.http_client,
        )

        try:
            if repo is not None:
                config = await client.generate_repo_jit_config(org, repo, request)
            else:
                config = await client.generate_org_jit_config(org, request)
        except GitHubAPIError as e:
            raise DependencyError(
                f"failed to generate jitconfig: {e}",
                public_message="failed to generate jitconfig",
            ) from e

        log.info(
            "Generated JIT runner config",
            labels=request.labels,
            github_runner_id=config.runner_id,
        )
        return config
