"""Build dispatcher that launches a JIT runner as a Cloud Build build.

Each accepted queued job gets its own one-step build. The step uses the
Docker builder to run the runner image with ``--privileged`` so the runner
can start its own Docker daemon for container actions.

The JIT config reaches the runner only through a build substitution that
is expanded into the step environment and forwarded by name with
``docker run --env ENCODED_JIT_CONFIG``; the credential never appears on a
command line.

Source:
- src/runner_webhook/gcp/cloudbuild.py (CloudBuildClient)
- src/runner_webhook/github/models.py (JITRunnerConfig)
"""

from typing import Optional, Protocol

import structlog
from google.api_core import exceptions as google_exceptions
from google.cloud.devtools import cloudbuild_v1

from .errors import DependencyError
from .github.models import JITRunnerConfig

logger = structlog.get_logger()

DOCKER_BUILDER_IMAGE = "gcr.io/cloud-builders/docker"

RUNNER_STEP_ID = "run"

JIT_CONFIG_ENV = "ENCODED_JIT_CONFIG"

RUNNER_IMAGE_REF = "$_REPOSITORY_ID/$_IMAGE_NAME:$_IMAGE_TAG"


class BuildSubmitter(Protocol):
    """The subset of Cloud Build the dispatcher uses."""

    async def create_build(self, request: cloudbuild_v1.CreateBuildRequest) -> str: ...


class BuildDispatcher:
    """Builds and submits runner builds.

    Attributes:
        cloud_build: Client that submits builds.
        project_id: Project the build runs in.
        location: Cloud Build region.
        service_account: Service account email or resource name the
            build runs as.
        repository_id: Artifact Registry repository path of the runner image.
        image_name: Runner image name.
        image_tag: Default runner image tag.
        worker_pool_id: Worker pool id or resource name, None for shared
            capacity.
    """

    def __init__(
        self,
        cloud_build: BuildSubmitter,
        project_id: str,
        location: str,
        service_account: str,
        repository_id: str,
        image_name: str,
        image_tag: str = "latest",
        worker_pool_id: Optional[str] = None,
    ):
        self.cloud_build = cloud_build
        self.project_id = project_id
        self.location = location
        self.service_account = service_account
        self.repository_id = repository_id
        self.image_name = image_name
        self.image_tag = image_tag
        self.worker_pool_id = worker_pool_id

    @property
    def parent(self) -> str:
        return f"projects/{self.project_id}/locations/{self.location}"

    @property
    def service_account_name(self) -> str:
        """Service account as the resource name Cloud Build expects."""
        if self.service_account.startswith("projects/"):
            return self.service_account
        return f"projects/{self.project_id}/serviceAccounts/{self.service_account}"

    @property
    def worker_pool_name(self) -> Optional[str]:
        """Worker pool resource name, expanded from a short id if needed."""
        if not self.worker_pool_id:
            return None
        if self.worker_pool_id.startswith("projects/"):
            return self.worker_pool_id
        return f"{self.parent}/workerPools/{self.worker_pool_id}"

    def build_request(
        self,
        jit_config: JITRunnerConfig,
        image_tag: Optional[str] = None,
    ) -> cloudbuild_v1.CreateBuildRequest:
        """Construct the build request for one runner.

        Args:
            jit_config: The runner's JIT config.
            image_tag: Image tag override; None uses the configured tag.

        Returns:
            A CreateBuildRequest with a single privileged runner step.
        """
        options = cloudbuild_v1.BuildOptions(
            logging=cloudbuild_v1.BuildOptions.LoggingMode.CLOUD_LOGGING_ONLY,
        )
        pool = self.worker_pool_name
        if pool is not None:
            options.pool = cloudbuild_v1.BuildOptions.PoolOption(name=pool)

        build = cloudbuild_v1.Build(
            service_account=self.service_account_name,
            steps=[
                cloudbuild_v1.BuildStep(
                    id=RUNNER_STEP_ID,
                    name=DOCKER_BUILDER_IMAGE,
                    args=[
                        "run",
                        "--rm",
                        "--privileged",
                        "--env",
                        JIT_CONFIG_ENV,
                        RUNNER_IMAGE_REF,
                    ],
                    env=[f"{JIT_CONFIG_ENV}=${{_ENCODED_JIT_CONFIG}}"],
                )
            ],
            options=options,
            substitutions={
                "_ENCODED_JIT_CONFIG": jit_config.encoded_jit_config,
                "_REPOSITORY_ID": self.repository_id,
                "_IMAGE_NAME": self.image_name,
                "_IMAGE_TAG": image_tag or self.image_tag,
            },
        )

        return cloudbuild_v1.CreateBuildRequest(
            parent=self.parent,
            project_id=self.project_id,
            build=build,
        )

    async def dispatch(
        self,
        jit_config: JITRunnerConfig,
        runner_id: str,
        image_tag: Optional[str] = None,
    ) -> str:
        """Submit the runner build and return without waiting for it.

        Args:
            jit_config: The runner's JIT config.
            runner_id: Runner name, for log correlation.
            image_tag: Image tag override; None uses the configured tag.

        Returns:
            The name of the operation tracking the build.

        Raises:
            DependencyError: If Cloud Build rejects the request.
        """
        request = self.build_request(jit_config, image_tag=image_tag)

        try:
            operation_name = await self.cloud_build.create_build(request)
        except google_exceptions.GoogleAPIError as e:
            raise DependencyError(
                f"failed to create cloud build build: {e}",
                public_message="failed to run build",
            ) from e

        logger.info(
            "Submitted runner build",
            runner_id=runner_id,
            operation=operation_name,
            image_tag=request.build.substitutions["_IMAGE_TAG"],
            worker_pool=self.worker_pool_name,
        )
        return operation_name
