"""Cloud Build client for submitting runner builds."""

from typing import Optional

from google.api_core.gapic_v1.client_info import ClientInfo
from google.cloud.devtools import cloudbuild_v1


class CloudBuildClient:
    """Submits builds without waiting for them to finish.

    ``create_build`` returns once Cloud Build has accepted the build; the
    long-running operation it starts is not polled.
    """

    def __init__(
        self,
        client: Optional[cloudbuild_v1.CloudBuildAsyncClient] = None,
        user_agent: Optional[str] = None,
    ):
        self._client = client or cloudbuild_v1.CloudBuildAsyncClient(
            client_info=ClientInfo(user_agent=user_agent),
        )

    async def create_build(self, request: cloudbuild_v1.CreateBuildRequest) -> str:
        """Submit a build.

        Args:
            request: The build request.

        Returns:
            The name of the long-running operation tracking the build.
        """
        operation = await self._client.create_build(request=request)
        return operation.operation.name

    async def close(self) -> None:
        await self._client.transport.close()
