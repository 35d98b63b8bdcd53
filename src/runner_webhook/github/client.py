"""GitHub API client for self-hosted runner registration.

This module provides an async wrapper around the GitHub REST API for
generating just-in-time runner configurations at repository or
organization scope.

Requests are made exactly once: the webhook sender's own redelivery is the
only retry mechanism, so transient failures surface immediately as
GitHubAPIError.
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from .models import JITConfigRequest, JITRunnerConfig

logger = structlog.get_logger()

DEFAULT_API_BASE_URL = "https://api.github.com"


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


def default_headers(token: Optional[str] = None) -> Dict[str, str]:
    """Build default headers for GitHub API requests."""
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": "gha-runner-webhook",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    token: Optional[str] = None,
    json_data: Optional[Dict[str, Any]] = None,
) -> httpx.Response:
    """Make a single GitHub API request.

    Args:
        client: The HTTP client to send through.
        method: HTTP method.
        url: Absolute request URL.
        token: Bearer token (installation token or App JWT).
        json_data: Optional JSON body.

    Returns:
        The successful HTTP response.

    Raises:
        GitHubAPIError: On transport failure or any status >= 400.
    """
    try:
        response = await client.request(
            method=method,
            url=url,
            json=json_data,
            headers=default_headers(token),
        )
    except httpx.RequestError as e:
        raise GitHubAPIError(
            message=f"GitHub API request failed: {e}",
            request_url=url,
        ) from e

    if response.status_code >= 400:
        error_body = response.text
        logger.error(
            "GitHub API error",
            status_code=response.status_code,
            url=url,
            method=method,
            response_body=error_body[:500],
        )
        raise GitHubAPIError(
            message=f"GitHub API error: {response.status_code}",
            status_code=response.status_code,
            response_body=error_body,
            request_url=url,
        )

    return response


class GitHubClient:
    """Async GitHub API client authenticated with an installation token.

    Attributes:
        token: GitHub installation access token.
        base_url: Base URL for GitHub API (default: https://api.github.com).
        timeout: Request timeout in seconds for an owned HTTP client.

    Example:
        >>> client = GitHubClient(token="ghs_xxx")
        >>> async with client:
        ...     await client.generate_org_jit_config("acme", request)
    """

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the GitHub client.

        Args:
            token: GitHub API token for authentication.
            base_url: Base URL for GitHub API. Use this to support
                      GitHub Enterprise Server endpoints.
            timeout: Request timeout in seconds.
            http_client: Shared HTTP client. When given, the caller owns it
                         and ``close`` leaves it open.
        """
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def generate_repo_jit_config(
        self,
        owner: str,
        repo: str,
        request: JITConfigRequest,
    ) -> JITRunnerConfig:
        """Generate a JIT runner config registered against a repository.

        Args:
            owner: Repository owner (organization login).
            repo: Repository name.
            request: Runner name, group and labels.

        Returns:
            The JIT runner config.

        Raises:
            GitHubAPIError: If the request fails or the response is invalid.
        """
        path = f"/repos/{owner}/{repo}/actions/runners/generate-jitconfig"
        return await self._generate_jit_config(path, request)

    async def generate_org_jit_config(
        self,
        org: str,
        request: JITConfigRequest,
    ) -> JITRunnerConfig:
        """Generate a JIT runner config registered against an organization."""
        path = f"/orgs/{org}/actions/runners/generate-jitconfig"
        return await self._generate_jit_config(path, request)

    async def _generate_jit_config(
        self, path: str, request: JITConfigRequest
    ) -> JITRunnerConfig:
        url = f"{self.base_url}{path}"
        response = await send_request(
            self.client,
            "POST",
            url,
            token=self.token,
            json_data=request.model_dump(),
        )

        try:
            data = response.json()
            runner = data.get("runner") or {}
            return JITRunnerConfig(
                encoded_jit_config=data.get("encoded_jit_config"),
                runner_id=runner.get("id"),
                runner_name=runner.get("name"),
            )
        except (ValueError, AttributeError) as e:
            # pydantic.ValidationError is a ValueError
            raise GitHubAPIError(
                message="invalid generate-jitconfig response",
                status_code=response.status_code,
                request_url=url,
            ) from e
