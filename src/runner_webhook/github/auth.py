"""GitHub App authentication.

A GitHub App authenticates as itself with a short-lived RS256 JWT and
exchanges it for installation access tokens scoped to the permissions an
operation needs. The JWT signature is produced by a pluggable ``Signer`` so
the App private key can stay in Cloud KMS; ``PrivateKeySigner`` signs with
a local PEM key for development tools and tests.
"""

import json
import time
from typing import Any, Callable, Dict, Optional, Protocol

import httpx
import structlog
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from jwt.utils import base64url_encode

from .client import DEFAULT_API_BASE_URL, GitHubAPIError, send_request

logger = structlog.get_logger()

# GitHub rejects App JWTs valid for more than 10 minutes; backdate iat
# to tolerate clock drift.
JWT_BACKDATE_SECONDS = 60
JWT_LIFETIME_SECONDS = 9 * 60

_JWT_HEADER = {"alg": "RS256", "typ": "JWT"}


class Signer(Protocol):
    """Produces an RSASSA-PKCS1-v1_5 SHA-256 signature over a message."""

    async def sign(self, message: bytes) -> bytes: ...


class PrivateKeySigner:
    """Signer backed by a local RSA private key."""

    def __init__(self, private_key: rsa.RSAPrivateKey):
        self._private_key = private_key

    @classmethod
    def from_pem(cls, pem: bytes, password: Optional[bytes] = None) -> "PrivateKeySigner":
        """Load a signer from a PEM-encoded RSA private key.

        Raises:
            ValueError: If the PEM is not an RSA private key.
        """
        key = serialization.load_pem_private_key(pem, password=password)
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ValueError("GitHub App private key must be an RSA key")
        return cls(key)

    async def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message, padding.PKCS1v15(), hashes.SHA256())


class GitHubAuthError(GitHubAPIError):
    """Raised when the App JWT cannot be produced."""


class Installation:
    """A GitHub App installation the App can act on behalf of.

    Attributes:
        id: The installation id.
        access_tokens_url: Endpoint that mints installation tokens.
    """

    def __init__(self, app: "GitHubApp", installation_id: int, access_tokens_url: str):
        self.app = app
        self.id = installation_id
        self.access_tokens_url = access_tokens_url

    async def access_token(self, permissions: Dict[str, str]) -> str:
        """Mint an installation token for all repositories of the installation.

        Args:
            permissions: Permission scopes, e.g. ``{"administration": "write"}``.

        Returns:
            A short-lived installation access token.

        Raises:
            GitHubAPIError: If GitHub refuses the token request.
        """
        app_jwt = await self.app.app_jwt()
        response = await send_request(
            self.app.http_client,
            "POST",
            self.access_tokens_url,
            token=app_jwt,
            json_data={"permissions": permissions},
        )
        token = _json_field(response, "token")
        logger.debug(
            "Minted installation token",
            installation_id=self.id,
            permissions=permissions,
        )
        return token


class GitHubApp:
    """A GitHub App identity.

    Attributes:
        app_id: The GitHub App id, used as the JWT issuer.
        signer: Signs the App JWT.
        base_url: Base URL for GitHub API.
        http_client: Long-lived HTTP client shared by every request.
    """

    def __init__(
        self,
        app_id: str,
        signer: Signer,
        base_url: str = DEFAULT_API_BASE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.app_id = app_id
        self.signer = signer
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._clock = clock

    async def app_jwt(self) -> str:
        """Create a JWT authenticating as the App.

        Raises:
            GitHubAuthError: If the signer fails.
        """
        now = int(self._clock())
        claims = {
            "iat": now - JWT_BACKDATE_SECONDS,
            "exp": now + JWT_LIFETIME_SECONDS,
            "iss": self.app_id,
        }
        signing_input = b".".join(
            [
                base64url_encode(_compact_json(_JWT_HEADER)),
                base64url_encode(_compact_json(claims)),
            ]
        )

        try:
            signature = await self.signer.sign(signing_input)
        except Exception as e:
            raise GitHubAuthError(f"failed to sign app JWT: {e}") from e

        return (signing_input + b"." + base64url_encode(signature)).decode("ascii")

    async def installation_for_id(self, installation_id: int) -> Installation:
        """Look up an installation of this App.

        Args:
            installation_id: The installation id from the webhook payload.

        Returns:
            The installation, ready to mint access tokens.

        Raises:
            GitHubAPIError: If the installation cannot be resolved.
        """
        return await self._installation(
            f"{self.base_url}/app/installations/{installation_id}",
            installation_id,
        )

    async def installation_for_org(self, org: str) -> Installation:
        """Look up the installation of this App on an organization."""
        return await self._installation(f"{self.base_url}/orgs/{org}/installation")

    async def installation_for_repo(self, owner: str, repo: str) -> Installation:
        """Look up the installation of this App covering a repository."""
        return await self._installation(
            f"{self.base_url}/repos/{owner}/{repo}/installation"
        )

    async def _installation(
        self, url: str, installation_id: Optional[int] = None
    ) -> Installation:
        response = await send_request(
            self.http_client, "GET", url, token=await self.app_jwt()
        )
        access_tokens_url = _json_field(response, "access_tokens_url")
        if installation_id is None:
            try:
                installation_id = int(response.json()["id"])
            except (KeyError, TypeError, ValueError) as e:
                raise GitHubAPIError(
                    message="GitHub API response is missing id",
                    status_code=response.status_code,
                    request_url=url,
                ) from e
        return Installation(self, installation_id, access_tokens_url)

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and not self.http_client.is_closed:
            await self.http_client.aclose()


def _compact_json(value: Dict[str, Any]) -> bytes:
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


def _json_field(response: httpx.Response, name: str) -> str:
    try:
        value = response.json().get(name)
    except (ValueError, AttributeError) as e:
        raise GitHubAPIError(
            message=f"invalid GitHub API response from {response.request.url}",
            status_code=response.status_code,
        ) from e

    if not isinstance(value, str) or not value:
        raise GitHubAPIError(
            message=f"GitHub API response is missing {name}",
            status_code=response.status_code,
            request_url=str(response.request.url),
        )
    return value
