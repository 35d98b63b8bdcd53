"""Tests for GitHub App authentication and JIT runner registration.

The GitHub REST API is mocked with pytest-httpx; App JWTs are checked
against the public half of a throwaway RSA key with PyJWT.
"""

import json

import httpx
import jwt
import pytest

from runner_webhook.errors import DependencyError
from runner_webhook.github.auth import GitHubApp, GitHubAuthError, PrivateKeySigner
from runner_webhook.github.client import GitHubAPIError, GitHubClient
from runner_webhook.github.jit import RUNNER_PERMISSIONS, CredentialExchanger
from runner_webhook.github.models import JITConfigRequest
from tests.mocks import GITHUB_API, run_async

NOW = 1_750_000_000

TOKENS_URL = f"{GITHUB_API}/app/installations/123/access_tokens"

JIT_RESPONSE = {
    "encoded_jit_config": "ZW5jb2RlZA==",
    "runner": {"id": 42, "name": "GCP-789"},
}


def make_app(signer, **kwargs) -> GitHubApp:
    return GitHubApp(app_id="1234", signer=signer, clock=lambda: NOW, **kwargs)


def add_installation_responses(httpx_mock, token: str = "ghs_installation"):
    httpx_mock.add_response(
        method="GET",
        url=f"{GITHUB_API}/app/installations/123",
        json={"id": 123, "access_tokens_url": TOKENS_URL},
    )
    httpx_mock.add_response(
        method="POST",
        url=TOKENS_URL,
        json={"token": token, "expires_at": "2025-07-12T01:00:00Z"},
        status_code=201,
    )


class FailingSigner:
    async def sign(self, message: bytes) -> bytes:
        raise RuntimeError("kms unavailable")


# ---------------------------------------------------------------------------
# App JWT
# ---------------------------------------------------------------------------


class TestAppJWT:
    def test_claims_and_signature(self, signer, rsa_private_key):
        token = run_async(make_app(signer).app_jwt())

        claims = jwt.decode(
            token,
            rsa_private_key.public_key(),
            algorithms=["RS256"],
            options={"verify_exp": False, "verify_iat": False},
        )
        assert claims == {"iat": NOW - 60, "exp": NOW + 540, "iss": "1234"}
        assert jwt.get_unverified_header(token) == {"alg": "RS256", "typ": "JWT"}

    def test_lifetime_is_under_ten_minutes(self, signer):
        claims = jwt.decode(
            run_async(make_app(signer).app_jwt()),
            options={"verify_signature": False},
        )

        assert claims["exp"] - claims["iat"] <= 600

    def test_signer_failure_raises_auth_error(self):
        with pytest.raises(GitHubAuthError, match="kms unavailable"):
            run_async(make_app(FailingSigner()).app_jwt())

    def test_from_pem_rejects_non_rsa_key(self):
        from cryptography.hazmat.primitives import serialization
        from cryptography.hazmat.primitives.asymmetric import ec

        pem = ec.generate_private_key(ec.SECP256R1()).private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )

        with pytest.raises(ValueError, match="RSA"):
            PrivateKeySigner.from_pem(pem)


# ---------------------------------------------------------------------------
# Installations
# ---------------------------------------------------------------------------


class TestInstallation:
    def test_access_token_flow(self, httpx_mock, signer, rsa_private_key):
        add_installation_responses(httpx_mock)

        async def mint():
            app = make_app(signer)
            try:
                installation = await app.installation_for_id(123)
                return await installation.access_token(RUNNER_PERMISSIONS)
            finally:
                await app.close()

        assert run_async(mint()) == "ghs_installation"

        lookup, mint_request = httpx_mock.get_requests()
        app_jwt = lookup.headers["Authorization"].removeprefix("Bearer ")
        jwt.decode(
            app_jwt,
            rsa_private_key.public_key(),
            algorithms=["RS256"],
            options={"verify_exp": False, "verify_iat": False},
        )
        assert lookup.headers["Accept"] == "application/vnd.github+json"
        assert json.loads(mint_request.content) == {
            "permissions": {"administration": "write"}
        }

    def test_installation_for_org(self, httpx_mock, signer):
        httpx_mock.add_response(
            method="GET",
            url=f"{GITHUB_API}/orgs/acme/installation",
            json={"id": 77, "access_tokens_url": TOKENS_URL},
        )

        installation = run_async(make_app(signer).installation_for_org("acme"))

        assert installation.id == 77
        assert installation.access_tokens_url == TOKENS_URL

    def test_unknown_installation(self, httpx_mock, signer):
        httpx_mock.add_response(
            method="GET",
            url=f"{GITHUB_API}/app/installations/123",
            status_code=404,
            json={"message": "Not Found"},
        )

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(make_app(signer).installation_for_id(123))

        assert exc_info.value.status_code == 404
        assert "Not Found" in exc_info.value.response_body

    def test_response_without_tokens_url(self, httpx_mock, signer):
        httpx_mock.add_response(
            method="GET",
            url=f"{GITHUB_API}/app/installations/123",
            json={"id": 123},
        )

        with pytest.raises(GitHubAPIError, match="access_tokens_url"):
            run_async(make_app(signer).installation_for_id(123))


# ---------------------------------------------------------------------------
# JIT config client
# ---------------------------------------------------------------------------


class TestGitHubClient:
    def test_repo_jit_config(self, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=f"{GITHUB_API}/repos/google/webhook/actions/runners/generate-jitconfig",
            json=JIT_RESPONSE,
            status_code=201,
        )
        request = JITConfigRequest(name="GCP-789", labels=["self-hosted", "Linux", "X64"])

        async def generate():
            async with GitHubClient(token="ghs_installation") as client:
                return await client.generate_repo_jit_config("google", "webhook", request)

        config = run_async(generate())

        assert config.encoded_jit_config == "ZW5jb2RlZA=="
        assert config.runner_id == 42
        assert "ZW5jb2RlZA==" not in repr(config)

        sent = httpx_mock.get_request()
        assert sent.headers["Authorization"] == "Bearer ghs_installation"
        assert json.loads(sent.content) == {
            "name": "GCP-789",
            "runner_group_id": 1,
            "labels": ["self-hosted", "Linux", "X64"],
            "work_folder": "_work",
        }

    def test_org_jit_config(self, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=f"{GITHUB_API}/orgs/google/actions/runners/generate-jitconfig",
            json=JIT_RESPONSE,
            status_code=201,
        )
        request = JITConfigRequest(name="GCP-789", labels=["self-hosted"])

        config = run_async(GitHubClient(token="t").generate_org_jit_config("google", request))

        assert config.runner_name == "GCP-789"

    def test_response_without_config_is_an_error(self, httpx_mock):
        httpx_mock.add_response(method="POST", json={"runner": {"id": 1}}, status_code=201)
        request = JITConfigRequest(name="GCP-789", labels=["self-hosted"])

        with pytest.raises(GitHubAPIError, match="invalid generate-jitconfig response"):
            run_async(GitHubClient(token="t").generate_org_jit_config("google", request))

    def test_transport_error(self, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))
        request = JITConfigRequest(name="GCP-789", labels=["self-hosted"])

        with pytest.raises(GitHubAPIError, match="request failed"):
            run_async(GitHubClient(token="t").generate_org_jit_config("google", request))


# ---------------------------------------------------------------------------
# Credential exchange
# ---------------------------------------------------------------------------


class TestCredentialExchanger:
    def test_exchange_registers_repo_runner(self, httpx_mock, signer):
        add_installation_responses(httpx_mock)
        httpx_mock.add_response(
            method="POST",
            url=f"{GITHUB_API}/repos/google/webhook/actions/runners/generate-jitconfig",
            json=JIT_RESPONSE,
            status_code=201,
        )
        exchanger = CredentialExchanger(make_app(signer))

        config = run_async(exchanger.exchange(
            installation_id=123,
            org="google",
            repo="webhook",
            runner_name="GCP-789",
        ))

        assert config.encoded_jit_config == "ZW5jb2RlZA=="
        jit_request = httpx_mock.get_requests()[-1]
        assert jit_request.headers["Authorization"] == "Bearer ghs_installation"
        assert json.loads(jit_request.content)["labels"] == [
            "self-hosted",
            "Linux",
            "X64",
        ]

    def test_exchange_without_repo_registers_org_runner(self, httpx_mock, signer):
        add_installation_responses(httpx_mock)
        httpx_mock.add_response(
            method="POST",
            url=f"{GITHUB_API}/orgs/google/actions/runners/generate-jitconfig",
            json=JIT_RESPONSE,
            status_code=201,
        )

        config = run_async(CredentialExchanger(make_app(signer)).exchange(123, "google", None, "GCP-789"))

        assert config.runner_id == 42

    def test_installation_failure(self, httpx_mock, signer):
        httpx_mock.add_response(
            method="GET",
            url=f"{GITHUB_API}/app/installations/123",
            status_code=401,
            json={"message": "Bad credentials"},
        )

        with pytest.raises(DependencyError) as exc_info:
            run_async(CredentialExchanger(make_app(signer)).exchange(123, "google", "webhook", "GCP-789"))

        assert exc_info.value.status_code == 500
        assert exc_info.value.public_message == "failed to setup installation client"
        assert isinstance(exc_info.value.__cause__, GitHubAPIError)

    def test_jit_config_failure_is_not_retried(self, httpx_mock, signer):
        add_installation_responses(httpx_mock)
        httpx_mock.add_response(
            method="POST",
            url=f"{GITHUB_API}/repos/google/webhook/actions/runners/generate-jitconfig",
            status_code=503,
            text="unavailable",
        )

        with pytest.raises(DependencyError) as exc_info:
            run_async(CredentialExchanger(make_app(signer)).exchange(123, "google", "webhook", "GCP-789"))

        assert exc_info.value.public_message == "failed to generate jitconfig"
        assert len(httpx_mock.get_requests()) == 3

    def test_runner_labels_are_fixed(self, signer):
        exchanger = CredentialExchanger(make_app(signer), runner_label="gcp")

        assert exchanger.runner_labels() == ["gcp", "Linux", "X64"]
