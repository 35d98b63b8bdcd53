"""click CLI entry point.

runner-webhook serve         run the webhook service
runner-webhook generate-jit  mint a JIT runner config with a local App key
runner-webhook send-test     send signed sample deliveries to a deployment
"""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import click
import httpx
import uvicorn

from .config import get_settings
from .github.auth import GitHubApp, PrivateKeySigner
from .github.client import DEFAULT_API_BASE_URL, GitHubAPIError, GitHubClient
from .github.jit import RUNNER_PERMISSIONS
from .github.models import JITConfigRequest
from .logging_config import configure_logging
from .version import VERSION
from .webhook.signature import sign_payload

# Org scoped registration needs the organization runner permission instead
# of repository administration.
ORG_RUNNER_PERMISSIONS = {"organization_self_hosted_runners": "write"}

SAMPLE_QUEUED_PAYLOAD = {
    "action": "queued",
    "workflow_job": {
        "id": 123456789,
        "run_id": 987654321,
        "name": "test-job",
        "labels": ["self-hosted"],
        "created_at": "2025-07-12T00:00:00Z",
        "started_at": "2025-07-12T00:00:00Z",
    },
    "repository": {"name": "test-repo"},
    "organization": {"login": "test-org"},
    "installation": {"id": 54321},
}


@dataclass(frozen=True)
class SampleDelivery:
    """A sample webhook delivery and the status it must be answered with."""

    name: str
    body: bytes
    expected_status: int
    sign: Callable[[bytes, bytes], Optional[str]] = sign_payload
    event_type: str = "workflow_job"


def sample_deliveries(include_queued: bool = True) -> List[SampleDelivery]:
    """Sample deliveries covering each response class of the service."""
    queued = json.dumps(SAMPLE_QUEUED_PAYLOAD).encode("utf-8")
    deliveries = [
        SampleDelivery(
            name="invalid signature",
            body=queued,
            expected_status=500,
            sign=lambda body, secret: "sha256=invalid-signature",
        ),
        SampleDelivery(
            name="missing signature",
            body=queued,
            expected_status=500,
            sign=lambda body, secret: None,
        ),
        SampleDelivery(
            name="malformed payload",
            body=b'{"foo": "bar"',
            expected_status=400,
        ),
        SampleDelivery(
            name="non-queued event",
            body=b'{"action": "completed"}',
            expected_status=200,
        ),
        SampleDelivery(
            name="ping event",
            body=b'{"zen": "Keep it logically awesome."}',
            expected_status=200,
            event_type="ping",
        ),
    ]
    if include_queued:
        # starts a real runner build on the target deployment
        deliveries.insert(
            0,
            SampleDelivery(name="valid payload", body=queued, expected_status=200),
        )
    return deliveries


@click.group()
@click.version_option(version=VERSION, prog_name="runner-webhook")
def main() -> None:
    """GitHub Actions JIT runner webhook for Cloud Build."""


@main.command()
@click.option("--host", default=None, help="Bind address (default: HOST setting)")
@click.option("--port", default=None, type=int, help="Bind port (default: PORT setting)")
def serve(host: Optional[str], port: Optional[int]) -> None:
    """Run the webhook service.

    Settings are read from the environment; missing required settings
    abort startup.
    """
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    uvicorn.run(
        "runner_webhook.main:app",
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
    )


@main.command("generate-jit")
@click.option("--app-id", required=True, help="GitHub App ID")
@click.option(
    "--private-key",
    "private_key_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to the GitHub App private key PEM file",
)
@click.option("--org", required=True, help="GitHub organization name")
@click.option("--repo", default=None, help="Register against this repository instead of the org")
@click.option("--runner-name", default="my-gcp-runner", show_default=True, help="Name for the new runner")
@click.option(
    "--runner-labels",
    default="self-hosted,Linux,X64",
    show_default=True,
    help="Comma-separated labels for the runner",
)
@click.option("--runner-group-id", default=1, type=int, show_default=True, help="Runner group for the new runner")
@click.option("--base-url", default=DEFAULT_API_BASE_URL, show_default=True, help="GitHub API base URL")
def generate_jit(
    app_id: str,
    private_key_path: Path,
    org: str,
    repo: Optional[str],
    runner_name: str,
    runner_labels: str,
    runner_group_id: int,
    base_url: str,
) -> None:
    """Mint a JIT runner config and print the encoded config.

    The printed value is a live runner credential.
    """
    configure_logging("WARNING", "console")

    try:
        signer = PrivateKeySigner.from_pem(private_key_path.read_bytes())
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--private-key") from e

    labels = [label.strip() for label in runner_labels.split(",") if label.strip()]
    if not labels:
        raise click.BadParameter("at least one label is required", param_hint="--runner-labels")

    request = JITConfigRequest(
        name=runner_name,
        runner_group_id=runner_group_id,
        labels=labels,
    )

    try:
        encoded = asyncio.run(
            _generate_jit(app_id, signer, base_url, org, repo, request)
        )
    except GitHubAPIError as e:
        raise click.ClickException(f"failed to generate jitconfig: {e}") from e

    click.echo(encoded, nl=False)


async def _generate_jit(
    app_id: str,
    signer: PrivateKeySigner,
    base_url: str,
    org: str,
    repo: Optional[str],
    request: JITConfigRequest,
) -> str:
    app = GitHubApp(app_id=app_id, signer=signer, base_url=base_url)
    try:
        if repo is not None:
            installation = await app.installation_for_repo(org, repo)
            token = await installation.access_token(RUNNER_PERMISSIONS)
        else:
            installation = await app.installation_for_org(org)
            token = await installation.access_token(ORG_RUNNER_PERMISSIONS)

        client = GitHubClient(token=token, base_url=base_url, http_client=app.http_client)
        if repo is not None:
            config = await client.generate_repo_jit_config(org, repo, request)
        else:
            config = await client.generate_org_jit_config(org, request)
    finally:
        await app.close()

    return config.encoded_jit_config


@main.command("send-test")
@click.option("--url", required=True, help="The target URL for the webhook")
@click.option("--secret", required=True, help="The webhook secret")
@click.option(
    "--skip-queued",
    is_flag=True,
    default=False,
    help="Do not send the valid queued delivery, which starts a real runner",
)
@click.option("--timeout", default=15.0, type=float, show_default=True, help="Request timeout in seconds")
def send_test(url: str, secret: str, skip_queued: bool, timeout: float) -> None:
    """Send signed sample deliveries and check every response status."""
    failed = []

    with httpx.Client(timeout=timeout) as client:
        for delivery in sample_deliveries(include_queued=not skip_queued):
            click.echo(f"--- Running test case: {delivery.name} ---")

            headers = {
                "Content-Type": "application/json",
                "X-GitHub-Event": delivery.event_type,
            }
            signature = delivery.sign(delivery.body, secret.encode("utf-8"))
            if signature:
                headers["X-Hub-Signature-256"] = signature

            try:
                response = client.post(url, content=delivery.body, headers=headers)
            except httpx.HTTPError as e:
                raise click.ClickException(
                    f"failed to send test case {delivery.name!r}: {e}"
                ) from e

            click.echo(f"Response Status: {response.status_code}")
            click.echo(f"Response Body: {response.text}")

            if response.status_code != delivery.expected_status:
                click.echo(
                    f"Test case {delivery.name!r} failed: expected status code "
                    f"{delivery.expected_status}, got {response.status_code}",
                    err=True,
                )
                failed.append(delivery.name)
            else:
                click.echo(f"Test case {delivery.name!r} passed.\n")

    if failed:
        raise click.ClickException(f"{len(failed)} test case(s) failed: {', '.join(failed)}")

    click.echo("All test cases passed.")


if __name__ == "__main__":
    main()
