"""Pytest configuration and shared fixtures for the runner webhook tests."""

import logging
from typing import Dict

import pytest
import structlog
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from prometheus_client import CollectorRegistry

from runner_webhook.github.auth import PrivateKeySigner
from runner_webhook.metrics import WebhookMetrics
from tests.mocks import OPTIONAL_ENV, REQUIRED_ENV, FakeCloudBuild


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_private_key) -> bytes:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture
def signer(rsa_private_key) -> PrivateKeySigner:
    return PrivateKeySigner(rsa_private_key)


@pytest.fixture
def metrics() -> WebhookMetrics:
    """Metrics on a private registry so tests never share counters."""
    return WebhookMetrics(registry=CollectorRegistry())


@pytest.fixture
def fake_cloud_build() -> FakeCloudBuild:
    return FakeCloudBuild()


@pytest.fixture
def settings_env(monkeypatch) -> Dict[str, str]:
    """Set every required environment variable and clear optional ones."""
    for name in OPTIONAL_ENV:
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED_ENV.items():
        monkeypatch.setenv(name, value)
    return dict(REQUIRED_ENV)


@pytest.fixture
def reset_logging():
    """Undo configure_logging so later tests do not write to closed streams."""
    yield
    structlog.reset_defaults()
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
