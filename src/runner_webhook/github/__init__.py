"""GitHub App authentication and JIT runner registration.

This module provides:
- GitHub App JWT authentication with a pluggable signer
- Installation token minting
- Repository and organization scoped JIT runner config generation
"""

from .auth import GitHubApp, GitHubAuthError, Installation, PrivateKeySigner, Signer
from .client import GitHubAPIError, GitHubClient
from .jit import CredentialExchanger
from .models import JITConfigRequest, JITRunnerConfig

__all__ = [
    "CredentialExchanger",
    "GitHubAPIError",
    "GitHubApp",
    "GitHubAuthError",
    "GitHubClient",
    "Installation",
    "JITConfigRequest",
    "JITRunnerConfig",
    "PrivateKeySigner",
    "Signer",
]
