"""Google Cloud clients: KMS signing and Cloud Build submission."""

from .cloudbuild import CloudBuildClient
from .kms import KMSSigner

__all__ = ["CloudBuildClient", "KMSSigner"]
