"""GitHub Actions just-in-time runner webhook for Google Cloud Build.

This package receives GitHub ``workflow_job`` webhooks and, for each queued
job requesting the self-hosted label, provides:
- HMAC-SHA256 verification of the delivery
- Event decoding and routing on event type, action and labels
- GitHub App credential exchange for a single-use JIT runner config
- A Cloud Build build that runs the runner image with that config
"""
