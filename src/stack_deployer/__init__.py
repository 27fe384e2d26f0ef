"""Deployment-lifecycle orchestrator for the GitLab + Vault + OPA stack."""

__version__ = "0.1.0"
