"""Adapters for the external control-plane collaborators."""

from .base import CloudAccount, ConfigManager, EndpointProber, PlanSummary, Provisioner
from .runner import CommandResult, CommandRunner

__all__ = [
    "CloudAccount",
    "ConfigManager",
    "EndpointProber",
    "PlanSummary",
    "Provisioner",
    "CommandResult",
    "CommandRunner",
]
