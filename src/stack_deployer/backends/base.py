"""Narrow interfaces to the external control-plane collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..models import EndpointHealth, Inventory, ProcedureRun, ProvisioningOutputs


@dataclass(frozen=True)
class PlanSummary:
    """What the provisioner intends to change."""

    has_changes: bool
    plan_file: Optional[str] = None


class Provisioner(ABC):
    """Materializes and destroys infrastructure from a declarative descriptor."""

    @abstractmethod
    def init(self, timeout: Optional[float] = None) -> None:
        """Initialize backend state. Safe to call repeatedly."""

    @abstractmethod
    def plan(self, timeout: Optional[float] = None) -> PlanSummary:
        """Compute the change plan against live infrastructure."""

    @abstractmethod
    def apply(self, plan: PlanSummary, timeout: Optional[float] = None) -> None:
        """Apply a previously computed plan."""

    @abstractmethod
    def read_outputs(self, timeout: Optional[float] = None) -> ProvisioningOutputs:
        """Read named output values from the provisioner's own state."""

    @abstractmethod
    def destroy(self, timeout: Optional[float] = None) -> None:
        """Destroy every tracked resource."""

    @abstractmethod
    def local_state_paths(self) -> List[Path]:
        """Locally persisted working state (removed during cleanup)."""


class ConfigManager(ABC):
    """Applies idempotent procedures to the hosts of an inventory."""

    @abstractmethod
    def available(self) -> bool:
        """Whether the configuration manager is installed."""

    @abstractmethod
    def install_requirements(self, timeout: Optional[float] = None) -> None:
        """Ensure required extensions/collections are present."""

    @abstractmethod
    def run(
        self,
        procedure: str,
        inventory: Inventory,
        timeout: Optional[float] = None,
        mutating: bool = True,
    ) -> ProcedureRun:
        """Run `procedure` against every host of `inventory`."""


class CloudAccount(ABC):
    """Cloud account API used for the credential probe and the residual sweep."""

    @abstractmethod
    def verify_identity(self) -> str:
        """Return the caller identity; raise CloudAPIError if credentials are invalid."""

    @abstractmethod
    def count_tagged_instances(self, name_pattern: str) -> int:
        """Count live instances whose Name tag matches `name_pattern`."""


class EndpointProber(ABC):
    @abstractmethod
    def probe(self, name: str, url: str) -> EndpointHealth:
        """Check that a service endpoint answers."""
