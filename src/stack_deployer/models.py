"""Data models shared by the deploy and teardown pipelines."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

# Stable output names consumed by the reporter and by wrapping automation.
SERVICE_ROLES: Tuple[str, ...] = ("gitlab", "vault", "opa")
REQUIRED_OUTPUTS: Tuple[str, ...] = tuple(
    f"{role}_{kind}_ip" for role in SERVICE_ROLES for kind in ("public", "private")
)
UNKNOWN_OUTPUT = "unknown - inspect provisioner state"


@dataclass(frozen=True)
class ServiceSpec:
    """How one deployed service is reached and presented."""

    role: str
    title: str
    port: Optional[int]
    health_path: str
    notes: Tuple[str, ...] = ()

    def base_url(self, address: str) -> str:
        if self.port:
            return f"http://{address}:{self.port}"
        return f"http://{address}"

    def health_url(self, address: str) -> str:
        return self.base_url(address) + self.health_path


SERVICES: Tuple[ServiceSpec, ...] = (
    ServiceSpec(
        role="gitlab",
        title="GitLab (Repository Manager)",
        port=None,
        health_path="/",
        notes=("Login: root / password123 (change immediately!)",),
    ),
    ServiceSpec(
        role="vault",
        title="Vault (Secret Manager)",
        port=8200,
        health_path="/v1/sys/health",
        notes=("Token: check the Ansible output or /tmp/vault_token.txt on the vault instance",),
    ),
    ServiceSpec(
        role="opa",
        title="OPA (Policy Engine)",
        port=8181,
        health_path="/health",
        notes=("API: available for policy evaluation",),
    ),
)


class ExecutionPhase(str, Enum):
    """Phases of the forward (deploy) and reverse (teardown) pipelines."""

    VALIDATE = "Validate"
    PROVISION = "Provision"
    BUILD_INVENTORY = "BuildInventory"
    CONFIGURE = "Configure"
    VERIFY = "Verify"
    REPORT = "Report"
    CONFIRM_TEARDOWN = "ConfirmTeardown"
    GRACEFUL_SHUTDOWN = "GracefulShutdown"
    DESTROY = "Destroy"
    LOCAL_CLEANUP = "LocalCleanup"
    RESIDUAL_SWEEP = "ResidualSweep"


class PhaseStatus(Enum):
    """Outcome of a single phase."""

    SUCCEEDED = "succeeded"
    SUCCEEDED_WITH_WARNINGS = "succeeded_with_warnings"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"


class Severity(Enum):
    """How a state's failure affects the rest of its pipeline."""

    FATAL = "fatal"              # halts the pipeline / is the primary error
    BEST_EFFORT = "best_effort"  # logged, pipeline continues
    ADVISORY = "advisory"        # downgraded to a warning, never raised


@dataclass(frozen=True)
class PhaseResult:
    """Result of one phase execution."""

    phase: ExecutionPhase
    status: PhaseStatus
    reason: Optional[str] = None
    warnings: Tuple[str, ...] = ()
    detail: Optional[str] = None
    remediation: Optional[str] = None
    finished_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def ok(self) -> bool:
        return self.status in (
            PhaseStatus.SUCCEEDED,
            PhaseStatus.SUCCEEDED_WITH_WARNINGS,
            PhaseStatus.SKIPPED,
        )

    @classmethod
    def succeeded(cls, phase: ExecutionPhase, detail: Optional[str] = None) -> "PhaseResult":
        return cls(phase=phase, status=PhaseStatus.SUCCEEDED, detail=detail)

    @classmethod
    def warned(
        cls,
        phase: ExecutionPhase,
        warnings: List[str],
        detail: Optional[str] = None,
    ) -> "PhaseResult":
        return cls(
            phase=phase,
            status=PhaseStatus.SUCCEEDED_WITH_WARNINGS,
            warnings=tuple(warnings),
            detail=detail,
        )

    @classmethod
    def failed(
        cls,
        phase: ExecutionPhase,
        reason: str,
        remediation: Optional[str] = None,
    ) -> "PhaseResult":
        return cls(phase=phase, status=PhaseStatus.FAILED, reason=reason, remediation=remediation)

    @classmethod
    def skipped(cls, phase: ExecutionPhase, reason: str) -> "PhaseResult":
        return cls(phase=phase, status=PhaseStatus.SKIPPED, reason=reason)

    @classmethod
    def timed_out(
        cls,
        phase: ExecutionPhase,
        reason: str,
        remediation: Optional[str] = None,
    ) -> "PhaseResult":
        return cls(phase=phase, status=PhaseStatus.TIMED_OUT, reason=reason, remediation=remediation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "status": self.status.value,
            "reason": self.reason,
            "warnings": list(self.warnings),
            "detail": self.detail,
            "remediation": self.remediation,
            "finished_at": self.finished_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhaseResult":
        return cls(
            phase=ExecutionPhase(data["phase"]),
            status=PhaseStatus(data["status"]),
            reason=data.get("reason"),
            warnings=tuple(data.get("warnings") or ()),
            detail=data.get("detail"),
            remediation=data.get("remediation"),
            finished_at=data.get("finished_at", ""),
        )


@dataclass(frozen=True)
class DeploymentDescriptor:
    """Where the declarative stack description lives. Never written to."""

    working_dir: Path
    var_file: Optional[str] = None


class ProvisioningOutputs(Mapping[str, str]):
    """Read-only view over the provisioner's named outputs."""

    def __init__(self, values: Mapping[str, str]) -> None:
        self._values = MappingProxyType({str(k): str(v) for k, v in values.items()})

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self):
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ProvisioningOutputs({dict(self._values)!r})"

    def missing(self, required: Tuple[str, ...] = REQUIRED_OUTPUTS) -> List[str]:
        return [name for name in required if not self._values.get(name)]

    def fingerprint(self) -> str:
        """Stable digest used to detect stale inventory caches."""
        payload = json.dumps(dict(self._values), sort_keys=True).encode("utf-8")
        return hashlib.sha256(payload).hexdigest()[:16]


@dataclass(frozen=True)
class InventoryHost:
    role: str
    name: str
    address: str
    private_address: Optional[str] = None
    user: Optional[str] = None
    key_file: Optional[str] = None


@dataclass(frozen=True)
class Inventory:
    """Hosts the configuration manager acts on, derived from outputs."""

    hosts: Tuple[InventoryHost, ...]
    fingerprint: Optional[str] = None

    def roles(self) -> List[str]:
        seen: List[str] = []
        for host in self.hosts:
            if host.role not in seen:
                seen.append(host.role)
        return seen

    def by_role(self, role: str) -> List[InventoryHost]:
        return [h for h in self.hosts if h.role == role]

    def host(self, name: str) -> Optional[InventoryHost]:
        for h in self.hosts:
            if h.name == name:
                return h
        return None

    def __len__(self) -> int:
        return len(self.hosts)


@dataclass(frozen=True)
class HostOutcome:
    """Per-host result parsed from the configuration manager's recap."""

    host: str
    ok: int = 0
    changed: int = 0
    unreachable: int = 0
    failed: int = 0

    @property
    def succeeded(self) -> bool:
        return self.unreachable == 0 and self.failed == 0

    def describe(self) -> str:
        if self.unreachable:
            return "unreachable"
        if self.failed:
            return f"failed ({self.failed} task(s))"
        return f"ok ({self.changed} changed)"


@dataclass(frozen=True)
class ProcedureRun:
    """Result of running one procedure against an inventory."""

    procedure: str
    exit_status: int
    hosts: Tuple[HostOutcome, ...] = ()
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0 and all(h.succeeded for h in self.hosts)

    def failed_hosts(self) -> List[str]:
        return [h.host for h in self.hosts if not h.succeeded]


@dataclass(frozen=True)
class ConfigurationReport:
    hosts: Tuple[HostOutcome, ...]
    failed_hosts: Tuple[str, ...] = ()
    integration_passed: bool = True
    warnings: Tuple[str, ...] = ()

    @property
    def fully_succeeded(self) -> bool:
        return not self.failed_hosts and self.integration_passed


@dataclass(frozen=True)
class EndpointHealth:
    name: str
    url: str
    healthy: bool
    detail: str = ""


@dataclass(frozen=True)
class HealthReport:
    procedure_passed: bool
    endpoints: Tuple[EndpointHealth, ...] = ()
    failed_hosts: Tuple[str, ...] = ()

    @property
    def healthy(self) -> bool:
        return self.procedure_passed and all(e.healthy for e in self.endpoints)

    def problems(self) -> List[str]:
        problems = []
        if not self.procedure_passed:
            hosts = ", ".join(self.failed_hosts) or "see ansible output"
            problems.append(f"health-check procedure failed ({hosts})")
        for endpoint in self.endpoints:
            if not endpoint.healthy:
                problems.append(f"{endpoint.name} at {endpoint.url}: {endpoint.detail}")
        return problems


@dataclass(frozen=True)
class PipelineContext:
    """State threaded from phase to phase. Every transition returns a copy."""

    outputs: Optional[ProvisioningOutputs] = None
    inventory: Optional[Inventory] = None
    results: Tuple[PhaseResult, ...] = ()

    def with_result(self, result: PhaseResult) -> "PipelineContext":
        return replace(self, results=self.results + (result,))

    def with_outputs(self, outputs: ProvisioningOutputs) -> "PipelineContext":
        return replace(self, outputs=outputs)

    def with_inventory(self, inventory: Inventory) -> "PipelineContext":
        return replace(self, inventory=inventory)

    def result_for(self, phase: ExecutionPhase) -> Optional[PhaseResult]:
        for result in reversed(self.results):
            if result.phase == phase:
                return result
        return None

    def phases(self) -> List[ExecutionPhase]:
        return [r.phase for r in self.results]


class DeployStatus(Enum):
    SUCCEEDED = "succeeded"
    SUCCEEDED_WITH_WARNINGS = "succeeded_with_warnings"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class TeardownStatus(Enum):
    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    ABORTED = "aborted"


@dataclass(frozen=True)
class DeployReport:
    status: DeployStatus
    context: PipelineContext
    error: Optional[str] = None

    @property
    def exit_code(self) -> int:
        if self.status in (DeployStatus.SUCCEEDED, DeployStatus.SUCCEEDED_WITH_WARNINGS):
            return 0
        if self.status == DeployStatus.CANCELLED:
            return 130
        return 1


@dataclass(frozen=True)
class TeardownReport:
    status: TeardownStatus
    results: Tuple[PhaseResult, ...]
    residual_count: Optional[int] = None
    primary_error: Optional[str] = None
    cancelled: bool = False

    @property
    def destroy_failed(self) -> bool:
        return any(
            r.phase == ExecutionPhase.DESTROY and r.status in (PhaseStatus.FAILED, PhaseStatus.TIMED_OUT)
            for r in self.results
        )

    @property
    def exit_code(self) -> int:
        if self.cancelled:
            return 130
        return 1 if self.destroy_failed else 0

    def phases(self) -> List[ExecutionPhase]:
        return [r.phase for r in self.results]

    def result_for(self, phase: ExecutionPhase) -> Optional[PhaseResult]:
        for result in reversed(self.results):
            if result.phase == phase:
                return result
        return None
