"""Error taxonomy for the deploy and teardown pipelines.

Every error carries the phase it belongs to, the cause reported by the
collaborator, and a concrete next action for the operator.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence


class StackDeployerError(RuntimeError):
    """Base class for all orchestrator errors."""

    phase: str = "unknown"

    def __init__(
        self,
        cause: str,
        *,
        remediation: Optional[str] = None,
        phase: Optional[str] = None,
    ) -> None:
        super().__init__(cause)
        self.cause = cause
        self.remediation = remediation
        if phase:
            self.phase = phase

    def describe(self) -> str:
        """Render the error as phase / cause / next action."""
        lines = [f"Phase: {self.phase}", f"Cause: {self.cause}"]
        if self.remediation:
            lines.append(f"Next:  {self.remediation}")
        return "\n".join(lines)


class ConfigError(StackDeployerError):
    phase = "configuration-loading"


class CollaboratorError(StackDeployerError):
    """An external tool exited with a nonzero status."""

    phase = "collaborator"

    def __init__(
        self,
        command: Sequence[str],
        exit_status: int,
        stderr: str = "",
        *,
        remediation: Optional[str] = None,
    ) -> None:
        tail = _tail(stderr)
        cause = f"`{' '.join(command)}` exited with status {exit_status}"
        if tail:
            cause += f": {tail}"
        super().__init__(cause, remediation=remediation)
        self.command = list(command)
        self.exit_status = exit_status
        self.stderr = stderr


class CollaboratorTimeout(StackDeployerError):
    """The overall deadline expired while a collaborator call was in flight.

    The in-flight process is left running; remote mutation may already have
    started.
    """

    phase = "collaborator"

    def __init__(
        self, command: Sequence[str], timeout: float, log_path: Optional[Path] = None
    ) -> None:
        remediation = (
            "The remote operation was NOT stopped. Inspect remote state "
            "(terraform show / ansible logs) before re-running."
        )
        if log_path:
            remediation += f" Its output continues in {log_path}."
        super().__init__(
            f"`{' '.join(command)}` did not finish within {timeout:g}s",
            remediation=remediation,
        )
        self.command = list(command)
        self.timeout = timeout
        self.log_path = log_path


class CancelledError(StackDeployerError):
    phase = "cancellation"

    def __init__(self, before: str, *, during: bool = False) -> None:
        where = "during" if during else "before"
        super().__init__(
            f"Operator interrupt received {where} {before}",
            remediation="Re-run the command when ready; no further phases were started.",
        )


class StateLockedError(StackDeployerError):
    phase = "state-lock"


class CloudAPIError(StackDeployerError):
    """The cloud account API rejected or failed a request."""

    phase = "cloud-api"


class PrerequisiteError(StackDeployerError):
    phase = "Validate"

    def __init__(
        self,
        missing_tools: List[str],
        credential_error: Optional[str],
        *,
        remediation: Optional[str] = None,
    ) -> None:
        parts = []
        if missing_tools:
            parts.append(f"missing tools: {', '.join(missing_tools)}")
        if credential_error:
            parts.append(f"credentials: {credential_error}")
        super().__init__("; ".join(parts) or "not ready", remediation=remediation)
        self.missing_tools = list(missing_tools)
        self.credential_error = credential_error


class ProvisioningError(StackDeployerError):
    phase = "Provision"


class IncompleteOutputsError(ProvisioningError):
    def __init__(self, missing: Sequence[str]) -> None:
        super().__init__(
            f"provisioner did not report outputs: {', '.join(missing)}",
            remediation="Check the output blocks in the Terraform configuration, then run `terraform output`.",
        )
        self.missing = list(missing)


class InventoryError(StackDeployerError):
    phase = "BuildInventory"


class MissingAddressError(InventoryError):
    def __init__(self, missing: Sequence[str]) -> None:
        super().__init__(
            f"no address for: {', '.join(missing)}",
            remediation="Run `terraform output` and confirm every instance has an IP assigned.",
        )
        self.missing = list(missing)


class ConfigurationError(StackDeployerError):
    phase = "Configure"


class CriticalHostError(ConfigurationError):
    def __init__(self, hosts: Sequence[str]) -> None:
        super().__init__(
            f"critical host(s) failed configuration: {', '.join(hosts)}",
            remediation="Inspect the ansible output above, fix the host, and re-run `stack-deployer deploy`.",
        )
        self.hosts = list(hosts)


class VerificationError(StackDeployerError):
    phase = "Verify"


class TeardownError(StackDeployerError):
    phase = "teardown"


class ShutdownError(TeardownError):
    phase = "GracefulShutdown"


class DestroyError(TeardownError):
    phase = "Destroy"


class ResidualSweepError(TeardownError):
    phase = "ResidualSweep"


def _tail(text: str, lines: int = 5) -> str:
    stripped = [line for line in (text or "").strip().splitlines() if line.strip()]
    return " | ".join(stripped[-lines:])
