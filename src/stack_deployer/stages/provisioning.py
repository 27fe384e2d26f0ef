"""Provisioning stage: init -> plan -> apply -> read outputs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from ..backends.base import Provisioner
from ..control import RunControl
from ..errors import CollaboratorError, IncompleteOutputsError, ProvisioningError
from ..models import REQUIRED_OUTPUTS, DeploymentDescriptor, ProvisioningOutputs
from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProvisionResult:
    outputs: ProvisioningOutputs
    applied_changes: bool


class ProvisioningStage:
    """
    Drives the provisioner through init, plan and apply, in that order.

    An empty plan is not applied, so re-running against unchanged
    infrastructure converges to a no-op. A failed apply is never rolled
    back: partially created resources stay in place for inspection.
    """

    def __init__(
        self,
        provisioner: Provisioner,
        required_outputs: Sequence[str] = REQUIRED_OUTPUTS,
        control: Optional[RunControl] = None,
    ) -> None:
        self.provisioner = provisioner
        self.required_outputs = tuple(required_outputs)
        self.control = control or RunControl()

    def provision(self, descriptor: DeploymentDescriptor) -> ProvisionResult:
        if not descriptor.working_dir.is_dir():
            raise ProvisioningError(
                f"descriptor directory not found: {descriptor.working_dir}",
                remediation="Run from the project root, or set terraform.working_dir in the config.",
            )

        try:
            self.provisioner.init(timeout=self.control.budget("init"))
        except CollaboratorError as exc:
            raise ProvisioningError(
                f"init failed: {exc.cause}",
                remediation="Check backend configuration and provider credentials, then run `terraform init`.",
            ) from exc

        try:
            plan = self.provisioner.plan(timeout=self.control.budget("plan"))
        except CollaboratorError as exc:
            raise ProvisioningError(
                f"plan failed: {exc.cause}",
                remediation=exc.remediation or "Run `terraform plan` to see the full error.",
            ) from exc

        if plan.has_changes:
            logger.info("   Plan has changes, applying...")
            try:
                with self.control.mutating():
                    self.provisioner.apply(plan, timeout=self.control.budget("apply"))
            except CollaboratorError as exc:
                raise ProvisioningError(
                    f"apply failed: {exc.cause}",
                    remediation=(
                        "Partially applied infrastructure was left in place. "
                        "Inspect it with `terraform show`, fix the cause, and re-run "
                        "`stack-deployer deploy` (or `stack-deployer cleanup`)."
                    ),
                ) from exc
        else:
            logger.info("   ✓ Infrastructure up to date, nothing to apply")

        outputs = self.read_outputs()
        logger.info("✅ Infrastructure ready (%d outputs)", len(outputs))
        return ProvisionResult(outputs=outputs, applied_changes=plan.has_changes)

    def read_outputs(self) -> ProvisioningOutputs:
        try:
            outputs = self.provisioner.read_outputs(timeout=self.control.budget("output"))
        except CollaboratorError as exc:
            raise ProvisioningError(
                f"reading outputs failed: {exc.cause}",
                remediation="Run `terraform output` to inspect the provisioner state.",
            ) from exc
        except ValueError as exc:
            raise ProvisioningError(
                f"provisioner returned unreadable outputs: {exc}",
                remediation="Run `terraform output -json` and check its output.",
            ) from exc
        missing = outputs.missing(self.required_outputs)
        if missing:
            raise IncompleteOutputsError(missing)
        return outputs
