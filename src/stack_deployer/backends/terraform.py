"""Terraform adapter for the Provisioner interface."""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

from ..config import TerraformConfig
from ..errors import CollaboratorError
from ..models import ProvisioningOutputs
from ..utils.logging import get_logger
from .base import PlanSummary, Provisioner
from .runner import CommandRunner

logger = get_logger(__name__)

# `terraform plan -detailed-exitcode`: 0 = no changes, 2 = changes present.
_PLAN_NO_CHANGES = 0
_PLAN_HAS_CHANGES = 2


class TerraformProvisioner(Provisioner):
    """Drives the terraform CLI inside one working directory."""

    def __init__(self, config: TerraformConfig, runner: Optional[CommandRunner] = None) -> None:
        self.config = config
        self.working_dir = Path(config.working_dir)
        self.runner = runner or CommandRunner()

    def init(self, timeout: Optional[float] = None) -> None:
        logger.info("🔧 terraform init")
        self._run(["init", "-input=false"], timeout=timeout)

    def plan(self, timeout: Optional[float] = None) -> PlanSummary:
        logger.info("📋 terraform plan")
        args = [
            "plan",
            "-input=false",
            "-detailed-exitcode",
            f"-out={self.config.plan_file}",
        ]
        args.extend(self._var_args())
        result = self.runner.run(
            [self.config.binary, *args], cwd=self.working_dir, timeout=timeout
        )
        if result.exit_status == _PLAN_NO_CHANGES:
            return PlanSummary(has_changes=False, plan_file=self.config.plan_file)
        if result.exit_status == _PLAN_HAS_CHANGES:
            return PlanSummary(has_changes=True, plan_file=self.config.plan_file)
        raise CollaboratorError(
            result.command,
            result.exit_status,
            result.stderr,
            remediation="Fix the Terraform configuration, then re-run `terraform plan`.",
        )

    def apply(self, plan: PlanSummary, timeout: Optional[float] = None) -> None:
        logger.info("🚀 terraform apply %s", plan.plan_file)
        self._run(
            ["apply", "-input=false", plan.plan_file or self.config.plan_file],
            timeout=timeout,
            mutating=True,
        )

    def read_outputs(self, timeout: Optional[float] = None) -> ProvisioningOutputs:
        result = self.runner.run(
            [self.config.binary, "output", "-json"], cwd=self.working_dir, timeout=timeout
        )
        if not result.ok:
            raise CollaboratorError(result.command, result.exit_status, result.stderr)
        return parse_outputs(result.stdout)

    def destroy(self, timeout: Optional[float] = None) -> None:
        logger.info("💥 terraform destroy")
        self._run(["init", "-input=false"], timeout=timeout)
        args = ["destroy", "-auto-approve", "-input=false"]
        args.extend(self._var_args())
        self._run(args, timeout=timeout, mutating=True)

        workspace = self.current_workspace(timeout=timeout)
        if workspace and workspace != "default":
            logger.info("🗑️  Removing workspace: %s", workspace)
            self._run(["workspace", "select", "default"], timeout=timeout)
            self._run(["workspace", "delete", workspace], timeout=timeout)

    def current_workspace(self, timeout: Optional[float] = None) -> Optional[str]:
        result = self.runner.run(
            [self.config.binary, "workspace", "show"], cwd=self.working_dir, timeout=timeout
        )
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def local_state_paths(self) -> List[Path]:
        paths = [self.working_dir / ".terraform", self.working_dir / self.config.plan_file]
        paths.extend(sorted(self.working_dir.glob("terraform.tfstate*")))
        return [p for p in paths if p.exists()]

    def _var_args(self) -> List[str]:
        if self.config.var_file:
            return [f"-var-file={self.config.var_file}"]
        return []

    def _run(self, args: List[str], *, timeout: Optional[float], mutating: bool = False) -> None:
        result = self.runner.run(
            [self.config.binary, *args],
            cwd=self.working_dir,
            timeout=timeout,
            mutating=mutating,
        )
        if not result.ok:
            raise CollaboratorError(result.command, result.exit_status, result.stderr)


def parse_outputs(payload: str) -> ProvisioningOutputs:
    """Parse `terraform output -json` into flat string values.

    Sensitive and non-string values are kept as their JSON rendering;
    null values are dropped so they count as missing.
    """
    data = json.loads(payload or "{}")
    values = {}
    for name, entry in data.items():
        value = entry.get("value") if isinstance(entry, dict) else entry
        if value is None:
            continue
        values[name] = value if isinstance(value, str) else json.dumps(value)
    return ProvisioningOutputs(values)
