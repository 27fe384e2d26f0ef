"""Ansible adapter for the ConfigManager interface."""

from __future__ import annotations

import re
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from ..config import AnsibleConfig
from ..errors import CollaboratorError
from ..models import HostOutcome, Inventory, ProcedureRun
from ..utils.logging import get_logger
from .base import ConfigManager
from .runner import CommandRunner

logger = get_logger(__name__)

_RECAP_LINE = re.compile(
    r"^(?P<host>\S+)\s*:\s*ok=(?P<ok>\d+)\s+changed=(?P<changed>\d+)\s+"
    r"unreachable=(?P<unreachable>\d+)\s+failed=(?P<failed>\d+)"
)

# Hosts are created on every deploy, so their keys are never known in advance.
_ANSIBLE_ENV = {
    "ANSIBLE_HOST_KEY_CHECKING": "False",
    "ANSIBLE_NOCOLOR": "1",
    "ANSIBLE_RETRY_FILES_ENABLED": "False",
}


class AnsibleConfigManager(ConfigManager):
    """Runs playbooks from the ansible working directory."""

    def __init__(self, config: AnsibleConfig, runner: Optional[CommandRunner] = None) -> None:
        self.config = config
        self.working_dir = Path(config.working_dir)
        self.runner = runner or CommandRunner()

    def available(self) -> bool:
        return shutil.which(self.config.playbook_binary) is not None

    def install_requirements(self, timeout: Optional[float] = None) -> None:
        logger.info("📦 Installing Ansible collections...")
        result = self.runner.run(
            [
                self.config.galaxy_binary,
                "collection",
                "install",
                "-r",
                self.config.requirements_file,
            ],
            cwd=self.working_dir,
            timeout=timeout,
            env=_ANSIBLE_ENV,
        )
        if not result.ok:
            raise CollaboratorError(
                result.command,
                result.exit_status,
                result.stderr,
                remediation=f"Check {self.working_dir / self.config.requirements_file} and network access to Ansible Galaxy.",
            )

    def run(
        self,
        procedure: str,
        inventory: Inventory,
        timeout: Optional[float] = None,
        mutating: bool = True,
    ) -> ProcedureRun:
        logger.info("▶️  ansible-playbook %s (%d host(s))", procedure, len(inventory))
        result = self.runner.run(
            [
                self.config.playbook_binary,
                "-i",
                self.config.inventory_file,
                procedure,
            ],
            cwd=self.working_dir,
            timeout=timeout,
            mutating=mutating,
            env=_ANSIBLE_ENV,
        )
        outcomes = parse_recap(result.stdout)
        hosts = _reconcile(outcomes, inventory, failed_run=not result.ok)
        return ProcedureRun(
            procedure=procedure,
            exit_status=result.exit_status,
            hosts=tuple(hosts),
            stderr=result.stderr,
        )


def parse_recap(stdout: str) -> Dict[str, HostOutcome]:
    """Extract per-host counters from the PLAY RECAP section."""
    outcomes: Dict[str, HostOutcome] = {}
    in_recap = False
    for raw in (stdout or "").splitlines():
        line = raw.strip()
        if line.startswith("PLAY RECAP"):
            in_recap = True
            continue
        if not in_recap:
            continue
        match = _RECAP_LINE.match(line)
        if match:
            outcomes[match.group("host")] = HostOutcome(
                host=match.group("host"),
                ok=int(match.group("ok")),
                changed=int(match.group("changed")),
                unreachable=int(match.group("unreachable")),
                failed=int(match.group("failed")),
            )
    return outcomes


def _reconcile(
    outcomes: Dict[str, HostOutcome],
    inventory: Inventory,
    failed_run: bool,
) -> List[HostOutcome]:
    """One outcome per inventory host, in inventory order.

    A host missing from the recap of a failed run never got a result and is
    counted as unreachable.
    """
    hosts: List[HostOutcome] = []
    for host in inventory.hosts:
        outcome = outcomes.get(host.name)
        if outcome is None:
            outcome = HostOutcome(host=host.name, unreachable=1 if failed_run else 0)
        hosts.append(outcome)
    return hosts
