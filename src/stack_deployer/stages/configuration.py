"""Configuration stage: collections -> site procedure -> integration test."""

from __future__ import annotations

from typing import List, Optional

from ..backends.base import ConfigManager
from ..config import AnsibleConfig
from ..control import RunControl
from ..errors import CollaboratorError, ConfigurationError, CriticalHostError
from ..models import ConfigurationReport, Inventory, ProcedureRun
from ..utils.logging import get_logger

logger = get_logger(__name__)


class ConfigurationStage:
    """
    Applies the per-service setup procedures to every inventory host.

    Per-host failures are collected. The stage only raises when a host in a
    critical role fails, when every host fails, or when the collections
    cannot be installed. A failed integration test downgrades the report.
    """

    def __init__(
        self,
        manager: ConfigManager,
        settings: AnsibleConfig,
        control: Optional[RunControl] = None,
    ) -> None:
        self.manager = manager
        self.settings = settings
        self.control = control or RunControl()

    def configure(self, inventory: Inventory) -> ConfigurationReport:
        self._install_requirements()

        logger.info("⚙️  Configuring %d host(s) with %s", len(inventory), self.settings.site_playbook)
        with self.control.mutating():
            site = self.manager.run(
                self.settings.site_playbook,
                inventory,
                timeout=self.control.budget("configure"),
                mutating=True,
            )
        self._log_outcomes(site)

        failed = site.failed_hosts()
        critical = self._critical_failures(failed, inventory)
        if critical:
            raise CriticalHostError(critical)
        if failed and len(failed) == len(inventory):
            raise ConfigurationError(
                f"every host failed configuration: {', '.join(failed)}",
                remediation="Check SSH reachability and the key file referenced by the inventory, then re-run.",
            )
        if site.exit_status != 0 and not failed:
            raise ConfigurationError(
                f"{self.settings.site_playbook} exited with status {site.exit_status} "
                "without a per-host failure",
                remediation="Check the playbook syntax with `ansible-playbook --syntax-check`.",
            )

        warnings: List[str] = [f"host {name} failed configuration" for name in failed]
        integration_passed = self._integration_test(inventory)
        if not integration_passed:
            warnings.append(f"integration test {self.settings.test_playbook} failed")

        return ConfigurationReport(
            hosts=site.hosts,
            failed_hosts=tuple(failed),
            integration_passed=integration_passed,
            warnings=tuple(warnings),
        )

    def _install_requirements(self) -> None:
        try:
            self.manager.install_requirements(timeout=self.control.budget("collections"))
        except CollaboratorError as exc:
            raise ConfigurationError(
                f"installing collections failed: {exc.cause}",
                remediation=exc.remediation,
            ) from exc

    def _integration_test(self, inventory: Inventory) -> bool:
        logger.info("🧪 Running integration test %s", self.settings.test_playbook)
        run = self.manager.run(
            self.settings.test_playbook,
            inventory,
            timeout=self.control.budget("integration test"),
            mutating=False,
        )
        if run.ok:
            logger.info("   ✓ Integration test passed")
            return True
        logger.warning("   ⚠️  Integration test failed (exit %d)", run.exit_status)
        return False

    def _critical_failures(self, failed: List[str], inventory: Inventory) -> List[str]:
        critical = []
        for name in failed:
            host = inventory.host(name)
            if host is not None and host.role in self.settings.critical_roles:
                critical.append(name)
        return critical

    @staticmethod
    def _log_outcomes(run: ProcedureRun) -> None:
        for outcome in run.hosts:
            if outcome.succeeded:
                logger.info("   ✓ %s: %s", outcome.host, outcome.describe())
            else:
                logger.error("   ✗ %s: %s", outcome.host, outcome.describe())
