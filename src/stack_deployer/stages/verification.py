"""Verification stage: is the stack healthy right now?"""

from __future__ import annotations

from typing import List, Optional, Sequence

from ..backends.base import ConfigManager, EndpointProber
from ..config import AnsibleConfig
from ..control import RunControl
from ..errors import VerificationError
from ..models import SERVICES, EndpointHealth, HealthReport, Inventory, ServiceSpec
from ..utils.logging import get_logger

logger = get_logger(__name__)


class VerificationStage:
    """Runs the health-check procedure and probes every service endpoint.

    Independent of the integration test run during configuration. Never
    rolls anything back.
    """

    def __init__(
        self,
        manager: ConfigManager,
        prober: EndpointProber,
        settings: AnsibleConfig,
        control: Optional[RunControl] = None,
        services: Sequence[ServiceSpec] = SERVICES,
    ) -> None:
        self.manager = manager
        self.prober = prober
        self.settings = settings
        self.control = control or RunControl()
        self.services = tuple(services)

    def verify(self, inventory: Inventory) -> HealthReport:
        logger.info("🩺 Running health checks")
        run = self.manager.run(
            self.settings.health_playbook,
            inventory,
            timeout=self.control.budget("health check"),
            mutating=False,
        )

        endpoints: List[EndpointHealth] = []
        for service in self.services:
            for host in inventory.by_role(service.role):
                self.control.budget(f"probe {service.role}")
                health = self.prober.probe(service.role, service.health_url(host.address))
                if health.healthy:
                    logger.info("   ✓ %s %s", service.role, health.url)
                else:
                    logger.warning("   ✗ %s %s: %s", service.role, health.url, health.detail)
                endpoints.append(health)

        report = HealthReport(
            procedure_passed=run.ok,
            endpoints=tuple(endpoints),
            failed_hosts=tuple(run.failed_hosts()),
        )
        if not report.healthy:
            raise VerificationError(
                "; ".join(report.problems()),
                remediation=(
                    "Services may still be starting; wait a few minutes and run "
                    f"`ansible-playbook -i {self.settings.inventory_file} {self.settings.health_playbook}` "
                    f"from {self.settings.working_dir}/."
                ),
            )
        logger.info("✅ All services healthy")
        return report
