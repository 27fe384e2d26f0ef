"""High-level wiring: config -> adapters -> pipelines."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from rich.console import Console

from .backends.ansible import AnsibleConfigManager
from .backends.aws import AwsCloudAccount
from .backends.http import HttpEndpointProber
from .backends.runner import CommandRunner
from .backends.terraform import TerraformProvisioner
from .config import AppConfig
from .control import Deadline, RunControl, StateLock
from .interaction import CLIConfirmationSource, ConfirmationSource
from .models import DeployReport, DeploymentDescriptor, TeardownReport
from .paths import get_commands_dir, get_lock_file, get_runs_dir
from .pipeline.deploy import DeployPipeline
from .pipeline.runlog import RunLog, latest_run, phase_results
from .pipeline.teardown import TeardownOrchestrator
from .stages.configuration import ConfigurationStage
from .stages.inventory import InventoryStore
from .stages.provisioning import ProvisioningStage
from .stages.reporter import ResultReporter, StackSummary, print_summary, print_teardown
from .stages.validator import PrerequisiteValidator
from .stages.verification import VerificationStage
from .utils.logging import get_logger

logger = get_logger(__name__)


class StackWorkflow:
    """Builds the real adapters from configuration and runs the pipelines."""

    def __init__(
        self,
        config: AppConfig,
        confirmation: Optional[ConfirmationSource] = None,
        console: Optional[Console] = None,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.config = config
        self.confirmation = confirmation or CLIConfirmationSource()
        self.console = console or Console()
        self.state_dir = Path(config.pipeline.state_dir)
        self.runner = runner or CommandRunner(log_dir=get_commands_dir(self.state_dir))

        self.provisioner = TerraformProvisioner(config.terraform, self.runner)
        self.manager = AnsibleConfigManager(config.ansible, self.runner)
        self.cloud = AwsCloudAccount(config.cloud)
        self.inventory_store = InventoryStore(config.ansible.inventory_path)

    def _control(self) -> RunControl:
        return RunControl(deadline=Deadline(self.config.pipeline.timeout_seconds))

    def _lock(self) -> StateLock:
        return StateLock(get_lock_file(self.state_dir))

    def run_deploy(self, skip_verify: bool = False) -> DeployReport:
        control = self._control()
        with self._lock():
            pipeline = DeployPipeline(
                validator=PrerequisiteValidator(self.config.cloud.required_tools, self.cloud),
                provisioning=ProvisioningStage(self.provisioner, control=control),
                inventory_store=self.inventory_store,
                configuration=ConfigurationStage(self.manager, self.config.ansible, control),
                verification=VerificationStage(
                    self.manager,
                    HttpEndpointProber(timeout=self.config.pipeline.probe_timeout_seconds),
                    self.config.ansible,
                    control,
                ),
                reporter=ResultReporter(self.provisioner, control),
                descriptor=DeploymentDescriptor(
                    working_dir=Path(self.config.terraform.working_dir),
                    var_file=self.config.terraform.var_file,
                ),
                settings=self.config.ansible,
                control=control,
                run_log=RunLog("deploy", get_runs_dir(self.state_dir)),
                skip_verify=skip_verify,
                presenter=lambda summary: print_summary(summary, self.console),
            )
            return pipeline.run()

    def run_cleanup(self) -> TeardownReport:
        control = self._control()
        with self._lock():
            orchestrator = TeardownOrchestrator(
                provisioner=self.provisioner,
                manager=self.manager,
                cloud=self.cloud,
                confirmation=self.confirmation,
                inventory_store=self.inventory_store,
                settings=self.config.ansible,
                residual_tag_pattern=self.config.cloud.residual_tag_pattern,
                scratch_dirs=[Path(self.config.ansible.working_dir), Path(self.config.terraform.working_dir)],
                control=control,
                run_log=RunLog("cleanup", get_runs_dir(self.state_dir)),
                presenter=lambda report: print_teardown(report, self.console),
            )
            return orchestrator.run()

    def run_report(self) -> StackSummary:
        """Re-render the summary from live outputs and the latest deploy log."""
        last = latest_run(get_runs_dir(self.state_dir), "deploy")
        if last:
            logger.info("Latest deploy: %s (%s)", last.get("status"), last.get("start_time"))
        summary = ResultReporter(self.provisioner, self._control()).summarize(phase_results(last))
        print_summary(summary, self.console)
        return summary
