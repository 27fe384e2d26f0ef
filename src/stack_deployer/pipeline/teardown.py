"""Reverse pipeline: confirm, shut down, destroy, clean up, sweep."""

from __future__ import annotations

import contextlib
import shutil
from pathlib import Path
from typing import Callable, ContextManager, Dict, List, Optional, Sequence, Tuple

from ..backends.base import CloudAccount, ConfigManager, Provisioner
from ..config import AnsibleConfig
from ..control import RunControl
from ..errors import (
    CancelledError,
    CloudAPIError,
    CollaboratorError,
    CollaboratorTimeout,
    DestroyError,
    ResidualSweepError,
    ShutdownError,
    StackDeployerError,
)
from ..interaction.confirmation import ConfirmationSource
from ..models import (
    ExecutionPhase,
    PhaseResult,
    PhaseStatus,
    Severity,
    TeardownReport,
    TeardownStatus,
)
from ..stages.inventory import InventoryStore
from ..utils.logging import get_logger
from .runlog import RunLog
from .states import State

logger = get_logger(__name__)

TEARDOWN_STATES: Tuple[State, ...] = (
    State(ExecutionPhase.GRACEFUL_SHUTDOWN, Severity.BEST_EFFORT, mutating=True),
    State(ExecutionPhase.DESTROY, Severity.FATAL, mutating=True),
    State(ExecutionPhase.LOCAL_CLEANUP, Severity.BEST_EFFORT),
    State(ExecutionPhase.RESIDUAL_SWEEP, Severity.ADVISORY),
)

DESTRUCTION_SCOPE = (
    "All EC2 instances (GitLab, Vault, OPA)",
    "VPC, subnets, security groups",
    "All AWS resources created by Terraform",
)


class TeardownOrchestrator:
    """
    Fail-soft state machine over the teardown phases.

    Only Destroy is fatal, and even its failure does not stop the later
    states: minimizing billed leftovers matters more than a clean stop.
    A Destroy failure is reported as the primary error of the run.
    """

    def __init__(
        self,
        provisioner: Provisioner,
        manager: ConfigManager,
        cloud: CloudAccount,
        confirmation: ConfirmationSource,
        inventory_store: InventoryStore,
        settings: AnsibleConfig,
        residual_tag_pattern: str = "*-Instance",
        scratch_dirs: Sequence[Path] = (),
        control: Optional[RunControl] = None,
        run_log: Optional[RunLog] = None,
        presenter: Optional[Callable[[TeardownReport], None]] = None,
    ) -> None:
        self.provisioner = provisioner
        self.manager = manager
        self.cloud = cloud
        self.confirmation = confirmation
        self.inventory_store = inventory_store
        self.settings = settings
        self.residual_tag_pattern = residual_tag_pattern
        self.scratch_dirs = [Path(d) for d in scratch_dirs] or [Path(settings.working_dir)]
        self.control = control or RunControl()
        self.run_log = run_log
        self.presenter = presenter

        self._results: List[PhaseResult] = []
        self._residual_count: Optional[int] = None
        self._handlers: Dict[ExecutionPhase, Callable[[], PhaseResult]] = {
            ExecutionPhase.GRACEFUL_SHUTDOWN: self._graceful_shutdown,
            ExecutionPhase.DESTROY: self._destroy,
            ExecutionPhase.LOCAL_CLEANUP: self._local_cleanup,
            ExecutionPhase.RESIDUAL_SWEEP: self._residual_sweep,
        }

    def run(self) -> TeardownReport:
        logger.info("🧹 Starting teardown")
        if self.run_log:
            self.run_log.start(residual_tag_pattern=self.residual_tag_pattern)
        self._results = []
        self._residual_count = None

        if not self._confirm():
            self._record(PhaseResult.skipped(ExecutionPhase.CONFIRM_TEARDOWN, "operator declined"))
            self.confirmation.notify("Cleanup cancelled.")
            return self._finish(TeardownStatus.ABORTED)
        self._record(PhaseResult.succeeded(ExecutionPhase.CONFIRM_TEARDOWN))

        primary: Optional[StackDeployerError] = None
        for state in TEARDOWN_STATES:
            logger.info("▶️  %s", state.name)
            try:
                self.control.cancellation.raise_if_cancelled(state.name)
                with self._guard(state):
                    result = self._handlers[state.phase]()
            except CancelledError as exc:
                logger.warning("🛑 %s", exc.cause)
                return self._finish(TeardownStatus.ABORTED, primary or exc, cancelled=True)
            except KeyboardInterrupt:
                exc = CancelledError(state.name, during=True)
                logger.warning("🛑 %s", exc.cause)
                return self._finish(TeardownStatus.ABORTED, primary or exc, cancelled=True)
            except CollaboratorTimeout as exc:
                exc.phase = state.name
                logger.error("⏱️  %s timed out: %s", state.name, exc.cause)
                result = PhaseResult.timed_out(state.phase, exc.cause, exc.remediation)
                if state.severity == Severity.FATAL:
                    primary = primary or exc
            except StackDeployerError as exc:
                if state.severity == Severity.ADVISORY:
                    logger.warning("⚠️  %s: %s", state.name, exc.cause)
                    result = PhaseResult.warned(state.phase, [exc.cause])
                else:
                    logger.error("❌ %s failed: %s", state.name, exc.cause)
                    result = PhaseResult.failed(state.phase, exc.cause, exc.remediation)
                    if state.severity == Severity.FATAL:
                        primary = primary or exc
            self._record(result)

        degraded = any(
            r.status in (PhaseStatus.FAILED, PhaseStatus.TIMED_OUT, PhaseStatus.SUCCEEDED_WITH_WARNINGS)
            for r in self._results
        ) or bool(self._residual_count)
        status = TeardownStatus.COMPLETED_WITH_WARNINGS if degraded else TeardownStatus.COMPLETED
        return self._finish(status, primary)

    def _guard(self, state: State) -> ContextManager[None]:
        return self.control.mutating() if state.mutating else contextlib.nullcontext()

    def _record(self, result: PhaseResult) -> None:
        self._results.append(result)
        if self.run_log:
            self.run_log.record(result)

    def _finish(
        self,
        status: TeardownStatus,
        error: Optional[StackDeployerError] = None,
        cancelled: bool = False,
    ) -> TeardownReport:
        if status != TeardownStatus.ABORTED or cancelled:
            self._record(PhaseResult.succeeded(ExecutionPhase.REPORT, detail=status.value))
        report = TeardownReport(
            status=status,
            results=tuple(self._results),
            residual_count=self._residual_count,
            primary_error=error.describe() if error else None,
            cancelled=cancelled,
        )
        if self.run_log:
            self.run_log.finalize(
                status.value,
                error=report.primary_error,
                residual_count=self._residual_count,
            )
        if self.presenter and (status != TeardownStatus.ABORTED or cancelled):
            self.presenter(report)
        logger.info("🏁 Teardown finished: %s", status.value)
        return report

    # ---- states ---------------------------------------------------------

    def _confirm(self) -> bool:
        self.confirmation.notify("This will permanently destroy:", level="warning")
        for item in DESTRUCTION_SCOPE:
            self.confirmation.notify(f"  - {item}", level="warning")
        return self.confirmation.ask("Are you sure you want to continue?")

    def _graceful_shutdown(self) -> PhaseResult:
        phase = ExecutionPhase.GRACEFUL_SHUTDOWN
        # The cache is used as-is: provisioner state may already be gone on a retry.
        inventory = self.inventory_store.load()
        if inventory is None:
            logger.warning("⚠️  Ansible inventory not found, skipping graceful shutdown")
            return PhaseResult.skipped(phase, "no inventory")
        if not self.manager.available():
            logger.warning("⚠️  Ansible not found, skipping graceful shutdown")
            return PhaseResult.skipped(phase, "configuration manager not installed")

        try:
            with self.control.mutating():
                run = self.manager.run(
                    self.settings.shutdown_playbook,
                    inventory,
                    timeout=self.control.budget("shutdown"),
                    mutating=True,
                )
        except CollaboratorError as exc:
            raise ShutdownError(exc.cause, remediation="Proceeding with destroy regardless.") from exc

        for outcome in run.hosts:
            if outcome.succeeded:
                logger.info("   ✓ %s: stopped", outcome.host)
            else:
                logger.warning("   ✗ %s: %s", outcome.host, outcome.describe())

        if not run.ok:
            failed = run.failed_hosts()
            cause = (
                f"shutdown failed on: {', '.join(failed)}"
                if failed
                else f"{self.settings.shutdown_playbook} exited with status {run.exit_status}"
            )
            raise ShutdownError(
                cause,
                remediation="Graceful shutdown failed, proceeding with force destroy.",
            )
        return PhaseResult.succeeded(phase, detail=f"{len(run.hosts)} host(s) stopped")

    def _destroy(self) -> PhaseResult:
        try:
            with self.control.mutating():
                self.provisioner.destroy(timeout=self.control.budget("destroy"))
        except CollaboratorError as exc:
            raise DestroyError(
                f"destroy failed: {exc.cause}",
                remediation=(
                    "Resources may still exist and be billed. Inspect with "
                    "`terraform state list`, fix the cause, and run "
                    "`stack-deployer cleanup` again."
                ),
            ) from exc
        logger.info("✅ Infrastructure destroyed")
        return PhaseResult.succeeded(ExecutionPhase.DESTROY)

    def _local_cleanup(self) -> PhaseResult:
        phase = ExecutionPhase.LOCAL_CLEANUP
        removed: List[str] = []
        warnings: List[str] = []

        try:
            if self.inventory_store.remove():
                removed.append(str(self.inventory_store.path))
        except OSError as exc:
            warnings.append(f"could not remove {self.inventory_store.path}: {exc}")

        for directory in self.scratch_dirs:
            if not directory.is_dir():
                continue
            for retry in directory.rglob("*.retry"):
                try:
                    retry.unlink()
                    removed.append(str(retry))
                except OSError as exc:
                    warnings.append(f"could not remove {retry}: {exc}")

        state_paths = self.provisioner.local_state_paths()
        if state_paths:
            prompt = "Remove Terraform state files?"
            if self._destroy_failed():
                self.confirmation.notify(
                    "Destroy FAILED: the state files are the only record of what still exists.",
                    level="error",
                )
                prompt = "Destroy failed. Remove Terraform state files anyway?"
            if self.confirmation.ask(prompt):
                for path in state_paths:
                    try:
                        if path.is_dir():
                            shutil.rmtree(path)
                        else:
                            path.unlink()
                        removed.append(str(path))
                    except OSError as exc:
                        warnings.append(f"could not remove {path}: {exc}")
                logger.info("✅ Removed Terraform state files")
            else:
                logger.info("   Terraform state files kept")

        detail = f"removed {len(removed)} path(s)"
        if warnings:
            return PhaseResult.warned(phase, warnings, detail=detail)
        logger.info("✅ Local cleanup completed")
        return PhaseResult.succeeded(phase, detail=detail)

    def _residual_sweep(self) -> PhaseResult:
        phase = ExecutionPhase.RESIDUAL_SWEEP
        try:
            count = self.cloud.count_tagged_instances(self.residual_tag_pattern)
        except CloudAPIError as exc:
            raise ResidualSweepError(f"residual query failed: {exc.cause}") from exc

        self._residual_count = count
        if count > 0:
            message = f"Found {count} instance(s) that may still exist. Please check the AWS console."
            logger.warning("⚠️  %s", message)
            return PhaseResult.warned(phase, [message], detail=f"{count} residual instance(s)")
        logger.info("✅ No tagged instances found")
        return PhaseResult.succeeded(phase, detail="0 residual instance(s)")

    def _destroy_failed(self) -> bool:
        return any(
            r.phase == ExecutionPhase.DESTROY and not r.ok for r in self._results
        )
