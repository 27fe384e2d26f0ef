"""Forward pipeline: Validate -> Provision -> BuildInventory -> Configure -> Verify -> Report."""

from __future__ import annotations

import contextlib
from typing import Callable, ContextManager, Dict, Optional, Tuple

from ..config import AnsibleConfig
from ..control import RunControl
from ..errors import CancelledError, CollaboratorTimeout, StackDeployerError
from ..models import (
    DeployReport,
    DeploymentDescriptor,
    DeployStatus,
    ExecutionPhase,
    PhaseResult,
    PhaseStatus,
    PipelineContext,
    Severity,
)
from ..stages.configuration import ConfigurationStage
from ..stages.inventory import InventoryStore, build_inventory
from ..stages.provisioning import ProvisioningStage
from ..stages.reporter import ResultReporter, StackSummary, print_summary
from ..stages.validator import PrerequisiteValidator
from ..stages.verification import VerificationStage
from ..utils.logging import get_logger
from .runlog import RunLog
from .states import State

logger = get_logger(__name__)

DEPLOY_STATES: Tuple[State, ...] = (
    State(ExecutionPhase.VALIDATE, Severity.FATAL),
    State(ExecutionPhase.PROVISION, Severity.FATAL, mutating=True),
    State(ExecutionPhase.BUILD_INVENTORY, Severity.FATAL),
    State(ExecutionPhase.CONFIGURE, Severity.FATAL, mutating=True),
    State(ExecutionPhase.VERIFY, Severity.FATAL),
    State(ExecutionPhase.REPORT, Severity.ADVISORY),
)


class DeployPipeline:
    """
    Fail-fast state machine over the deploy phases.

    Each handler takes the current PipelineContext and returns a new one
    carrying the phase result. The first fatal failure halts the run; no
    later phase starts and nothing is rolled back.
    """

    def __init__(
        self,
        validator: PrerequisiteValidator,
        provisioning: ProvisioningStage,
        inventory_store: InventoryStore,
        configuration: ConfigurationStage,
        verification: VerificationStage,
        reporter: ResultReporter,
        descriptor: DeploymentDescriptor,
        settings: AnsibleConfig,
        control: Optional[RunControl] = None,
        run_log: Optional[RunLog] = None,
        skip_verify: bool = False,
        presenter: Callable[[StackSummary], None] = print_summary,
    ) -> None:
        self.validator = validator
        self.provisioning = provisioning
        self.inventory_store = inventory_store
        self.configuration = configuration
        self.verification = verification
        self.reporter = reporter
        self.descriptor = descriptor
        self.settings = settings
        self.control = control or RunControl()
        self.run_log = run_log
        self.skip_verify = skip_verify
        self.presenter = presenter

        self._handlers: Dict[ExecutionPhase, Callable[[PipelineContext], PipelineContext]] = {
            ExecutionPhase.VALIDATE: self._validate,
            ExecutionPhase.PROVISION: self._provision,
            ExecutionPhase.BUILD_INVENTORY: self._build_inventory,
            ExecutionPhase.CONFIGURE: self._configure,
            ExecutionPhase.VERIFY: self._verify,
            ExecutionPhase.REPORT: self._report,
        }

    def run(self) -> DeployReport:
        logger.info("🚀 Starting deployment (skip_verify=%s)", self.skip_verify)
        if self.run_log:
            self.run_log.start(
                working_dir=str(self.descriptor.working_dir),
                skip_verify=self.skip_verify,
            )

        context = PipelineContext()
        status: Optional[DeployStatus] = None
        error: Optional[StackDeployerError] = None

        for state in DEPLOY_STATES:
            if state.phase == ExecutionPhase.VERIFY and self.skip_verify:
                logger.info("⏭️  Verify skipped (user requested)")
                context = self._record(context, PhaseResult.skipped(state.phase, "user requested"))
                continue

            logger.info("▶️  %s", state.name)
            try:
                self.control.cancellation.raise_if_cancelled(state.name)
                with self._guard(state):
                    context = self._handlers[state.phase](context)
            except CancelledError as exc:
                logger.warning("🛑 %s", exc.cause)
                status, error = DeployStatus.CANCELLED, exc
                break
            except KeyboardInterrupt:
                error = CancelledError(state.name, during=True)
                logger.warning("🛑 %s", error.cause)
                status = DeployStatus.CANCELLED
                break
            except CollaboratorTimeout as exc:
                exc.phase = state.name
                logger.error("⏱️  %s timed out: %s", state.name, exc.cause)
                context = self._record(
                    context, PhaseResult.timed_out(state.phase, exc.cause, exc.remediation)
                )
                status, error = DeployStatus.TIMED_OUT, exc
                break
            except StackDeployerError as exc:
                if exc.phase in ("unknown", "collaborator"):
                    exc.phase = state.name
                if state.severity == Severity.ADVISORY:
                    logger.warning("⚠️  %s: %s", state.name, exc.cause)
                    context = self._record(context, PhaseResult.warned(state.phase, [exc.cause]))
                    continue
                logger.error("❌ %s failed: %s", state.name, exc.cause)
                context = self._record(
                    context, PhaseResult.failed(state.phase, exc.cause, exc.remediation)
                )
                status, error = DeployStatus.FAILED, exc
                break

        if status is None:
            warned = any(r.status == PhaseStatus.SUCCEEDED_WITH_WARNINGS for r in context.results)
            status = DeployStatus.SUCCEEDED_WITH_WARNINGS if warned else DeployStatus.SUCCEEDED

        report = DeployReport(
            status=status,
            context=context,
            error=error.describe() if error else None,
        )
        if self.run_log:
            self.run_log.finalize(status.value, error=report.error)
        logger.info("🏁 Deployment finished: %s", status.value)
        return report

    def _guard(self, state: State) -> ContextManager[None]:
        return self.control.mutating() if state.mutating else contextlib.nullcontext()

    def _record(self, context: PipelineContext, result: PhaseResult) -> PipelineContext:
        if self.run_log:
            self.run_log.record(result)
        return context.with_result(result)

    # ---- phase handlers -------------------------------------------------

    def _validate(self, context: PipelineContext) -> PipelineContext:
        readiness = self.validator.check()
        readiness.raise_for_status()
        return self._record(
            context, PhaseResult.succeeded(ExecutionPhase.VALIDATE, detail=readiness.identity)
        )

    def _provision(self, context: PipelineContext) -> PipelineContext:
        result = self.provisioning.provision(self.descriptor)
        detail = "changes applied" if result.applied_changes else "no changes"
        context = context.with_outputs(result.outputs)
        return self._record(context, PhaseResult.succeeded(ExecutionPhase.PROVISION, detail=detail))

    def _build_inventory(self, context: PipelineContext) -> PipelineContext:
        if self.inventory_store.exists() and not self.inventory_store.is_current(context.outputs):
            logger.info("   Cached inventory is stale, regenerating")
        inventory = build_inventory(
            context.outputs,
            user=self.settings.ssh_user,
            key_file=self.settings.ssh_key_file,
        )
        self.inventory_store.write(inventory)
        context = context.with_inventory(inventory)
        return self._record(
            context,
            PhaseResult.succeeded(
                ExecutionPhase.BUILD_INVENTORY, detail=f"{len(inventory)} host(s)"
            ),
        )

    def _configure(self, context: PipelineContext) -> PipelineContext:
        report = self.configuration.configure(context.inventory)
        if report.warnings:
            result = PhaseResult.warned(
                ExecutionPhase.CONFIGURE,
                list(report.warnings),
                detail=f"{len(report.hosts) - len(report.failed_hosts)}/{len(report.hosts)} host(s) configured",
            )
        else:
            result = PhaseResult.succeeded(
                ExecutionPhase.CONFIGURE, detail=f"{len(report.hosts)} host(s) configured"
            )
        return self._record(context, result)

    def _verify(self, context: PipelineContext) -> PipelineContext:
        health = self.verification.verify(context.inventory)
        return self._record(
            context,
            PhaseResult.succeeded(
                ExecutionPhase.VERIFY, detail=f"{len(health.endpoints)} endpoint(s) healthy"
            ),
        )

    def _report(self, context: PipelineContext) -> PipelineContext:
        summary = self.reporter.summarize(context.results)
        self.presenter(summary)
        return self._record(context, PhaseResult.succeeded(ExecutionPhase.REPORT))
