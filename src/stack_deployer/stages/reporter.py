"""Final summary: service URLs, phase outcomes and next steps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..backends.base import Provisioner
from ..control import RunControl
from ..errors import StackDeployerError
from ..models import (
    SERVICES,
    UNKNOWN_OUTPUT,
    PhaseResult,
    PhaseStatus,
    ServiceSpec,
    TeardownReport,
    TeardownStatus,
)
from ..utils.logging import get_logger

logger = get_logger(__name__)

_STATUS_STYLE = {
    PhaseStatus.SUCCEEDED: ("✓", "green"),
    PhaseStatus.SUCCEEDED_WITH_WARNINGS: ("⚠", "yellow"),
    PhaseStatus.SKIPPED: ("-", "dim"),
    PhaseStatus.FAILED: ("✗", "red"),
    PhaseStatus.TIMED_OUT: ("⏱", "red"),
}

TEARDOWN_NEXT_STEPS = (
    "Verify in the AWS console that all resources are destroyed",
    "Check billing to ensure no unexpected charges",
    "Remove any remaining SSH keys or security groups if needed",
)


@dataclass(frozen=True)
class ServiceEntry:
    role: str
    title: str
    address: str
    url: str
    notes: Tuple[str, ...] = ()

    @property
    def known(self) -> bool:
        return self.address != UNKNOWN_OUTPUT


@dataclass(frozen=True)
class StackSummary:
    services: Tuple[ServiceEntry, ...]
    results: Tuple[PhaseResult, ...] = ()
    outputs_error: Optional[str] = None

    @property
    def has_warnings(self) -> bool:
        return any(r.status == PhaseStatus.SUCCEEDED_WITH_WARNINGS for r in self.results)

    @property
    def has_failures(self) -> bool:
        return any(r.status in (PhaseStatus.FAILED, PhaseStatus.TIMED_OUT) for r in self.results)


class ResultReporter:
    """Read-only: re-reads outputs and formats them. Safe to run any time."""

    def __init__(
        self,
        provisioner: Provisioner,
        control: Optional[RunControl] = None,
        services: Sequence[ServiceSpec] = SERVICES,
    ) -> None:
        self.provisioner = provisioner
        self.control = control or RunControl()
        self.services = tuple(services)

    def summarize(self, results: Sequence[PhaseResult] = ()) -> StackSummary:
        addresses: Dict[str, str] = {}
        outputs_error = None
        try:
            outputs = self.provisioner.read_outputs(timeout=self.control.remaining())
            addresses = {
                service.role: outputs.get(f"{service.role}_public_ip") or UNKNOWN_OUTPUT
                for service in self.services
            }
        except (StackDeployerError, ValueError) as exc:
            outputs_error = getattr(exc, "cause", None) or str(exc)
            logger.warning("⚠️  Could not read outputs: %s", outputs_error)

        entries = []
        for service in self.services:
            address = addresses.get(service.role, UNKNOWN_OUTPUT)
            url = service.base_url(address) if address != UNKNOWN_OUTPUT else UNKNOWN_OUTPUT
            entries.append(
                ServiceEntry(
                    role=service.role,
                    title=service.title,
                    address=address,
                    url=url,
                    notes=service.notes,
                )
            )
        return StackSummary(services=tuple(entries), results=tuple(results), outputs_error=outputs_error)


def next_steps(summary: StackSummary) -> List[str]:
    steps = []
    if summary.outputs_error or not all(s.known for s in summary.services):
        steps.append("Check `terraform output` for the instance addresses.")
    if summary.has_failures:
        steps.append("Fix the failed phase shown above and run `stack-deployer deploy` again.")
    elif summary.has_warnings:
        steps.append("Review the warnings above; the stack is up but not fully healthy.")
    steps.append("Wait 2-3 minutes for all services to finish starting.")
    steps.append("Change the default GitLab password.")
    steps.append("Run `stack-deployer cleanup` to destroy all resources when done.")
    return steps


def render_summary(summary: StackSummary) -> str:
    """Plain-text rendering, used for logs and tests."""
    lines = ["Service URLs:"]
    for entry in summary.services:
        lines.append(f"  {entry.title}: {entry.url}")
        if entry.known:
            for note in entry.notes:
                lines.append(f"    {note}")

    if summary.results:
        lines.append("")
        lines.append("Phases:")
        for result in summary.results:
            lines.append(f"  {_describe(result)}")
            for warning in result.warnings:
                lines.append(f"    warning: {warning}")

    lines.append("")
    lines.append("Next steps:")
    for index, step in enumerate(next_steps(summary), 1):
        lines.append(f"  {index}. {step}")
    return "\n".join(lines)


def print_summary(summary: StackSummary, console: Optional[Console] = None) -> None:
    console = console or Console()

    if not summary.results:
        console.print(Panel("[bold]📋 Stack Summary[/bold]", border_style="blue"))
    elif summary.has_failures:
        console.print(Panel("[bold red]❌ Deployment halted[/bold red]", border_style="red"))
    elif summary.has_warnings:
        console.print(Panel("[bold yellow]⚠️  Deployment completed with warnings[/bold yellow]", border_style="yellow"))
    else:
        console.print(Panel("[bold green]✅ Deployment Complete![/bold green]", border_style="green"))

    services = Table(title="Service URLs", show_header=False, border_style="cyan")
    services.add_column("Service", style="bold")
    services.add_column("URL", style="green")
    services.add_column("Notes", style="dim")
    for entry in summary.services:
        url = entry.url if entry.known else f"[yellow]{entry.url}[/yellow]"
        services.add_row(entry.title, url, "\n".join(entry.notes) if entry.known else "")
    console.print(services)

    if summary.results:
        phases = Table(title="Phases", border_style="cyan")
        phases.add_column("Phase")
        phases.add_column("Status")
        phases.add_column("Detail", style="dim")
        for result in summary.results:
            icon, style = _STATUS_STYLE[result.status]
            lines = [text for text in (result.reason or result.detail,) if text]
            lines.extend(result.warnings)
            phases.add_row(
                result.phase.value,
                f"[{style}]{icon} {result.status.value}[/{style}]",
                "\n".join(lines),
            )
        console.print(phases)

    console.print("[bold]Next steps:[/bold]")
    for index, step in enumerate(next_steps(summary), 1):
        console.print(f"  {index}. {step}")


def _describe(result: PhaseResult) -> str:
    icon, _ = _STATUS_STYLE[result.status]
    text = f"{icon} {result.phase.value}: {result.status.value}"
    if result.reason:
        text += f" ({result.reason})"
    elif result.detail:
        text += f" - {result.detail}"
    return text


def render_teardown(report: TeardownReport) -> str:
    lines = [f"Teardown: {report.status.value}"]
    for result in report.results:
        lines.append(f"  {_describe(result)}")
        for warning in result.warnings:
            lines.append(f"    warning: {warning}")
    if report.residual_count is not None:
        lines.append(f"Residual instances: {report.residual_count}")
    lines.append("")
    lines.append("Next steps:")
    for step in TEARDOWN_NEXT_STEPS:
        lines.append(f"  - {step}")
    return "\n".join(lines)


def print_teardown(report: TeardownReport, console: Optional[Console] = None) -> None:
    console = console or Console()
    if report.destroy_failed:
        console.print(Panel("[bold red]❌ Destroy failed: resources may still exist[/bold red]", border_style="red"))
    elif report.status == TeardownStatus.COMPLETED:
        console.print(Panel("[bold green]✅ Cleanup completed successfully![/bold green]", border_style="green"))
    elif report.status == TeardownStatus.COMPLETED_WITH_WARNINGS:
        console.print(Panel("[bold yellow]⚠️  Cleanup completed with warnings[/bold yellow]", border_style="yellow"))
    else:
        console.print(Panel("[bold yellow]Cleanup aborted[/bold yellow]", border_style="yellow"))

    table = Table(title="Teardown", border_style="cyan")
    table.add_column("Phase")
    table.add_column("Status")
    table.add_column("Detail", style="dim")
    for result in report.results:
        icon, style = _STATUS_STYLE[result.status]
        lines = [text for text in (result.reason or result.detail,) if text]
        lines.extend(result.warnings)
        table.add_row(
            result.phase.value,
            f"[{style}]{icon} {result.status.value}[/{style}]",
            "\n".join(lines),
        )
    console.print(table)

    console.print("[bold]📋 Next steps:[/bold]")
    for step in TEARDOWN_NEXT_STEPS:
        console.print(f"  - {step}")
