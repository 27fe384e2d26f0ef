"""Command-line interface for stack-deployer."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel

from .config import AppConfig, load_config
from .errors import StackDeployerError
from .utils.logging import set_verbose
from .workflow import StackWorkflow

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    console: Console


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stack-deployer",
        description="Provision, configure and tear down the GitLab + Vault + OPA stack.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser(
        "deploy", help="Validate, provision, configure and verify the stack"
    )
    deploy_parser.add_argument(
        "--skip-verify",
        action="store_true",
        help="Skip the post-deployment health checks (reported as skipped)",
    )

    subparsers.add_parser(
        "cleanup", help="Destroy every resource of the stack (asks for confirmation)"
    )
    subparsers.add_parser(
        "report", help="Show service URLs and the outcome of the latest deploy"
    )
    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    return CLIContext(config=load_config(args.config), console=Console())


def _print_error(console: Console, message: str) -> None:
    console.print(Panel(message, title="❌ Error", border_style="red"))


def handle_deploy_command(args: argparse.Namespace, context: CLIContext) -> int:
    workflow = StackWorkflow(context.config, console=context.console)
    report = workflow.run_deploy(skip_verify=args.skip_verify)
    if report.error:
        _print_error(context.console, report.error)
    return report.exit_code


def handle_cleanup_command(args: argparse.Namespace, context: CLIContext) -> int:
    workflow = StackWorkflow(context.config, console=context.console)
    report = workflow.run_cleanup()
    if report.primary_error:
        _print_error(context.console, report.primary_error)
    return report.exit_code


def handle_report_command(args: argparse.Namespace, context: CLIContext) -> int:
    StackWorkflow(context.config, console=context.console).run_report()
    return EXIT_OK


def dispatch_command(args: argparse.Namespace) -> int:
    set_verbose(args.verbose)
    try:
        context = _build_context(args)
    except FileNotFoundError as exc:
        _print_error(Console(), str(exc))
        return EXIT_FAILED
    except StackDeployerError as exc:
        _print_error(Console(), exc.describe())
        return EXIT_FAILED

    handlers = {
        "deploy": handle_deploy_command,
        "cleanup": handle_cleanup_command,
        "report": handle_report_command,
    }
    try:
        return handlers[args.command](args, context)
    except StackDeployerError as exc:
        # Errors outside any phase, e.g. the state lock is held.
        _print_error(context.console, exc.describe())
        return EXIT_FAILED
    except KeyboardInterrupt:
        context.console.print("\n[yellow]Interrupted.[/yellow]")
        return EXIT_CANCELLED


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return dispatch_command(args)
