"""Unified path constants for stack-deployer.

Local orchestrator data lives under the .stack-deployer directory:
- .stack-deployer/runs/       # JSON run logs (one per deploy/cleanup)
- .stack-deployer/commands/   # output of mutating terraform/ansible runs
- .stack-deployer/state.lock  # advisory lock held for the duration of a run
"""

from pathlib import Path

BASE_DIR = Path(".stack-deployer")


def get_runs_dir(base: Path = BASE_DIR) -> Path:
    """Return the run-log directory, creating it if needed."""
    runs = base / "runs"
    runs.mkdir(parents=True, exist_ok=True)
    return runs


def get_lock_file(base: Path = BASE_DIR) -> Path:
    base.mkdir(parents=True, exist_ok=True)
    return base / "state.lock"


def get_commands_dir(base: Path = BASE_DIR) -> Path:
    """Return the command-output directory. The runner creates it on first use."""
    return base / "commands"
