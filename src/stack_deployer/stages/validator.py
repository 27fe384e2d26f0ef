"""Prerequisite checks run before anything is mutated."""

from __future__ import annotations

import platform
import shutil
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

from ..backends.base import CloudAccount
from ..config import TOOL_BINARIES
from ..errors import CloudAPIError, PrerequisiteError
from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Readiness:
    """`ready`, or NotReady(missing_tools, credential_error)."""

    missing_tools: Tuple[str, ...] = ()
    credential_error: Optional[str] = None
    identity: Optional[str] = None

    @property
    def ready(self) -> bool:
        return not self.missing_tools and self.credential_error is None

    def raise_for_status(self) -> None:
        if not self.ready:
            raise PrerequisiteError(
                list(self.missing_tools),
                self.credential_error,
                remediation=remediation_for(self),
            )


class PrerequisiteValidator:
    """Checks required tools are callable and cloud credentials are live."""

    def __init__(
        self,
        required_tools: Sequence[str],
        cloud: CloudAccount,
        which: Callable[[str], Optional[str]] = shutil.which,
        binaries: Optional[Dict[str, str]] = None,
    ) -> None:
        self.required_tools = list(required_tools)
        self.cloud = cloud
        self._which = which
        self.binaries = binaries or TOOL_BINARIES

    def check(self) -> Readiness:
        logger.info("🔍 Checking prerequisites...")
        missing = []
        for tool in self.required_tools:
            binary = self.binaries.get(tool, tool)
            if self._which(binary) is None:
                logger.error("   ✗ %s (%s) not found", tool, binary)
                missing.append(tool)
            else:
                logger.info("   ✓ %s (%s)", tool, binary)

        if missing:
            # The credential check shells out to the cloud CLI, which may be one of the missing tools.
            logger.info("   - cloud credentials: not checked until the tools above are installed")
            return Readiness(missing_tools=tuple(missing))

        # Local config files can hold stale keys, so ask the API who we are.
        credential_error = None
        identity = None
        try:
            identity = self.cloud.verify_identity()
        except CloudAPIError as exc:
            credential_error = exc.cause
            logger.error("   ✗ cloud credentials: %s", exc.cause)

        return Readiness(
            missing_tools=tuple(missing),
            credential_error=credential_error,
            identity=identity,
        )


def remediation_for(readiness: Readiness, system: Optional[str] = None) -> str:
    lines = []
    if readiness.missing_tools:
        lines.append(f"Install: {', '.join(TOOL_BINARIES.get(t, t) for t in readiness.missing_tools)}")
        lines.append(_install_hint(system or platform.system()))
    if readiness.credential_error:
        lines.append(
            "Configure credentials with `aws configure`, or export "
            "AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY and AWS_DEFAULT_REGION."
        )
    lines.append("Then run `stack-deployer deploy` again.")
    return "\n       ".join(lines)


def _install_hint(system: str) -> str:
    if system == "Darwin":
        return "macOS: brew install terraform ansible awscli"
    if system == "Windows":
        return "Windows: choco install terraform ansible awscli"
    return (
        "Linux: add the HashiCorp apt repository, then "
        "sudo apt-get install terraform ansible awscli"
    )
