"""State declarations shared by the deploy and teardown state machines."""

from __future__ import annotations

from dataclasses import dataclass

from ..models import ExecutionPhase, Severity


@dataclass(frozen=True)
class State:
    """One step of a pipeline and what its failure means for the rest."""

    phase: ExecutionPhase
    severity: Severity
    mutating: bool = False

    @property
    def name(self) -> str:
        return self.phase.value
