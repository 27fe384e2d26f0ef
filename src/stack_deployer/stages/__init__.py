"""Deploy pipeline stages."""

from .configuration import ConfigurationStage
from .inventory import InventoryStore, build_inventory
from .provisioning import ProvisioningStage, ProvisionResult
from .reporter import ResultReporter, StackSummary, print_summary, render_summary
from .validator import PrerequisiteValidator, Readiness
from .verification import VerificationStage

__all__ = [
    "ConfigurationStage",
    "InventoryStore",
    "build_inventory",
    "ProvisioningStage",
    "ProvisionResult",
    "ResultReporter",
    "StackSummary",
    "print_summary",
    "render_summary",
    "PrerequisiteValidator",
    "Readiness",
    "VerificationStage",
]
