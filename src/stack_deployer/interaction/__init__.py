"""Operator interaction for destructive-action confirmation."""

from .confirmation import (
    AFFIRMATIVE_TOKENS,
    CallbackConfirmationSource,
    CLIConfirmationSource,
    ConfirmationSource,
    ScriptedConfirmationSource,
    is_affirmative,
)

__all__ = [
    "AFFIRMATIVE_TOKENS",
    "CallbackConfirmationSource",
    "CLIConfirmationSource",
    "ConfirmationSource",
    "ScriptedConfirmationSource",
    "is_affirmative",
]
