"""Confirmation gates guarding destructive actions."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional

logger = logging.getLogger(__name__)

AFFIRMATIVE_TOKENS = frozenset({"yes", "y"})


def is_affirmative(answer: Optional[str]) -> bool:
    """Only an exact, lowercase yes/y proceeds. Anything else, empty included, declines."""
    if answer is None:
        return False
    return answer.strip() in AFFIRMATIVE_TOKENS


class ConfirmationSource(ABC):
    """Abstract source of operator decisions."""

    @abstractmethod
    def ask(self, prompt: str) -> bool:
        """
        Present `prompt` and return the decision.

        Args:
            prompt: The question shown to the operator

        Returns:
            True only for an explicit affirmative answer
        """

    def notify(self, message: str, level: str = "info") -> None:
        log = logger.warning if level in ("warning", "error") else logger.info
        log(message)


class CLIConfirmationSource(ConfirmationSource):
    """Reads answers from the terminal."""

    def __init__(self, input_func: Callable[[str], str] = input) -> None:
        self._input = input_func

    def ask(self, prompt: str) -> bool:
        try:
            answer = self._input(f"{prompt} (yes/no): ")
        except (KeyboardInterrupt, EOFError):
            print("\n   (cancelled)")
            return False
        return is_affirmative(answer)

    def notify(self, message: str, level: str = "info") -> None:
        icons = {
            "info": "ℹ️",
            "warning": "⚠️",
            "error": "❌",
            "success": "✅",
        }
        print(f"{icons.get(level, '•')}  {message}")


class CallbackConfirmationSource(ConfirmationSource):
    """
    Delegates to a callback returning the raw answer text.
    Useful when embedding the orchestrator in another interface.
    """

    def __init__(self, callback: Callable[[str], Optional[str]]) -> None:
        self.callback = callback

    def ask(self, prompt: str) -> bool:
        return is_affirmative(self.callback(prompt))


class ScriptedConfirmationSource(ConfirmationSource):
    """
    Replays canned answers in order, for non-interactive runs and tests.
    Once the script is exhausted every further question is declined.
    """

    def __init__(self, answers: Iterable[str] = ()) -> None:
        self._answers: List[str] = list(answers)
        self.prompts: List[str] = []

    def ask(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        answer = self._answers.pop(0) if self._answers else ""
        logger.info("Scripted answer to %r: %r", prompt, answer)
        return is_affirmative(answer)
