"""Operator interaction handlers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from rich.console import Console
from rich.prompt import Confirm

logger = logging.getLogger(__name__)


@dataclass
class ConfirmationRequest:
    """A yes/no question put to the operator before a risky action."""

    question: str
    context: Optional[str] = None
    default: bool = False

    def format_prompt(self) -> str:
        lines = [f"⚠️  {self.question}"]
        if self.context:
            lines.append(f"   ℹ️  {self.context}")
        return "\n".join(lines)


class UserInteractionHandler(ABC):
    """Abstract base class for handling operator interactions."""

    @abstractmethod
    def confirm(self, request: ConfirmationRequest) -> bool:
        """
        Ask the operator to confirm.

        Args:
            request: The confirmation to present

        Returns:
            True only if the operator explicitly agreed
        """

    @abstractmethod
    def notify(self, message: str, level: str = "info") -> None:
        """
        Send a notification to the operator (no response needed).

        Args:
            message: The message to display
            level: Severity level (info, warning, error, success)
        """


class CLIInteractionHandler(UserInteractionHandler):
    """Terminal handler built on rich."""

    _STYLES = {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "green",
    }

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def confirm(self, request: ConfirmationRequest) -> bool:
        self.console.print(request.format_prompt())
        try:
            return Confirm.ask("   Continue?", default=request.default, console=self.console)
        except (KeyboardInterrupt, EOFError):
            self.console.print("\n   (cancelled)")
            return False

    def notify(self, message: str, level: str = "info") -> None:
        style = self._STYLES.get(level, "")
        self.console.print(message, style=style or None, markup=False, highlight=False)


class AutoResponseHandler(UserInteractionHandler):
    """
    Non-interactive handler for CI or tests.
    Answers every confirmation with a fixed value.
    """

    def __init__(self, always_confirm: bool = False) -> None:
        self.always_confirm = always_confirm

    def confirm(self, request: ConfirmationRequest) -> bool:
        logger.info("Auto-responding %s to: %s", "yes" if self.always_confirm else "no", request.question)
        return self.always_confirm

    def notify(self, message: str, level: str = "info") -> None:
        logger.info("[%s] %s", level, message)
