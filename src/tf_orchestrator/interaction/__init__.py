"""Operator interaction for destructive commands."""

from .handler import (
    AutoResponseHandler,
    CLIInteractionHandler,
    ConfirmationRequest,
    UserInteractionHandler,
)

__all__ = [
    "AutoResponseHandler",
    "CLIInteractionHandler",
    "ConfirmationRequest",
    "UserInteractionHandler",
]
