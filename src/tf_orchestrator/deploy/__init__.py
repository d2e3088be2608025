"""Deploy executor."""

from .executor import DeployExecutor

__all__ = ["DeployExecutor"]
