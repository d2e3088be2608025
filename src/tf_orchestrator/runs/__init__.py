"""Persisted run records."""

from .store import RunStore, generate_run_id

__all__ = ["RunStore", "generate_run_id"]
