"""Plan artifact storage."""

from .store import ArtifactStore, artifact_id_for

__all__ = ["ArtifactStore", "artifact_id_for"]
