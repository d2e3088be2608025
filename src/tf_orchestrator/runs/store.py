"""JSON persistence for run contexts."""

from __future__ import annotations

import hashlib
import json
import time
import uuid
from pathlib import Path
from typing import List

from ..errors import UnknownRunError
from ..models import RunContext


def generate_run_id(seed: str = "") -> str:
    token = f"{seed}-{time.time_ns()}-{uuid.uuid4().hex}".encode("utf-8")
    return hashlib.sha1(token).hexdigest()[:12]


class RunStore:
    """One ``<run-id>.json`` file per run; rewritten after every transition."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, run_id: str) -> Path:
        return self.root / f"{run_id}.json"

    def save(self, ctx: RunContext) -> Path:
        path = self.path_for(ctx.run_id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(ctx.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)
        return path

    def load(self, run_id: str) -> RunContext:
        path = self.path_for(run_id)
        if not path.exists():
            raise UnknownRunError(f"No run recorded with id {run_id!r}")
        return RunContext.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def exists(self, run_id: str) -> bool:
        return self.path_for(run_id).exists()

    def list(self) -> List[RunContext]:
        files = sorted(self.root.glob("*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
        return [RunContext.from_dict(json.loads(f.read_text(encoding="utf-8"))) for f in files]
