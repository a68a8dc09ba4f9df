"""Persistence of the analysis watermark record.

The orchestrator is the only writer. Saving is a whole-record replace, so a
reader never sees one watermark updated without the other.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

from filelock import FileLock

from metawave.models.analysis import AnalysisState
from metawave.storage.json_store import write_json_atomic

logger = logging.getLogger(__name__)


class AnalysisStateStore(Protocol):
    def load(self) -> AnalysisState:
        ...

    def save(self, state: AnalysisState) -> None:
        ...


class InMemoryAnalysisStateStore:
    def __init__(self, state: AnalysisState = AnalysisState()):
        self._state = state
        self.save_count = 0

    def load(self) -> AnalysisState:
        return self._state

    def save(self, state: AnalysisState) -> None:
        self._state = state
        self.save_count += 1


class JsonAnalysisStateStore:
    """Watermark record in a JSON file, written atomically."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = FileLock(str(self.path.with_suffix(self.path.suffix + ".lock")))

    def load(self) -> AnalysisState:
        if not self.path.exists():
            return AnalysisState()
        with self._lock:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        return AnalysisState.from_dict(data)

    def save(self, state: AnalysisState) -> None:
        with self._lock:
            write_json_atomic(self.path, state.to_dict())
        logger.debug("Saved analysis state", extra={"state_path": str(self.path)})
