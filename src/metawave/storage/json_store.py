"""JSON-file backed note store and insight sink.

Used by the CLI. Notes live in one JSON document (a list of note objects, or
an object with a ``notes`` list); insights are kept in a separate JSON list.
Note updates are buffered in memory and written by ``flush`` in a worker
thread. Every write replaces the file atomically under a file lock, so a
crash never leaves a half-written document.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

from filelock import FileLock

from metawave.errors import NoteFetchError
from metawave.models.analysis import Insight, InsightKind
from metawave.models.notes import Note
from metawave.models.timestamps import utc_now
from metawave.storage.interfaces import NoteFilter, NoteSort, select_notes
from metawave.storage.memory import copy_note

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON to a temp file next to ``path`` and swap it in."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp, path)


def _lock_for(path: Path) -> FileLock:
    return FileLock(str(path.with_suffix(path.suffix + ".lock")))


class JsonNoteStore:
    """``NoteStore`` over a JSON file.

    The file is read on first access and kept in memory; ``flush`` writes
    the whole document back once per call.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = _lock_for(self.path)
        self._notes: Optional[Dict[str, Note]] = None
        self._wrapped = False
        self._dirty = False

    def _load(self) -> Dict[str, Note]:
        if self._notes is not None:
            return self._notes
        if not self.path.exists():
            self._notes = {}
            return self._notes
        try:
            with self._lock:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            if isinstance(raw, dict):
                self._wrapped = True
                raw = raw.get("notes", [])
            notes = [Note.from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise NoteFetchError(
                f"Cannot read notes from {self.path}: {e}",
                details={"path": str(self.path)},
            ) from e
        self._notes = {n.note_id: n for n in notes}
        logger.info(f"Loaded {len(notes)} notes from {self.path}")
        return self._notes

    def all(self) -> List[Note]:
        return [copy_note(n) for n in sorted(self._load().values(), key=NoteSort.CREATED_ASC.key)]

    async def fetch(
        self,
        note_filter: Optional[NoteFilter] = None,
        sort: NoteSort = NoteSort.CREATED_ASC,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Note]:
        selected = select_notes(list(self._load().values()), note_filter, sort, limit, offset)
        return [copy_note(n) for n in selected]

    def update(self, note: Note) -> None:
        """Replace a note in memory; the file is written on ``flush``."""
        notes = self._load()
        if note.note_id not in notes:
            raise KeyError(f"Unknown note: {note.note_id}")
        notes[note.note_id] = copy_note(note)
        self._dirty = True

    @property
    def dirty(self) -> bool:
        return self._dirty

    async def flush(self) -> None:
        """Write pending updates off the event loop."""
        if not self._dirty:
            return
        ordered = sorted(self._load().values(), key=NoteSort.CREATED_ASC.key)
        payload: Any = [n.to_dict() for n in ordered]
        if self._wrapped:
            payload = {"notes": payload}
        self._dirty = False
        try:
            await asyncio.to_thread(self._write, payload)
        except Exception:
            self._dirty = True
            raise
        logger.debug(f"Wrote {len(ordered)} notes to {self.path}")

    def _write(self, payload: Any) -> None:
        with self._lock:
            write_json_atomic(self.path, payload)


class JsonInsightSink:
    """``InsightSink`` appending to a JSON list file."""

    def __init__(self, path: Path, clock: Callable[[], datetime] = utc_now):
        self.path = Path(path)
        self._lock = _lock_for(self.path)
        self._clock = clock

    def load(self) -> List[Insight]:
        if not self.path.exists():
            return []
        with self._lock:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        return [Insight.from_dict(item) for item in raw]

    async def create(
        self, kind: InsightKind, note_ids: Sequence[str], payload: bytes
    ) -> Insight:
        insight = Insight(
            insight_id=str(uuid4()),
            kind=InsightKind(kind),
            note_ids=tuple(note_ids),
            payload=bytes(payload),
            created_at=self._clock(),
        )
        with self._lock:
            existing = []
            if self.path.exists():
                existing = json.loads(self.path.read_text(encoding="utf-8"))
            existing.append(insight.to_dict())
            write_json_atomic(self.path, existing)
        return insight
