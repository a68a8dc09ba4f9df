"""In-memory note store and insight sink.

Fetches hand out copies, so nothing the pipeline does to a note is visible
in the store until ``update`` is called.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from metawave.models.analysis import Insight, InsightKind
from metawave.models.notes import Note
from metawave.models.timestamps import utc_now
from metawave.storage.interfaces import NoteFilter, NoteSort, select_notes

logger = logging.getLogger(__name__)


def copy_note(note: Note) -> Note:
    return replace(note, tags=set(note.tags), bias_signals=dict(note.bias_signals))


class InMemoryNoteStore:
    """Dictionary-backed ``NoteStore``."""

    def __init__(self, notes: Iterable[Note] = ()):
        self._notes: Dict[str, Note] = {}
        self.update_count = 0
        self.flush_count = 0
        for note in notes:
            self.add(note)

    def add(self, note: Note) -> None:
        self._notes[note.note_id] = copy_note(note)

    def get(self, note_id: str) -> Optional[Note]:
        note = self._notes.get(note_id)
        return copy_note(note) if note else None

    def all(self) -> List[Note]:
        return [copy_note(n) for n in sorted(self._notes.values(), key=NoteSort.CREATED_ASC.key)]

    def __len__(self) -> int:
        return len(self._notes)

    async def fetch(
        self,
        note_filter: Optional[NoteFilter] = None,
        sort: NoteSort = NoteSort.CREATED_ASC,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Note]:
        selected = select_notes(list(self._notes.values()), note_filter, sort, limit, offset)
        return [copy_note(n) for n in selected]

    def update(self, note: Note) -> None:
        if note.note_id not in self._notes:
            raise KeyError(f"Unknown note: {note.note_id}")
        self._notes[note.note_id] = copy_note(note)
        self.update_count += 1

    async def flush(self) -> None:
        self.flush_count += 1


class InMemoryInsightSink:
    """List-backed ``InsightSink``."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self.insights: List[Insight] = []

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
        self.insights.append(insight)
        logger.debug(f"Stored {insight.kind.value} insight {insight.insight_id}")
        return insight
