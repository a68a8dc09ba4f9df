"""Collaborator interfaces the analysis core depends on.

The core never owns note or insight persistence. It talks to a ``NoteStore``
for reading and updating notes and to an ``InsightSink`` for writing derived
insights. Any object with these methods can be plugged in.

``NoteStore.update`` may buffer writes; the orchestrator calls ``flush`` after
each scoring batch and after annotating the corpus.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from metawave.models.analysis import Insight, InsightKind
from metawave.models.notes import Modality, Note


@dataclass(frozen=True)
class NoteFilter:
    """Predicate over notes.

    Attributes:
        updated_after: Only notes modified strictly after this instant
        modality: Only notes of this modality
        unscored_only: Only notes without an emotion score
        require_text: Only notes with non-empty text
    """

    updated_after: Optional[datetime] = None
    modality: Optional[Modality] = None
    unscored_only: bool = False
    require_text: bool = False

    def matches(self, note: Note) -> bool:
        if self.updated_after is not None and not note.updated_at > self.updated_after:
            return False
        if self.modality is not None and note.modality != self.modality:
            return False
        if self.unscored_only and note.is_scored:
            return False
        if self.require_text and not note.has_text:
            return False
        return True


class NoteSort(str, Enum):
    CREATED_ASC = "created_asc"
    UPDATED_ASC = "updated_asc"

    @property
    def key(self) -> Callable[[Note], Tuple[datetime, str]]:
        if self is NoteSort.UPDATED_ASC:
            return lambda n: (n.updated_at, n.note_id)
        return lambda n: (n.created_at, n.note_id)


class NoteStore(Protocol):
    async def fetch(
        self,
        note_filter: Optional[NoteFilter] = None,
        sort: NoteSort = NoteSort.CREATED_ASC,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Note]:
        ...

    def update(self, note: Note) -> None:
        ...

    async def flush(self) -> None:
        ...


class InsightSink(Protocol):
    async def create(
        self, kind: InsightKind, note_ids: Sequence[str], payload: bytes
    ) -> Insight:
        ...


def select_notes(
    notes: Sequence[Note],
    note_filter: Optional[NoteFilter],
    sort: NoteSort,
    limit: Optional[int],
    offset: int,
) -> List[Note]:
    """Filter, sort and page a note sequence the way stores are expected to."""
    selected = [n for n in notes if note_filter is None or note_filter.matches(n)]
    selected.sort(key=sort.key)
    if offset:
        selected = selected[offset:]
    if limit is not None:
        selected = selected[:limit]
    return selected
