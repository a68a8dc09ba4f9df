"""Shared fixtures: a fixed clock, a note factory and in-memory collaborators."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest

from metawave.models.notes import Modality, Note
from metawave.orchestrator.state import InMemoryAnalysisStateStore
from metawave.storage.memory import InMemoryInsightSink, InMemoryNoteStore

# A Saturday
NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def make_note(
    note_id: str,
    text: Optional[str] = None,
    *,
    days_ago: float = 0,
    created_at: Optional[datetime] = None,
    modality: Modality = Modality.TEXT,
    sentiment: Optional[float] = None,
    arousal: Optional[float] = None,
) -> Note:
    created = created_at or NOW - timedelta(days=days_ago)
    return Note(
        note_id=note_id,
        created_at=created,
        updated_at=created,
        modality=modality,
        content_text=text,
        sentiment=sentiment,
        arousal=arousal,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def note_factory() -> Callable[..., Note]:
    return make_note


@pytest.fixture
def note_store() -> InMemoryNoteStore:
    return InMemoryNoteStore()


@pytest.fixture
def insight_sink(clock) -> InMemoryInsightSink:
    return InMemoryInsightSink(clock=clock)


@pytest.fixture
def state_store() -> InMemoryAnalysisStateStore:
    return InMemoryAnalysisStateStore()


@pytest.fixture
def work_loop_notes() -> list:
    """Twelve notes: five recent 'work' notes and one 'work' note weeks earlier.

    The old and recent notes are separated by more than the 7-day segment gap.
    """
    return [
        make_note("old-1", "Stuck at work late", days_ago=30),
        make_note("old-2", "Garden tulips bloomed", days_ago=29),
        make_note("old-3", "Painted the fence blue", days_ago=28.5),
        make_note("old-4", "Visited grandma's cottage", days_ago=28),
        make_note("new-1", "Meeting at work ran long", days_ago=6),
        make_note("new-2", "Cooked pasta for dinner", days_ago=5),
        make_note("new-3", "Deadline at work tomorrow", days_ago=4),
        make_note("new-4", "Walked along the river", days_ago=3.5),
        make_note("new-5", "Another stressful work call", days_ago=3),
        make_note("new-6", "Work presentation went fine", days_ago=2),
        make_note("new-7", "Read a novel before sleeping", days_ago=1),
        make_note("new-8", "Skipped lunch because of work", days_ago=0.5),
    ]
