"""Note and insight storage collaborators.

The analysis core only depends on the ``NoteStore`` and ``InsightSink``
interfaces. In-memory and JSON-file implementations are provided for tests
and the CLI.
"""

from metawave.storage.interfaces import InsightSink, NoteFilter, NoteSort, NoteStore
from metawave.storage.json_store import JsonInsightSink, JsonNoteStore, write_json_atomic
from metawave.storage.memory import InMemoryInsightSink, InMemoryNoteStore

__all__ = [
    "InMemoryInsightSink",
    "InMemoryNoteStore",
    "InsightSink",
    "JsonInsightSink",
    "JsonNoteStore",
    "NoteFilter",
    "NoteSort",
    "NoteStore",
    "write_json_atomic",
]
