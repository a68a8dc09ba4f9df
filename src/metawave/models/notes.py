"""Journal note models.

A ``Note`` is a single timestamped journal entry. The analysis pipeline only
ever fills in derived fields (scores, topic hash, bias signals, loop group);
notes are created and deleted by the application, never by the pipeline.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Set

from metawave.models.analysis import BiasSignal
from metawave.models.timestamps import ensure_utc, parse_timestamp


class Modality(str, Enum):
    TEXT = "text"
    AUDIO = "audio"
    IMAGE = "image"


@dataclass(frozen=True)
class EmotionScore:
    """Valence in [-1, 1] and arousal in [0, 1]."""

    valence: float
    arousal: float

    def __post_init__(self) -> None:
        if math.isnan(self.valence) or not -1.0 <= self.valence <= 1.0:
            raise ValueError(f"valence out of range: {self.valence}")
        if math.isnan(self.arousal) or not 0.0 <= self.arousal <= 1.0:
            raise ValueError(f"arousal out of range: {self.arousal}")

    @classmethod
    def neutral(cls) -> "EmotionScore":
        return cls(valence=0.0, arousal=0.5)

    @classmethod
    def clamped(cls, valence: float, arousal: float) -> "EmotionScore":
        return cls(
            valence=max(-1.0, min(1.0, valence)),
            arousal=max(0.0, min(1.0, arousal)),
        )


@dataclass
class Note:
    """A journal entry plus the fields the analysis pipeline derives from it.

    Attributes:
        note_id: Opaque unique identifier
        created_at: When the entry was written
        updated_at: Last modification, including score writes
        modality: text, audio or image
        content_text: Entry text (transcript for audio), if any
        tags: Free-form user tags
        sentiment: Valence in [-1, 1], None until scored
        arousal: Arousal in [0, 1], None until scored
        topic_hash: Digest of the loop topic this note belongs to
        bias_signals: Per-category bias match for this note
        loop_group_id: Id of the loop cluster this note belongs to
    """

    note_id: str
    created_at: datetime
    updated_at: datetime
    modality: Modality = Modality.TEXT
    content_text: Optional[str] = None
    tags: Set[str] = field(default_factory=set)
    sentiment: Optional[float] = None
    arousal: Optional[float] = None
    topic_hash: Optional[str] = None
    bias_signals: Dict[BiasSignal, float] = field(default_factory=dict)
    loop_group_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.note_id:
            raise ValueError("note_id is required for Note")
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    @property
    def has_text(self) -> bool:
        return bool(self.content_text and self.content_text.strip())

    @property
    def is_scored(self) -> bool:
        return self.sentiment is not None and self.arousal is not None

    @property
    def emotion_score(self) -> Optional[EmotionScore]:
        if not self.is_scored:
            return None
        return EmotionScore(valence=self.sentiment, arousal=self.arousal)

    def apply_emotion_score(self, score: EmotionScore, at: datetime) -> None:
        """Record a score; counts as a modification of the note."""
        self.sentiment = score.valence
        self.arousal = score.arousal
        self.updated_at = ensure_utc(at)

    def clear_emotion_score(self) -> None:
        """Drop a stale score; ``updated_at`` is left untouched."""
        self.sentiment = None
        self.arousal = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage/serialization."""
        return {
            "note_id": self.note_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "modality": self.modality.value,
            "content_text": self.content_text,
            "tags": sorted(self.tags),
            "sentiment": self.sentiment,
            "arousal": self.arousal,
            "topic_hash": self.topic_hash,
            "bias_signals": {k.value: v for k, v in self.bias_signals.items()},
            "loop_group_id": self.loop_group_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Note":
        """Create from dictionary. ``updated_at`` defaults to ``created_at``."""
        created_at = parse_timestamp(data["created_at"])
        updated_raw = data.get("updated_at")
        return cls(
            note_id=str(data["note_id"]),
            created_at=created_at,
            updated_at=parse_timestamp(updated_raw) if updated_raw else created_at,
            modality=Modality(data.get("modality", Modality.TEXT.value)),
            content_text=data.get("content_text"),
            tags=set(data.get("tags") or ()),
            sentiment=data.get("sentiment"),
            arousal=data.get("arousal"),
            topic_hash=data.get("topic_hash"),
            bias_signals={
                BiasSignal(k): float(v) for k, v in (data.get("bias_signals") or {}).items()
            },
            loop_group_id=data.get("loop_group_id"),
        )
