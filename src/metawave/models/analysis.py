"""Derived analysis records.

Everything the pipeline computes from notes lives here: loop clusters, bias
categories, predictions, persisted insights, statistics, pattern buckets and
the watermark record. Clusters, predictions and statistics are recomputed on
every comprehensive pass; insights are owned by the insight sink once created.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from metawave.models.timestamps import parse_timestamp


class BiasSignal(str, Enum):
    """Cognitive-bias categories evaluated over the corpus."""

    CONFIRMATION = "confirmation"
    AVAILABILITY = "availability"
    ANCHORING = "anchoring"
    LOSS_AVERSION = "loss_aversion"
    SUNK_COST = "sunk_cost"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


def empty_bias_scores() -> Dict[BiasSignal, float]:
    """Bias mapping with every category present and scored 0.0."""
    return {signal: 0.0 for signal in BiasSignal}


class InsightKind(str, Enum):
    LOOP = "loop"
    BIORHYTHM = "biorhythm"
    BIAS = "bias"
    CREATIVITY = "creativity"


class PredictionType(str, Enum):
    POSITIVE_TREND = "positive_trend"
    NEGATIVE_TREND = "negative_trend"
    STABLE = "stable"
    HIGH_AROUSAL = "high_arousal"
    RECURRING_PATTERN = "recurring_pattern"
    BIAS_DETECTION = "bias_detection"


class PredictionImpact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def make_cluster_id(topic: str, first_note_id: str) -> str:
    """Deterministic id for a cluster: same topic and anchor note, same id."""
    digest = hashlib.sha1(f"{topic}\x00{first_note_id}".encode("utf-8"))
    return f"loop-{digest.hexdigest()[:12]}"


@dataclass
class LoopCluster:
    """A recurring topic and the notes that mention it.

    Attributes:
        topic: Representative keyword
        note_ids: Member note ids in chronological order
        strength: Share of considered notes in the cluster, in [0, 1]
        first_seen: created_at of the earliest member
        last_seen: created_at of the latest member
        cluster_id: Stable id derived from topic and first member
    """

    topic: str
    note_ids: List[str]
    strength: float
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    cluster_id: str = ""

    def __post_init__(self) -> None:
        if not self.topic:
            raise ValueError("topic is required for LoopCluster")
        if not self.cluster_id and self.note_ids:
            self.cluster_id = make_cluster_id(self.topic, self.note_ids[0])

    @property
    def note_count(self) -> int:
        return len(self.note_ids)

    @property
    def time_span_seconds(self) -> float:
        if self.first_seen is None or self.last_seen is None:
            return 0.0
        return (self.last_seen - self.first_seen).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cluster_id": self.cluster_id,
            "topic": self.topic,
            "note_ids": list(self.note_ids),
            "strength": self.strength,
            "first_seen": self.first_seen.isoformat() if self.first_seen else None,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
        }


@dataclass
class Prediction:
    """Forward-looking statement derived from recent notes."""

    type: PredictionType
    title: str
    message: str
    confidence: float
    impact: PredictionImpact = PredictionImpact.LOW
    timeframe: str = "next_week"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "confidence": self.confidence,
            "impact": self.impact.value,
            "timeframe": self.timeframe,
        }


@dataclass(frozen=True)
class Insight:
    """Persisted derived artifact referencing its evidence notes.

    The payload is opaque bytes to the sink. The pipeline writes UTF-8 JSON.
    """

    insight_id: str
    kind: InsightKind
    note_ids: Tuple[str, ...]
    payload: bytes
    created_at: datetime

    def payload_json(self) -> Dict[str, Any]:
        """Decode a JSON payload written by the pipeline."""
        return json.loads(self.payload.decode("utf-8"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "insight_id": self.insight_id,
            "kind": self.kind.value,
            "note_ids": list(self.note_ids),
            "payload": self.payload.decode("utf-8"),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Insight":
        return cls(
            insight_id=data["insight_id"],
            kind=InsightKind(data["kind"]),
            note_ids=tuple(data.get("note_ids", ())),
            payload=data.get("payload", "").encode("utf-8"),
            created_at=parse_timestamp(data["created_at"]),
        )


@dataclass(frozen=True)
class AnalysisState:
    """Watermarks of the last successful scoring and comprehensive passes.

    Both fields only move forward: the ``advance_*`` helpers keep the later
    of the stored and proposed values.
    """

    last_emotion_analysis_date: Optional[datetime] = None
    last_comprehensive_analysis_date: Optional[datetime] = None

    @staticmethod
    def _later(current: Optional[datetime], proposed: datetime) -> datetime:
        if current is None:
            return proposed
        return max(current, proposed)

    def advance_emotion(self, at: datetime) -> "AnalysisState":
        return replace(
            self,
            last_emotion_analysis_date=self._later(self.last_emotion_analysis_date, at),
        )

    def advance_comprehensive(self, at: datetime) -> "AnalysisState":
        return replace(
            self,
            last_comprehensive_analysis_date=self._later(
                self.last_comprehensive_analysis_date, at
            ),
        )

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "last_emotion_analysis_date": (
                self.last_emotion_analysis_date.isoformat()
                if self.last_emotion_analysis_date
                else None
            ),
            "last_comprehensive_analysis_date": (
                self.last_comprehensive_analysis_date.isoformat()
                if self.last_comprehensive_analysis_date
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisState":
        emotion = data.get("last_emotion_analysis_date")
        comprehensive = data.get("last_comprehensive_analysis_date")
        return cls(
            last_emotion_analysis_date=parse_timestamp(emotion) if emotion else None,
            last_comprehensive_analysis_date=(
                parse_timestamp(comprehensive) if comprehensive else None
            ),
        )


@dataclass
class AnalysisStatistics:
    """Corpus-level counts and average affect.

    No timestamps: two passes over an unchanged corpus serialize identically.
    """

    total_notes: int = 0
    text_notes: int = 0
    audio_notes: int = 0
    image_notes: int = 0
    scored_notes: int = 0
    average_valence: float = 0.0
    average_arousal: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_notes": self.total_notes,
            "text_notes": self.text_notes,
            "audio_notes": self.audio_notes,
            "image_notes": self.image_notes,
            "scored_notes": self.scored_notes,
            "average_valence": self.average_valence,
            "average_arousal": self.average_arousal,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)


@dataclass
class ScoringReport:
    """Outcome of one incremental scoring phase."""

    total: int = 0
    scored: int = 0
    failed: int = 0
    batches_total: int = 0
    batches_completed: int = 0
    cancelled: bool = False
    timed_out: bool = False
    failed_note_ids: List[str] = field(default_factory=list)

    @property
    def coverage(self) -> float:
        """Share of fetched notes that received a score."""
        if self.total == 0:
            return 1.0
        return self.scored / self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "scored": self.scored,
            "failed": self.failed,
            "coverage": self.coverage,
            "batches_total": self.batches_total,
            "batches_completed": self.batches_completed,
            "cancelled": self.cancelled,
            "timed_out": self.timed_out,
            "failed_note_ids": list(self.failed_note_ids),
        }


@dataclass
class PatternBucket:
    """One time bucket of note activity.

    ``key`` is the hour (0-23), the weekday (1-7, 1 = Sunday) or an ISO date.
    Averages cover scored notes only and are 0.0 for empty buckets.
    """

    key: Union[int, str]
    count: int = 0
    scored_count: int = 0
    average_valence: float = 0.0
    average_arousal: float = 0.0
    dominant_emotion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "count": self.count,
            "scored_count": self.scored_count,
            "average_valence": self.average_valence,
            "average_arousal": self.average_arousal,
            "dominant_emotion": self.dominant_emotion,
        }


@dataclass
class PatternSummary:
    total_notes: int = 0
    average_valence: float = 0.0
    average_arousal: float = 0.0
    most_active_hour: Optional[int] = None
    most_active_weekday: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_notes": self.total_notes,
            "average_valence": self.average_valence,
            "average_arousal": self.average_arousal,
            "most_active_hour": self.most_active_hour,
            "most_active_weekday": self.most_active_weekday,
        }


@dataclass
class AnalysisResult:
    """Everything one comprehensive pass produced."""

    clusters: List[LoopCluster] = field(default_factory=list)
    statistics: AnalysisStatistics = field(default_factory=AnalysisStatistics)
    insights: List[Insight] = field(default_factory=list)
    bias_signals: Dict[BiasSignal, float] = field(default_factory=empty_bias_scores)
    predictions: List[Prediction] = field(default_factory=list)
    hourly: List[PatternBucket] = field(default_factory=list)
    weekly: List[PatternBucket] = field(default_factory=list)
    scoring: ScoringReport = field(default_factory=ScoringReport)
    analyzed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clusters": [c.to_dict() for c in self.clusters],
            "statistics": self.statistics.to_dict(),
            "insights": [i.to_dict() for i in self.insights],
            "bias_signals": {k.value: v for k, v in self.bias_signals.items()},
            "predictions": [p.to_dict() for p in self.predictions],
            "hourly": [b.to_dict() for b in self.hourly],
            "weekly": [b.to_dict() for b in self.weekly],
            "scoring": self.scoring.to_dict(),
            "analyzed_at": self.analyzed_at.isoformat() if self.analyzed_at else None,
        }
