"""Forward-looking predictions from recent notes, loops and bias signals.

Three independent checks, each of which may or may not produce a
prediction:

- **Trend**: compares average affect of the three most recent analyzed notes
  with the three before them.
- **Recurring pattern**: checks whether the strongest loop topic shows up
  more often in the last week than before it. Like loop detection, only
  text notes are counted.
- **Bias tendency**: reports the dominant bias when it covers enough notes.

Insufficient data yields an empty list, never an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Mapping, Optional, Sequence

from metawave.analysis.text import tokenize
from metawave.models.analysis import (
    BiasSignal,
    LoopCluster,
    Prediction,
    PredictionImpact,
    PredictionType,
)
from metawave.models.notes import Modality, Note
from metawave.models.timestamps import utc_now

logger = logging.getLogger(__name__)


@dataclass
class PredictionThresholds:
    """Tunable thresholds for the prediction checks."""

    trend_window: int = 3
    trend_min_notes: int = 5
    trend_delta: float = 0.2
    recurrence_window_days: int = 7
    recurrence_ratio: float = 1.5
    recurrence_min_count: int = 3
    bias_ratio: float = 0.3
    min_confidence: float = 0.3


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class PredictionEngine:
    """Derives predictions from the analyzed corpus.

    Args:
        thresholds: Check thresholds, defaults when omitted
        clock: Source of "now" for the recurrence window
    """

    def __init__(
        self,
        thresholds: Optional[PredictionThresholds] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.thresholds = thresholds or PredictionThresholds()
        self._clock = clock

    def predict(
        self,
        notes: Sequence[Note],
        clusters: Sequence[LoopCluster],
        bias_signals: Mapping[BiasSignal, float],
        *,
        now: Optional[datetime] = None,
    ) -> List[Prediction]:
        now = now or self._clock()
        candidates = [
            self.predict_trend(notes),
            self.predict_recurring(notes, clusters, now=now),
            self.predict_bias(bias_signals),
        ]
        predictions = [
            p
            for p in candidates
            if p is not None and p.confidence >= self.thresholds.min_confidence
        ]
        logger.debug(
            f"Generated {len(predictions)} predictions from {len(notes)} notes",
            extra={"predictions": [p.type.value for p in predictions]},
        )
        return predictions

    def predict_trend(self, notes: Sequence[Note]) -> Optional[Prediction]:
        t = self.thresholds
        if len(notes) < t.trend_min_notes:
            return None
        analyzed = sorted(
            (n for n in notes if n.is_scored), key=lambda n: (n.created_at, n.note_id)
        )
        if len(analyzed) < 2 * t.trend_window:
            return None

        recent = analyzed[-t.trend_window :]
        prior = analyzed[-2 * t.trend_window : -t.trend_window]
        valence_delta = _mean([n.sentiment for n in recent]) - _mean([n.sentiment for n in prior])
        arousal_delta = _mean([n.arousal for n in recent]) - _mean([n.arousal for n in prior])

        change = abs(valence_delta) + abs(arousal_delta)
        if change > 0.4:
            impact = PredictionImpact.HIGH
        elif change > 0.2:
            impact = PredictionImpact.MEDIUM
        else:
            impact = PredictionImpact.LOW

        if valence_delta > t.trend_delta:
            return Prediction(
                type=PredictionType.POSITIVE_TREND,
                title="Mood is improving",
                message="Your recent notes are more positive than the ones before them.",
                confidence=_clamp(min(0.9, 0.6 + abs(valence_delta))),
                impact=impact,
            )
        if valence_delta < -t.trend_delta:
            return Prediction(
                type=PredictionType.NEGATIVE_TREND,
                title="Mood is declining",
                message="Your recent notes are more negative. Consider taking a break.",
                confidence=_clamp(min(0.9, 0.6 + abs(valence_delta))),
                impact=impact,
            )
        if arousal_delta > t.trend_delta:
            return Prediction(
                type=PredictionType.HIGH_AROUSAL,
                title="Energy is rising",
                message="Your recent notes show more intense emotions than usual.",
                confidence=0.7,
                impact=impact,
            )
        return Prediction(
            type=PredictionType.STABLE,
            title="Mood is stable",
            message="Your emotional state has been steady across recent notes.",
            confidence=0.6,
            impact=impact,
        )

    def predict_recurring(
        self,
        notes: Sequence[Note],
        clusters: Sequence[LoopCluster],
        *,
        now: Optional[datetime] = None,
    ) -> Optional[Prediction]:
        if not clusters:
            return None
        t = self.thresholds
        topic = clusters[0].topic
        cutoff = (now or self._clock()) - timedelta(days=t.recurrence_window_days)

        recent = 0
        prior = 0
        for note in notes:
            # Same notes the loop detector clusters
            if note.modality != Modality.TEXT:
                continue
            if not note.has_text or topic not in set(tokenize(note.content_text)):
                continue
            if note.created_at >= cutoff:
                recent += 1
            else:
                prior += 1

        ratio = recent / max(prior, 1)
        if ratio <= t.recurrence_ratio or recent < t.recurrence_min_count:
            return None

        return Prediction(
            type=PredictionType.RECURRING_PATTERN,
            title=f"Recurring topic: {topic}",
            message=f"'{topic}' came up {recent} times this week. This pattern is likely to continue.",
            confidence=_clamp(min(0.8, 0.5 + ratio * 0.1)),
            impact=PredictionImpact.MEDIUM,
            timeframe="ongoing",
        )

    def predict_bias(self, bias_signals: Mapping[BiasSignal, float]) -> Optional[Prediction]:
        dominant: Optional[BiasSignal] = None
        best = 0.0
        # Enum order breaks ties
        for signal in BiasSignal:
            score = bias_signals.get(signal, 0.0)
            if score > best:
                dominant, best = signal, score

        if dominant is None or best <= self.thresholds.bias_ratio:
            return None

        return Prediction(
            type=PredictionType.BIAS_DETECTION,
            title=f"Watch for {dominant.label} bias",
            message=f"{best:.0%} of your notes show signs of {dominant.label} bias.",
            confidence=_clamp(min(0.8, best)),
            impact=PredictionImpact.HIGH,
        )
