"""Temporal aggregation of note activity and affect.

Buckets notes by hour of day (0-23), by weekday (1-7, 1 = Sunday) or by
calendar day over a rolling window. Every bucket counts all of its notes;
average valence and arousal cover scored notes only and are 0.0 for a
bucket with none.

Hours, weekdays and days are read in the aggregator's timezone, UTC unless
configured otherwise (``patterns.timezone``).
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, tzinfo
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from dateutil import tz as dateutil_tz

from metawave.models.analysis import AnalysisStatistics, PatternBucket, PatternSummary
from metawave.models.notes import Modality, Note
from metawave.models.timestamps import utc_now

logger = logging.getLogger(__name__)

DEFAULT_DAILY_WINDOW = 30

# Order decides ties when picking a bucket's dominant emotion
EMOTION_ORDER = ("joy", "anger", "sadness", "surprise", "disgust")


class Granularity(str, Enum):
    HOURLY = "hourly"
    WEEKLY = "weekly"
    DAILY = "daily"


def weekday_key(moment: datetime) -> int:
    """Weekday numbered 1-7 starting from Sunday."""
    return moment.isoweekday() % 7 + 1


def emotion_category(valence: float, arousal: float) -> Optional[str]:
    """Coarse emotion label for one scored note."""
    if valence > 0.3:
        return "joy"
    if valence < -0.3:
        return "anger" if arousal > 0.5 else "sadness"
    if arousal > 0.5:
        return "surprise"
    if arousal < 0.3:
        return "disgust"
    return None


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class PatternAggregator:
    """Groups notes into time buckets and summarizes each bucket."""

    def __init__(
        self, clock: Callable[[], datetime] = utc_now, tz: Optional[tzinfo] = None
    ):
        self._clock = clock
        self.tz = tz or dateutil_tz.UTC

    def _local(self, moment: datetime) -> datetime:
        return moment.astimezone(self.tz)

    def aggregate(
        self,
        notes: Iterable[Note],
        granularity: Granularity,
        *,
        days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[PatternBucket]:
        granularity = Granularity(granularity)
        notes = list(notes)

        if granularity == Granularity.HOURLY:
            keys: List[Union[int, str]] = list(range(24))
            key_of = lambda n: self._local(n.created_at).hour  # noqa: E731
        elif granularity == Granularity.WEEKLY:
            keys = list(range(1, 8))
            key_of = lambda n: weekday_key(self._local(n.created_at))  # noqa: E731
        else:
            window = days if days is not None else DEFAULT_DAILY_WINDOW
            if window < 1:
                raise ValueError("days must be at least 1")
            today = self._local(now or self._clock()).date()
            keys = [
                (today - timedelta(days=offset)).isoformat()
                for offset in range(window - 1, -1, -1)
            ]
            key_of = lambda n: self._local(n.created_at).date().isoformat()  # noqa: E731

        grouped: Dict[Union[int, str], List[Note]] = {key: [] for key in keys}
        for note in notes:
            key = key_of(note)
            if key in grouped:
                grouped[key].append(note)

        logger.debug(
            f"Aggregated {len(notes)} notes into {len(keys)} {granularity.value} buckets",
            extra={"granularity": granularity.value, "notes": len(notes)},
        )
        return [self._bucket(key, grouped[key]) for key in keys]

    @staticmethod
    def _bucket(key: Union[int, str], notes: List[Note]) -> PatternBucket:
        scored = [n for n in notes if n.is_scored]
        categories = Counter(
            c
            for c in (emotion_category(n.sentiment, n.arousal) for n in scored)
            if c is not None
        )
        dominant = None
        if categories:
            dominant = max(
                EMOTION_ORDER, key=lambda c: (categories.get(c, 0), -EMOTION_ORDER.index(c))
            )
        return PatternBucket(
            key=key,
            count=len(notes),
            scored_count=len(scored),
            average_valence=_mean([n.sentiment for n in scored]),
            average_arousal=_mean([n.arousal for n in scored]),
            dominant_emotion=dominant,
        )

    def statistics(self, notes: Iterable[Note]) -> AnalysisStatistics:
        """Counts by modality and average affect over scored notes."""
        notes = list(notes)
        scored = [n for n in notes if n.is_scored]
        by_modality = Counter(n.modality for n in notes)
        return AnalysisStatistics(
            total_notes=len(notes),
            text_notes=by_modality.get(Modality.TEXT, 0),
            audio_notes=by_modality.get(Modality.AUDIO, 0),
            image_notes=by_modality.get(Modality.IMAGE, 0),
            scored_notes=len(scored),
            average_valence=_mean([n.sentiment for n in scored]),
            average_arousal=_mean([n.arousal for n in scored]),
        )

    def summary(self, notes: Iterable[Note]) -> PatternSummary:
        notes = list(notes)
        stats = self.statistics(notes)
        if not notes:
            return PatternSummary()
        hourly = self.aggregate(notes, Granularity.HOURLY)
        weekly = self.aggregate(notes, Granularity.WEEKLY)
        # max() keeps the first of equal counts, i.e. the lowest key
        busiest_hour = max(hourly, key=lambda b: b.count)
        busiest_day = max(weekly, key=lambda b: b.count)
        return PatternSummary(
            total_notes=stats.total_notes,
            average_valence=stats.average_valence,
            average_arousal=stats.average_arousal,
            most_active_hour=busiest_hour.key,
            most_active_weekday=busiest_day.key,
        )
