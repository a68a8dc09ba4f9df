"""Recurring-topic (loop) detection over the note corpus.

Loops are topics the writer keeps coming back to. Detection is a full-corpus
keyword pass and runs only on a comprehensive analysis:

1. Text notes are ordered chronologically and split into segments wherever
   two consecutive notes are more than ``max_gap_days`` apart.
2. Within each segment, candidate keywords are counted by how many notes
   contain them (stop words and short tokens removed).
3. The ``top_k`` keywords become candidate topics; ties go to the keyword
   seen first, then alphabetical order.
4. A topic's cluster is every note of the segment containing the keyword.
   Strength is the cluster size over all notes considered. Clusters with
   fewer than ``min_cluster_size`` notes are dropped.

Output is deterministic for a given corpus.
"""

from __future__ import annotations

import hashlib
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from metawave.analysis.text import STOP_WORDS, keyword_tokens
from metawave.models.analysis import LoopCluster
from metawave.models.notes import Modality, Note

logger = logging.getLogger(__name__)


class LoopDetector(Protocol):
    async def cluster(self, notes: Sequence[Note]) -> List[LoopCluster]:
        ...


def topic_hash(topic: str) -> str:
    """Stable short digest of a loop topic."""
    return hashlib.sha256(topic.encode("utf-8")).hexdigest()[:16]


class KeywordLoopDetector:
    """Keyword-frequency loop detector.

    Args:
        top_k: Candidate topics taken per segment
        min_token_length: Shortest token eligible as a topic
        min_cluster_size: Minimum notes for a cluster (and a segment) to count
        max_gap_days: Gap that starts a new segment; None keeps one segment
        stop_words: Tokens never used as topics
    """

    def __init__(
        self,
        top_k: int = 5,
        min_token_length: int = 4,
        min_cluster_size: int = 2,
        max_gap_days: Optional[float] = 7.0,
        stop_words: Iterable[str] = STOP_WORDS,
    ):
        if top_k < 1:
            raise ValueError("top_k must be at least 1")
        if min_cluster_size < 1:
            raise ValueError("min_cluster_size must be at least 1")
        self.top_k = top_k
        self.min_token_length = min_token_length
        self.min_cluster_size = min_cluster_size
        self.max_gap = timedelta(days=max_gap_days) if max_gap_days is not None else None
        self.stop_words = frozenset(stop_words)

    async def cluster(self, notes: Sequence[Note]) -> List[LoopCluster]:
        return self.detect(notes)

    def detect(self, notes: Sequence[Note]) -> List[LoopCluster]:
        considered = sorted(
            (n for n in notes if n.modality == Modality.TEXT and n.has_text),
            key=lambda n: (n.created_at, n.note_id),
        )
        total = len(considered)
        if total == 0:
            return []

        tokens: Dict[str, List[str]] = {
            n.note_id: keyword_tokens(n.content_text, self.min_token_length, self.stop_words)
            for n in considered
        }

        clusters: List[LoopCluster] = []
        for segment in self._segments(considered):
            if len(segment) < self.min_cluster_size:
                continue
            clusters.extend(self._cluster_segment(segment, tokens, total))

        clusters.sort(key=lambda c: (-c.strength, c.first_seen, c.topic))
        logger.debug(
            f"Detected {len(clusters)} loop clusters from {total} notes",
            extra={"notes": total, "clusters": len(clusters)},
        )
        return clusters

    def _segments(self, notes: List[Note]) -> List[List[Note]]:
        if self.max_gap is None:
            return [notes]
        segments: List[List[Note]] = [[notes[0]]]
        for previous, current in zip(notes, notes[1:]):
            if current.created_at - previous.created_at > self.max_gap:
                segments.append([])
            segments[-1].append(current)
        return segments

    def _cluster_segment(
        self,
        segment: List[Note],
        tokens: Dict[str, List[str]],
        total: int,
    ) -> List[LoopCluster]:
        frequency: Counter = Counter()
        first_seen: Dict[str, datetime] = {}
        for note in segment:
            for token in tokens[note.note_id]:
                frequency[token] += 1
                first_seen.setdefault(token, note.created_at)

        candidates = sorted(frequency, key=lambda t: (-frequency[t], first_seen[t], t))
        token_sets: Dict[str, Set[str]] = {n.note_id: set(tokens[n.note_id]) for n in segment}

        result = []
        for topic in candidates[: self.top_k]:
            members: List[Tuple[datetime, str]] = [
                (n.created_at, n.note_id) for n in segment if topic in token_sets[n.note_id]
            ]
            if len(members) < self.min_cluster_size:
                continue
            result.append(
                LoopCluster(
                    topic=topic,
                    note_ids=[note_id for _, note_id in members],
                    strength=min(1.0, len(members) / total),
                    first_seen=members[0][0],
                    last_seen=members[-1][0],
                )
            )
        return result
