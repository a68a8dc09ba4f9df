"""Cognitive-bias signal evaluation.

Each bias category has an independent per-note rule, mostly lexical. A
category's score is the share of notes with text that match its rule, so
scores are in [0, 1] and all five categories are always reported.

Loss aversion also matches on affect: a scored note whose valence is below
``negative_valence_threshold`` counts even without loss vocabulary.
"""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Protocol, Sequence, Tuple

from metawave.analysis.text import contains_any, normalized
from metawave.models.analysis import BiasSignal, empty_bias_scores
from metawave.models.notes import Note

logger = logging.getLogger(__name__)


BIAS_LEXICONS: Dict[BiasSignal, Tuple[str, ...]] = {
    BiasSignal.CONFIRMATION: (
        "always", "never", "everyone", "nobody", "no one", "completely",
        "absolutely", "nothing", "everything", "every time", "all the time",
        "totally",
    ),
    BiasSignal.AVAILABILITY: (
        "recently", "lately", "just happened", "shocking", "terrible",
        "incredible", "the other day", "all over the news", "i keep hearing",
    ),
    BiasSignal.ANCHORING: (
        "compared to", "compared with", "versus", "vs", "at first",
        "initially", "first impression", "originally", "used to be",
    ),
    BiasSignal.LOSS_AVERSION: (
        "lose", "losing", "loss", "lost", "waste", "wasted", "miss out",
        "afraid to lose", "can't afford", "risk", "avoid", "fail", "failure",
    ),
    BiasSignal.SUNK_COST: (
        "invested", "already invested", "so much time", "so much effort",
        "so much money", "keep going", "stick with", "can't give up",
        "too far", "persist", "already spent", "given that",
    ),
}


class BiasDetector(Protocol):
    async def evaluate(self, notes: Sequence[Note]) -> Dict[BiasSignal, float]:
        ...

    def evaluate_note(self, note: Note) -> Dict[BiasSignal, float]:
        ...


class LexicalBiasDetector:
    """Lexicon-based bias detector.

    Args:
        negative_valence_threshold: Valence below which a scored note counts
            toward loss aversion
        lexicons: Override for the per-category phrase lists
    """

    def __init__(
        self,
        negative_valence_threshold: float = -0.2,
        lexicons: Optional[Mapping[BiasSignal, Sequence[str]]] = None,
    ):
        self.negative_valence_threshold = negative_valence_threshold
        self.lexicons = dict(lexicons) if lexicons is not None else dict(BIAS_LEXICONS)

    async def evaluate(self, notes: Sequence[Note]) -> Dict[BiasSignal, float]:
        counts, total = self.matching_counts(notes)
        if total == 0:
            return empty_bias_scores()
        return {signal: counts[signal] / total for signal in BiasSignal}

    def matching_counts(self, notes: Sequence[Note]) -> Tuple[Dict[BiasSignal, int], int]:
        """Per-category matching note counts and the number of notes considered."""
        counts = {signal: 0 for signal in BiasSignal}
        total = 0
        for note in notes:
            if not note.has_text:
                continue
            total += 1
            for signal, matched in self.evaluate_note(note).items():
                if matched:
                    counts[signal] += 1
        return counts, total

    def evaluate_note(self, note: Note) -> Dict[BiasSignal, float]:
        """1.0 for each category the note matches, 0.0 otherwise."""
        if not note.has_text:
            return empty_bias_scores()
        text = normalized(note.content_text)
        result = {}
        for signal in BiasSignal:
            matched = contains_any(text, self.lexicons.get(signal, ()))
            if (
                signal == BiasSignal.LOSS_AVERSION
                and not matched
                and note.sentiment is not None
                and note.sentiment < self.negative_valence_threshold
            ):
                matched = True
            result[signal] = 1.0 if matched else 0.0
        return result
