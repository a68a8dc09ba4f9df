"""Emotion scoring for note text.

The default analyzer is a deterministic weighted lexicon: identical text
always produces the identical score. It is a heuristic, not a trained model.

Valence is the weighted balance of positive and negative terms, with a
negator in the two preceding tokens flipping a term's polarity. Arousal is
the share of high-activation terms among all activation terms, nudged up by
exclamation marks. Text with no matching term at all scores neutral
(valence 0.0, arousal 0.5).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, runtime_checkable

from metawave.analysis.text import tokenize
from metawave.errors import AnalyzerUnavailableError, InvalidInputError
from metawave.models.notes import EmotionScore

logger = logging.getLogger(__name__)


POSITIVE_TERMS: Dict[str, float] = {
    "happy": 1.0, "joy": 1.0, "joyful": 1.0, "delighted": 1.0, "wonderful": 1.0,
    "fantastic": 1.0, "thrilled": 1.0, "love": 1.0, "loved": 1.0, "grateful": 0.9,
    "excited": 0.9, "amazing": 0.9, "great": 0.8, "glad": 0.8, "proud": 0.8,
    "cheerful": 0.8, "incredible": 0.8, "hopeful": 0.7, "pleased": 0.7,
    "enjoy": 0.7, "enjoyed": 0.7, "good": 0.6, "peaceful": 0.6, "satisfied": 0.6,
    "fun": 0.6, "relaxed": 0.5, "nice": 0.5, "calm": 0.4, "better": 0.4,
}

NEGATIVE_TERMS: Dict[str, float] = {
    "sad": 1.0, "depressed": 1.0, "angry": 1.0, "furious": 1.0, "terrible": 1.0,
    "awful": 1.0, "horrible": 1.0, "hate": 1.0, "miserable": 1.0,
    "disgusting": 0.9, "worried": 0.8, "anxious": 0.8, "afraid": 0.8,
    "scared": 0.8, "stressed": 0.8, "lonely": 0.8, "frustrated": 0.8,
    "upset": 0.8, "exhausted": 0.7, "overwhelmed": 0.7, "hurt": 0.7,
    "gloomy": 0.7, "melancholy": 0.7, "failed": 0.7, "bad": 0.6, "annoyed": 0.6,
    "irritated": 0.6, "worse": 0.6, "fail": 0.6, "tired": 0.4, "boring": 0.4,
}

HIGH_AROUSAL_TERMS = frozenset(
    {
        "excited", "thrilled", "amazing", "incredible", "fantastic", "wonderful",
        "angry", "furious", "terrible", "awful", "horrible", "disgusting",
        "urgent", "immediate", "critical", "important", "serious", "anxious",
        "scared", "stressed", "shocked", "panic", "overwhelmed",
    }
)

LOW_AROUSAL_TERMS = frozenset(
    {
        "calm", "peaceful", "relaxed", "quiet", "gentle", "soft", "boring",
        "bored", "dull", "tired", "sleepy", "slow", "lazy", "exhausted",
    }
)

NEGATORS = frozenset(
    {
        "not", "no", "never", "don't", "didn't", "doesn't", "isn't", "wasn't",
        "aren't", "can't", "cannot", "won't", "hardly",
    }
)

EMOTION_CATEGORIES: Dict[str, frozenset] = {
    "joy": frozenset({"happy", "joy", "pleased", "delighted", "cheerful", "glad", "excited"}),
    "sadness": frozenset({"sad", "depressed", "melancholy", "gloomy", "down", "lonely"}),
    "anger": frozenset({"angry", "mad", "furious", "irritated", "annoyed", "upset"}),
    "fear": frozenset({"afraid", "scared", "worried", "anxious", "nervous", "terrified"}),
    "surprise": frozenset({"surprised", "amazed", "shocked", "astonished", "stunned"}),
    "disgust": frozenset({"disgusted", "revolted", "sick", "nauseated", "repulsed"}),
}

EXCLAMATION_STEP = 0.05
EXCLAMATION_CAP = 0.2


@runtime_checkable
class EmotionAnalyzer(Protocol):
    """Anything that can score a note's text.

    Implementations raise ``AnalyzerUnavailableError`` for infrastructure
    failures; the orchestrator treats those as per-note failures.
    """

    async def analyze(self, text: str) -> EmotionScore:
        ...


@dataclass
class DetailedEmotionAnalysis:
    """Category-level breakdown of a text's emotion.

    Attributes:
        score: Basic valence/arousal score
        categories: Share of tokens matching each category lexicon
        intensity: Punctuation and capitals relative to length, in [0, 1]
        confidence: Length-based confidence, in [0, 1]
    """

    score: EmotionScore
    categories: Dict[str, float] = field(default_factory=dict)
    intensity: float = 0.0
    confidence: float = 0.0

    @property
    def primary_emotion(self) -> Optional[str]:
        """Highest-scoring category, None when nothing matched."""
        best = None
        best_score = 0.0
        for name, value in self.categories.items():
            if value > best_score:
                best, best_score = name, value
        return best


class LexicalEmotionAnalyzer:
    """Weighted-lexicon emotion analyzer.

    Example:
        >>> analyzer = LexicalEmotionAnalyzer()
        >>> score = await analyzer.analyze("Such a wonderful, calm morning")
        >>> score.valence > 0
        True
    """

    def __init__(
        self,
        positive_terms: Optional[Dict[str, float]] = None,
        negative_terms: Optional[Dict[str, float]] = None,
    ):
        self._positive = positive_terms if positive_terms is not None else POSITIVE_TERMS
        self._negative = negative_terms if negative_terms is not None else NEGATIVE_TERMS

    async def analyze(self, text: str) -> EmotionScore:
        if not text or not text.strip():
            raise InvalidInputError(details={"length": len(text or "")})
        try:
            return self.score_text(text)
        except (TypeError, ValueError) as e:
            logger.warning(f"Lexical scoring failed: {e}")
            raise AnalyzerUnavailableError(str(e)) from e

    def score_text(self, text: str) -> EmotionScore:
        """Synchronous scoring used by ``analyze``."""
        tokens = tokenize(text)

        positive = 0.0
        negative = 0.0
        high = 0
        low = 0
        for index, token in enumerate(tokens):
            weight_pos = self._positive.get(token, 0.0)
            weight_neg = self._negative.get(token, 0.0)
            if weight_pos or weight_neg:
                negated = any(t in NEGATORS for t in tokens[max(0, index - 2) : index])
                if negated:
                    weight_pos, weight_neg = weight_neg, weight_pos
                positive += weight_pos
                negative += weight_neg
            if token in HIGH_AROUSAL_TERMS:
                high += 1
            elif token in LOW_AROUSAL_TERMS:
                low += 1

        if positive == 0.0 and negative == 0.0 and high == 0 and low == 0:
            return EmotionScore.neutral()

        polarity_total = positive + negative
        valence = (positive - negative) / polarity_total if polarity_total else 0.0

        arousal = high / (high + low) if (high + low) else 0.5
        arousal += min(EXCLAMATION_CAP, text.count("!") * EXCLAMATION_STEP)

        return EmotionScore.clamped(valence, arousal)

    async def analyze_detailed(self, text: str) -> DetailedEmotionAnalysis:
        """Score plus per-category shares, intensity and confidence."""
        score = await self.analyze(text)
        tokens = tokenize(text)
        return DetailedEmotionAnalysis(
            score=score,
            categories=self._categories(tokens),
            intensity=self._intensity(text),
            confidence=self._confidence(text),
        )

    @staticmethod
    def _categories(tokens: List[str]) -> Dict[str, float]:
        if not tokens:
            return {name: 0.0 for name in EMOTION_CATEGORIES}
        return {
            name: sum(1 for t in tokens if t in lexicon) / len(tokens)
            for name, lexicon in EMOTION_CATEGORIES.items()
        }

    @staticmethod
    def _intensity(text: str) -> float:
        marks = text.count("!") + text.count("?")
        capitals = sum(1 for c in text if c.isupper())
        return min(1.0, (marks + capitals) / len(text) * 10.0)

    @staticmethod
    def _confidence(text: str) -> float:
        base = min(len(text) / 100.0, 1.0)
        has_punctuation = any(c in "!?." for c in text)
        return base if has_punctuation else base * 0.7
