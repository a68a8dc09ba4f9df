"""Analytical stages of the metacognitive pipeline.

- **EmotionAnalyzer**: valence/arousal scoring per note
- **LoopDetector**: recurring-topic clusters over the corpus
- **BiasDetector**: cognitive-bias prevalence scores
- **PatternAggregator**: hourly, weekly and daily activity buckets
- **PredictionEngine**: trend, recurrence and bias-tendency predictions

Each stage is a plain object injected into the orchestrator, so alternate
implementations can be swapped in by substitution.
"""

from metawave.analysis.bias import BIAS_LEXICONS, BiasDetector, LexicalBiasDetector
from metawave.analysis.emotion import (
    DetailedEmotionAnalysis,
    EmotionAnalyzer,
    LexicalEmotionAnalyzer,
)
from metawave.analysis.loops import KeywordLoopDetector, LoopDetector, topic_hash
from metawave.analysis.patterns import Granularity, PatternAggregator, weekday_key
from metawave.analysis.prediction import PredictionEngine, PredictionThresholds

__all__ = [
    "BIAS_LEXICONS",
    "BiasDetector",
    "DetailedEmotionAnalysis",
    "EmotionAnalyzer",
    "Granularity",
    "KeywordLoopDetector",
    "LexicalBiasDetector",
    "LexicalEmotionAnalyzer",
    "LoopDetector",
    "PatternAggregator",
    "PredictionEngine",
    "PredictionThresholds",
    "topic_hash",
    "weekday_key",
]
