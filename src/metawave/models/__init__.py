"""Data models for notes and the records derived from them.

- **Notes**: journal entries and their emotion scores
- **Analysis records**: loop clusters, bias categories, predictions,
  insights, statistics, pattern buckets and the watermark state
"""

from .analysis import (
    AnalysisResult,
    AnalysisState,
    AnalysisStatistics,
    BiasSignal,
    Insight,
    InsightKind,
    LoopCluster,
    PatternBucket,
    PatternSummary,
    Prediction,
    PredictionImpact,
    PredictionType,
    ScoringReport,
    empty_bias_scores,
)
from .notes import EmotionScore, Modality, Note
from .timestamps import parse_timestamp, utc_now

__all__ = [
    "AnalysisResult",
    "AnalysisState",
    "AnalysisStatistics",
    "BiasSignal",
    "EmotionScore",
    "Insight",
    "InsightKind",
    "LoopCluster",
    "Modality",
    "Note",
    "PatternBucket",
    "PatternSummary",
    "Prediction",
    "PredictionImpact",
    "PredictionType",
    "ScoringReport",
    "empty_bias_scores",
    "parse_timestamp",
    "utc_now",
]
