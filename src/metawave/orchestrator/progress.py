"""Progress reporting for analysis runs.

A run is divided into weighted stages. Progress is the sum of completed
stage weights plus the completed fraction of the current stage, so callers
can render a single bar without knowing stage boundaries. Within a run the
value never decreases.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, bool], None]

COMPREHENSIVE_WEIGHTS: Dict[str, float] = {
    "scoring": 0.25,
    "clustering": 0.25,
    "bias": 0.25,
    "aggregation": 0.15,
    "prediction": 0.10,
}

SCORING_ONLY_WEIGHTS: Dict[str, float] = {"scoring": 1.0}


class ProgressReporter:
    """Observable progress value in [0, 1] plus an ``is_analyzing`` flag.

    Subscribers are called with ``(value, is_analyzing)`` on every change.
    """

    def __init__(self) -> None:
        self._value = 0.0
        self._is_analyzing = False
        self._weights: Dict[str, float] = dict(COMPREHENSIVE_WEIGHTS)
        self._subscribers: List[ProgressCallback] = []

    @property
    def value(self) -> float:
        return self._value

    @property
    def is_analyzing(self) -> bool:
        return self._is_analyzing

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def start(self, weights: Optional[Mapping[str, float]] = None) -> None:
        self._weights = dict(weights or COMPREHENSIVE_WEIGHTS)
        self._value = 0.0
        self._is_analyzing = True
        self._notify()

    def report(self, stage: str, fraction: float = 1.0) -> None:
        """Mark ``fraction`` of ``stage`` as done."""
        if stage not in self._weights:
            raise KeyError(f"Unknown progress stage: {stage}")
        before = 0.0
        for name, weight in self._weights.items():
            if name == stage:
                break
            before += weight
        fraction = max(0.0, min(1.0, fraction))
        proposed = min(1.0, before + self._weights[stage] * fraction)
        if proposed > self._value:
            self._value = proposed
            self._notify()

    def finish(self) -> None:
        self._is_analyzing = False
        self._notify()

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self._value, self._is_analyzing)
            except Exception:  # noqa: BLE001
                logger.exception("Progress subscriber failed")
