"""Phase state machine for one analysis invocation.

An invocation moves through

    IDLE -> FETCHING -> SCORING_BATCH (0..N) -> CLUSTERING -> AGGREGATING
         -> PREDICTING -> PERSISTING -> IDLE

Incremental scoring stops after the last batch and returns to IDLE. Any
phase may return to IDLE when the invocation fails or is cancelled. Every
transition is validated against ``VALID_TRANSITIONS`` and kept in a
history for diagnostics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from metawave.models.timestamps import utc_now

from .exceptions import InvalidPhaseTransitionError

logger = logging.getLogger(__name__)


class AnalysisPhase(str, Enum):
    """Pipeline phases."""

    IDLE = "idle"
    FETCHING = "fetching"
    SCORING_BATCH = "scoring_batch"
    CLUSTERING = "clustering"  # loop detection and bias evaluation
    AGGREGATING = "aggregating"
    PREDICTING = "predicting"
    PERSISTING = "persisting"


VALID_TRANSITIONS: Dict[AnalysisPhase, Set[AnalysisPhase]] = {
    AnalysisPhase.IDLE: {AnalysisPhase.FETCHING},
    AnalysisPhase.FETCHING: {
        AnalysisPhase.SCORING_BATCH,
        AnalysisPhase.CLUSTERING,  # nothing to score
    },
    AnalysisPhase.SCORING_BATCH: {
        AnalysisPhase.SCORING_BATCH,  # next batch
        AnalysisPhase.CLUSTERING,
    },
    AnalysisPhase.CLUSTERING: {AnalysisPhase.AGGREGATING},
    AnalysisPhase.AGGREGATING: {AnalysisPhase.PREDICTING},
    AnalysisPhase.PREDICTING: {AnalysisPhase.PERSISTING},
    AnalysisPhase.PERSISTING: set(),
}


@dataclass
class PhaseTransition:
    """A recorded phase change."""

    from_phase: AnalysisPhase
    to_phase: AnalysisPhase
    timestamp: datetime
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_valid(self) -> bool:
        # Every phase may abort back to IDLE
        if self.to_phase == AnalysisPhase.IDLE:
            return True
        return self.to_phase in VALID_TRANSITIONS.get(self.from_phase, set())


class PhaseTracker:
    """Tracks and validates the current phase of an orchestrator.

    Attributes:
        phase: Current phase
        history: Transitions of the current invocation
    """

    def __init__(self) -> None:
        self.phase = AnalysisPhase.IDLE
        self.history: List[PhaseTransition] = []

    def transition(
        self,
        to_phase: AnalysisPhase,
        *,
        reason: Optional[str] = None,
        **metadata: Any,
    ) -> PhaseTransition:
        """Move to ``to_phase``.

        Raises:
            InvalidPhaseTransitionError: If the table forbids the change
        """
        transition = PhaseTransition(
            from_phase=self.phase,
            to_phase=to_phase,
            timestamp=utc_now(),
            reason=reason,
            metadata=metadata,
        )
        if not transition.is_valid():
            logger.error(
                "Invalid phase transition",
                extra={"from_phase": self.phase.value, "to_phase": to_phase.value},
            )
            raise InvalidPhaseTransitionError(
                f"Invalid transition: {self.phase.value} -> {to_phase.value}"
            )

        if self.phase == AnalysisPhase.IDLE:
            self.history = []
        self.history.append(transition)
        self.phase = to_phase
        logger.debug(
            f"Phase {transition.from_phase.value} -> {to_phase.value}",
            extra={"reason": reason, **metadata},
        )
        return transition

    def reset(self, reason: str) -> None:
        """Return to IDLE from wherever the invocation stopped."""
        if self.phase != AnalysisPhase.IDLE:
            self.transition(AnalysisPhase.IDLE, reason=reason)

    @property
    def phases_visited(self) -> List[AnalysisPhase]:
        return [t.to_phase for t in self.history]

    def phase_durations(self) -> Dict[str, float]:
        """Seconds spent in each phase of the last invocation."""
        durations: Dict[str, float] = {}
        for current, following in zip(self.history, self.history[1:]):
            name = current.to_phase.value
            elapsed = (following.timestamp - current.timestamp).total_seconds()
            durations[name] = durations.get(name, 0.0) + elapsed
        return durations
