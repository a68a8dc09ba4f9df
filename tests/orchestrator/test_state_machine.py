"""Tests for the analysis phase state machine."""

import pytest

from metawave.orchestrator.exceptions import InvalidPhaseTransitionError
from metawave.orchestrator.state_machine import (
    VALID_TRANSITIONS,
    AnalysisPhase,
    PhaseTracker,
    PhaseTransition,
)


class TestTransitionTable:
    def test_every_phase_has_an_entry(self):
        assert set(VALID_TRANSITIONS) == set(AnalysisPhase)

    @pytest.mark.parametrize("phase", list(AnalysisPhase))
    def test_any_phase_may_return_to_idle(self, phase, now):
        transition = PhaseTransition(phase, AnalysisPhase.IDLE, now)
        assert transition.is_valid()

    def test_cannot_skip_phases(self, now):
        assert not PhaseTransition(AnalysisPhase.IDLE, AnalysisPhase.CLUSTERING, now).is_valid()
        assert not PhaseTransition(
            AnalysisPhase.CLUSTERING, AnalysisPhase.PREDICTING, now
        ).is_valid()


class TestPhaseTracker:
    def test_full_run(self):
        tracker = PhaseTracker()
        for phase in (
            AnalysisPhase.FETCHING,
            AnalysisPhase.SCORING_BATCH,
            AnalysisPhase.SCORING_BATCH,
            AnalysisPhase.CLUSTERING,
            AnalysisPhase.AGGREGATING,
            AnalysisPhase.PREDICTING,
            AnalysisPhase.PERSISTING,
        ):
            tracker.transition(phase)
        tracker.reset(reason="done")

        assert tracker.phase == AnalysisPhase.IDLE
        assert len(tracker.history) == 8
        assert tracker.phases_visited[0] == AnalysisPhase.FETCHING
        durations = tracker.phase_durations()
        assert set(durations) == {
            "fetching",
            "scoring_batch",
            "clustering",
            "aggregating",
            "predicting",
            "persisting",
        }
        assert all(v >= 0 for v in durations.values())

    def test_invalid_transition_raises(self):
        tracker = PhaseTracker()
        with pytest.raises(InvalidPhaseTransitionError):
            tracker.transition(AnalysisPhase.PERSISTING)
        assert tracker.phase == AnalysisPhase.IDLE

    def test_history_is_per_invocation(self):
        tracker = PhaseTracker()
        tracker.transition(AnalysisPhase.FETCHING)
        tracker.reset(reason="cancelled")
        tracker.transition(AnalysisPhase.FETCHING, reason="retry", attempt=2)

        assert len(tracker.history) == 1
        assert tracker.history[0].reason == "retry"
        assert tracker.history[0].metadata == {"attempt": 2}

    def test_reset_when_idle_is_noop(self):
        tracker = PhaseTracker()
        tracker.reset(reason="nothing")
        assert tracker.history == []
