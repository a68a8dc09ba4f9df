"""Orchestrator-internal exceptions."""

from __future__ import annotations


class InvalidPhaseTransitionError(ValueError):
    """Raised when the pipeline attempts a phase change the table forbids.

    This indicates a programming error in the orchestrator, not a data
    problem. Example: moving from PERSISTING back to SCORING_BATCH.
    """

    pass
