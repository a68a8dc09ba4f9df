"""Centralized error definitions for MetaWave.

Every failure the analysis pipeline can surface is a ``MetawaveError``
subclass carrying a stable ``code``, a ``recoverable`` flag and optional
debugging ``details``. User-facing wording lives in
:mod:`metawave.errors.user_messages`.

Usage:
    from metawave.errors import MetawaveError, handle_error

    try:
        result = await orchestrator.run_comprehensive_analysis()
    except MetawaveError as e:
        print(handle_error(e))
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from metawave.errors.user_messages import (
    format_error_for_user,
    get_recovery_suggestion,
    get_user_message,
)

if TYPE_CHECKING:
    from metawave.models.analysis import AnalysisResult, ScoringReport


# =============================================================================
# Base Error
# =============================================================================


class MetawaveError(Exception):
    """Base exception for all MetaWave errors.

    Attributes:
        code: Error code for categorization
        user_message: User-friendly message (optional override)
        recoverable: Whether the error is potentially recoverable
        details: Additional error details for debugging
    """

    code: str = "METAWAVE_ERROR"
    default_message: str = "An unexpected error occurred"
    recoverable: bool = True

    def __init__(
        self,
        message: str | None = None,
        *,
        user_message: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.message = message or self.default_message
        self._user_message = user_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        """Get user-friendly message."""
        if self._user_message:
            return self._user_message
        return get_user_message(self)

    @property
    def recovery_suggestion(self) -> str:
        """Get recovery suggestion."""
        return get_recovery_suggestion(self)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "recoverable": self.recoverable,
            "details": self.details,
        }


# =============================================================================
# Analysis Errors
# =============================================================================


class AnalysisError(MetawaveError):
    """Base error for analysis pipeline operations."""

    code = "ANALYSIS_ERROR"
    default_message = "Analysis failed"


class AnalyzerUnavailableError(AnalysisError):
    """A single note could not be scored.

    Raised by emotion analyzers for infrastructure failures. The orchestrator
    catches it per note, so the rest of the batch keeps going.
    """

    code = "ANALYZER_UNAVAILABLE"
    default_message = "Emotion analyzer unavailable"


class InvalidInputError(AnalysisError):
    """Analyzer was given empty text."""

    code = "INVALID_INPUT"
    default_message = "Input text is empty"


class NoteFetchError(AnalysisError):
    """The note store failed to return notes."""

    code = "NOTE_FETCH_ERROR"
    default_message = "Failed to fetch notes"


class NoteUpdateError(AnalysisError):
    """The note store failed to write updated notes."""

    code = "NOTE_UPDATE_ERROR"
    default_message = "Failed to write notes"


class StageError(AnalysisError):
    """A full-corpus analysis stage failed.

    Attributes:
        stage: Name of the failing stage (``clustering``, ``bias``, ...)
    """

    code = "STAGE_ERROR"
    default_message = "Analysis stage failed"

    def __init__(self, stage: str, message: str | None = None, **kwargs) -> None:
        self.stage = stage
        details = kwargs.pop("details", None) or {}
        details.setdefault("stage", stage)
        super().__init__(message or f"Stage '{stage}' failed", details=details, **kwargs)


class InsightPersistError(AnalysisError):
    """Insights could not be written to the sink.

    The analysis itself completed; ``result`` holds what was computed.
    """

    code = "INSIGHT_PERSIST_ERROR"
    default_message = "Failed to persist insights"

    def __init__(
        self,
        message: str | None = None,
        *,
        result: Optional["AnalysisResult"] = None,
        **kwargs,
    ) -> None:
        self.result = result
        super().__init__(message, **kwargs)


class AnalysisInProgressError(AnalysisError):
    """Another invocation is already running on this orchestrator."""

    code = "ANALYSIS_IN_PROGRESS"
    default_message = "Analysis already in progress"


class AnalysisCancelledError(AnalysisError):
    """A comprehensive pass was cancelled or hit its timeout.

    Attributes:
        report: Scoring report for the batches that did complete
        timed_out: True when the cancellation came from the deadline
    """

    code = "ANALYSIS_CANCELLED"
    default_message = "Analysis cancelled"

    def __init__(
        self,
        message: str | None = None,
        *,
        report: Optional["ScoringReport"] = None,
        timed_out: bool = False,
        **kwargs,
    ) -> None:
        self.report = report
        self.timed_out = timed_out
        super().__init__(message, **kwargs)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(MetawaveError):
    """Base error for configuration issues."""

    code = "CONFIGURATION_ERROR"
    default_message = "Configuration error"
    recoverable = False


class InvalidConfigError(ConfigurationError):
    """Configuration file failed validation."""

    code = "INVALID_CONFIG"
    default_message = "Invalid configuration"


# =============================================================================
# Error Handling Utilities
# =============================================================================


def handle_error(error: Exception) -> str:
    """Handle an error and return a user-friendly message.

    Args:
        error: The exception to handle

    Returns:
        User-friendly error message with recovery suggestion
    """
    return format_error_for_user(error)


def is_recoverable(error: Exception) -> bool:
    """Check if an error is potentially recoverable."""
    if isinstance(error, MetawaveError):
        return error.recoverable
    return False


__all__ = [
    "MetawaveError",
    "AnalysisError",
    "AnalyzerUnavailableError",
    "InvalidInputError",
    "NoteFetchError",
    "NoteUpdateError",
    "StageError",
    "InsightPersistError",
    "AnalysisInProgressError",
    "AnalysisCancelledError",
    "ConfigurationError",
    "InvalidConfigError",
    "handle_error",
    "is_recoverable",
]
