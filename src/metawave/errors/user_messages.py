"""User-facing messages for MetaWave errors.

Maps error codes to short explanations and recovery suggestions so the CLI
never has to print a raw traceback. Messages never include note content.
"""

from __future__ import annotations

from typing import Any


# =============================================================================
# Error Message Catalog
# =============================================================================

ERROR_MESSAGES: dict[str, str] = {
    # Analysis errors
    "ANALYSIS_ERROR": "The analysis could not be completed. Please try again.",
    "ANALYZER_UNAVAILABLE": "A note could not be scored. It will be retried on the next run.",
    "INVALID_INPUT": "The note has no text to analyze.",
    "NOTE_FETCH_ERROR": "Notes could not be loaded from the store.",
    "NOTE_UPDATE_ERROR": "Scores could not be saved to the store.",
    "STAGE_ERROR": "An analysis stage failed. Your notes are unchanged.",
    "INSIGHT_PERSIST_ERROR": "Analysis finished but the insights could not be saved.",
    "ANALYSIS_IN_PROGRESS": "An analysis is already running.",
    "ANALYSIS_CANCELLED": "The analysis was stopped before it finished.",
    # Configuration errors
    "CONFIGURATION_ERROR": "There's a configuration issue.",
    "INVALID_CONFIG": "The configuration is invalid. Check settings.",
    # Generic
    "METAWAVE_ERROR": "An unexpected error occurred. Please try again.",
    "UNKNOWN_ERROR": "Something went wrong. Please try again.",
}


# =============================================================================
# Recovery Suggestions
# =============================================================================

RECOVERY_SUGGESTIONS: dict[str, str] = {
    "ANALYSIS_ERROR": "Run the analysis again: metawave analysis run",
    "ANALYZER_UNAVAILABLE": "No action needed. Unscored notes are picked up automatically.",
    "INVALID_INPUT": "Add text to the note or skip it.",
    "NOTE_FETCH_ERROR": "Check that the notes file exists and is valid JSON.",
    "NOTE_UPDATE_ERROR": "Check disk space and permissions of the notes file.",
    "STAGE_ERROR": "Run the analysis again. Scores already computed are kept.",
    "INSIGHT_PERSIST_ERROR": "Check disk space and permissions of the workspace directory.",
    "ANALYSIS_IN_PROGRESS": "Wait for the current run to finish, then retry.",
    "ANALYSIS_CANCELLED": "Run again to continue from where it stopped.",
    "CONFIGURATION_ERROR": "Check config: metawave config show",
    "INVALID_CONFIG": "Validate the file: metawave config validate",
    "METAWAVE_ERROR": "If this persists, please report the issue.",
    "UNKNOWN_ERROR": "Try again. Report if the issue continues.",
}


def _error_code(error: Any) -> str:
    if hasattr(error, "code"):
        return error.code
    if isinstance(error, str):
        return error
    return type(error).__name__.upper()


def get_user_message(error: Any) -> str:
    """Get user-friendly message for an error.

    Args:
        error: The error (can be Exception or error code string)

    Returns:
        User-friendly error message
    """
    return ERROR_MESSAGES.get(_error_code(error), ERROR_MESSAGES["UNKNOWN_ERROR"])


def get_recovery_suggestion(error: Any) -> str:
    """Get recovery suggestion for an error."""
    return RECOVERY_SUGGESTIONS.get(
        _error_code(error), RECOVERY_SUGGESTIONS["UNKNOWN_ERROR"]
    )


def format_error_for_user(error: Any) -> str:
    """Format a complete user-friendly error message.

    Args:
        error: The error to format

    Returns:
        Complete error message with recovery suggestion
    """
    message = get_user_message(error)
    suggestion = get_recovery_suggestion(error)

    return f"{message}\n\nSuggestion: {suggestion}"


def format_error_for_cli(error: Any) -> str:
    """Format error for CLI output, including non-sensitive details."""
    code = getattr(error, "code", "ERROR")
    lines = [
        f"Error [{code}]: {get_user_message(error)}",
        "",
        f"Suggestion: {get_recovery_suggestion(error)}",
    ]

    details = getattr(error, "details", None)
    if details:
        lines.append("")
        lines.append("Details:")
        for key, value in details.items():
            # Note text never leaves the store
            if key not in ("content", "content_text", "text"):
                lines.append(f"  {key}: {value}")

    return "\n".join(lines)


__all__ = [
    "ERROR_MESSAGES",
    "RECOVERY_SUGGESTIONS",
    "get_user_message",
    "get_recovery_suggestion",
    "format_error_for_user",
    "format_error_for_cli",
]
