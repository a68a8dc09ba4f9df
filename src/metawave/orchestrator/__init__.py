"""Analysis orchestration.

The orchestrator sequences the analytical stages over a note store, keeps
the incremental watermarks, bounds concurrency and reports progress.
"""

from metawave.orchestrator.config import (
    AnalysisSettings,
    ConfigurationManager,
    InsightConfig,
    MetawaveConfig,
)
from metawave.orchestrator.exceptions import InvalidPhaseTransitionError
from metawave.orchestrator.metrics import TelemetryRecorder
from metawave.orchestrator.pipeline import AnalysisOrchestrator
from metawave.orchestrator.progress import ProgressReporter
from metawave.orchestrator.resource_monitor import (
    ExecutionLimits,
    PressureLevel,
    ResourceMonitor,
    ResourceSnapshot,
)
from metawave.orchestrator.state import (
    AnalysisStateStore,
    InMemoryAnalysisStateStore,
    JsonAnalysisStateStore,
)
from metawave.orchestrator.state_machine import AnalysisPhase, PhaseTracker

__all__ = [
    "AnalysisOrchestrator",
    "AnalysisPhase",
    "AnalysisSettings",
    "AnalysisStateStore",
    "ConfigurationManager",
    "ExecutionLimits",
    "InMemoryAnalysisStateStore",
    "InsightConfig",
    "InvalidPhaseTransitionError",
    "JsonAnalysisStateStore",
    "MetawaveConfig",
    "PhaseTracker",
    "PressureLevel",
    "ProgressReporter",
    "ResourceMonitor",
    "ResourceSnapshot",
    "TelemetryRecorder",
]
