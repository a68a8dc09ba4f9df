"""Analysis configuration management with validation.

All tunable thresholds of the pipeline live here as Pydantic models with
validated ranges. Configuration is stored as YAML; missing files fall back
to defaults, and a few ``METAWAVE_*`` environment variables override the
file.
"""

from __future__ import annotations

import logging
import os
from datetime import tzinfo
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dateutil.tz import gettz
from pydantic import BaseModel, Field, ValidationError, field_validator

from metawave.errors import InvalidConfigError

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".metawave"


class AnalysisSettings(BaseModel):
    """Batch execution settings.

    Attributes:
        batch_size: Notes per scoring batch (1-500)
        max_concurrent_operations: Analyzer calls in flight per batch (1-16)
        timeout_interval: Seconds before an invocation is cancelled
        adaptive_concurrency: Lower concurrency under resource pressure
    """

    batch_size: int = Field(default=10, ge=1, le=500, description="Notes per scoring batch")
    max_concurrent_operations: int = Field(
        default=3,
        ge=1,
        le=16,
        description="Maximum concurrent analyzer calls"
    )
    timeout_interval: float = Field(
        default=30.0,
        gt=0,
        le=3600,
        description="Invocation timeout in seconds"
    )
    adaptive_concurrency: bool = Field(
        default=True,
        description="Lower concurrency under CPU, memory or battery pressure"
    )


class LoopDetectionConfig(BaseModel):
    """Loop detector configuration.

    Attributes:
        top_k: Candidate topics per segment
        min_token_length: Shortest token eligible as a topic
        min_cluster_size: Minimum notes per cluster
        max_gap_days: Gap that splits notes into separate segments
    """

    top_k: int = Field(default=5, ge=1, le=50)
    min_token_length: int = Field(default=4, ge=1, le=20)
    min_cluster_size: int = Field(default=2, ge=1, le=100)
    max_gap_days: Optional[float] = Field(
        default=7.0,
        gt=0,
        description="Days between notes that start a new segment; null disables"
    )


class BiasConfig(BaseModel):
    negative_valence_threshold: float = Field(default=-0.2, ge=-1.0, le=1.0)


class PredictionConfig(BaseModel):
    """Prediction thresholds.

    Attributes:
        trend_window: Notes per trend window
        trend_min_notes: Notes required before any trend prediction
        trend_delta: Valence/arousal change that counts as a trend
        recurrence_window_days: Length of the "recent" window
        recurrence_ratio: Recent/prior ratio that counts as recurring
        recurrence_min_count: Minimum recent occurrences
        bias_ratio: Share of notes above which a bias is reported
        min_confidence: Predictions below this confidence are dropped
    """

    trend_window: int = Field(default=3, ge=1, le=50)
    trend_min_notes: int = Field(default=5, ge=1)
    trend_delta: float = Field(default=0.2, ge=0.0, le=2.0)
    recurrence_window_days: int = Field(default=7, ge=1, le=365)
    recurrence_ratio: float = Field(default=1.5, ge=0.0)
    recurrence_min_count: int = Field(default=3, ge=1)
    bias_ratio: float = Field(default=0.3, ge=0.0, le=1.0)
    min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)


class PatternConfig(BaseModel):
    """Pattern aggregation settings.

    Attributes:
        timezone: IANA zone name used for hour, weekday and day buckets
    """

    timezone: str = Field(default="UTC", description="Timezone for time buckets")

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: str) -> str:
        if not v or gettz(v) is None:
            raise ValueError(f"unknown timezone: {v}")
        return v

    def to_tzinfo(self) -> tzinfo:
        return gettz(self.timezone)


class InsightConfig(BaseModel):
    max_loop_insights: int = Field(default=3, ge=0, le=50)
    negative_valence_threshold: float = Field(default=-0.3, ge=-1.0, le=1.0)


class TelemetryConfig(BaseModel):
    """Telemetry configuration.

    Attributes:
        enabled: Record one telemetry line per run
        output_dir: Telemetry output directory
    """

    enabled: bool = Field(default=True, description="Enable telemetry collection")
    output_dir: Path = Field(
        default=DEFAULT_HOME / "telemetry",
        description="Telemetry output directory"
    )

    @field_validator("output_dir")
    @classmethod
    def expand_output_dir(cls, v: Path) -> Path:
        return v.expanduser()


class MetawaveConfig(BaseModel):
    """Root configuration.

    Attributes:
        version: Configuration schema version
        workspace_path: Directory holding state, insights and telemetry
        analysis: Batch execution settings
        loops: Loop detector configuration
        bias: Bias detector configuration
        prediction: Prediction thresholds
        patterns: Pattern aggregation settings
        insights: Insight generation thresholds
        telemetry: Telemetry configuration
    """

    version: int = Field(default=1, description="Configuration schema version")
    workspace_path: Path = Field(default=DEFAULT_HOME / "workspace")
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    loops: LoopDetectionConfig = Field(default_factory=LoopDetectionConfig)
    bias: BiasConfig = Field(default_factory=BiasConfig)
    prediction: PredictionConfig = Field(default_factory=PredictionConfig)
    patterns: PatternConfig = Field(default_factory=PatternConfig)
    insights: InsightConfig = Field(default_factory=InsightConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    class Config:
        """Pydantic configuration."""
        validate_assignment = True
        extra = "forbid"

    @field_validator("workspace_path")
    @classmethod
    def expand_workspace(cls, v: Path) -> Path:
        return v.expanduser()


def _set_env_override(
    mapping: Dict[str, Any],
    key: str,
    env_name: str,
    *,
    cast_int: bool = False,
    cast_float: bool = False,
) -> None:
    raw = os.getenv(env_name)
    if raw is None:
        return
    if cast_int:
        mapping[key] = int(raw)
    elif cast_float:
        mapping[key] = float(raw)
    else:
        mapping[key] = raw


def apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply ``METAWAVE_*`` environment variables on top of raw config data."""
    analysis = data.setdefault("analysis", {})
    _set_env_override(analysis, "batch_size", "METAWAVE_BATCH_SIZE", cast_int=True)
    _set_env_override(
        analysis, "max_concurrent_operations", "METAWAVE_MAX_CONCURRENT_OPERATIONS", cast_int=True
    )
    _set_env_override(analysis, "timeout_interval", "METAWAVE_TIMEOUT_INTERVAL", cast_float=True)
    _set_env_override(data, "workspace_path", "METAWAVE_WORKSPACE")
    return data


def _format_errors(exc: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    ]


class ConfigurationManager:
    """Loads, saves and validates the YAML configuration file.

    Attributes:
        config_path: Path to configuration file
    """

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to config file (default: ~/.metawave/config.yaml)
        """
        self.config_path = Path(config_path) if config_path else DEFAULT_HOME / "config.yaml"
        self._config: Optional[MetawaveConfig] = None

    def load(self) -> MetawaveConfig:
        """Load and validate configuration.

        Returns:
            Validated configuration, defaults when the file does not exist

        Raises:
            InvalidConfigError: If configuration is invalid
        """
        data: Dict[str, Any] = {}
        if self.config_path.exists():
            with open(self.config_path, encoding="utf-8") as f:
                try:
                    data = yaml.safe_load(f) or {}
                except yaml.YAMLError as exc:
                    raise InvalidConfigError(
                        f"Invalid YAML in {self.config_path}: {exc}"
                    ) from exc
            if not isinstance(data, dict):
                raise InvalidConfigError(f"Configuration root must be a mapping: {self.config_path}")

        try:
            data = apply_env_overrides(data)
            self._config = MetawaveConfig(**data)
        except ValueError as exc:
            errors = _format_errors(exc) if isinstance(exc, ValidationError) else [str(exc)]
            raise InvalidConfigError(
                f"Invalid configuration: {'; '.join(errors)}",
                details={"errors": errors},
            ) from exc

        logger.debug(
            "Loaded configuration",
            extra={
                "config_path": str(self.config_path),
                "using_defaults": not self.config_path.exists(),
            },
        )
        return self._config

    def save(self, config: MetawaveConfig) -> None:
        """Save configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        data = config.model_dump(mode="json")
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

    def validate(self, config_path: Optional[Path] = None) -> List[str]:
        """Validate a configuration file without loading it.

        Args:
            config_path: Optional path to config file to validate

        Returns:
            List of validation errors (empty if valid)
        """
        path = Path(config_path) if config_path else self.config_path
        if not path.exists():
            return [f"Configuration file not found: {path}"]

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            MetawaveConfig(**data)
        except ValidationError as exc:
            return _format_errors(exc)
        except (OSError, yaml.YAMLError, TypeError) as exc:
            return [f"Failed to load configuration: {exc}"]
        return []


__all__ = [
    "AnalysisSettings",
    "LoopDetectionConfig",
    "BiasConfig",
    "PredictionConfig",
    "InsightConfig",
    "TelemetryConfig",
    "MetawaveConfig",
    "ConfigurationManager",
    "apply_env_overrides",
]
