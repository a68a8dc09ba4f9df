"""Tests for configuration loading, saving and validation."""

from pathlib import Path

import pytest
import yaml

from metawave.analysis.patterns import Granularity
from metawave.errors import InvalidConfigError
from metawave.orchestrator.config import (
    AnalysisSettings,
    ConfigurationManager,
    MetawaveConfig,
    apply_env_overrides,
)
from metawave.orchestrator.pipeline import AnalysisOrchestrator

ENV_VARS = (
    "METAWAVE_BATCH_SIZE",
    "METAWAVE_MAX_CONCURRENT_OPERATIONS",
    "METAWAVE_TIMEOUT_INTERVAL",
    "METAWAVE_WORKSPACE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def write_yaml(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    def test_analysis_defaults(self):
        settings = AnalysisSettings()
        assert settings.batch_size == 10
        assert settings.max_concurrent_operations == 3
        assert settings.timeout_interval == 30.0
        assert settings.adaptive_concurrency is True

    def test_threshold_defaults(self):
        config = MetawaveConfig()
        assert config.loops.min_cluster_size == 2
        assert config.loops.max_gap_days == 7.0
        assert config.prediction.min_confidence == 0.3
        assert config.insights.max_loop_insights == 3
        assert config.telemetry.enabled is True

    @pytest.mark.parametrize(
        "field,value",
        [("batch_size", 0), ("max_concurrent_operations", 17), ("timeout_interval", 0)],
    )
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(ValueError):
            AnalysisSettings(**{field: value})

    def test_pattern_timezone_default(self):
        assert MetawaveConfig().patterns.timezone == "UTC"

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValueError):
            MetawaveConfig(patterns={"timezone": "Mars/Olympus_Mons"})

    def test_unknown_section_rejected(self):
        with pytest.raises(ValueError):
            MetawaveConfig(scheduler={"enabled": True})

    def test_home_is_expanded(self):
        config = MetawaveConfig(workspace_path="~/journal")
        assert "~" not in str(config.workspace_path)


class TestConfigurationManager:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = ConfigurationManager(tmp_path / "absent.yaml").load()
        assert config == MetawaveConfig()

    def test_save_then_load(self, tmp_path):
        manager = ConfigurationManager(tmp_path / "nested" / "config.yaml")
        config = MetawaveConfig()
        config.analysis.batch_size = 25
        config.telemetry.enabled = False
        config.workspace_path = tmp_path / "ws"

        manager.save(config)
        loaded = manager.load()

        assert loaded.analysis.batch_size == 25
        assert loaded.telemetry.enabled is False
        assert loaded.workspace_path == tmp_path / "ws"

    def test_partial_file(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", {"loops": {"top_k": 8}})
        config = ConfigurationManager(path).load()
        assert config.loops.top_k == 8
        assert config.loops.min_cluster_size == 2

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert ConfigurationManager(path).load() == MetawaveConfig()

    def test_invalid_value_lists_errors(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", {"analysis": {"batch_size": 0}})

        with pytest.raises(InvalidConfigError) as exc_info:
            ConfigurationManager(path).load()

        errors = exc_info.value.details["errors"]
        assert len(errors) == 1
        assert errors[0].startswith("analysis.batch_size")
        assert not exc_info.value.recoverable

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("analysis: [unclosed")
        with pytest.raises(InvalidConfigError, match="Invalid YAML"):
            ConfigurationManager(path).load()

    def test_non_mapping_root(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", [1, 2])
        with pytest.raises(InvalidConfigError, match="mapping"):
            ConfigurationManager(path).load()


class TestEnvOverrides:
    def test_overrides_applied(self, tmp_path, monkeypatch):
        path = write_yaml(tmp_path / "config.yaml", {"analysis": {"batch_size": 5}})
        monkeypatch.setenv("METAWAVE_BATCH_SIZE", "40")
        monkeypatch.setenv("METAWAVE_TIMEOUT_INTERVAL", "2.5")
        monkeypatch.setenv("METAWAVE_WORKSPACE", str(tmp_path / "env-ws"))

        config = ConfigurationManager(path).load()

        assert config.analysis.batch_size == 40
        assert config.analysis.timeout_interval == 2.5
        assert config.workspace_path == tmp_path / "env-ws"

    def test_bad_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("METAWAVE_MAX_CONCURRENT_OPERATIONS", "many")
        with pytest.raises(InvalidConfigError):
            ConfigurationManager(tmp_path / "config.yaml").load()

    def test_untouched_without_env(self):
        assert apply_env_overrides({}) == {"analysis": {}}


class TestValidate:
    def test_valid(self, tmp_path):
        manager = ConfigurationManager(tmp_path / "config.yaml")
        manager.save(MetawaveConfig())
        assert manager.validate() == []

    def test_missing(self, tmp_path):
        errors = ConfigurationManager(tmp_path / "config.yaml").validate()
        assert errors == [f"Configuration file not found: {tmp_path / 'config.yaml'}"]

    def test_reports_every_error(self, tmp_path):
        path = write_yaml(
            tmp_path / "other.yaml",
            {"analysis": {"batch_size": -1}, "prediction": {"min_confidence": 2}},
        )
        errors = ConfigurationManager(tmp_path / "config.yaml").validate(path)
        assert len(errors) == 2
        assert any(e.startswith("prediction.min_confidence") for e in errors)

    def test_non_mapping(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", ["a"])
        errors = ConfigurationManager(path).validate()
        assert errors[0].startswith("Failed to load configuration")


class TestPatternTimezone:
    @pytest.mark.asyncio
    async def test_orchestrator_buckets_in_configured_zone(
        self, note_store, insight_sink, note_factory, clock, now
    ):
        config = MetawaveConfig(
            patterns={"timezone": "America/New_York"}, telemetry={"enabled": False}
        )
        note_store.add(note_factory("a", "late note", created_at=now.replace(hour=2)))
        orchestrator = AnalysisOrchestrator.from_config(
            config, note_store, insight_sink, clock=clock
        )

        buckets = await orchestrator.aggregate_patterns(Granularity.HOURLY)

        assert buckets[22].count == 1

    def test_invalid_timezone_in_file(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", {"patterns": {"timezone": "Nowhere/City"}})
        with pytest.raises(InvalidConfigError) as exc_info:
            ConfigurationManager(path).load()
        assert any("patterns.timezone" in e for e in exc_info.value.details["errors"])
