"""Tests for the analysis orchestrator on the happy path."""

import asyncio
import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from metawave.analysis.emotion import LexicalEmotionAnalyzer
from metawave.analysis.loops import topic_hash
from metawave.analysis.patterns import Granularity
from metawave.models.analysis import BiasSignal, InsightKind, PredictionType
from metawave.models.notes import Modality
from metawave.orchestrator.config import AnalysisSettings, MetawaveConfig
from metawave.orchestrator.metrics import TelemetryRecorder
from metawave.orchestrator.pipeline import AnalysisOrchestrator
from metawave.orchestrator.resource_monitor import (
    ExecutionLimits,
    PressureLevel,
    ResourceMonitor,
)
from metawave.orchestrator.state_machine import AnalysisPhase
from metawave.storage.memory import InMemoryNoteStore


class TickingClock:
    """Returns a later instant on every call."""

    def __init__(self, start):
        self.current = start

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


class InstrumentedAnalyzer:
    """Lexical analyzer that records how many calls overlap."""

    def __init__(self):
        self._inner = LexicalEmotionAnalyzer()
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls = 0

    async def analyze(self, text):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.001)
            return await self._inner.analyze(text)
        finally:
            self.in_flight -= 1


@pytest.fixture
def make_orchestrator(note_store, insight_sink, state_store, clock):
    def factory(notes=(), **kwargs):
        for note in notes:
            note_store.add(note)
        kwargs.setdefault("state_store", state_store)
        kwargs.setdefault("clock", clock)
        return AnalysisOrchestrator(note_store, insight_sink, **kwargs)

    return factory


class TestIncrementalScoring:
    """Incremental emotion scoring."""

    @pytest.mark.asyncio
    async def test_scores_every_text_note(self, make_orchestrator, note_store, note_factory, now):
        notes = [note_factory(f"n{i}", f"A happy day number {i}", days_ago=i) for i in range(12)]
        notes.append(note_factory("img", None, modality=Modality.IMAGE))
        orchestrator = make_orchestrator(notes)

        report = await orchestrator.run_incremental_scoring()

        assert report.total == 12
        assert report.scored == 12
        assert report.failed == 0
        assert report.batches_total == 2
        assert report.coverage == 1.0
        assert sum(1 for n in note_store.all() if n.is_scored) == 12
        assert not note_store.get("img").is_scored
        assert orchestrator.state.last_emotion_analysis_date == now

    @pytest.mark.asyncio
    async def test_scored_notes_are_stamped(self, make_orchestrator, note_store, note_factory, now):
        orchestrator = make_orchestrator([note_factory("a", "Such a wonderful evening", days_ago=3)])
        await orchestrator.run_incremental_scoring()

        note = note_store.get("a")
        assert note.sentiment == pytest.approx(1.0)
        assert note.updated_at == now

    @pytest.mark.asyncio
    async def test_second_run_has_nothing_to_do(self, make_orchestrator, note_store, note_factory):
        orchestrator = make_orchestrator([note_factory(f"n{i}", "calm day", days_ago=i) for i in range(3)])
        await orchestrator.run_incremental_scoring()
        updates = note_store.update_count

        report = await orchestrator.run_incremental_scoring()

        assert report.total == 0
        assert report.batches_total == 0
        assert note_store.update_count == updates

    @pytest.mark.asyncio
    async def test_edited_notes_are_rescored(self, note_store, insight_sink, state_store, note_factory, now):
        clock = TickingClock(now)
        orchestrator = AnalysisOrchestrator(
            note_store, insight_sink, state_store=state_store, clock=clock
        )
        note_store.add(note_factory("a", "happy", days_ago=2))
        note_store.add(note_factory("b", "calm", days_ago=1))
        await orchestrator.run_incremental_scoring()

        edited = note_store.get("a")
        edited.content_text = "Actually a miserable day"
        edited.updated_at = clock()
        note_store.update(edited)

        report = await orchestrator.run_incremental_scoring()

        assert report.total == 1
        assert note_store.get("a").sentiment == pytest.approx(-1.0)

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, make_orchestrator, note_factory):
        analyzer = InstrumentedAnalyzer()
        orchestrator = make_orchestrator(
            [note_factory(f"n{i}", "quiet day", days_ago=i) for i in range(20)],
            emotion_analyzer=analyzer,
            settings=AnalysisSettings(batch_size=10, max_concurrent_operations=3),
        )

        report = await orchestrator.run_incremental_scoring()

        assert report.scored == 20
        assert analyzer.calls == 20
        assert analyzer.max_in_flight == 3

    @pytest.mark.asyncio
    async def test_resource_pressure_lowers_limits(self, make_orchestrator, note_factory):
        analyzer = InstrumentedAnalyzer()
        monitor = MagicMock(spec=ResourceMonitor)
        monitor.limits_for.return_value = ExecutionLimits(
            batch_size=2, max_concurrent_operations=1, pressure=PressureLevel.CRITICAL
        )
        orchestrator = make_orchestrator(
            [note_factory(f"n{i}", "quiet day", days_ago=i) for i in range(6)],
            emotion_analyzer=analyzer,
            resource_monitor=monitor,
        )

        report = await orchestrator.run_incremental_scoring()

        monitor.limits_for.assert_called_once_with(10, 3)
        assert report.batches_total == 3
        assert analyzer.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_adaptive_concurrency_can_be_disabled(self, make_orchestrator, note_factory):
        monitor = MagicMock(spec=ResourceMonitor)
        orchestrator = make_orchestrator(
            [note_factory("a", "quiet day")],
            resource_monitor=monitor,
            settings=AnalysisSettings(adaptive_concurrency=False),
        )
        await orchestrator.run_incremental_scoring()
        monitor.limits_for.assert_not_called()

    @pytest.mark.asyncio
    async def test_scoring_progress_spans_full_range(self, make_orchestrator, note_factory):
        orchestrator = make_orchestrator(
            [note_factory(f"n{i}", "quiet day", days_ago=i) for i in range(4)],
            settings=AnalysisSettings(batch_size=1),
        )
        values = []
        orchestrator.progress.subscribe(lambda value, active: values.append(value))

        await orchestrator.run_incremental_scoring()

        assert values == sorted(values)
        assert values[-1] == pytest.approx(1.0)
        assert pytest.approx(0.25) in values
        assert not orchestrator.progress.is_analyzing


class TestComprehensiveAnalysis:
    """Full comprehensive passes."""

    @pytest.mark.asyncio
    async def test_empty_store(self, make_orchestrator, insight_sink, now):
        orchestrator = make_orchestrator()

        result = await orchestrator.run_comprehensive_analysis()

        assert result.clusters == []
        assert result.insights == []
        assert result.predictions == []
        assert result.statistics.total_notes == 0
        assert set(result.bias_signals) == set(BiasSignal)
        assert all(v == 0.0 for v in result.bias_signals.values())
        assert insight_sink.insights == []
        assert orchestrator.state.last_comprehensive_analysis_date == now

    @pytest.mark.asyncio
    async def test_work_loop_scenario(self, make_orchestrator, work_loop_notes, insight_sink):
        orchestrator = make_orchestrator(work_loop_notes)

        result = await orchestrator.run_comprehensive_analysis()

        assert [c.topic for c in result.clusters] == ["work"]
        assert result.clusters[0].strength == pytest.approx(5 / 12)
        recurring = [p for p in result.predictions if p.type == PredictionType.RECURRING_PATTERN]
        assert len(recurring) == 1
        assert recurring[0].confidence == pytest.approx(0.8)

        assert result.statistics.total_notes == 12
        assert result.statistics.scored_notes == 12
        assert len(result.hourly) == 24
        assert len(result.weekly) == 7

        kinds = [i.kind for i in insight_sink.insights]
        assert kinds == [InsightKind.LOOP]
        loop = insight_sink.insights[0]
        assert loop.note_ids == ("new-1", "new-3", "new-5", "new-6", "new-8")
        payload = loop.payload_json()
        assert payload["topic"] == "work"
        assert payload["note_count"] == 5
        assert payload["strength"] == pytest.approx(5 / 12)
        assert payload["time_span_seconds"] > 0
        assert result.insights == insight_sink.insights

    @pytest.mark.asyncio
    async def test_notes_are_annotated(self, make_orchestrator, work_loop_notes, note_store):
        orchestrator = make_orchestrator(work_loop_notes)

        result = await orchestrator.run_comprehensive_analysis()

        cluster = result.clusters[0]
        work_note = note_store.get("new-3")
        assert work_note.loop_group_id == cluster.cluster_id
        assert work_note.topic_hash == topic_hash("work")
        assert set(work_note.bias_signals) == set(BiasSignal)

        other = note_store.get("new-2")
        assert other.loop_group_id is None
        assert other.topic_hash is None

    @pytest.mark.asyncio
    async def test_annotation_does_not_trigger_rescoring(
        self, note_store, insight_sink, state_store, work_loop_notes, now
    ):
        for note in work_loop_notes:
            note_store.add(note)
        orchestrator = AnalysisOrchestrator(
            note_store, insight_sink, state_store=state_store, clock=TickingClock(now)
        )

        await orchestrator.run_comprehensive_analysis()
        result = await orchestrator.run_comprehensive_analysis()

        assert result.scoring.total == 0

    @pytest.mark.asyncio
    async def test_idempotent(self, make_orchestrator, work_loop_notes, note_store):
        orchestrator = make_orchestrator(work_loop_notes)

        first = await orchestrator.run_comprehensive_analysis()
        updates = note_store.update_count
        second = await orchestrator.run_comprehensive_analysis()

        assert first.statistics.to_json() == second.statistics.to_json()
        assert [(c.topic, c.strength) for c in first.clusters] == [
            (c.topic, c.strength) for c in second.clusters
        ]
        assert first.bias_signals == second.bias_signals
        assert second.scoring.total == 0
        # Derived fields already match, so nothing is written again
        assert note_store.update_count == updates

    @pytest.mark.asyncio
    async def test_negative_mood_insights(self, make_orchestrator, note_factory, insight_sink):
        orchestrator = make_orchestrator(
            [
                note_factory("a", "I feel sad and miserable", days_ago=3),
                note_factory("b", "Terrible awful day", days_ago=2),
                note_factory("c", "Lonely again", days_ago=1),
            ]
        )

        result = await orchestrator.run_comprehensive_analysis()

        assert result.statistics.average_valence == pytest.approx(-1.0)
        by_kind = {i.kind: i for i in insight_sink.insights}
        assert set(by_kind) == {InsightKind.BIORHYTHM, InsightKind.BIAS}

        biorhythm = by_kind[InsightKind.BIORHYTHM]
        assert set(biorhythm.note_ids) == {"a", "b", "c"}
        assert biorhythm.payload_json()["type"] == "negative_trend"
        assert biorhythm.payload_json()["average_valence"] == pytest.approx(-1.0)

        bias = by_kind[InsightKind.BIAS]
        assert bias.payload_json()["bias"] == "loss_aversion"
        assert bias.payload_json()["score"] == pytest.approx(1.0)
        assert set(bias.note_ids) == {"a", "b", "c"}

    @pytest.mark.asyncio
    async def test_payloads_are_sorted_json(self, make_orchestrator, work_loop_notes, insight_sink):
        orchestrator = make_orchestrator(work_loop_notes)
        await orchestrator.run_comprehensive_analysis()

        raw = insight_sink.insights[0].payload.decode("utf-8")
        assert raw == json.dumps(json.loads(raw), sort_keys=True)

    @pytest.mark.asyncio
    async def test_phase_sequence(self, make_orchestrator, work_loop_notes):
        orchestrator = make_orchestrator(work_loop_notes)
        await orchestrator.run_comprehensive_analysis()

        assert orchestrator.last_run_phases == [
            AnalysisPhase.FETCHING,
            AnalysisPhase.SCORING_BATCH,
            AnalysisPhase.SCORING_BATCH,
            AnalysisPhase.CLUSTERING,
            AnalysisPhase.AGGREGATING,
            AnalysisPhase.PREDICTING,
            AnalysisPhase.PERSISTING,
            AnalysisPhase.IDLE,
        ]
        assert orchestrator.phase == AnalysisPhase.IDLE

    @pytest.mark.asyncio
    async def test_progress_is_monotonic(self, make_orchestrator, work_loop_notes):
        orchestrator = make_orchestrator(work_loop_notes, settings=AnalysisSettings(batch_size=3))
        events = []
        orchestrator.progress.subscribe(lambda value, active: events.append((value, active)))

        await orchestrator.run_comprehensive_analysis()

        values = [v for v, _ in events]
        assert values == sorted(values)
        assert values[0] == 0.0
        assert values[-1] == pytest.approx(1.0)
        assert events[0][1] is True
        assert events[-1][1] is False
        assert all(0.0 <= v <= 1.0 for v in values)

    @pytest.mark.asyncio
    async def test_telemetry_recorded(self, make_orchestrator, work_loop_notes, tmp_path):
        telemetry = TelemetryRecorder(tmp_path)
        orchestrator = make_orchestrator(work_loop_notes, telemetry=telemetry)

        await orchestrator.run_comprehensive_analysis()

        lines = (tmp_path / "telemetry.log").read_text().strip().splitlines()
        entry = json.loads(lines[-1])
        assert entry["run_type"] == "comprehensive"
        assert entry["status"] == "succeeded"
        assert entry["scored"] == 12
        assert "clustering" in entry["phase_durations"]
        summary = json.loads((tmp_path / "telemetry_summary.json").read_text())
        assert summary["overall"]["runs"] == 1


class TestReadOnlyOperations:
    @pytest.mark.asyncio
    async def test_predict_does_not_persist(self, make_orchestrator, work_loop_notes, note_store, insight_sink):
        orchestrator = make_orchestrator(work_loop_notes)

        predictions = await orchestrator.predict()

        assert PredictionType.RECURRING_PATTERN in [p.type for p in predictions]
        assert note_store.update_count == 0
        assert insight_sink.insights == []
        assert orchestrator.state.last_comprehensive_analysis_date is None

    @pytest.mark.asyncio
    async def test_aggregate_patterns(self, make_orchestrator, note_factory, now):
        orchestrator = make_orchestrator(
            [
                note_factory("a", "x", created_at=now.replace(hour=8), sentiment=0.6, arousal=0.5),
                note_factory("b", "y", created_at=now.replace(hour=8) - timedelta(days=1)),
            ]
        )

        hourly = await orchestrator.aggregate_patterns(Granularity.HOURLY)
        daily = await orchestrator.aggregate_patterns(Granularity.DAILY, days=2)

        assert hourly[8].count == 2
        assert hourly[8].dominant_emotion == "joy"
        assert [b.count for b in daily] == [1, 1]
        assert daily[-1].key == now.date().isoformat()

    @pytest.mark.asyncio
    async def test_statistics(self, make_orchestrator, note_factory):
        orchestrator = make_orchestrator([note_factory("a", "x", sentiment=0.2, arousal=0.4)])
        stats = await orchestrator.statistics()
        assert stats.total_notes == 1
        assert stats.average_valence == pytest.approx(0.2)


class TestFromConfig:
    def test_builds_configured_components(self, tmp_path, note_store, insight_sink):
        config = MetawaveConfig(
            analysis={"batch_size": 7, "adaptive_concurrency": False},
            telemetry={"enabled": True, "output_dir": str(tmp_path / "telemetry")},
            insights={"max_loop_insights": 1},
        )

        orchestrator = AnalysisOrchestrator.from_config(config, note_store, insight_sink)

        assert orchestrator.settings.batch_size == 7
        assert orchestrator.insight_config.max_loop_insights == 1
        assert orchestrator._resource_monitor is None
        assert orchestrator._telemetry.output_dir == tmp_path / "telemetry"

    def test_adaptive_concurrency_adds_monitor(self, tmp_path, note_store, insight_sink):
        config = MetawaveConfig(telemetry={"enabled": False, "output_dir": str(tmp_path)})
        orchestrator = AnalysisOrchestrator.from_config(config, note_store, insight_sink)
        assert isinstance(orchestrator._resource_monitor, ResourceMonitor)
        assert orchestrator._telemetry is None

    @pytest.mark.asyncio
    async def test_configured_loop_detector(self, tmp_path, work_loop_notes, insight_sink, clock):
        config = MetawaveConfig(
            analysis={"adaptive_concurrency": False},
            loops={"max_gap_days": None},
            telemetry={"enabled": False, "output_dir": str(tmp_path)},
        )
        orchestrator = AnalysisOrchestrator.from_config(
            config, InMemoryNoteStore(work_loop_notes), insight_sink, clock=clock
        )

        result = await orchestrator.run_comprehensive_analysis()

        work = next(c for c in result.clusters if c.topic == "work")
        assert work.note_count == 6
