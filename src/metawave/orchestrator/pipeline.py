"""Analysis orchestrator.

Drives the incremental metacognitive analysis pipeline:

1. **Scoring** (incremental): notes modified since the emotion watermark,
   plus any note still missing a score, are scored in fixed-size batches
   with bounded concurrency. Per-note failures are logged and counted; a
   failed note is left unscored (a stale score is dropped) and retried on
   the next run. Score writes are flushed to the store after each batch.
2. **Clustering**: loop detection and bias evaluation over the full corpus.
   Notes are annotated with their loop group, topic hash and bias matches.
3. **Aggregating**: corpus statistics and hourly/weekly buckets.
4. **Predicting**: trend, recurrence and bias-tendency predictions.
5. **Persisting**: loop, biorhythm and bias insights written to the sink.

The scoring and comprehensive passes keep independent watermarks in one
``AnalysisState`` record. A watermark only advances after its stage
completes without a fatal error, so a failed clustering pass never forces
re-scoring and no note is silently skipped.

Only one invocation may run at a time per orchestrator; a second one is
rejected with ``AnalysisInProgressError``. Runs can be cancelled between
batches and between stages, and a run exceeding ``timeout_interval`` is
treated as cancelled.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Dict, Iterator, List, Optional, Sequence

from metawave.analysis.bias import BiasDetector, LexicalBiasDetector
from metawave.analysis.emotion import EmotionAnalyzer, LexicalEmotionAnalyzer
from metawave.analysis.loops import KeywordLoopDetector, LoopDetector, topic_hash
from metawave.analysis.patterns import Granularity, PatternAggregator
from metawave.analysis.prediction import PredictionEngine, PredictionThresholds
from metawave.errors import (
    AnalysisCancelledError,
    AnalysisInProgressError,
    InsightPersistError,
    MetawaveError,
    NoteFetchError,
    NoteUpdateError,
    StageError,
)
from metawave.models.analysis import (
    AnalysisResult,
    AnalysisState,
    AnalysisStatistics,
    BiasSignal,
    Insight,
    InsightKind,
    LoopCluster,
    PatternBucket,
    Prediction,
    PredictionType,
    ScoringReport,
)
from metawave.models.notes import Note
from metawave.models.timestamps import utc_now
from metawave.orchestrator.config import AnalysisSettings, InsightConfig, MetawaveConfig
from metawave.orchestrator.metrics import TelemetryRecorder
from metawave.orchestrator.progress import (
    COMPREHENSIVE_WEIGHTS,
    SCORING_ONLY_WEIGHTS,
    ProgressReporter,
)
from metawave.orchestrator.resource_monitor import ResourceMonitor
from metawave.orchestrator.state import AnalysisStateStore, InMemoryAnalysisStateStore
from metawave.orchestrator.state_machine import AnalysisPhase, PhaseTracker
from metawave.storage.interfaces import InsightSink, NoteFilter, NoteSort, NoteStore

logger = logging.getLogger(__name__)

# Watermark offset placing a cancelled run just before its first unscored note
_WATERMARK_EPSILON = timedelta(microseconds=1)


def _encode_payload(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True).encode("utf-8")


class AnalysisOrchestrator:
    """Runs scoring and comprehensive analysis passes over a note store.

    Stage components are injected; any left out get their default
    implementation.

    Args:
        note_store: Source of notes, receives per-note updates
        insight_sink: Receives derived insights
        emotion_analyzer: Scores note text
        loop_detector: Finds recurring topics
        bias_detector: Scores cognitive-bias prevalence
        pattern_aggregator: Statistics and time buckets
        prediction_engine: Derives predictions
        state_store: Holds the watermark record
        settings: Batch size, concurrency and timeout
        insight_config: Thresholds for insight generation
        resource_monitor: Lowers concurrency under resource pressure
        telemetry: Records one entry per run
        clock: Source of timezone-aware "now"
    """

    def __init__(
        self,
        note_store: NoteStore,
        insight_sink: InsightSink,
        *,
        emotion_analyzer: Optional[EmotionAnalyzer] = None,
        loop_detector: Optional[LoopDetector] = None,
        bias_detector: Optional[BiasDetector] = None,
        pattern_aggregator: Optional[PatternAggregator] = None,
        prediction_engine: Optional[PredictionEngine] = None,
        state_store: Optional[AnalysisStateStore] = None,
        settings: Optional[AnalysisSettings] = None,
        insight_config: Optional[InsightConfig] = None,
        resource_monitor: Optional[ResourceMonitor] = None,
        telemetry: Optional[TelemetryRecorder] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = note_store
        self._sink = insight_sink
        self._clock = clock
        self._analyzer = emotion_analyzer or LexicalEmotionAnalyzer()
        self._loop_detector = loop_detector or KeywordLoopDetector()
        self._bias_detector = bias_detector or LexicalBiasDetector()
        self._aggregator = pattern_aggregator or PatternAggregator(clock=clock)
        self._prediction_engine = prediction_engine or PredictionEngine(clock=clock)
        self._state_store = state_store or InMemoryAnalysisStateStore()
        self.settings = settings or AnalysisSettings()
        self.insight_config = insight_config or InsightConfig()
        self._resource_monitor = resource_monitor
        self._telemetry = telemetry

        self.progress = ProgressReporter()
        self._phases = PhaseTracker()
        self._lock = asyncio.Lock()
        self._cancel_requested = False

    @classmethod
    def from_config(
        cls,
        config: MetawaveConfig,
        note_store: NoteStore,
        insight_sink: InsightSink,
        *,
        state_store: Optional[AnalysisStateStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "AnalysisOrchestrator":
        """Build an orchestrator with every component configured from ``config``."""
        telemetry = None
        if config.telemetry.enabled:
            telemetry = TelemetryRecorder(config.telemetry.output_dir)
        return cls(
            note_store,
            insight_sink,
            emotion_analyzer=LexicalEmotionAnalyzer(),
            loop_detector=KeywordLoopDetector(**config.loops.model_dump()),
            bias_detector=LexicalBiasDetector(
                negative_valence_threshold=config.bias.negative_valence_threshold
            ),
            pattern_aggregator=PatternAggregator(clock=clock, tz=config.patterns.to_tzinfo()),
            prediction_engine=PredictionEngine(
                PredictionThresholds(**config.prediction.model_dump()), clock=clock
            ),
            state_store=state_store,
            settings=config.analysis,
            insight_config=config.insights,
            resource_monitor=ResourceMonitor() if config.analysis.adaptive_concurrency else None,
            telemetry=telemetry,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> AnalysisState:
        return self._state_store.load()

    @property
    def phase(self) -> AnalysisPhase:
        return self._phases.phase

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def last_run_phases(self) -> List[AnalysisPhase]:
        """Phases entered by the most recent invocation, in order."""
        return self._phases.phases_visited

    def cancel(self) -> None:
        """Request cancellation; takes effect at the next batch or stage boundary."""
        if self._lock.locked():
            logger.info("Analysis cancellation requested")
            self._cancel_requested = True

    async def run_incremental_scoring(self) -> ScoringReport:
        """Score notes changed since the last scoring pass.

        Returns:
            Report with counts; ``cancelled`` is set when the run was
            cancelled or timed out before all batches ran

        Raises:
            AnalysisInProgressError: If another run is active
            NoteFetchError: If the store cannot be read
        """
        async with self._exclusive("incremental_scoring", SCORING_ONLY_WEIGHTS) as run:
            report = await self._fetch_and_score(run["deadline"])
            run["report"] = report
            run["status"] = "cancelled" if report.cancelled else "succeeded"
            self._phases.reset(reason="scoring complete")
            return report

    async def run_comprehensive_analysis(self) -> AnalysisResult:
        """Score new notes, then recompute loops, biases, patterns and predictions.

        Raises:
            AnalysisInProgressError: If another run is active
            AnalysisCancelledError: If cancelled or timed out
            NoteFetchError: If the store cannot be read
            StageError: If a full-corpus stage fails
            InsightPersistError: If insights could not be written; carries
                the computed result
        """
        async with self._exclusive("comprehensive", COMPREHENSIVE_WEIGHTS) as run:
            deadline = run["deadline"]
            report = await self._fetch_and_score(deadline)
            run["report"] = report
            if report.cancelled:
                raise AnalysisCancelledError(report=report, timed_out=report.timed_out)

            corpus = await self._fetch_corpus()

            self._phases.transition(AnalysisPhase.CLUSTERING, notes=len(corpus))
            with self._stage("clustering"):
                clusters = await self._loop_detector.cluster(corpus)
            self.progress.report("clustering")
            self._raise_if_cancelled(deadline, report)

            with self._stage("bias"):
                bias_signals = await self._bias_detector.evaluate(corpus)
                note_biases = {n.note_id: self._bias_detector.evaluate_note(n) for n in corpus}
            with self._stage("clustering"):
                self._annotate(corpus, clusters, note_biases)
            await self._flush()
            self.progress.report("bias")
            self._raise_if_cancelled(deadline, report)

            self._phases.transition(AnalysisPhase.AGGREGATING)
            with self._stage("aggregation"):
                statistics = self._aggregator.statistics(corpus)
                hourly = self._aggregator.aggregate(corpus, Granularity.HOURLY)
                weekly = self._aggregator.aggregate(corpus, Granularity.WEEKLY)
            self.progress.report("aggregation")
            self._raise_if_cancelled(deadline, report)

            self._phases.transition(AnalysisPhase.PREDICTING)
            analyzed_at = self._clock()
            with self._stage("prediction"):
                predictions = self._prediction_engine.predict(
                    corpus, clusters, bias_signals, now=analyzed_at
                )
            self.progress.report("prediction", 0.5)

            result = AnalysisResult(
                clusters=clusters,
                statistics=statistics,
                insights=[],
                bias_signals=bias_signals,
                predictions=predictions,
                hourly=hourly,
                weekly=weekly,
                scoring=report,
                analyzed_at=analyzed_at,
            )

            self._phases.transition(AnalysisPhase.PERSISTING)
            result.insights = await self._persist_insights(result, corpus, note_biases)
            self._state_store.save(self._state_store.load().advance_comprehensive(analyzed_at))
            self.progress.report("prediction")

            run["status"] = "succeeded"
            logger.info(
                f"Comprehensive analysis complete: {len(clusters)} loops, "
                f"{len(predictions)} predictions, {len(result.insights)} insights",
                extra={
                    "notes": statistics.total_notes,
                    "scored": report.scored,
                    "failed": report.failed,
                },
            )
            self._phases.reset(reason="analysis complete")
            return result

    async def predict(self) -> List[Prediction]:
        """Predictions for the current corpus without persisting anything."""
        corpus = await self._fetch_corpus()
        with self._stage("prediction"):
            clusters = await self._loop_detector.cluster(corpus)
            bias_signals = await self._bias_detector.evaluate(corpus)
            return self._prediction_engine.predict(
                corpus, clusters, bias_signals, now=self._clock()
            )

    async def aggregate_patterns(
        self, granularity: Granularity, days: Optional[int] = None
    ) -> List[PatternBucket]:
        corpus = await self._fetch_corpus()
        return self._aggregator.aggregate(corpus, granularity, days=days, now=self._clock())

    async def statistics(self) -> AnalysisStatistics:
        return self._aggregator.statistics(await self._fetch_corpus())

    # ------------------------------------------------------------------
    # Run management
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _exclusive(
        self, run_type: str, weights: Dict[str, float]
    ) -> AsyncIterator[Dict[str, Any]]:
        if self._lock.locked():
            raise AnalysisInProgressError(details={"run_type": run_type})

        async with self._lock:
            loop = asyncio.get_running_loop()
            run: Dict[str, Any] = {
                "run_id": str(uuid.uuid4()),
                "deadline": loop.time() + self.settings.timeout_interval,
                "status": "failed",
                "report": None,
            }
            self._cancel_requested = False
            self.progress.start(weights)
            start = time.perf_counter()
            logger.info(f"Starting {run_type} run {run['run_id']}")
            try:
                yield run
            except AnalysisCancelledError:
                run["status"] = "cancelled"
                raise
            except Exception as exc:
                logger.error(f"{run_type} run failed: {exc}", extra={"run_id": run["run_id"]})
                raise
            finally:
                self._phases.reset(reason=run["status"])
                self._cancel_requested = False
                self.progress.finish()
                self._record_run(run, run_type, time.perf_counter() - start)

    def _record_run(self, run: Dict[str, Any], run_type: str, duration: float) -> None:
        if self._telemetry is None:
            return
        report: Optional[ScoringReport] = run["report"]
        try:
            self._telemetry.record(
                run["run_id"],
                run_type,
                duration,
                run["status"],
                scored=report.scored if report else None,
                failed=report.failed if report else None,
                phase_durations=self._phases.phase_durations(),
            )
        except OSError as exc:
            logger.warning(f"Failed to record telemetry: {exc}")

    def _should_stop(self, deadline: float) -> bool:
        return self._cancel_requested or asyncio.get_running_loop().time() >= deadline

    def _raise_if_cancelled(self, deadline: float, report: ScoringReport) -> None:
        if self._should_stop(deadline):
            timed_out = not self._cancel_requested
            raise AnalysisCancelledError(
                "Analysis timed out" if timed_out else None,
                report=report,
                timed_out=timed_out,
            )

    @contextmanager
    def _stage(self, name: str) -> Iterator[None]:
        try:
            yield
        except MetawaveError:
            raise
        except Exception as exc:
            logger.error(f"Stage '{name}' failed: {exc}", extra={"stage": name})
            raise StageError(name, f"Stage '{name}' failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def _fetch(self, note_filter: NoteFilter, sort: NoteSort) -> List[Note]:
        """Read every matching note in pages of ``batch_size``."""
        page_size = self.settings.batch_size
        notes: List[Note] = []
        try:
            while True:
                page = await self._store.fetch(
                    note_filter, sort=sort, limit=page_size, offset=len(notes)
                )
                notes.extend(page)
                if len(page) < page_size:
                    return notes
        except NoteFetchError:
            raise
        except Exception as exc:
            raise NoteFetchError(f"Failed to fetch notes: {exc}") from exc

    async def _flush(self) -> None:
        try:
            await self._store.flush()
        except NoteUpdateError:
            raise
        except Exception as exc:
            raise NoteUpdateError(f"Failed to write notes: {exc}") from exc

    async def _fetch_corpus(self) -> List[Note]:
        return await self._fetch(NoteFilter(), NoteSort.CREATED_ASC)

    async def _fetch_scoring_candidates(self, watermark: Optional[datetime]) -> List[Note]:
        changed = await self._fetch(
            NoteFilter(updated_after=watermark, require_text=True), NoteSort.UPDATED_ASC
        )
        if watermark is None:
            return changed
        # Notes that failed on an earlier run are older than the watermark
        unscored = await self._fetch(
            NoteFilter(unscored_only=True, require_text=True), NoteSort.UPDATED_ASC
        )
        merged = {n.note_id: n for n in changed}
        for note in unscored:
            merged.setdefault(note.note_id, note)
        return sorted(merged.values(), key=NoteSort.UPDATED_ASC.key)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    async def _fetch_and_score(self, deadline: float) -> ScoringReport:
        state = self._state_store.load()
        self._phases.transition(AnalysisPhase.FETCHING)
        candidates = await self._fetch_scoring_candidates(state.last_emotion_analysis_date)

        batch_size = self.settings.batch_size
        concurrency = self.settings.max_concurrent_operations
        if self._resource_monitor is not None and self.settings.adaptive_concurrency:
            limits = self._resource_monitor.limits_for(batch_size, concurrency)
            batch_size = limits.batch_size
            concurrency = limits.max_concurrent_operations

        batches = [candidates[i : i + batch_size] for i in range(0, len(candidates), batch_size)]
        report = ScoringReport(total=len(candidates), batches_total=len(batches))
        semaphore = asyncio.Semaphore(concurrency)
        # updated_at of failed notes the store could not mark for retry
        unretried: List[datetime] = []

        logger.info(
            f"Scoring {len(candidates)} notes in {len(batches)} batches",
            extra={"batch_size": batch_size, "max_concurrent": concurrency},
        )

        for index, batch in enumerate(batches):
            if self._should_stop(deadline):
                report.cancelled = True
                report.timed_out = not self._cancel_requested
                break
            self._phases.transition(
                AnalysisPhase.SCORING_BATCH, batch_index=index, batch_size=len(batch)
            )
            await asyncio.gather(
                *(self._score_note(n, semaphore, report, unretried) for n in batch)
            )
            await self._flush()
            report.batches_completed += 1
            self.progress.report("scoring", report.batches_completed / len(batches))

        if report.cancelled:
            unprocessed = [n for batch in batches[report.batches_completed :] for n in batch]
            watermark = min(n.updated_at for n in unprocessed) - _WATERMARK_EPSILON
            logger.warning(
                f"Scoring stopped after {report.batches_completed}/{len(batches)} batches",
                extra={"timed_out": report.timed_out, "unprocessed": len(unprocessed)},
            )
        else:
            watermark = self._clock()
            self.progress.report("scoring")
        if unretried:
            watermark = min(watermark, min(unretried) - _WATERMARK_EPSILON)

        self._state_store.save(self._state_store.load().advance_emotion(watermark))
        if report.failed:
            logger.warning(
                f"{report.failed} of {report.total} notes could not be scored",
                extra={"failed_note_ids": report.failed_note_ids},
            )
        return report

    async def _score_note(
        self,
        note: Note,
        semaphore: asyncio.Semaphore,
        report: ScoringReport,
        unretried: List[datetime],
    ) -> None:
        previously_scored = note.is_scored
        fetched_at = note.updated_at
        async with semaphore:
            try:
                score = await asyncio.wait_for(
                    self._analyzer.analyze(note.content_text),
                    timeout=self.settings.timeout_interval,
                )
                note.apply_emotion_score(score, self._clock())
                self._store.update(note)
            except Exception as exc:  # noqa: BLE001
                report.failed += 1
                report.failed_note_ids.append(note.note_id)
                logger.warning(
                    f"Failed to score note {note.note_id}: {exc}",
                    extra={"note_id": note.note_id, "error_type": type(exc).__name__},
                )
                if previously_scored:
                    self._mark_for_retry(note, fetched_at, unretried)
                return
        report.scored += 1

    def _mark_for_retry(self, note: Note, fetched_at: datetime, unretried: List[datetime]) -> None:
        """Drop the stale score of an edited note so the unscored fetch retries it."""
        note.clear_emotion_score()
        note.updated_at = fetched_at
        try:
            self._store.update(note)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                f"Failed to clear stale score of note {note.note_id}: {exc}",
                extra={"note_id": note.note_id},
            )
            unretried.append(fetched_at)

    # ------------------------------------------------------------------
    # Annotation and persistence
    # ------------------------------------------------------------------

    def _annotate(
        self,
        corpus: Sequence[Note],
        clusters: Sequence[LoopCluster],
        note_biases: Dict[str, Dict[BiasSignal, float]],
    ) -> None:
        """Write loop membership and bias matches back to changed notes."""
        membership: Dict[str, LoopCluster] = {}
        # Clusters arrive strongest first; a note keeps its strongest loop
        for cluster in clusters:
            for note_id in cluster.note_ids:
                membership.setdefault(note_id, cluster)

        updated = 0
        for note in corpus:
            cluster = membership.get(note.note_id)
            loop_group_id = cluster.cluster_id if cluster else None
            note_topic_hash = topic_hash(cluster.topic) if cluster else None
            biases = note_biases.get(note.note_id, {}) if note.has_text else {}
            if (
                note.loop_group_id == loop_group_id
                and note.topic_hash == note_topic_hash
                and note.bias_signals == biases
            ):
                continue
            note.loop_group_id = loop_group_id
            note.topic_hash = note_topic_hash
            note.bias_signals = dict(biases)
            self._store.update(note)
            updated += 1
        logger.debug(f"Annotated {updated} notes", extra={"updated": updated})

    async def _persist_insights(
        self,
        result: AnalysisResult,
        corpus: Sequence[Note],
        note_biases: Dict[str, Dict[BiasSignal, float]],
    ) -> List[Insight]:
        pending = self._build_insights(result, corpus, note_biases)
        insights: List[Insight] = []
        try:
            for kind, note_ids, payload in pending:
                insights.append(await self._sink.create(kind, note_ids, _encode_payload(payload)))
        except Exception as exc:
            result.insights = insights
            logger.error(f"Failed to persist insights: {exc}")
            raise InsightPersistError(
                f"Failed to persist insights: {exc}",
                result=result,
                details={"persisted": len(insights), "pending": len(pending)},
            ) from exc
        return insights

    def _build_insights(
        self,
        result: AnalysisResult,
        corpus: Sequence[Note],
        note_biases: Dict[str, Dict[BiasSignal, float]],
    ) -> List[tuple]:
        pending: List[tuple] = []

        for cluster in result.clusters[: self.insight_config.max_loop_insights]:
            pending.append(
                (
                    InsightKind.LOOP,
                    list(cluster.note_ids),
                    {
                        "cluster_id": cluster.cluster_id,
                        "topic": cluster.topic,
                        "strength": cluster.strength,
                        "note_count": cluster.note_count,
                        "time_span_seconds": cluster.time_span_seconds,
                    },
                )
            )

        stats = result.statistics
        negative_trend = any(p.type == PredictionType.NEGATIVE_TREND for p in result.predictions)
        low_valence = (
            stats.scored_notes > 0
            and stats.average_valence < self.insight_config.negative_valence_threshold
        )
        if low_valence or negative_trend:
            evidence = [n.note_id for n in corpus if n.is_scored and n.sentiment < 0]
            pending.append(
                (
                    InsightKind.BIORHYTHM,
                    evidence,
                    {
                        "type": "negative_trend",
                        "average_valence": stats.average_valence,
                        "message": "Your notes have been leaning negative recently.",
                        "recommendation": "Consider taking a break or doing something you enjoy.",
                    },
                )
            )

        for prediction in result.predictions:
            if prediction.type != PredictionType.BIAS_DETECTION:
                continue
            signal = max(BiasSignal, key=lambda s: result.bias_signals.get(s, 0.0))
            evidence = [
                note_id
                for note_id, matches in note_biases.items()
                if matches.get(signal, 0.0) > 0
            ]
            pending.append(
                (
                    InsightKind.BIAS,
                    evidence,
                    {
                        "bias": signal.value,
                        "score": result.bias_signals.get(signal, 0.0),
                        "message": prediction.message,
                    },
                )
            )

        return pending
