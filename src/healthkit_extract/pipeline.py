import codecs
import enum
import os
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .aggregators import DataPoint, MetricAggregator
from .config import Settings, get_settings
from .exceptions import MalformedRecordError, SinkFailureError, SourceUnavailableError
from .logging import get_logger
from .metrics import MetricSpec, get_metric
from .records import RecordFieldExtractor, to_datetime
from .scanner import ChunkBoundaryScanner
from .sinks import SeriesSink, series_key
from .sources import ChunkSource, as_source
from .window import passes_window

logger = get_logger(__name__)


class PipelineState(str, enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    FINALIZING = "finalizing"
    DONE = "done"
    ERRORED = "errored"


@dataclass(frozen=True, slots=True)
class Progress:
    current: int
    total: Optional[int]
    message: str


ProgressObserver = Callable[[Progress], None]


@dataclass(slots=True)
class RunStats:
    bytes_processed: int = 0
    records_scanned: int = 0
    records_matched: int = 0
    records_accepted: int = 0
    records_ignored: int = 0
    records_malformed: int = 0
    records_out_of_window: int = 0

    @property
    def records_skipped(self) -> int:
        return self.records_malformed + self.records_out_of_window


@dataclass(frozen=True, slots=True)
class RunResult:
    metric: str
    key: str
    records_found: int
    records_written: int
    used_fallback: bool
    stats: RunStats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "key": self.key,
            "recordsFound": self.records_found,
            "recordsWritten": self.records_written,
            "usedFallback": self.used_fallback,
            "bytesProcessed": self.stats.bytes_processed,
            "recordsScanned": self.stats.records_scanned,
            "recordsMatched": self.stats.records_matched,
            "recordsSkipped": self.stats.records_skipped,
        }


def fallback_series(metric: MetricSpec, today: date, days: int) -> List[DataPoint]:
    """Placeholder series for the last ``days`` calendar days ending on ``today``."""
    points = [
        DataPoint(
            date=(today - timedelta(days=offset)).isoformat(),
            value=metric.fallback_value,
            source_name="",
            unit=metric.unit,
        )
        for offset in range(days - 1, -1, -1)
    ]
    if metric.descending:
        points.reverse()
    return points


class ExtractionPipeline:
    """Single-use run of one metric over one source.

    IDLE -> SCANNING -> FINALIZING -> DONE, or ERRORED when the source cannot
    be read or the sink write fails. Bad individual records only move counters.
    """

    def __init__(
        self,
        metric: MetricSpec,
        sink: SeriesSink,
        *,
        validate_fragments: bool = True,
        progress_interval: int = 10_000,
        fallback_days: int = 7,
        observer: Optional[ProgressObserver] = None,
    ):
        if progress_interval <= 0:
            raise ValueError("progress_interval must be positive")
        if fallback_days <= 0:
            raise ValueError("fallback_days must be positive")
        self.metric = metric
        self.sink = sink
        self.validate_fragments = validate_fragments
        self.progress_interval = progress_interval
        self.fallback_days = fallback_days
        self.observer = observer
        self.state = PipelineState.IDLE
        self.stats = RunStats()
        self._source: Optional[ChunkSource] = None

    def run(self, source: ChunkSource, key: str, now: Optional[datetime] = None) -> RunResult:
        if self.state is not PipelineState.IDLE:
            raise RuntimeError(f"pipeline already used (state={self.state.value})")
        now = to_datetime(now) if now is not None else datetime.now(timezone.utc)
        cutoff = self.metric.retention.cutoff(now)
        log = logger.bind(metric=self.metric.name, source=source.name, key=key)
        self._source = source

        self.state = PipelineState.SCANNING
        log.info("extraction_started", cutoff=cutoff.isoformat(), total_bytes=source.size)
        try:
            points = self._scan(source, cutoff)
        except SourceUnavailableError:
            self.state = PipelineState.ERRORED
            log.error("source_unavailable", exc_info=True)
            raise
        except Exception:
            self.state = PipelineState.ERRORED
            log.error("extraction_failed", exc_info=True)
            raise

        self.state = PipelineState.FINALIZING
        series, used_fallback = self._finalize(points, now)
        if used_fallback:
            log.warning("no_qualifying_records", fallback_days=self.fallback_days)
        try:
            self.sink.write(key, [p.to_dict() for p in series])
        except SinkFailureError:
            self.state = PipelineState.ERRORED
            log.error("sink_failure", exc_info=True)
            raise

        self.state = PipelineState.DONE
        self._notify(
            f"{self.metric.name}: done, {self.stats.records_accepted} records found, "
            f"{len(series)} points written"
        )
        log.info(
            "extraction_finished",
            records_found=self.stats.records_accepted,
            records_written=len(series),
            used_fallback=used_fallback,
            bytes_processed=self.stats.bytes_processed,
            records_scanned=self.stats.records_scanned,
            records_matched=self.stats.records_matched,
            records_malformed=self.stats.records_malformed,
            records_out_of_window=self.stats.records_out_of_window,
        )
        return RunResult(
            metric=self.metric.name,
            key=key,
            records_found=self.stats.records_accepted,
            records_written=len(series),
            used_fallback=used_fallback,
            stats=self.stats,
        )

    def _scan(self, source: ChunkSource, cutoff: datetime) -> List[DataPoint]:
        scanner = ChunkBoundaryScanner(self.metric.layout.tag)
        extractor = RecordFieldExtractor(
            self.metric.targets, self.metric.layout, validate=self.validate_fragments
        )
        aggregator = self.metric.make_aggregator()
        # Multi-byte characters may straddle chunk boundaries.
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        for chunk in source.iter_chunks():
            self.stats.bytes_processed += len(chunk)
            self._consume_all(scanner.feed(decoder.decode(chunk)), extractor, aggregator, cutoff)
        self._consume_all(scanner.feed(decoder.decode(b"", final=True)), extractor, aggregator, cutoff)

        if scanner.buffer.strip():
            logger.debug("partial_element_dropped", metric=self.metric.name, length=len(scanner.buffer))
        return aggregator.points()

    def _consume_all(
        self,
        fragments: Iterable[str],
        extractor: RecordFieldExtractor,
        aggregator: MetricAggregator,
        cutoff: datetime,
    ) -> None:
        for fragment in fragments:
            self.stats.records_scanned += 1
            self._consume(fragment, extractor, aggregator, cutoff)
            if self.stats.records_scanned % self.progress_interval == 0:
                self._notify(
                    f"{self.metric.name}: {self.stats.records_scanned} records scanned, "
                    f"{self.stats.records_accepted} found"
                )

    def _consume(
        self,
        fragment: str,
        extractor: RecordFieldExtractor,
        aggregator: MetricAggregator,
        cutoff: datetime,
    ) -> None:
        try:
            raw = extractor.extract(fragment)
            if raw is None:
                return
            self.stats.records_matched += 1
            start = to_datetime(raw.start_date)
            if start is None:
                raise MalformedRecordError(f"unparseable startDate {raw.start_date!r}")
            if not passes_window(start, cutoff):
                self.stats.records_out_of_window += 1
                return
            if aggregator.add(raw, start):
                self.stats.records_accepted += 1
            else:
                self.stats.records_ignored += 1
        except MalformedRecordError as e:
            self.stats.records_malformed += 1
            logger.debug("record_skipped", metric=self.metric.name, reason=e.message)

    def _finalize(self, points: List[DataPoint], now: datetime) -> Tuple[List[DataPoint], bool]:
        if not points:
            return fallback_series(self.metric, now.date(), self.fallback_days), True
        return sorted(points, key=lambda p: p.sort_key, reverse=self.metric.descending), False

    def _notify(self, message: str) -> None:
        if self.observer is None:
            return
        total = self._source.size if self._source is not None else None
        update = Progress(current=self.stats.bytes_processed, total=total, message=message)
        try:
            self.observer(update)
        except Exception:
            logger.warning("progress_observer_failed", metric=self.metric.name, exc_info=True)


class ExtractionRunner:
    """One metric wired to a sink: ``run(source) -> RunResult``."""

    def __init__(
        self,
        metric: Union[str, MetricSpec],
        sink: SeriesSink,
        user_id: Optional[str] = None,
        settings: Optional[Settings] = None,
        observer: Optional[ProgressObserver] = None,
    ):
        self.metric = get_metric(metric) if isinstance(metric, str) else metric
        self.sink = sink
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.observer = observer
        self.key = series_key(self.metric.name, user_id)

    def pipeline(self) -> ExtractionPipeline:
        return ExtractionPipeline(
            self.metric,
            self.sink,
            validate_fragments=self.settings.validate_fragments,
            progress_interval=self.settings.progress_interval,
            fallback_days=self.settings.fallback_days,
            observer=self.observer,
        )

    def run(self, source: Union[str, os.PathLike, ChunkSource], now: Optional[datetime] = None) -> RunResult:
        src = as_source(source, chunk_size=self.settings.chunk_size)
        return self.pipeline().run(src, self.key, now=now)


def run_all(
    source: Union[str, os.PathLike, ChunkSource],
    sink: SeriesSink,
    metrics: Iterable[Union[str, MetricSpec]],
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
    observer: Optional[ProgressObserver] = None,
) -> List[RunResult]:
    """Run several metrics one after another over the same export.

    Each run opens its own stream; the first fatal error stops the sequence.
    """
    settings = settings or get_settings()
    now = now or datetime.now(timezone.utc)
    runners = [ExtractionRunner(m, sink, user_id, settings, observer) for m in metrics]
    return [runner.run(source, now=now) for runner in runners]
