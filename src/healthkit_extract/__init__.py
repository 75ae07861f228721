from .aggregators import DataPoint
from .exceptions import (
    ExtractionError,
    MalformedRecordError,
    SinkFailureError,
    SourceUnavailableError,
    UnknownMetricError,
)
from .metrics import DEFAULT_METRICS, METRICS, MetricSpec, get_metric
from .pipeline import ExtractionPipeline, ExtractionRunner, PipelineState, Progress, RunResult, run_all
from .records import RawRecord, RecordFieldExtractor, to_datetime
from .scanner import ChunkBoundaryScanner, iter_elements
from .sinks import FileSink, S3Sink, series_key
from .sources import FileSource, S3Source
from .window import RetentionPeriod, passes_window

__all__ = [
    "ChunkBoundaryScanner",
    "iter_elements",
    "RawRecord",
    "RecordFieldExtractor",
    "to_datetime",
    "RetentionPeriod",
    "passes_window",
    "DataPoint",
    "MetricSpec",
    "METRICS",
    "DEFAULT_METRICS",
    "get_metric",
    "ExtractionPipeline",
    "ExtractionRunner",
    "PipelineState",
    "Progress",
    "RunResult",
    "run_all",
    "FileSource",
    "S3Source",
    "FileSink",
    "S3Sink",
    "series_key",
    "ExtractionError",
    "MalformedRecordError",
    "SinkFailureError",
    "SourceUnavailableError",
    "UnknownMetricError",
]
