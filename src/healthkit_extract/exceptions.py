"""Exception hierarchy for the extraction pipeline."""

from typing import Any, Optional


class ExtractionError(Exception):
    """Base exception for healthkit_extract."""

    def __init__(
        self,
        message: str,
        code: str = "EXTRACTION_ERROR",
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class SourceUnavailableError(ExtractionError):
    """The export stream could not be opened or read. Fatal to the run."""

    def __init__(self, source: str, reason: str):
        super().__init__(
            message=f"Source unavailable ({source}): {reason}",
            code="SOURCE_UNAVAILABLE",
            details={"source": source},
        )


class SinkFailureError(ExtractionError):
    """Persisting the final series failed. Fatal to the run."""

    def __init__(self, key: str, reason: str):
        super().__init__(
            message=f"Failed to write series {key}: {reason}",
            code="SINK_FAILURE",
            details={"key": key},
        )


class MalformedRecordError(ExtractionError):
    """A single record is unusable; the pipeline counts it and moves on."""

    def __init__(self, reason: str, fragment: str = ""):
        super().__init__(
            message=f"Malformed record: {reason}",
            code="RECORD_MALFORMED",
            details={"fragment": fragment[:200]},
        )


class UnknownMetricError(ExtractionError):
    def __init__(self, name: str):
        super().__init__(
            message=f"Unknown metric: {name}",
            code="UNKNOWN_METRIC",
            details={"metric": name},
        )
