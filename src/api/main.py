from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware

from healthkit_extract.aggregators import DataPoint
from healthkit_extract.config import get_settings
from healthkit_extract.exceptions import SinkFailureError, SourceUnavailableError, UnknownMetricError
from healthkit_extract.logging import get_logger, setup_logging
from healthkit_extract.metrics import DEFAULT_METRICS, METRICS, get_metric
from healthkit_extract.pipeline import ExtractionRunner, run_all
from healthkit_extract.records import to_datetime
from healthkit_extract.sinks import SeriesSink, build_sink, series_key

logger = get_logger(__name__)


def _safe_run(func, *args, **kwargs) -> Any:
    """Wraps extraction calls with consistent error handling."""
    try:
        return func(*args, **kwargs)
    except UnknownMetricError as e:
        raise HTTPException(status_code=404, detail=e.message) from e
    except SourceUnavailableError as e:
        raise HTTPException(status_code=404, detail=e.message) from e
    except SinkFailureError as e:
        raise HTTPException(status_code=502, detail=e.message) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


def get_sink() -> SeriesSink:
    return build_sink(get_settings())


def require_user(x_user_id: Optional[str] = Header(None)) -> str:
    """Opaque "which user is this request for" predicate."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def _parse_now(now: Optional[str]) -> Optional[datetime]:
    if now is None:
        return None
    parsed = to_datetime(now)
    if parsed is None:
        raise ValueError(f"unparseable timestamp: {now!r}")
    return parsed


settings = get_settings()
setup_logging(debug=settings.debug, level=settings.log_level)

app = FastAPI(
    title="HealthKit Extract API",
    version="0.2.0",
    description="Streams Apple Health exports into per-metric time series.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/", include_in_schema=False)
def root() -> Dict[str, str]:
    return {"message": "See /docs for the interactive API."}

@app.get("/health", include_in_schema=False)
def health() -> Dict[str, str]:
    return {"status": "ok"}

@app.get("/metrics", tags=["metrics"], response_model=List[Dict[str, Any]])
def list_metrics() -> List[Dict[str, Any]]:
    return [spec.to_dict() for spec in METRICS.values()]

@app.post("/extract/{metric}", tags=["extract"], response_model=Dict[str, Any])
def extract_metric(
    metric: str,
    file_path: str = Query(..., description="Path to the Apple Health export.xml"),
    now: Optional[str] = Query(None, description="Reference time for the retention window (ISO-8601 or Apple format)"),
    user_id: str = Depends(require_user),
    sink: SeriesSink = Depends(get_sink),
) -> Dict[str, Any]:
    def _run():
        runner = ExtractionRunner(metric, sink, user_id=user_id)
        return runner.run(file_path, now=_parse_now(now)).to_dict()
    return _safe_run(_run)

@app.post("/extract", tags=["extract"], response_model=List[Dict[str, Any]])
def extract_all(
    response: Response,
    file_path: str = Query(..., description="Path to the Apple Health export.xml"),
    metrics: Optional[List[str]] = Query(None, description="Metrics to extract, run sequentially. Defaults to the upload set."),
    now: Optional[str] = Query(None, description="Reference time for the retention windows"),
    user_id: str = Depends(require_user),
    sink: SeriesSink = Depends(get_sink),
) -> List[Dict[str, Any]]:
    def _run():
        results = run_all(file_path, sink, metrics or DEFAULT_METRICS, user_id=user_id, now=_parse_now(now))
        return [r.to_dict() for r in results]
    out = _safe_run(_run)
    response.headers["X-Total-Count"] = str(len(out))
    return out

@app.get("/series/{metric}", tags=["series"], response_model=List[Dict[str, Any]])
def read_series(
    metric: str,
    response: Response,
    user_id: str = Depends(require_user),
    sink: SeriesSink = Depends(get_sink),
) -> List[Dict[str, Any]]:
    """Return the last persisted series for the requesting user."""
    def _fetch():
        spec = get_metric(metric)
        key = series_key(spec.name, user_id)
        series = sink.read(key)
        if series is None:
            return None
        try:
            return [DataPoint.from_dict(p).to_dict() for p in series]
        except (TypeError, ValueError) as e:
            raise SinkFailureError(key, f"stored series is invalid: {e}") from e
    out = _safe_run(_fetch)
    if out is None:
        raise HTTPException(status_code=404, detail=f"No {metric} series for this user")
    response.headers["X-Total-Count"] = str(len(out))
    return out
