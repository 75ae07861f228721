"""Command line entry point: ``healthkit-extract``."""

import json
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer

from .config import get_settings
from .exceptions import ExtractionError, SinkFailureError, SourceUnavailableError, UnknownMetricError
from .logging import setup_logging
from .metrics import DEFAULT_METRICS, METRICS
from .pipeline import run_all
from .records import to_datetime
from .sinks import FileSink, build_sink

# 2 is click's own usage-error code; argument errors found later reuse it.
USAGE_EXIT_CODE = 2
SOURCE_EXIT_CODE = 3
SINK_EXIT_CODE = 4


def create_app() -> typer.Typer:
    app = typer.Typer(add_completion=False, help="Extract time series from Apple Health exports.")

    @app.command("extract")
    def extract_command(
        export_xml: Path = typer.Argument(..., help="Path to the Apple Health export.xml"),
        metric: Optional[List[str]] = typer.Option(
            None,
            "--metric",
            "-m",
            help="Metric to extract; repeat for several. Defaults to the upload set.",
        ),
        user_id: Optional[str] = typer.Option(None, "--user-id", help="Key output under data/<user>/"),
        output_dir: Optional[Path] = typer.Option(
            None,
            "--output-dir",
            "-o",
            help="Write JSON files here instead of the configured storage backend.",
        ),
        now: Optional[str] = typer.Option(None, "--now", help="Reference time for retention windows (ISO-8601)."),
    ) -> None:
        """Run the selected extractions one after another and print a JSON summary per metric."""
        settings = get_settings()
        setup_logging(debug=settings.debug, level=settings.log_level)

        reference: Optional[datetime] = None
        if now is not None:
            reference = to_datetime(now)
            if reference is None:
                raise typer.BadParameter(f"unparseable timestamp {now!r}", param_hint="--now")

        sink = FileSink(output_dir) if output_dir is not None else build_sink(settings)
        try:
            results = run_all(
                export_xml,
                sink,
                metric or DEFAULT_METRICS,
                user_id=user_id,
                now=reference,
                settings=settings,
            )
        except UnknownMetricError as exc:
            _emit_error(exc)
            raise typer.Exit(code=USAGE_EXIT_CODE) from exc
        except SourceUnavailableError as exc:
            _emit_error(exc)
            raise typer.Exit(code=SOURCE_EXIT_CODE) from exc
        except SinkFailureError as exc:
            _emit_error(exc)
            raise typer.Exit(code=SINK_EXIT_CODE) from exc
        except ValueError as exc:
            typer.echo(json.dumps({"error": {"code": "INVALID_ARGUMENT", "message": str(exc)}}), err=True)
            raise typer.Exit(code=USAGE_EXIT_CODE) from exc

        for result in results:
            typer.echo(json.dumps(result.to_dict()))

    @app.command("metrics")
    def metrics_command() -> None:
        """List the registered metrics."""
        for spec in METRICS.values():
            typer.echo(json.dumps(spec.to_dict(), ensure_ascii=False))

    return app


def _emit_error(exc: ExtractionError) -> None:
    payload = {"error": {"code": exc.code, "message": exc.message, "details": exc.details}}
    typer.echo(json.dumps(payload), err=True)


app = create_app()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
