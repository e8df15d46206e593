"""CLI entry point for the CI test engine."""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import get_args

import typer

from ciengine.test_engine.analytics.analyzer import TestAnalytics
from ciengine.test_engine.analytics.store import JsonLinesResultStore
from ciengine.test_engine.config_loader import (
    build_stage_handlers,
    load_data_specification,
    load_pipeline_config,
    load_suites,
)
from ciengine.test_engine.errors import PipelineError, SpecificationError
from ciengine.test_engine.events import EventBus, WebhookNotifier
from ciengine.test_engine.models.analytics import AnalyticsConfig
from ciengine.test_engine.models.config import ReportFormat
from ciengine.test_engine.models.pipeline import PipelineResult, PipelineStage, Trigger
from ciengine.test_engine.orchestrator import TestOrchestrator
from ciengine.test_engine.pipeline import PipelineRunner
from ciengine.test_engine.reporting import write_report
from ciengine.test_engine.test_data.manager import TestDataManager

# Configure logging - force reconfiguration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
    force=True,
)
logger = logging.getLogger(__name__)

REPORT_DIR_ENV = "CIENGINE_REPORT_DIR"
WEBHOOK_TOKEN_ENV = "CIENGINE_WEBHOOK_TOKEN"

app = typer.Typer()


async def _run_pipeline(
    config_path: Path,
    suites_dir: Path | None,
    trigger: Trigger,
    report_format: ReportFormat | None,
    history: Path | None,
    webhook_url: str | None,
) -> tuple[PipelineResult, ReportFormat, PipelineError | None]:
    """Load configuration and suites, then run the pipeline once.

    Pipeline errors carrying a partial result are returned with it so the
    report is still written.
    """
    pipeline_config = await load_pipeline_config(config_path)
    engine = pipeline_config.engine
    if report_format is not None:
        engine = engine.model_copy(update={"report_format": report_format})

    base_dir = config_path.parent
    if suites_dir is None and pipeline_config.suites_dir:
        suites_dir = base_dir / pipeline_config.suites_dir

    store = JsonLinesResultStore(history) if history else None
    orchestrator = TestOrchestrator(engine, result_store=store)
    if suites_dir is not None:
        for suite in await load_suites(suites_dir):
            orchestrator.add_test_suite(suite)

    event_bus = EventBus()
    if webhook_url:
        WebhookNotifier(webhook_url, token=os.environ.get(WEBHOOK_TOKEN_ENV)).attach(
            event_bus
        )

    runner = PipelineRunner(
        engine,
        orchestrator,
        stage_handlers=build_stage_handlers(pipeline_config, base_dir).handlers(),
        stages=[PipelineStage(name) for name in pipeline_config.stages],
        event_bus=event_bus,
    )
    try:
        result = await runner.run_pipeline(trigger)
    except PipelineError as e:
        if e.result is None:
            raise
        return e.result, engine.report_format, e
    return result, engine.report_format, None


@app.command()
def run(
    config: Path = typer.Option(..., help="Path to pipeline.yaml"),  # noqa: B008
    suites_dir: Path | None = typer.Option(  # noqa: B008
        None, help="Folder of suite files, overrides suites_dir of the config"
    ),
    trigger: str = typer.Option(
        "manual", help="manual, commit, pull_request, scheduled or deployment"
    ),
    report_format: str | None = typer.Option(
        None, help="html, json, xml or junit, overrides the config"
    ),
    report_dir: Path = typer.Option(  # noqa: B008
        Path("reports"), help=f"Report folder, {REPORT_DIR_ENV} overrides it"
    ),
    history: Path | None = typer.Option(  # noqa: B008
        None, help="JSON lines file receiving suite and pipeline results"
    ),
    webhook_url: str | None = typer.Option(
        None, help="URL receiving the pipeline result on completion"
    ),
) -> None:
    """Run the test pipeline and write a report."""
    if trigger not in get_args(Trigger):
        typer.echo(f"Error: Unknown trigger: {trigger}", err=True)
        raise typer.Exit(code=1)
    if report_format is not None and report_format not in get_args(ReportFormat):
        typer.echo(f"Error: Unknown report format: {report_format}", err=True)
        raise typer.Exit(code=1)

    logger.info(f"Pipeline config: {config}")
    logger.info(f"Trigger: {trigger}")

    try:
        result, fmt, error = asyncio.run(
            _run_pipeline(
                config, suites_dir, trigger, report_format, history, webhook_url
            )
        )
    except (FileNotFoundError, SpecificationError) as e:
        logger.error(f"Invalid configuration: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    except PipelineError as e:
        logger.error(f"Pipeline error ({e.kind}): {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if error is not None:
        logger.error(f"Pipeline error ({error.kind}): {error}")
        typer.echo(f"Error: {error}", err=True)

    directory = Path(os.environ.get(REPORT_DIR_ENV) or report_dir)
    report_path = write_report(result, fmt, directory)

    output = {
        "id": result.id,
        "trigger": result.trigger,
        "success": result.success,
        "score": result.score,
        "duration": result.duration,
        "stages": [
            {
                "stage": r.stage.value,
                "success": r.success,
                "duration": r.duration,
                "error": r.error,
            }
            for r in result.stage_results
        ],
        "not_attempted": [stage.value for stage in result.not_attempted],
        "recommendations": list(result.recommendations),
        "report": str(report_path),
    }
    if error is not None:
        output["error"] = error.kind
    typer.echo(json.dumps(output, indent=2))

    if not result.success:
        logger.error(f"Pipeline failed with score {result.score:.2f}")
        raise typer.Exit(code=1)


@app.command()
def analyze(
    history: Path = typer.Option(..., help="JSON lines history file"),  # noqa: B008
    window_size: int = typer.Option(50, help="Most recent runs to analyze"),
    coverage_threshold: float = typer.Option(
        0.0, help="Coverage below which a recommendation is emitted"
    ),
) -> None:
    """Print trends, flaky tests and recommendations for recorded runs."""
    if not history.exists():
        typer.echo(f"Error: History file not found: {history}", err=True)
        raise typer.Exit(code=1)

    analytics = TestAnalytics(
        AnalyticsConfig(window_size=window_size, coverage_threshold=coverage_threshold)
    )
    reports = analytics.analyze_store(JsonLinesResultStore(history))
    typer.echo(
        json.dumps(
            {name: report.model_dump(mode="json") for name, report in reports.items()},
            indent=2,
        )
    )


@app.command("generate-data")
def generate_data(
    spec: Path = typer.Option(..., help="Test data specification YAML"),  # noqa: B008
    output: Path | None = typer.Option(  # noqa: B008
        None, help="Write the data set here instead of stdout"
    ),
    performance: bool = typer.Option(
        False, help="Generate in parallel batches sized from available memory"
    ),
    index_field: str | None = typer.Option(
        None, help="Sort performance data by this field and index it"
    ),
) -> None:
    """Generate a test data set from a specification."""
    manager = TestDataManager()

    async def generate() -> str:
        specification = await load_data_specification(spec)
        if performance:
            data_set = await manager.generate_performance_test_data(
                specification, index_field=index_field
            )
        else:
            data_set = await manager.generate_test_data(specification)
        return data_set.model_dump_json(indent=2)

    try:
        document = asyncio.run(generate())
    except (FileNotFoundError, SpecificationError) as e:
        logger.error(f"Test data generation failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if output is None:
        typer.echo(document)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(document, encoding="utf-8")
    logger.info(f"Wrote data set to {output}")


if __name__ == "__main__":  # pragma: no cover
    app()
