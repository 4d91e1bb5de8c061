from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from loadbench.clock import Clock, MonotonicClock
from loadbench.config import LoadSettings, load_settings
from loadbench.cst_service import CstAnalysisService, default_project_root
from loadbench.discovery import enumerate_files
from loadbench.driver import IncrementalLoadDriver, LoadSummary
from loadbench.host import AnalysisService
from loadbench.lsp_service import LspAnalysisService
from loadbench.reporting import ConsoleReporter
from loadbench.snapshots import SnapshotStore

app = typer.Typer(add_completion=False)


def build_service(settings: LoadSettings) -> AnalysisService:
    if settings.service == "lsp":
        return LspAnalysisService(
            settings.server_command,
            timeout_ms=settings.lsp_timeout_ms,
        )
    return CstAnalysisService()


def run_load(
    root: Path | None,
    settings: LoadSettings,
    *,
    clock: Clock | None = None,
    reporter: ConsoleReporter | None = None,
    service: AnalysisService | None = None,
) -> LoadSummary:
    clock = clock or MonotonicClock()
    reporter = reporter or ConsoleReporter(
        clock=clock,
        interval_ms=settings.report_interval_ms,
        slow_file_ms=settings.slow_file_ms,
    )
    reporter.log_timed("Loading analysis library...")
    service = service or build_service(settings)
    reporter.log_timed("...at " + service.location)

    project_root = (root or default_project_root()).resolve()
    reporter.log_timed(f"Project root at {project_root}")

    reporter.log_timed("Creating analysis host...")
    store = SnapshotStore(project_root)
    reporter.log_timed("Creating analysis session...")
    session = service.create_session(store)
    try:
        reporter.log_timed("Enumerating directory...")
        files = enumerate_files(project_root, settings.parse_extensions, settings.exclude_dirs)
        reporter.log_timed(f"...{len(files)} found.")

        reporter.log_timed("Loading...")
        driver = IncrementalLoadDriver(
            settings=settings,
            store=store,
            session=session,
            reporter=reporter,
            clock=clock,
        )
        summary = driver.run(files)
    except BaseException as exc:
        try:
            session.close()
        except Exception as close_exc:
            exc.add_note(f"Closing the analysis session also failed: {close_exc}")
        raise
    session.close()
    reporter.log_timed(
        f"...{summary.files} files loaded, {summary.large_files} in"
        f" {summary.chunks} chunks, {summary.elapsed_ms}ms."
    )
    return summary


@app.command()
def run(
    root: Optional[Path] = typer.Argument(
        None,
        exists=True,
        file_okay=False,
        help="Project root to replay (defaults to the bundled analysis library).",
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", help="Settings file (defaults to ./loadbench.toml)."
    ),
) -> None:
    """Replay a project's files into an analysis service and time every step."""
    try:
        settings = load_settings(config_path=config)
    except ValidationError as exc:
        raise typer.BadParameter(f"Invalid settings: {exc}") from exc
    run_load(root, settings)
