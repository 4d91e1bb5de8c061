from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from loadbench.cli import app, build_service, run_load
from loadbench.clock import ManualClock
from loadbench.config import LoadSettings
from loadbench.cst_service import CstAnalysisService
from loadbench.lsp_service import LspAnalysisService, LspClientError
from loadbench.reporting import ConsoleReporter
from tests.fakes import FakeSession, plain


def _project(tmp_path: Path) -> Path:
    root = tmp_path / "proj"
    (root / "__pycache__").mkdir(parents=True)
    (root / "a.py").write_text("x = 1\n")
    (root / "big.py").write_text("value = 1\n" * 3)
    (root / "__pycache__" / "cached.py").write_text("x = 1\n")
    return root


class _FakeService:
    def __init__(self) -> None:
        self.session: FakeSession | None = None

    @property
    def location(self) -> str:
        return "/opt/analysis"

    def create_session(self, host) -> FakeSession:
        self.session = FakeSession(host)
        return self.session


def test_run_load_reports_each_stage(tmp_path: Path) -> None:
    root = _project(tmp_path)
    clock = ManualClock()
    lines: list[str] = []
    service = _FakeService()

    summary = run_load(
        root,
        LoadSettings(large_size_threshold=10, batch_size=4),
        clock=clock,
        reporter=ConsoleReporter(clock=clock, echo=lines.append),
        service=service,
    )

    assert (summary.files, summary.large_files, summary.chunks) == (2, 1, 5)
    assert service.session is not None and service.session.closed
    texts = [plain(line)[7:] for line in lines]
    assert texts[:8] == [
        "Loading analysis library...",
        "...at /opt/analysis",
        f"Project root at {root.resolve()}",
        "Creating analysis host...",
        "Creating analysis session...",
        "Enumerating directory...",
        "...2 found.",
        "Loading...",
    ]
    assert texts[8].startswith("0) a.py read:0")
    assert texts[9] == "1) big.py read:0 0K"
    assert texts[-1] == "...2 files loaded, 1 in 5 chunks, 0ms."


def test_build_service_follows_settings() -> None:
    assert isinstance(build_service(LoadSettings()), CstAnalysisService)
    service = build_service(LoadSettings(service="lsp", server_command=("srv", "--stdio")))
    assert isinstance(service, LspAnalysisService)
    assert service.command == ["srv", "--stdio"]


def test_cli_run_with_bundled_service(tmp_path: Path) -> None:
    root = _project(tmp_path)
    config = tmp_path / "loadbench.toml"
    config.write_text(
        "[loadbench]\n"
        "large_size_threshold = 10\n"
        "batch_size = 4\n"
        "request_syntactic_diagnostics_each_step = true\n"
        "request_semantic_diagnostics_each_step = true\n"
    )
    runner = CliRunner()
    result = runner.invoke(app, [str(root), "--config", str(config)])
    assert result.exit_code == 0, result.output
    output = plain(result.output)
    assert "...2 found." in output
    assert "...2 files loaded, 1 in 5 chunks" in output


def test_cli_rejects_invalid_settings(tmp_path: Path) -> None:
    root = _project(tmp_path)
    config = tmp_path / "loadbench.toml"
    config.write_text("[loadbench]\nbatch_size = 0\n")
    result = CliRunner().invoke(app, [str(root), "--config", str(config)])
    assert result.exit_code == 2


class _DyingSession(FakeSession):
    def get_completions_at_position(self, path, offset, options):
        raise LspClientError("LSP stream closed")

    def close(self) -> None:
        super().close()
        raise LspClientError("LSP server failed (exit 1)")


class _DyingService(_FakeService):
    def create_session(self, host) -> FakeSession:
        self.session = _DyingSession(host)
        return self.session


def test_failed_close_does_not_hide_the_run_error(tmp_path: Path) -> None:
    root = _project(tmp_path)
    clock = ManualClock()
    service = _DyingService()
    with pytest.raises(LspClientError, match="stream closed") as exc_info:
        run_load(
            root,
            LoadSettings(),
            clock=clock,
            reporter=ConsoleReporter(clock=clock, echo=lambda _line: None),
            service=service,
        )
    assert service.session is not None and service.session.closed
    assert exc_info.value.__notes__ == [
        "Closing the analysis session also failed: LSP server failed (exit 1)"
    ]


def test_close_error_surfaces_after_a_clean_run(tmp_path: Path) -> None:
    root = _project(tmp_path)
    clock = ManualClock()

    class _CloseFails(_FakeService):
        def create_session(self, host) -> FakeSession:
            session = FakeSession(host)

            def close() -> None:
                raise LspClientError("LSP server failed (exit 1)")

            session.close = close
            return session

    with pytest.raises(LspClientError, match="exit 1"):
        run_load(
            root,
            LoadSettings(),
            clock=clock,
            reporter=ConsoleReporter(clock=clock, echo=lambda _line: None),
            service=_CloseFails(),
        )
