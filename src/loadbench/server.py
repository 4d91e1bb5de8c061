"""Language server exposing the bundled libcst analysis over stdio.

This is the default command of the LSP service adapter, so a load run can
exercise the full protocol path without any third-party language server.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable

from lsprotocol import types
from pygls.lsp.server import LanguageServer

from loadbench import __version__
from loadbench.cst_service import CstSession
from loadbench.host import CompilationSettings, Diagnostic
from loadbench.positions import UTF16
from loadbench.snapshots import Snapshot

_COMPLETION_KINDS = {
    "name": types.CompletionItemKind.Variable,
    "builtin": types.CompletionItemKind.Function,
    "keyword": types.CompletionItemKind.Keyword,
}
_SEVERITIES = {
    "error": types.DiagnosticSeverity.Error,
    "warning": types.DiagnosticSeverity.Warning,
    "information": types.DiagnosticSeverity.Information,
    "hint": types.DiagnosticSeverity.Hint,
}


class WorkspaceHost:
    """Analysis host over the documents a client has opened."""

    def __init__(self, ls, settings: CompilationSettings | None = None) -> None:
        self._ls = ls
        self._settings = settings or CompilationSettings()

    def get_compilation_settings(self) -> CompilationSettings:
        return self._settings

    def get_script_file_names(self) -> list[str]:
        return list(self._ls.workspace.text_documents)

    def get_script_version(self, uri: str) -> str:
        document = self._ls.workspace.text_documents.get(uri)
        if document is None:
            return ""
        return str(document.version or 0)

    def get_script_snapshot(self, uri: str) -> Snapshot | None:
        document = self._ls.workspace.text_documents.get(uri)
        if document is None:
            return None
        return Snapshot(text=document.source, version=document.version or 0)

    def get_current_directory(self) -> str:
        return self._ls.workspace.root_path or str(Path.cwd())

    def get_default_lib_file_name(self, settings: CompilationSettings) -> str:
        return settings.default_lib


class LoadbenchLanguageServer(LanguageServer):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._analysis: CstSession | None = None

    @property
    def analysis(self) -> CstSession:
        if self._analysis is None:
            self._analysis = CstSession(WorkspaceHost(self))
        return self._analysis


server = LoadbenchLanguageServer("loadbench", __version__)


def to_lsp_diagnostics(
    session: CstSession,
    uri: str,
    diagnostics: list[Diagnostic],
    encoding: str = UTF16,
) -> list[types.Diagnostic]:
    """Convert offsets to LSP ranges counted in the negotiated ``encoding``."""
    source_file = session.get_program().get_source_file(uri)
    if source_file is None:
        return []
    length = session.current_snapshot(uri).get_length()
    out: list[types.Diagnostic] = []
    for diagnostic in diagnostics:
        start = source_file.get_encoded_position(min(diagnostic.start, length), encoding)
        end = source_file.get_encoded_position(
            min(diagnostic.start + diagnostic.length, length), encoding
        )
        out.append(
            types.Diagnostic(
                range=types.Range(
                    start=types.Position(line=start.line, character=start.character),
                    end=types.Position(line=end.line, character=end.character),
                ),
                message=diagnostic.message,
                severity=_SEVERITIES.get(diagnostic.category, types.DiagnosticSeverity.Error),
                code=diagnostic.code or None,
                source="loadbench",
            )
        )
    return out


def publish_syntax_diagnostics(ls: LoadbenchLanguageServer, uri: str) -> None:
    session = ls.analysis
    diagnostics = to_lsp_diagnostics(
        session,
        uri,
        session.get_syntactic_diagnostics(uri),
        ls.workspace.position_encoding or UTF16,
    )
    ls.text_document_publish_diagnostics(
        types.PublishDiagnosticsParams(
            uri=uri,
            diagnostics=diagnostics,
            version=int(session.current_version(uri)),
        )
    )


def pull_diagnostics(
    ls: LoadbenchLanguageServer, uri: str, previous_result_id: str | None
) -> types.DocumentDiagnosticReport:
    session = ls.analysis
    result_id = session.current_version(uri)
    if previous_result_id == result_id:
        return types.RelatedUnchangedDocumentDiagnosticReport(result_id=result_id)
    return types.RelatedFullDocumentDiagnosticReport(
        items=to_lsp_diagnostics(
            session,
            uri,
            session.get_semantic_diagnostics(uri),
            ls.workspace.position_encoding or UTF16,
        ),
        result_id=result_id,
    )


def complete(ls: LoadbenchLanguageServer, uri: str, offset: int) -> types.CompletionList:
    info = ls.analysis.get_completions_at_position(uri, offset, {})
    return types.CompletionList(
        is_incomplete=info.is_incomplete,
        items=[
            types.CompletionItem(label=entry.name, kind=_COMPLETION_KINDS.get(entry.kind))
            for entry in info.entries
        ],
    )


@server.feature(types.TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: LoadbenchLanguageServer, params: types.DidOpenTextDocumentParams) -> None:
    publish_syntax_diagnostics(ls, params.text_document.uri)


@server.feature(types.TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: LoadbenchLanguageServer, params: types.DidChangeTextDocumentParams) -> None:
    publish_syntax_diagnostics(ls, params.text_document.uri)


@server.feature(
    types.TEXT_DOCUMENT_DIAGNOSTIC,
    types.DiagnosticOptions(
        identifier="loadbench",
        inter_file_dependencies=False,
        workspace_diagnostics=False,
    ),
)
def document_diagnostic(
    ls: LoadbenchLanguageServer, params: types.DocumentDiagnosticParams
) -> types.DocumentDiagnosticReport:
    return pull_diagnostics(ls, params.text_document.uri, params.previous_result_id)


@server.feature(types.TEXT_DOCUMENT_COMPLETION)
def completion(ls: LoadbenchLanguageServer, params: types.CompletionParams) -> types.CompletionList:
    uri = params.text_document.uri
    document = ls.workspace.get_text_document(uri)
    return complete(ls, uri, document.offset_at_position(params.position))


def start(start_fn: Callable[[], None] | None = None) -> None:
    (start_fn or server.start_io)()


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover
