"""Analysis service adapter for stdio Language Server Protocol servers.

The session keeps the server's view of each file in step with the host's
snapshots. Before every query it opens new files and sends each appended
chunk as one incremental ``didChange``, built from the snapshot change range.
All requests block until their response arrives or the deadline passes.
"""

from __future__ import annotations

import json
import os
import select
import subprocess
import sys
import time
from pathlib import Path
from typing import Callable, Mapping, Sequence, TypeAlias

from lsprotocol import converters, types

from loadbench.host import (
    AnalysisHost,
    CompletionEntry,
    CompletionInfo,
    Diagnostic,
)
from loadbench.positions import LineAndCharacter, LineMap
from loadbench.snapshots import Snapshot

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]

LANGUAGE_IDS = {
    ".py": "python",
    ".pyi": "python",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".json": "json",
}
_SEVERITY_CATEGORIES = {1: "error", 2: "warning", 3: "information", 4: "hint"}
_CONVERTER = converters.get_converter()


class LspClientError(RuntimeError):
    pass


def default_server_command() -> list[str]:
    return [sys.executable, "-m", "loadbench.server"]


def _language_id(path: str) -> str:
    return LANGUAGE_IDS.get(Path(path).suffix, "plaintext")


def _wait_readable(stream, deadline_ns: int) -> None:
    read = getattr(stream, "read", None)
    fileno = getattr(stream, "fileno", None)
    if fileno is None:
        if read is None:
            raise LspClientError("LSP stream does not expose fileno")
        if time.monotonic_ns() >= deadline_ns:
            raise LspClientError("LSP response timed out")
        return
    try:
        fd = fileno()
    except (OSError, ValueError) as exc:
        if read is None:
            raise LspClientError("LSP stream fileno failed") from exc
        if time.monotonic_ns() >= deadline_ns:
            raise LspClientError("LSP response timed out")
        return
    remaining_ns = deadline_ns - time.monotonic_ns()
    timeout = max(0.0, remaining_ns / 1_000_000_000)
    ready, _, _ = select.select([fd], [], [], timeout)
    if not ready:
        raise LspClientError("LSP response timed out")


def _read_exact(stream, length: int, deadline_ns: int) -> bytes:
    body = bytearray()
    while len(body) < length:
        _wait_readable(stream, deadline_ns)
        chunk = stream.read(length - len(body))
        if not chunk:
            raise LspClientError("LSP stream closed")
        body.extend(chunk)
    return bytes(body)


def _read_rpc(stream, deadline_ns: int) -> JSONObject:
    header = b""
    while b"\r\n\r\n" not in header:
        _wait_readable(stream, deadline_ns)
        chunk = stream.read(1)
        if not chunk:
            raise LspClientError("LSP stream closed")
        header += chunk
    head, _, rest = header.partition(b"\r\n\r\n")
    length = 0
    for line in head.split(b"\r\n"):
        if line.lower().startswith(b"content-length:"):
            length = int(line.split(b":", 1)[1].strip())
            break
    if length <= 0:
        raise LspClientError("Invalid LSP Content-Length")
    body = rest
    if len(body) < length:
        body += _read_exact(stream, length - len(body), deadline_ns)
    elif len(body) > length:
        body = body[:length]
    message = json.loads(body.decode("utf-8"))
    if not isinstance(message, dict):
        raise LspClientError("Invalid LSP message payload")
    return message


def _write_rpc(stream, message: JSONObject) -> None:
    payload = json.dumps(message).encode("utf-8")
    header = f"Content-Length: {len(payload)}\r\n\r\n".encode("utf-8")
    stream.write(header + payload)
    stream.flush()


def _read_response(
    stream,
    request_id: int,
    deadline_ns: int,
    *,
    notification_callback: Callable[[JSONObject], None] | None = None,
    request_callback: Callable[[JSONObject], None] | None = None,
) -> JSONObject:
    while True:
        message = _read_rpc(stream, deadline_ns)
        if "method" in message:
            if "id" in message:
                if request_callback is not None:
                    request_callback(message)
            elif notification_callback is not None:
                notification_callback(message)
            continue
        if message.get("id") == request_id:
            return message


class LspSourceFile:
    def __init__(self, line_map: LineMap) -> None:
        self._line_map = line_map

    def get_line_and_character_of_position(self, offset: int) -> LineAndCharacter:
        return self._line_map.position_of(offset)


class LspProgram:
    def __init__(self, session: LspSession) -> None:
        self._session = session

    def get_source_file(self, path: str) -> LspSourceFile | None:
        line_map = self._session.line_map_for(path)
        return LspSourceFile(line_map) if line_map is not None else None


class LspSession:
    def __init__(
        self,
        host: AnalysisHost,
        stdin,
        stdout,
        *,
        timeout_ms: int = 60_000,
        process: subprocess.Popen | None = None,
    ) -> None:
        self._host = host
        self._stdin = stdin
        self._stdout = stdout
        self._timeout_ns = int(timeout_ms) * 1_000_000
        self._process = process
        self._next_id = 0
        self._position_encoding = types.PositionEncodingKind.Utf16.value
        self._documents: dict[str, Snapshot] = {}
        self._line_maps: dict[str, LineMap] = {}
        self._published: dict[str, list[JSONObject]] = {}
        # uri -> version whose publishDiagnostics has not arrived yet
        self._awaiting: dict[str, int] = {}
        self._pulled: dict[str, tuple[str | None, list[Diagnostic]]] = {}
        self._closed = False

    @property
    def position_encoding(self) -> str:
        return self._position_encoding

    def _deadline_ns(self) -> int:
        return time.monotonic_ns() + self._timeout_ns

    def _notify(self, method: str, params: object) -> None:
        _write_rpc(
            self._stdin,
            {"jsonrpc": "2.0", "method": method, "params": _CONVERTER.unstructure(params)},
        )

    def _request(self, method: str, params: object) -> JSONValue:
        self._next_id += 1
        request_id = self._next_id
        message: JSONObject = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = _CONVERTER.unstructure(params)
        _write_rpc(self._stdin, message)
        response = _read_response(
            self._stdout,
            request_id,
            self._deadline_ns(),
            notification_callback=self._on_notification,
            request_callback=self._on_server_request,
        )
        if response.get("error"):
            raise LspClientError(f"LSP error for {method}: {response['error']}")
        return response.get("result")

    def _on_notification(self, message: JSONObject) -> None:
        if message.get("method") != types.TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS:
            return
        params = message.get("params")
        if not isinstance(params, dict):
            return
        uri = params.get("uri")
        diagnostics = params.get("diagnostics")
        if not isinstance(uri, str) or not isinstance(diagnostics, list):
            return
        version = params.get("version")
        awaited = self._awaiting.get(uri)
        if awaited is not None and isinstance(version, int) and version < awaited:
            return
        self._awaiting.pop(uri, None)
        self._published[uri] = [item for item in diagnostics if isinstance(item, dict)]

    def _on_server_request(self, message: JSONObject) -> None:
        # Servers block on their own requests (configuration, progress tokens,
        # capability registration); answer each with an empty result.
        result: JSONValue = None
        params = message.get("params")
        if message.get("method") == types.WORKSPACE_CONFIGURATION and isinstance(params, dict):
            items = params.get("items")
            result = [None] * (len(items) if isinstance(items, list) else 0)
        _write_rpc(self._stdin, {"jsonrpc": "2.0", "id": message["id"], "result": result})

    def initialize(self) -> JSONObject:
        root = Path(self._host.get_current_directory()).resolve()
        params = types.InitializeParams(
            process_id=os.getpid(),
            root_uri=root.as_uri(),
            capabilities=types.ClientCapabilities(
                general=types.GeneralClientCapabilities(
                    position_encodings=[
                        types.PositionEncodingKind.Utf32,
                        types.PositionEncodingKind.Utf16,
                    ]
                ),
                text_document=types.TextDocumentClientCapabilities(
                    synchronization=types.TextDocumentSyncClientCapabilities(),
                    completion=types.CompletionClientCapabilities(),
                    publish_diagnostics=types.PublishDiagnosticsClientCapabilities(),
                    diagnostic=types.DiagnosticClientCapabilities(),
                ),
            ),
            workspace_folders=[types.WorkspaceFolder(uri=root.as_uri(), name=root.name)],
        )
        result = self._request(types.INITIALIZE, params)
        if not isinstance(result, dict):
            raise LspClientError(f"Unexpected initialize result: {type(result).__name__}")
        capabilities = result.get("capabilities")
        if isinstance(capabilities, dict):
            encoding = capabilities.get("positionEncoding")
            if isinstance(encoding, str):
                self._position_encoding = encoding
        self._notify(types.INITIALIZED, types.InitializedParams())
        return result

    def _position(self, line_map: LineMap, offset: int) -> types.Position:
        position = line_map.encoded_position(offset, self._position_encoding)
        return types.Position(line=position.line, character=position.character)

    def _sync(self, path: str) -> str:
        snapshot = self._host.get_script_snapshot(path)
        if snapshot is None:
            raise LspClientError(f"No snapshot for {path}")
        uri = Path(path).as_uri()
        sent = self._documents.get(path)
        if sent is None:
            self._notify(
                types.TEXT_DOCUMENT_DID_OPEN,
                types.DidOpenTextDocumentParams(
                    text_document=types.TextDocumentItem(
                        uri=uri,
                        language_id=_language_id(path),
                        version=snapshot.version,
                        text=snapshot.text,
                    )
                ),
            )
            self._line_maps[path] = LineMap.from_text(snapshot.text)
        elif sent.version != snapshot.version:
            line_map = self._line_maps[path]
            change = snapshot.get_change_range(sent)
            if change is None:
                content_change: object = types.TextDocumentContentChangeWholeDocument(
                    text=snapshot.text
                )
                self._line_maps[path] = LineMap.from_text(snapshot.text)
            else:
                at = self._position(line_map, change.span_start)
                content_change = types.TextDocumentContentChangePartial(
                    range=types.Range(start=at, end=at),
                    text=snapshot.get_text(
                        change.span_start, change.span_start + change.new_length
                    ),
                )
                line_map.extend(snapshot.text, change.span_start)
            self._notify(
                types.TEXT_DOCUMENT_DID_CHANGE,
                types.DidChangeTextDocumentParams(
                    text_document=types.VersionedTextDocumentIdentifier(
                        uri=uri, version=snapshot.version
                    ),
                    content_changes=[content_change],
                ),
            )
        if sent is None or sent.version != snapshot.version:
            self._awaiting[uri] = snapshot.version
        self._documents[path] = snapshot
        return uri

    def line_map_for(self, path: str) -> LineMap | None:
        snapshot = self._host.get_script_snapshot(path)
        if snapshot is None:
            return None
        sent = self._documents.get(path)
        if sent is not None and sent.version == snapshot.version:
            return self._line_maps[path]
        return LineMap.from_text(snapshot.text)

    def _diagnostics(self, path: str, items: list[JSONObject]) -> list[Diagnostic]:
        line_map = self._line_maps[path]
        out: list[Diagnostic] = []
        for item in items:
            range_ = item.get("range") or {}
            start = range_.get("start") or {}
            end = range_.get("end") or {}
            start_offset = line_map.offset_of_encoded(
                int(start.get("line", 0)),
                int(start.get("character", 0)),
                self._position_encoding,
            )
            end_offset = line_map.offset_of_encoded(
                int(end.get("line", 0)),
                int(end.get("character", 0)),
                self._position_encoding,
            )
            code = item.get("code")
            out.append(
                Diagnostic(
                    start=start_offset,
                    length=max(0, end_offset - start_offset),
                    message=str(item.get("message", "")),
                    category=_SEVERITY_CATEGORIES.get(item.get("severity") or 1, "error"),
                    code="" if code is None else str(code),
                )
            )
        return out

    def _await_published(self, uri: str) -> None:
        deadline_ns = self._deadline_ns()
        while uri in self._awaiting:
            message = _read_rpc(self._stdout, deadline_ns)
            if "method" not in message:
                continue
            if "id" in message:
                self._on_server_request(message)
            else:
                self._on_notification(message)

    def get_syntactic_diagnostics(self, path: str) -> list[Diagnostic]:
        """Diagnostics the server pushes for the synced version of the file.

        A publication tagged with an older version is skipped; an untagged one
        is taken as the answer to the latest change.
        """
        uri = self._sync(path)
        self._await_published(uri)
        return self._diagnostics(path, self._published.get(uri, []))

    def get_semantic_diagnostics(self, path: str) -> list[Diagnostic]:
        """Pull diagnostics; an ``unchanged`` report reuses the previous items."""
        uri = self._sync(path)
        previous_id, previous_items = self._pulled.get(uri, (None, []))
        result = self._request(
            types.TEXT_DOCUMENT_DIAGNOSTIC,
            types.DocumentDiagnosticParams(
                text_document=types.TextDocumentIdentifier(uri=uri),
                previous_result_id=previous_id,
            ),
        )
        if not isinstance(result, dict):
            raise LspClientError(f"Unexpected diagnostic result: {type(result).__name__}")
        result_id = result.get("resultId")
        result_id = result_id if isinstance(result_id, str) else None
        if result.get("kind") == types.DocumentDiagnosticReportKind.Unchanged.value:
            diagnostics = previous_items
        else:
            raw_items = result.get("items")
            items = (
                [item for item in raw_items if isinstance(item, dict)]
                if isinstance(raw_items, list)
                else []
            )
            diagnostics = self._diagnostics(path, items)
        self._pulled[uri] = (result_id, diagnostics)
        return list(diagnostics)

    def get_completions_at_position(
        self, path: str, offset: int, options: Mapping[str, object]
    ) -> CompletionInfo | None:
        uri = self._sync(path)
        snapshot = self._documents[path]
        offset = max(0, min(offset, snapshot.get_length()))
        result = self._request(
            types.TEXT_DOCUMENT_COMPLETION,
            types.CompletionParams(
                text_document=types.TextDocumentIdentifier(uri=uri),
                position=self._position(self._line_maps[path], offset),
            ),
        )
        if result is None:
            return None
        is_incomplete = False
        if isinstance(result, dict):
            is_incomplete = bool(result.get("isIncomplete", False))
            items = result.get("items")
        else:
            items = result
        if not isinstance(items, list):
            raise LspClientError(f"Unexpected completion result: {type(result).__name__}")
        entries = tuple(
            CompletionEntry(name=str(item.get("label", "")), kind=str(item.get("kind", "")))
            for item in items
            if isinstance(item, dict)
        )
        return CompletionInfo(entries=entries, is_incomplete=is_incomplete)

    def get_program(self) -> LspProgram:
        return LspProgram(self)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._request(types.SHUTDOWN, None)
            _write_rpc(self._stdin, {"jsonrpc": "2.0", "method": types.EXIT})
        except (LspClientError, OSError):
            # A server that died mid-run cannot shut down; do not leave it behind.
            if self._process is not None:
                self._process.kill()
                self._process.communicate(timeout=1.0)
            raise
        if self._process is None:
            return
        try:
            self._process.communicate(timeout=max(1.0, self._timeout_ns / 1_000_000_000))
        except subprocess.TimeoutExpired:
            self._process.kill()
            self._process.communicate(timeout=1.0)
        if self._process.returncode not in (0, None):
            raise LspClientError(f"LSP server failed (exit {self._process.returncode})")


class LspAnalysisService:
    def __init__(
        self,
        command: Sequence[str] = (),
        *,
        timeout_ms: int = 60_000,
        process_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        self.command = list(command) or default_server_command()
        self.timeout_ms = timeout_ms
        self._process_factory = process_factory

    @property
    def location(self) -> str:
        return " ".join(self.command)

    def create_session(self, host: AnalysisHost) -> LspSession:
        proc = self._process_factory(
            self.command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            bufsize=0,
        )
        assert proc.stdin is not None
        assert proc.stdout is not None
        session = LspSession(
            host,
            proc.stdin,
            proc.stdout,
            timeout_ms=self.timeout_ms,
            process=proc,
        )
        session.initialize()
        return session
