from __future__ import annotations

import io
import json
import time

import pytest

from loadbench.lsp_service import (
    LspClientError,
    _read_exact,
    _read_response,
    _read_rpc,
    _wait_readable,
    _write_rpc,
)


def _rpc_message(payload: dict) -> bytes:
    body = json.dumps(payload).encode("utf-8")
    header = f"Content-Length: {len(body)}\r\n\r\n".encode("utf-8")
    return header + body


def _deadline() -> int:
    return time.monotonic_ns() + 1_000_000_000


class _Chunky:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._sent = False

    def read(self, _n: int) -> bytes:
        if self._sent:
            return b""
        self._sent = True
        return self._data


def test_read_rpc_invalid_length() -> None:
    stream = io.BytesIO(b"Content-Length: 0\r\n\r\n{}")
    with pytest.raises(LspClientError, match="Content-Length"):
        _read_rpc(stream, _deadline())


def test_read_rpc_missing_content_length_header() -> None:
    stream = io.BytesIO(b"Foo: bar\r\n\r\n{}")
    with pytest.raises(LspClientError, match="Content-Length"):
        _read_rpc(stream, _deadline())


def test_read_rpc_stream_closed() -> None:
    with pytest.raises(LspClientError, match="stream closed"):
        _read_rpc(io.BytesIO(b""), _deadline())


def test_read_rpc_skips_other_headers() -> None:
    body = json.dumps({"jsonrpc": "2.0", "id": 1, "result": {}}).encode("utf-8")
    header = b"Foo: bar\r\ncontent-length: " + str(len(body)).encode("utf-8") + b"\r\n\r\n"
    message = _read_rpc(io.BytesIO(header + body), _deadline())
    assert message["id"] == 1


def test_read_rpc_accepts_prefetched_body() -> None:
    stream = _Chunky(_rpc_message({"jsonrpc": "2.0", "id": 9, "result": {"ok": True}}))
    assert _read_rpc(stream, _deadline())["id"] == 9


def test_read_rpc_truncates_prefetched_excess_body() -> None:
    stream = _Chunky(
        _rpc_message({"jsonrpc": "2.0", "id": 7, "result": {"ok": True}}) + b"extra-bytes"
    )
    assert _read_rpc(stream, _deadline())["id"] == 7


def test_read_rpc_rejects_non_object_payload() -> None:
    body = json.dumps([]).encode("utf-8")
    stream = io.BytesIO(f"Content-Length: {len(body)}\r\n\r\n".encode("utf-8") + body)
    with pytest.raises(LspClientError, match="payload"):
        _read_rpc(stream, _deadline())


def test_read_exact_rejects_closed_stream() -> None:
    with pytest.raises(LspClientError, match="stream closed"):
        _read_exact(io.BytesIO(b""), 1, _deadline())


def test_wait_readable_times_out_on_streams_without_fileno() -> None:
    with pytest.raises(LspClientError, match="timed out"):
        _wait_readable(_Chunky(b""), time.monotonic_ns() - 1)


def test_wait_readable_requires_a_readable_stream() -> None:
    with pytest.raises(LspClientError, match="fileno"):
        _wait_readable(object(), _deadline())


def test_write_rpc_frames_the_payload() -> None:
    stream = io.BytesIO()
    _write_rpc(stream, {"jsonrpc": "2.0", "method": "exit"})
    stream.seek(0)
    assert _read_rpc(stream, _deadline()) == {"jsonrpc": "2.0", "method": "exit"}


def test_read_response_skips_unmatched_ids() -> None:
    stream = io.BytesIO(
        _rpc_message({"jsonrpc": "2.0", "id": 1, "result": {"ok": True}})
        + _rpc_message({"jsonrpc": "2.0", "id": 2, "result": {"answer": 42}})
    )
    response = _read_response(stream, 2, _deadline())
    assert response["result"]["answer"] == 42


def test_read_response_dispatches_notifications_and_requests() -> None:
    stream = io.BytesIO(
        _rpc_message({"jsonrpc": "2.0", "method": "$/progress", "params": {"value": 1}})
        + _rpc_message(
            {"jsonrpc": "2.0", "id": "srv-1", "method": "workspace/configuration"}
        )
        + _rpc_message({"jsonrpc": "2.0", "id": 8, "result": {"answer": 7}})
    )
    notifications: list[dict] = []
    requests: list[dict] = []

    response = _read_response(
        stream,
        8,
        _deadline(),
        notification_callback=notifications.append,
        request_callback=requests.append,
    )

    assert response["id"] == 8
    assert [message["method"] for message in notifications] == ["$/progress"]
    assert [message["id"] for message in requests] == ["srv-1"]
