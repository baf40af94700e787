from __future__ import annotations

import base64
import os
from datetime import datetime, timezone

import pytest

from telephony.wave import streaming_header
from voicemail.errors import SinkClosedError, SinkOpenError, SinkSpawnError
from voicemail.naming import CallInfo
from voicemail.sinks import EmailSink, FileSink, SinkState
from voicemail.users import UserRecord

FRAME_A = bytes(range(160))
FRAME_B = b"\x7f" * 160
CALL = CallInfo(call_id="abc@host", caller="<sip:bob@example.org>", callee="<sip:vm@example.com>")
WHEN = datetime(2018, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_file_sink_is_lazy(tmp_path) -> None:
    sink = FileSink(tmp_path / "msg.wav")
    assert sink.state is SinkState.UNOPENED
    assert not (tmp_path / "msg.wav").exists()

    sink.finalize()
    assert sink.state is SinkState.FINALIZED
    assert not (tmp_path / "msg.wav").exists()


def test_file_sink_writes_streaming_header_then_frames(tmp_path) -> None:
    path = tmp_path / "msg.wav"
    sink = FileSink(path)
    sink.accept(FRAME_A)
    sink.accept(FRAME_B)
    sink.finalize()

    data = path.read_bytes()
    assert data == streaming_header() + FRAME_A + FRAME_B
    assert data[42:46] == b"\xff\xff\xff\xff"
    assert sink.bytes_written == 320


def test_file_sink_rejects_frames_after_finalize(tmp_path) -> None:
    sink = FileSink(tmp_path / "msg.wav")
    sink.accept(FRAME_A)
    sink.finalize()
    with pytest.raises(SinkClosedError):
        sink.accept(FRAME_B)


def test_file_sink_open_failure(tmp_path) -> None:
    sink = FileSink(tmp_path / "missing-dir" / "msg.wav")
    with pytest.raises(SinkOpenError) as excinfo:
        sink.accept(FRAME_A)
    assert "missing-dir" in excinfo.value.detail
    assert sink.state is SinkState.UNOPENED


def test_file_sink_never_overwrites(tmp_path) -> None:
    path = tmp_path / "msg.wav"
    path.write_bytes(b"previous message")
    with pytest.raises(SinkOpenError):
        FileSink(path).accept(FRAME_A)
    assert path.read_bytes() == b"previous message"


def test_file_sink_changes_owner(tmp_path, monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(os, "chown", lambda path, uid, gid: calls.append((str(path), uid, gid)))
    path = tmp_path / "msg.wav"
    sink = FileSink(path, owner=UserRecord("alice", 1001, 1002, "/home/alice"))
    sink.accept(FRAME_A)
    sink.finalize()

    assert calls == [(str(path), 1001, 1002)]


def test_file_sink_owner_failure_is_not_fatal(tmp_path, monkeypatch, caplog) -> None:
    def refuse(path, uid, gid):
        raise PermissionError(1, "Operation not permitted")

    monkeypatch.setattr(os, "chown", refuse)
    path = tmp_path / "msg.wav"
    sink = FileSink(path, owner=UserRecord("alice", 1001, 1002, "/home/alice"))
    sink.accept(FRAME_A)
    sink.finalize()

    assert path.read_bytes().endswith(FRAME_A)
    assert "Cannot change owner" in caplog.text


def test_email_sink_streams_base64_attachment(mail_transport) -> None:
    sink = EmailSink(mail_transport, CALL, "alice@example.com", "msg.wav", WHEN)
    assert mail_transport.opened == []

    sink.accept(FRAME_A)
    sink.accept(FRAME_B)
    sink.finalize()

    recipient, pipe = mail_transport.opened[0]
    assert recipient == "alice@example.com"
    head, body = pipe.final_value.split(b"\n\n", 1)
    assert b"Content-Transfer-Encoding: base64" in head
    assert body == base64.encodebytes(streaming_header() + FRAME_A + FRAME_B)
    assert all(len(line) <= 76 for line in body.split(b"\n"))


def test_email_sink_spawn_failure(failing_mail_transport) -> None:
    sink = EmailSink(failing_mail_transport, CALL, "alice@example.com", "msg.wav", WHEN)
    with pytest.raises(SinkSpawnError):
        sink.accept(FRAME_A)


def test_email_sink_non_ascii_caller(mail_transport) -> None:
    call = CallInfo(call_id="abc@host", caller="<sip:josé@example.org>", callee="<sip:vm@example.com>")
    sink = EmailSink(mail_transport, call, "alice@example.com", "2018-05-01_12:00:00_josé@example.org.wav", WHEN)
    sink.accept(FRAME_A)
    sink.finalize()

    head, body = mail_transport.opened[0][1].final_value.split(b"\n\n", 1)
    assert b"filename*=utf-8''" in head
    assert body == base64.encodebytes(streaming_header() + FRAME_A)


def test_email_sink_header_failure_closes_pipe(mail_transport, monkeypatch) -> None:
    def broken_headers(*args):
        raise UnicodeEncodeError("ascii", "é", 0, 1, "ordinal not in range(128)")

    monkeypatch.setattr("voicemail.sinks.voicemail_headers", broken_headers)
    sink = EmailSink(mail_transport, CALL, "alice@example.com", "msg.wav", WHEN)
    with pytest.raises(SinkOpenError):
        sink.accept(FRAME_A)

    assert len(mail_transport.opened) == 1
    assert mail_transport.opened[0][1].closed
    assert sink.state is SinkState.UNOPENED
