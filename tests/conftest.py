from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


class FakePipe(io.BytesIO):
    """Collects what would have been written to sendmail's stdin."""

    def close(self) -> None:
        if not self.closed:
            self.final_value = self.getvalue()
        super().close()

    def __enter__(self) -> FakePipe:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class FakeMailTransport:
    def __init__(self, envelope_from: str = "voicemail@example.org", *, fail: bool = False) -> None:
        self.envelope_from = envelope_from
        self.fail = fail
        self.opened: list[tuple[str, FakePipe]] = []

    def open(self, recipient: str) -> FakePipe:
        from voicemail.errors import SinkSpawnError

        if self.fail:
            raise SinkSpawnError("Cannot start /nonexistent/sendmail")
        pipe = FakePipe()
        self.opened.append((recipient, pipe))
        return pipe


class FakeTimer:
    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.callback()


class FakeScheduler:
    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]


class FakeControl:
    def __init__(self) -> None:
        self.hangups = 0

    def hangup(self) -> None:
        self.hangups += 1


@pytest.fixture()
def mail_transport() -> FakeMailTransport:
    return FakeMailTransport()


@pytest.fixture()
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture()
def control() -> FakeControl:
    return FakeControl()


@pytest.fixture()
def greeting_file(tmp_path: Path):
    """Factory writing a u-law WAVE greeting with optional extra chunks."""

    from telephony.wave import ULAW_FORMAT

    def _make(samples: bytes, *, extra_chunks: bytes = b"", name: str = "greeting.wav") -> Path:
        path = tmp_path / name
        body = ULAW_FORMAT + extra_chunks + b"data" + len(samples).to_bytes(4, "little") + samples
        path.write_bytes(b"RIFF" + len(body).to_bytes(4, "little") + body)
        return path

    return _make


@pytest.fixture()
def failing_mail_transport() -> FakeMailTransport:
    return FakeMailTransport(fail=True)
