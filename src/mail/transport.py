"""Pipe to a sendmail-compatible mail transport.

Spawning and writing happen inline. Waiting for the process to exit does not:
inside a running event loop the wait runs in a worker thread and is tracked
by the transport until `drain()` collects it.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
from collections.abc import Callable
from typing import Protocol

from voicemail.errors import SinkClosedError, SinkSpawnError

LOGGER = logging.getLogger(__name__)


class MailPipe(Protocol):
    def write(self, data: bytes) -> None:  # pragma: no cover - protocol stub
        ...

    def close(self) -> None:  # pragma: no cover - protocol stub
        ...


class SendmailPipe:
    """A running sendmail process whose stdin receives one message."""

    def __init__(
        self,
        process: subprocess.Popen,
        recipient: str,
        *,
        wait_timeout: float,
        reaper: Callable[[SendmailPipe], None] | None = None,
    ) -> None:
        self._process = process
        self._recipient = recipient
        self._wait_timeout = wait_timeout
        self._reaper = reaper
        self._closed = False

    def write(self, data: bytes) -> None:
        stdin = self._process.stdin
        if self._closed or stdin is None:
            raise SinkClosedError(f"Mail transport for {self._recipient} is closed")
        stdin.write(data)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._process.stdin is not None:
                self._process.stdin.close()
        finally:
            if self._reaper is not None:
                self._reaper(self)
            else:
                self.wait()

    def wait(self) -> int | None:
        """Block until the process exits, killing it after the wait timeout."""

        try:
            status = self._process.wait(timeout=self._wait_timeout)
        except subprocess.TimeoutExpired:
            LOGGER.error("Mail transport for %s did not exit; killing it", self._recipient)
            self._process.kill()
            self._process.wait()
            return None
        if status != 0:
            LOGGER.warning("Mail transport for %s exited with status %s", self._recipient, status)
        return status

    def __enter__(self) -> SendmailPipe:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class MailTransport:
    """Spawns `sendmail -oi -f <envelope-from> -- <recipient>` per message."""

    def __init__(self, sendmail_path: str, envelope_from: str, *, wait_timeout: float = 30.0) -> None:
        self._sendmail_path = sendmail_path
        self._envelope_from = envelope_from
        self._wait_timeout = wait_timeout
        self._pending: set[asyncio.Task] = set()

    @property
    def envelope_from(self) -> str:
        return self._envelope_from

    @property
    def pending(self) -> int:
        """Closed messages whose transport process has not been reaped yet."""

        return len(self._pending)

    def command(self, recipient: str) -> list[str]:
        return [self._sendmail_path, "-oi", "-f", self._envelope_from, "--", recipient]

    def open(self, recipient: str) -> SendmailPipe:
        cmd = self.command(recipient)
        try:
            process = subprocess.Popen(cmd, stdin=subprocess.PIPE)  # noqa: S603
        except OSError as exc:
            raise SinkSpawnError(f"Cannot start {self._sendmail_path}: {exc}") from exc
        LOGGER.debug("Spawned mail transport pid=%s for %s", process.pid, recipient)
        return SendmailPipe(process, recipient, wait_timeout=self._wait_timeout, reaper=self._reap)

    def _reap(self, pipe: SendmailPipe) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            pipe.wait()
            return
        task = loop.create_task(asyncio.to_thread(pipe.wait))
        self._pending.add(task)
        task.add_done_callback(self._reaped)

    def _reaped(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error("Waiting for mail transport failed: %s", task.exception())

    async def drain(self) -> None:
        """Wait for every closed message's transport process to exit."""

        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
