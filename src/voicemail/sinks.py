"""Destinations for recorded audio frames.

Sinks are created unopened when a call is accepted and realized on the first
frame they must persist, so a call that never records anything leaves no empty
files or messages behind.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from mail.base64_stream import StreamingBase64Encoder
from mail.messages import Envelope, voicemail_headers
from mail.transport import MailPipe, MailTransport
from telephony.wave import streaming_header, write_streaming_header
from voicemail.errors import SinkClosedError, SinkError, SinkOpenError
from voicemail.naming import CallInfo
from voicemail.users import UserRecord

LOGGER = logging.getLogger(__name__)


class SinkState(Enum):
    UNOPENED = "unopened"
    OPEN = "open"
    FINALIZED = "finalized"


class FrameSink(ABC):
    """A stateful destination for raw u-law frames."""

    def __init__(self) -> None:
        self.state = SinkState.UNOPENED
        self.bytes_written = 0

    @property
    def realized(self) -> bool:
        return self.state is not SinkState.UNOPENED

    def realize(self) -> None:
        """Open the underlying resource if that has not happened yet."""

        if self.state is SinkState.FINALIZED:
            raise SinkClosedError(f"{self} is finalized")
        if self.state is SinkState.UNOPENED:
            self._open()
            self.state = SinkState.OPEN

    def accept(self, frame: bytes) -> None:
        self.realize()
        try:
            self._write(frame)
        except OSError as exc:
            raise SinkError(f"Write to {self} failed: {exc}") from exc
        self.bytes_written += len(frame)

    def finalize(self) -> None:
        if self.state is SinkState.OPEN:
            try:
                self._close()
            finally:
                self.state = SinkState.FINALIZED
        else:
            self.state = SinkState.FINALIZED

    @abstractmethod
    def _open(self) -> None:
        """Acquire the resource and write any leading header."""

    @abstractmethod
    def _write(self, frame: bytes) -> None:
        """Persist one frame."""

    @abstractmethod
    def _close(self) -> None:
        """Flush and release the resource."""


class FileSink(FrameSink):
    """Writes a streaming WAVE file."""

    def __init__(self, path: Path, *, owner: UserRecord | None = None) -> None:
        super().__init__()
        self.path = path
        self._owner = owner
        self._fh: BinaryIO | None = None

    def __str__(self) -> str:
        return f"file {self.path}"

    def _open(self) -> None:
        LOGGER.info("Storing voicemail to file %s", self.path)
        try:
            fh = open(self.path, "xb")
        except OSError as exc:
            raise SinkOpenError(f"Cannot open file {self.path}: {exc}") from exc

        if self._owner is not None:
            try:
                os.chown(self.path, self._owner.uid, self._owner.gid)
            except OSError as exc:
                LOGGER.warning("Cannot change owner of %s to %s: %s", self.path, self._owner.name, exc)

        try:
            write_streaming_header(fh)
        except OSError as exc:
            fh.close()
            raise SinkOpenError(f"Cannot write header to {self.path}: {exc}") from exc
        self._fh = fh

    def _write(self, frame: bytes) -> None:
        if self._fh is None:
            raise SinkClosedError(f"{self} is not open")
        self._fh.write(frame)

    def _close(self) -> None:
        if self._fh is not None:
            fh, self._fh = self._fh, None
            fh.close()


class EmailSink(FrameSink):
    """Streams the recording as a base64 WAVE attachment into the mail transport."""

    def __init__(
        self,
        transport: MailTransport,
        call: CallInfo,
        recipient: str,
        filename: str,
        when: datetime,
    ) -> None:
        super().__init__()
        self._transport = transport
        self._call = call
        self._envelope = Envelope(sender=transport.envelope_from, recipient=recipient)
        self._filename = filename
        self._when = when
        self._pipe: MailPipe | None = None
        self._encoder: StreamingBase64Encoder | None = None

    def __str__(self) -> str:
        return f"email to {self._envelope.recipient}"

    def _open(self) -> None:
        LOGGER.info("Sending voicemail to %s", self._envelope.recipient)
        pipe = self._transport.open(self._envelope.recipient)
        encoder = StreamingBase64Encoder()
        try:
            pipe.write(voicemail_headers(self._call, self._envelope, self._when, self._filename))
            pipe.write(encoder.feed(streaming_header()))
        except Exception as exc:
            pipe.close()
            raise SinkOpenError(f"Cannot start message to {self._envelope.recipient}: {exc}") from exc
        self._pipe = pipe
        self._encoder = encoder

    def _write(self, frame: bytes) -> None:
        if self._pipe is None or self._encoder is None:
            raise SinkClosedError(f"{self} is not open")
        self._pipe.write(self._encoder.feed(frame))

    def _close(self) -> None:
        if self._pipe is None or self._encoder is None:
            return
        pipe, self._pipe = self._pipe, None
        try:
            pipe.write(self._encoder.finish())
        finally:
            pipe.close()
