"""Per-call state machine: greeting playback, recording and teardown.

A session is driven entirely by callbacks from one event loop: inbound frames,
outbound frame ticks, the recording timeout and the remote hangup. No two
callbacks for the same call ever run concurrently.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Protocol

from mail.transport import MailTransport
from telephony.g711 import amplitude_to_dbfs, peak_amplitude
from telephony.greeting import GreetingPlayer
from telephony.wave import load_greeting
from voicemail.admission import CallSettings, local_now
from voicemail.errors import SinkError
from voicemail.naming import CallInfo, recording_filename
from voicemail.sinks import EmailSink, FileSink, FrameSink

LOGGER = logging.getLogger(__name__)

BYTES_PER_SECOND = 8000


class SessionState(Enum):
    ACCEPTED = "accepted"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    CLOSED = "closed"


class CallControl(Protocol):
    """What the session needs from the SIP layer."""

    def hangup(self) -> None:  # pragma: no cover - protocol stub
        ...


class TimerHandle(Protocol):
    def cancel(self) -> None:  # pragma: no cover - protocol stub
        ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


def build_sinks(
    call: CallInfo,
    settings: CallSettings,
    mail_transport: MailTransport | None,
    when: datetime,
) -> list[FrameSink]:
    """Unopened sinks for a call, file first."""

    filename = recording_filename(call.caller, when)
    sinks: list[FrameSink] = []
    if settings.directory is not None:
        sinks.append(FileSink(settings.directory / filename, owner=settings.owner))
    if settings.email is not None and mail_transport is not None:
        sinks.append(EmailSink(mail_transport, call, settings.email, filename, when))
    return sinks


class CallSession:
    def __init__(
        self,
        call: CallInfo,
        settings: CallSettings,
        control: CallControl,
        *,
        player: GreetingPlayer,
        sinks: list[FrameSink],
        scheduler: Scheduler,
    ) -> None:
        self.call = call
        self.settings = settings
        self.state = SessionState.ACCEPTED
        self.stopped = False
        self._control = control
        self._player = player
        self._sinks = sinks
        self._scheduler = scheduler
        self._timer: TimerHandle | None = None
        self._recording = False
        self._recorded_bytes = 0
        self._peak = 0
        self._on_closed: list[Callable[[CallSession], None]] = []

    @classmethod
    def create(
        cls,
        call: CallInfo,
        settings: CallSettings,
        control: CallControl,
        *,
        scheduler: Scheduler,
        mail_transport: MailTransport | None = None,
        when: datetime | None = None,
    ) -> CallSession:
        when = when or local_now()
        return cls(
            call,
            settings,
            control,
            player=GreetingPlayer(load_greeting(settings.greeting)),
            sinks=build_sinks(call, settings, mail_transport, when),
            scheduler=scheduler,
        )

    @property
    def recording(self) -> bool:
        return self._recording

    @property
    def recorded_seconds(self) -> float:
        return self._recorded_bytes / BYTES_PER_SECOND

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def add_close_callback(self, callback: Callable[[CallSession], None]) -> None:
        self._on_closed.append(callback)

    def start(self) -> None:
        if self.state is not SessionState.ACCEPTED:
            return
        LOGGER.info("Incoming call from: %s", self.call.caller)
        self.state = SessionState.STREAMING

    def next_outbound_frame(self) -> bytes:
        return self._player.next_frame()

    def on_inbound_frame(self, frame: bytes) -> None:
        if self.stopped or self.state is not SessionState.STREAMING:
            return
        if self.settings.after_greeting and not self._player.exhausted:
            return

        try:
            for sink in self._sinks:
                sink.realize()
            for sink in self._sinks:
                sink.accept(frame)
        except SinkError as exc:
            LOGGER.error("Recording call from %s failed: %s", self.call.caller, exc.detail)
            self._abort()
            return

        self._recorded_bytes += len(frame)
        self._peak = max(self._peak, peak_amplitude(frame))
        if not self._recording:
            self._recording = True
            self._arm_timeout()

    def on_hangup(self) -> None:
        """Remote side hung up."""

        if self.state in (SessionState.FINALIZING, SessionState.CLOSED):
            return
        LOGGER.info("Hangup from %s", self.call.caller)
        self.stopped = True
        self._cancel_timeout()
        self._finalize()

    def _arm_timeout(self) -> None:
        self._cancel_timeout()
        self._timer = self._scheduler(self.settings.max_seconds, self._on_timeout)

    def _cancel_timeout(self) -> None:
        if self._timer is not None:
            timer, self._timer = self._timer, None
            timer.cancel()

    def _on_timeout(self) -> None:
        self._timer = None
        if self.state is not SessionState.STREAMING:
            return
        LOGGER.info("Hangup (timeout) for call from %s after %ss", self.call.caller, self.settings.max_seconds)
        self._abort()

    def _abort(self) -> None:
        self.stopped = True
        self._cancel_timeout()
        try:
            self._control.hangup()
        except Exception:
            LOGGER.exception("Hangup request for call from %s failed", self.call.caller)
        self._finalize()

    def _finalize(self) -> None:
        if self.state in (SessionState.FINALIZING, SessionState.CLOSED):
            return
        self.state = SessionState.FINALIZING

        for sink in self._sinks:
            try:
                sink.finalize()
            except (SinkError, OSError):
                LOGGER.exception("Finalizing %s for call from %s failed", sink, self.call.caller)

        if self._recording:
            LOGGER.info(
                "Voicemail from %s to %s finished: %.1fs recorded, peak %.1f dBFS",
                self.call.caller,
                self.call.callee,
                self.recorded_seconds,
                amplitude_to_dbfs(self._peak),
            )
        else:
            LOGGER.info("Call from %s ended without recording", self.call.caller)

        self.state = SessionState.CLOSED
        for callback in self._on_closed:
            callback(self)

