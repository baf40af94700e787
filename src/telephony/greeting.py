from __future__ import annotations

import logging
from typing import Final

from telephony.g711 import ULAW_SILENCE

LOGGER = logging.getLogger(__name__)

FRAME_MS: Final[int] = 20
FRAME_SIZE: Final[int] = 160


class GreetingPlayer:
    """Produces outbound 20ms u-law frames from a greeting buffer.

    The last greeting frame is padded with u-law silence. Once the buffer is
    drained every further frame is pure silence; playback never ends the call.
    """

    def __init__(self, buffer: bytes = b"", *, frame_size: int = FRAME_SIZE) -> None:
        self._buffer = bytes(buffer)
        self._offset = 0
        self._frame_size = frame_size
        self._started = False
        self._silence = bytes([ULAW_SILENCE]) * frame_size

    @property
    def remaining(self) -> int:
        return len(self._buffer) - self._offset

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    def next_frame(self) -> bytes:
        if not self._started:
            self._started = True
            LOGGER.info("Sending greeting (%d bytes)", len(self._buffer))

        if self.exhausted:
            return self._silence

        payload = self._buffer[self._offset : self._offset + self._frame_size]
        self._offset += len(payload)
        if len(payload) < self._frame_size:
            payload += self._silence[len(payload) :]
        return payload
