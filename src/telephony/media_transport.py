from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Protocol

from telephony.greeting import FRAME_MS, FRAME_SIZE
from telephony.rtp import PT_PCMU, build_rtp_packet, parse_rtp_packet
from voicemail.errors import TransportUnavailableError

LOGGER = logging.getLogger(__name__)


class FrameHandler(Protocol):
    """The call-side consumer and producer of u-law frames."""

    @property
    def closed(self) -> bool:  # pragma: no cover - protocol stub
        ...

    def on_inbound_frame(self, frame: bytes) -> None:  # pragma: no cover - protocol stub
        ...

    def next_outbound_frame(self) -> bytes:  # pragma: no cover - protocol stub
        ...


class RtpEndpoint(asyncio.DatagramProtocol):
    """One call's UDP RTP socket carrying PCMU in both directions.

    Inbound packets are handed to the frame handler as they arrive. Outbound,
    one frame is pulled from the handler every 20ms and sent to the peer; the
    peer address comes from the SDP offer or, failing that, from the first
    packet received.
    """

    def __init__(self) -> None:
        self._transport: asyncio.DatagramTransport | None = None
        self._handler: FrameHandler | None = None
        self._remote_addr: tuple[str, int] | None = None
        self._send_task: asyncio.Task | None = None
        self._ssrc = secrets.randbits(32)
        self._sequence = secrets.randbits(16)
        self._timestamp = secrets.randbits(32)
        self._marker = True

    @classmethod
    async def open(cls, host: str, port_range: tuple[int, int] | None = None) -> RtpEndpoint:
        """Bind an RTP socket on `host`, within `port_range` when given.

        Raises:
            TransportUnavailableError: if no port in the range can be bound.
        """

        loop = asyncio.get_running_loop()
        if port_range is None:
            candidates = [0]
        else:
            low, high = port_range
            candidates = list(range(low + (low & 1), high + 1, 2))

        for port in candidates:
            try:
                _, protocol = await loop.create_datagram_endpoint(cls, local_addr=(host, port))
            except OSError:
                continue
            LOGGER.debug("RTP endpoint bound on %s:%s", host, protocol.local_port)
            return protocol

        raise TransportUnavailableError(f"No RTP port available on {host} in {port_range}")

    @property
    def local_port(self) -> int:
        if self._transport is None:
            raise TransportUnavailableError("RTP endpoint is closed")
        return self._transport.get_extra_info("sockname")[1]

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]

    def attach(self, handler: FrameHandler, remote_addr: tuple[str, int] | None) -> None:
        """Start exchanging frames with `handler`."""

        self._handler = handler
        self._remote_addr = remote_addr
        self._send_task = asyncio.get_running_loop().create_task(self._send_loop())

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        handler = self._handler
        if handler is None or handler.closed:
            return
        try:
            pkt = parse_rtp_packet(data)
        except ValueError:
            return
        if pkt.payload_type != PT_PCMU or not pkt.payload:
            return

        if self._remote_addr is None:
            self._remote_addr = (addr[0], addr[1])
            LOGGER.info("RTP peer learned from first packet: %s", addr)

        handler.on_inbound_frame(pkt.payload)

    def error_received(self, exc: Exception) -> None:
        LOGGER.warning("RTP socket error: %s", exc)

    async def _send_loop(self) -> None:
        loop = asyncio.get_running_loop()
        interval = FRAME_MS / 1000
        deadline = loop.time()
        while self._handler is not None and not self._handler.closed:
            frame = self._handler.next_outbound_frame()
            if self._transport is not None and self._remote_addr is not None:
                packet = build_rtp_packet(
                    payload_type=PT_PCMU,
                    sequence=self._sequence,
                    timestamp=self._timestamp,
                    ssrc=self._ssrc,
                    marker=self._marker,
                    payload=frame,
                )
                self._marker = False
                self._transport.sendto(packet, self._remote_addr)
            self._sequence = (self._sequence + 1) & 0xFFFF
            self._timestamp = (self._timestamp + FRAME_SIZE) & 0xFFFFFFFF

            deadline += interval
            await asyncio.sleep(max(0.0, deadline - loop.time()))

    def close(self) -> None:
        if self._send_task is not None and not self._send_task.done():
            self._send_task.cancel()
        self._send_task = None
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        self._handler = None
