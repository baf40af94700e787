from __future__ import annotations

from dataclasses import dataclass
from typing import Final

PT_PCMU: Final[int] = 0
RTP_HEADER_SIZE: Final[int] = 12


@dataclass(frozen=True, slots=True)
class RtpPacket:
    payload_type: int
    sequence: int
    timestamp: int
    ssrc: int
    marker: bool
    payload: bytes


def parse_rtp_packet(data: bytes) -> RtpPacket:
    """Parse an RTP packet, skipping CSRC entries, header extension and padding.

    Raises:
        ValueError: if the packet is too short, malformed, or not RTP version 2.
    """

    if len(data) < RTP_HEADER_SIZE:
        raise ValueError("RTP packet too short")

    b0 = data[0]
    version = b0 >> 6
    padding = (b0 >> 5) & 1
    extension = (b0 >> 4) & 1
    csrc_count = b0 & 0x0F

    if version != 2:
        raise ValueError(f"Unsupported RTP version: {version}")

    b1 = data[1]
    marker = bool((b1 >> 7) & 1)
    payload_type = b1 & 0x7F

    sequence = int.from_bytes(data[2:4], "big")
    timestamp = int.from_bytes(data[4:8], "big")
    ssrc = int.from_bytes(data[8:12], "big")

    offset = RTP_HEADER_SIZE + 4 * csrc_count
    if extension:
        if len(data) < offset + 4:
            raise ValueError("RTP header extension truncated")
        ext_words = int.from_bytes(data[offset + 2 : offset + 4], "big")
        offset += 4 + 4 * ext_words

    end = len(data)
    if padding:
        if end <= offset:
            raise ValueError("RTP padding without payload")
        end -= data[-1]

    if offset > end:
        raise ValueError("RTP packet truncated")

    return RtpPacket(
        payload_type=payload_type,
        sequence=sequence,
        timestamp=timestamp,
        ssrc=ssrc,
        marker=marker,
        payload=data[offset:end],
    )


def build_rtp_packet(
    *,
    payload_type: int,
    sequence: int,
    timestamp: int,
    ssrc: int,
    marker: bool,
    payload: bytes,
) -> bytes:
    """Build a minimal RTP packet (no CSRC, no extensions)."""

    b0 = (2 << 6)  # V=2, P=0, X=0, CC=0
    b1 = ((1 if marker else 0) << 7) | (payload_type & 0x7F)

    header = bytes([b0, b1])
    header += int(sequence & 0xFFFF).to_bytes(2, "big")
    header += int(timestamp & 0xFFFFFFFF).to_bytes(4, "big")
    header += int(ssrc & 0xFFFFFFFF).to_bytes(4, "big")

    return header + payload
