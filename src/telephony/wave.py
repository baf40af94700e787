"""RIFF/WAVE container handling for G.711 u-law 8kHz mono audio.

Greetings are read through `load_greeting`; recordings are written with a
streaming header whose RIFF and data lengths are the unknown-length sentinel,
because the total size is only known once the call ends and the file is never
rewritten afterwards.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, Final

from voicemail.errors import NotContainerError, TruncatedError, WaveFormatError, WrongFormatError

LOGGER = logging.getLogger(__name__)

RIFF_MAGIC: Final[bytes] = b"RIFF"
DATA_CHUNK: Final[bytes] = b"data"
UNKNOWN_LENGTH: Final[bytes] = b"\xff\xff\xff\xff"
HEADER_PREFIX_SIZE: Final[int] = 38

# "WAVE" + fmt chunk of 18 bytes: format tag 7 (u-law), 1 channel, 8000 Hz,
# 8000 bytes/s, block align 1, 8 bits/sample, cbSize 0.
ULAW_FORMAT: Final[bytes] = (
    b"WAVEfmt "
    b"\x12\x00\x00\x00"
    b"\x07\x00"
    b"\x01\x00"
    b"\x40\x1f\x00\x00"
    b"\x40\x1f\x00\x00"
    b"\x01\x00"
    b"\x08\x00"
    b"\x00\x00"
)


def validate_header(prefix: bytes) -> None:
    """Check the fixed 38-byte prefix of a greeting file.

    Raises:
        TruncatedError: if fewer than 38 bytes are available.
        NotContainerError: if the RIFF magic is missing.
        WrongFormatError: if the format chunk is not u-law 8kHz mono.
    """

    if len(prefix) < HEADER_PREFIX_SIZE:
        raise TruncatedError("WAVE file is too short")
    if prefix[0:4] != RIFF_MAGIC:
        raise NotContainerError()
    if prefix[8:HEADER_PREFIX_SIZE] != ULAW_FORMAT:
        raise WrongFormatError()


def _read_exact(reader: BinaryIO, size: int) -> bytes:
    data = reader.read(size)
    if data is None or len(data) != size:
        raise TruncatedError()
    return data


def skip_to_data(reader: BinaryIO) -> int:
    """Advance `reader` past any extra chunks to the start of the samples.

    The reader must be positioned right after the 38-byte prefix. Returns the
    length declared by the data chunk, which may be the unknown-length sentinel.
    """

    while True:
        chunk_type = _read_exact(reader, 4)
        length = int.from_bytes(_read_exact(reader, 4), "little")
        if chunk_type == DATA_CHUNK:
            return length
        _read_exact(reader, length)


def streaming_header() -> bytes:
    return RIFF_MAGIC + UNKNOWN_LENGTH + ULAW_FORMAT + DATA_CHUNK + UNKNOWN_LENGTH


def write_streaming_header(writer: BinaryIO) -> int:
    """Write a complete header for a recording of unknown length."""

    header = streaming_header()
    writer.write(header)
    return len(header)


def load_greeting(path: str | Path | None) -> bytes:
    """Return the raw u-law samples of a greeting file.

    A missing path yields an empty greeting. Unreadable or malformed files are
    logged and also yield an empty greeting so the call can proceed.
    """

    if not path:
        return b""

    try:
        with open(path, "rb") as fh:
            validate_header(fh.read(HEADER_PREFIX_SIZE))
            skip_to_data(fh)
            return fh.read()
    except WaveFormatError as exc:
        LOGGER.warning("Greeting file %s ignored: %s", path, exc.detail)
    except OSError as exc:
        LOGGER.warning("Cannot open greeting file %s: %s", path, exc)
    return b""
