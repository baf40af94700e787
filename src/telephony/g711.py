from __future__ import annotations

from typing import Final

import numpy as np

# u-law code for a zero sample; used to pad frames and fill gaps.
ULAW_SILENCE: Final[int] = 0xFF

_FULL_SCALE: Final[float] = 32767.0


def ulaw_decode(ulaw_bytes: bytes) -> np.ndarray:
    """Decode G.711 mu-law bytes to PCM16 int16 array."""

    data = np.frombuffer(ulaw_bytes, dtype=np.uint8)

    mu = np.bitwise_not(data)
    sign = np.bitwise_and(mu, 0x80)
    exponent = np.right_shift(np.bitwise_and(mu, 0x70), 4)
    mantissa = np.bitwise_and(mu, 0x0F)

    # Bias 0x84 (33 << 2) as in ITU-T G.711; 0xFF decodes to exactly zero.
    magnitude = (((mantissa.astype(np.int32) << 3) + 0x84) << exponent.astype(np.int32)) - 0x84
    pcm = np.where(sign != 0, -magnitude, magnitude)

    return pcm.astype(np.int16)


def peak_amplitude(ulaw_bytes: bytes) -> int:
    """Largest absolute PCM16 sample value in a u-law buffer."""

    if not ulaw_bytes:
        return 0
    pcm = ulaw_decode(ulaw_bytes).astype(np.int32)
    return int(np.max(np.abs(pcm)))


def amplitude_to_dbfs(amplitude: int) -> float:
    if amplitude <= 0:
        return float("-inf")
    return float(20.0 * np.log10(min(amplitude, _FULL_SCALE) / _FULL_SCALE))
