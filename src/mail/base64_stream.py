from __future__ import annotations

import base64
from typing import Final

LINE_LENGTH: Final[int] = 76


class StreamingBase64Encoder:
    """Incremental MIME base64 encoder.

    Output is wrapped at 76 characters per line, each line ending in a newline,
    and the concatenation of everything returned by `feed` and `finish` is
    identical to `base64.encodebytes` over the whole input, whatever the chunk
    boundaries were. Up to two input bytes are carried between calls and the
    current line's column is tracked so partial lines continue seamlessly.
    """

    def __init__(self, *, line_ending: bytes = b"\n") -> None:
        self._carry = b""
        self._column = 0
        self._line_ending = line_ending
        self._finished = False

    def feed(self, data: bytes) -> bytes:
        if self._finished:
            raise ValueError("encoder already finished")

        data = self._carry + data
        usable = len(data) - len(data) % 3
        self._carry = data[usable:]
        if not usable:
            return b""
        return self._wrap(base64.b64encode(data[:usable]))

    def finish(self) -> bytes:
        if self._finished:
            return b""
        self._finished = True

        out = self._wrap(base64.b64encode(self._carry)) if self._carry else b""
        self._carry = b""
        if self._column:
            out += self._line_ending
            self._column = 0
        return out

    def _wrap(self, encoded: bytes) -> bytes:
        parts: list[bytes] = []
        pos = 0
        while pos < len(encoded):
            take = min(LINE_LENGTH - self._column, len(encoded) - pos)
            parts.append(encoded[pos : pos + take])
            pos += take
            self._column += take
            if self._column == LINE_LENGTH:
                parts.append(self._line_ending)
                self._column = 0
        return b"".join(parts)
