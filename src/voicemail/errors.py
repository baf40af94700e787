"""Domain-specific exceptions for call handling.

Every failure is scoped to a single call; none of these should escape the
gateway's per-call handlers.
"""

from __future__ import annotations

from enum import Enum


class VoicemailError(Exception):
    default_detail: str = "Voicemail error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class WaveFormatError(VoicemailError):
    default_detail = "Malformed WAVE file"


class NotContainerError(WaveFormatError):
    default_detail = "Not a RIFF/WAVE file"


class WrongFormatError(WaveFormatError):
    default_detail = "Not in WAVE G.711 u-law 8kHz mono format"


class TruncatedError(WaveFormatError):
    default_detail = "Corrupted or truncated WAVE header"


class SinkError(VoicemailError):
    default_detail = "Recording sink failed"


class SinkOpenError(SinkError):
    default_detail = "Cannot open recording file"


class SinkSpawnError(SinkError):
    default_detail = "Cannot start mail transport"


class SinkClosedError(SinkError):
    default_detail = "Sink already finalized"


class TransportUnavailableError(VoicemailError):
    status_code: int = 503
    default_detail = "No RTP port available"


class RejectReason(Enum):
    """Why a call was refused during admission, with the SIP answer to send."""

    UNKNOWN_USER = "unknown user"
    NO_HOME_DIRECTORY = "no home directory"
    DIRECTORY_MISSING = "storage directory missing"
    NO_RECIPIENT = "no recipient configured"
    NOTIFY_ONLY = "notification only"

    @property
    def status_code(self) -> int:
        return _SIP_STATUS[self][0]

    @property
    def phrase(self) -> str:
        return _SIP_STATUS[self][1]


_SIP_STATUS: dict[RejectReason, tuple[int, str]] = {
    RejectReason.UNKNOWN_USER: (404, "Not Found"),
    RejectReason.NO_HOME_DIRECTORY: (404, "Not Found"),
    RejectReason.DIRECTORY_MISSING: (480, "Temporarily Unavailable"),
    RejectReason.NO_RECIPIENT: (480, "Temporarily Unavailable"),
    RejectReason.NOTIFY_ONLY: (486, "Busy Here"),
}


class CallRejectedError(VoicemailError):
    default_detail = "Call rejected"

    def __init__(self, reason: RejectReason, detail: str | None = None) -> None:
        super().__init__(detail or reason.value)
        self.reason = reason
