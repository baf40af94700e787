from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

_URI_IN_BRACKETS = re.compile(r"^.*?<(?:sips?:)?([^>]+)>\s*$")
_UNSAFE_CHARS = re.compile(r'[\s"/<>]')
_SIP_SCHEME = re.compile(r"^sips?:", re.IGNORECASE)
_QUOTED_NAME = re.compile(r'^\s*"((?:[^"\\]|\\.)*)"\s*<')
_PLAIN_NAME = re.compile(r"^\s*([^<\"]*?)\s*<")
_QUOTED_PAIR = re.compile(r"\\(.)")


@dataclass(frozen=True, slots=True)
class CallInfo:
    """Identity of a call as received from the SIP layer."""

    call_id: str
    caller: str
    callee: str


def display_name(header: str) -> str:
    """Human-readable party name: the display name if present, else the address."""

    match = _QUOTED_NAME.match(header)
    if match:
        name = _QUOTED_PAIR.sub(r"\1", match.group(1)).strip()
    else:
        match = _PLAIN_NAME.match(header)
        name = match.group(1) if match else ""
    return name or sip_address(header)


def sip_address(header: str) -> str:
    """Bare `user@host` address of a From/To header value."""

    match = _URI_IN_BRACKETS.match(header)
    address = match.group(1) if match else _SIP_SCHEME.sub("", header.strip())
    user, at, host = address.rpartition("@")
    return user + at + host.split(";", 1)[0]


def sanitize_caller(header: str) -> str:
    address = sip_address(header)
    return "".join(
        "_" if (not ch.isprintable() or _UNSAFE_CHARS.match(ch)) else ch for ch in address
    )


def recording_filename(caller: str, when: datetime) -> str:
    """`2018-05-01_12:30:00_alice@example.org.wav`"""

    return f"{when:%Y-%m-%d_%H:%M:%S}_{sanitize_caller(caller)}.wav"
