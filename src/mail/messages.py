"""MIME headers for voicemail deliveries and missed-call notifications.

Messages are written straight to the mail transport pipe, so headers are built
as plain text lines in a fixed order rather than through `email.message`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from email.header import Header
from email.utils import encode_rfc2231, format_datetime, formataddr, make_msgid

from mail.transport import MailTransport
from voicemail.naming import CallInfo, display_name

LOGGER = logging.getLogger(__name__)

_MSGID_UNSAFE = re.compile(r"[^A-Za-z0-9!#$%&'*+\-/=?^_`{|}~.]")


@dataclass(frozen=True, slots=True)
class Envelope:
    """Addressing shared by every message sent for one call."""

    sender: str
    recipient: str


def _mail_domain(address: str) -> str:
    _, _, domain = address.rpartition("@")
    return domain or "localhost"


def _encode_header(value: str) -> str:
    if value.isascii():
        return value
    return Header(value, "utf-8").encode()


def message_id(call: CallInfo, sender: str) -> str:
    """Message-ID derived from the SIP Call-ID, or a fresh one when absent."""

    domain = _mail_domain(sender)
    if call.call_id:
        local = _MSGID_UNSAFE.sub("_", call.call_id.split("@", 1)[0])
        return f"<voicemail.{local}@{domain}>"
    return make_msgid(idstring="voicemail", domain=domain)


def _file_param(name: str, filename: str) -> str:
    """`name="value"`, or the RFC 2231 `name*=utf-8''...` form for non-ASCII names."""

    if filename.isascii():
        return f'{name}="{filename}"'
    return f"{name}*={encode_rfc2231(filename, 'utf-8')}"


def _address_headers(call: CallInfo, envelope: Envelope, when: datetime) -> list[str]:
    return [
        "From: " + formataddr((display_name(call.caller), envelope.sender), charset="utf-8"),
        "To: " + formataddr((display_name(call.callee), envelope.recipient), charset="utf-8"),
        "Date: " + format_datetime(when),
    ]


def voicemail_headers(call: CallInfo, envelope: Envelope, when: datetime, filename: str) -> bytes:
    """Header block of a voicemail delivery, including the blank separator line."""

    subject = f"Voicemail from {display_name(call.caller)} for {display_name(call.callee)}"
    lines = _address_headers(call, envelope, when)
    lines += [
        "Message-ID: " + message_id(call, envelope.sender),
        "Subject: " + _encode_header(subject),
        "MIME-Version: 1.0",
        "Content-Type: audio/x-wav; codec=ulaw; " + _file_param("name", filename),
        "Content-Disposition: attachment; " + _file_param("filename", filename),
        "Content-Transfer-Encoding: base64",
    ]
    return ("\n".join(lines) + "\n\n").encode("ascii")


class NotificationComposer:
    """Builds and sends the plain-text "missed call" message."""

    def __init__(self, transport: MailTransport) -> None:
        self._transport = transport

    def compose(self, call: CallInfo, recipient: str, when: datetime) -> bytes:
        caller = display_name(call.caller)
        callee = display_name(call.callee)
        envelope = Envelope(sender=self._transport.envelope_from, recipient=recipient)
        lines = _address_headers(call, envelope, when)
        lines += [
            "Subject: " + _encode_header(f"Missed call from {caller}"),
            "Message-ID: " + message_id(call, envelope.sender),
            "MIME-Version: 1.0",
            "Content-Type: text/plain; charset=utf-8",
            "Content-Transfer-Encoding: 8bit",
        ]
        body = f"Missed call from {caller} to {callee} at {when:%Y-%m-%d %H:%M:%S}.\n"
        return ("\n".join(lines) + "\n\n").encode("ascii") + body.encode("utf-8")

    def send(self, call: CallInfo, recipient: str, when: datetime) -> None:
        message = self.compose(call, recipient, when)
        with self._transport.open(recipient) as pipe:
            pipe.write(message)
        LOGGER.info("Missed call notification for %s sent to %s", call.caller, recipient)
