from __future__ import annotations

from datetime import datetime, timedelta, timezone

from mail.messages import Envelope, NotificationComposer, message_id, voicemail_headers
from voicemail.naming import CallInfo

WHEN = datetime(2018, 5, 1, 12, 30, 0, tzinfo=timezone(timedelta(hours=2)))
CALL = CallInfo(
    call_id="a84b4c76e66710@pc33.example.org",
    caller='"Bob Caller" <sip:bob@example.org>',
    callee="Voicemail <sip:voicemail@example.com>",
)


def _header_names(block: bytes) -> list[str]:
    head = block.decode("ascii").split("\n\n", 1)[0]
    return [line.split(":", 1)[0] for line in head.split("\n")]


def test_voicemail_headers_order_and_values() -> None:
    envelope = Envelope(sender="voicemail@example.com", recipient="alice@example.com")
    block = voicemail_headers(CALL, envelope, WHEN, "2018-05-01_12:30:00_bob@example.org.wav")
    text = block.decode("ascii")

    assert _header_names(block) == [
        "From",
        "To",
        "Date",
        "Message-ID",
        "Subject",
        "MIME-Version",
        "Content-Type",
        "Content-Disposition",
        "Content-Transfer-Encoding",
    ]
    assert text.endswith("\n\n")
    assert "From: Bob Caller <voicemail@example.com>\n" in text
    assert "To: Voicemail <alice@example.com>\n" in text
    assert "Date: Tue, 01 May 2018 12:30:00 +0200\n" in text
    assert "Message-ID: <voicemail.a84b4c76e66710@example.com>\n" in text
    assert "Subject: Voicemail from Bob Caller for Voicemail\n" in text
    assert 'Content-Type: audio/x-wav; codec=ulaw; name="2018-05-01_12:30:00_bob@example.org.wav"' in text
    assert 'Content-Disposition: attachment; filename="2018-05-01_12:30:00_bob@example.org.wav"' in text
    assert "Content-Transfer-Encoding: base64\n" in text


def test_message_id_falls_back_without_call_id() -> None:
    call = CallInfo(call_id="", caller="sip:bob@example.org", callee="sip:vm@example.com")
    first = message_id(call, "voicemail@example.com")
    second = message_id(call, "voicemail@example.com")

    assert first.startswith("<") and first.endswith("@example.com>")
    assert first != second


def test_non_ascii_display_names_are_encoded() -> None:
    call = CallInfo(call_id="x", caller='"Jürg" <sip:juerg@example.ch>', callee="sip:vm@example.com")
    envelope = Envelope(sender="voicemail@example.com", recipient="alice@example.com")
    text = voicemail_headers(call, envelope, WHEN, "f.wav").decode("ascii")

    assert "From: =?utf-8?" in text
    assert "Subject: =?utf-8?" in text


def test_non_ascii_filename_uses_rfc2231_parameters() -> None:
    call = CallInfo(call_id="x", caller="<sip:josé@example.org>", callee="sip:vm@example.com")
    envelope = Envelope(sender="voicemail@example.com", recipient="alice@example.com")
    text = voicemail_headers(call, envelope, WHEN, "2018-05-01_12:30:00_josé@example.org.wav").decode("ascii")

    assert "Content-Type: audio/x-wav; codec=ulaw; name*=utf-8''2018-05-01_12%3A30%3A00_jos%C3%A9%40example.org.wav\n" in text
    assert "Content-Disposition: attachment; filename*=utf-8''2018-05-01_12%3A30%3A00_jos%C3%A9%40example.org.wav\n" in text
    assert "Subject: =?utf-8?" in text


def test_notification_is_plain_text(mail_transport) -> None:
    composer = NotificationComposer(mail_transport)
    message = composer.compose(CALL, "alice@example.com", WHEN)
    head, body = message.split(b"\n\n", 1)

    assert _header_names(message) == [
        "From",
        "To",
        "Date",
        "Subject",
        "Message-ID",
        "MIME-Version",
        "Content-Type",
        "Content-Transfer-Encoding",
    ]
    assert b"Content-Type: text/plain; charset=utf-8" in head
    assert b"base64" not in head
    assert body == b"Missed call from Bob Caller to Voicemail at 2018-05-01 12:30:00.\n"


def test_notification_send_pipes_message(mail_transport) -> None:
    NotificationComposer(mail_transport).send(CALL, "alice@example.com", WHEN)

    recipient, pipe = mail_transport.opened[0]
    assert recipient == "alice@example.com"
    assert pipe.final_value.startswith(b"From: Bob Caller <voicemail@example.org>\n")
    assert pipe.final_value.endswith(b"12:30:00.\n")
