"""Entry point for the SIP voicemail service.

Listens for incoming SIP calls, plays a greeting and records what the caller
says to a WAVE file and/or an email attachment.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Any

from config.settings import Settings, get_settings
from mail.messages import NotificationComposer
from mail.transport import MailTransport
from voicemail.admission import Admission

LOGGER = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Simple SIP voicemail. Listens for incoming SIP calls, "
        "sends a greeting and records data from the caller."
    )
    parser.add_argument("-l", "--listen", help="SIP listen socket (default udp:127.0.0.1:5062)")
    parser.add_argument("-r", "--rtp", dest="rtp_address", help="RTP listen address (default SIP listen address)")
    parser.add_argument("-p", "--ports", dest="rtp_ports", help="RTP listen port range start:end (default any port)")
    parser.add_argument("-s", "--sdp", dest="sdp_address", help="Announced RTP address in SDP (default RTP address)")
    parser.add_argument("-f", "--identity", help="SIP identity (default Voicemail <voicemail@localhost>)")
    parser.add_argument("-e", "--envelope-from", dest="envelope_from", help="Envelope sender for emails")
    parser.add_argument(
        "-m", "--multiuser", action="store_true", default=None,
        help="Route calls to the local user named by the called address; %%u and %%h expand in paths",
    )
    parser.add_argument("-w", "--welcome", help="Greeting file in WAVE G.711 u-law 8kHz format (default none)")
    parser.add_argument("-d", "--directory", help="Where to save received messages, empty to disable (default .)")
    parser.add_argument("-E", "--email", help="Email address receiving messages (default none)")
    parser.add_argument(
        "-n", "--no-record", dest="record", action="store_false", default=None,
        help="Never answer; only send a missed call email",
    )
    parser.add_argument(
        "-a", "--afterwelcome", dest="after_welcome", action="store_true", default=None,
        help="Start recording after the greeting (default immediately)",
    )
    parser.add_argument("-t", "--timeout", type=int, help="Record at most this many seconds (default 60)")
    parser.add_argument("--sendmail", dest="sendmail_path", help="Mail transport binary (default /usr/sbin/sendmail)")
    parser.add_argument("--log-level", dest="log_level", help="Logging level (default INFO)")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    """Environment settings overridden by whatever was given on the command line."""

    overrides: dict[str, Any] = {key: value for key, value in vars(args).items() if value is not None}
    if not overrides:
        return get_settings()
    return Settings(**overrides)


def check_privileges(settings: Settings) -> None:
    if settings.multiuser and settings.records_to_disk and os.geteuid() != 0:
        raise SystemExit("Error: Multiuser mode storing to disk requires running as root")


async def _amain(settings: Settings) -> None:
    from telephony.sip_gateway import VoicemailGateway

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)

    mail_transport = MailTransport(settings.sendmail_path, settings.envelope_from or "")
    notifier = NotificationComposer(mail_transport) if settings.email else None
    admission = Admission(settings, notifier)
    gateway = VoicemailGateway(
        settings,
        admission,
        mail_transport if settings.email else None,
        stop_event=stop_event,
    )

    await gateway.start()
    LOGGER.info("Starting main loop...")
    try:
        await stop_event.wait()
        LOGGER.info("Stopping; waiting for %d active call(s)", gateway.active_calls)
        await gateway.wait_idle()
    finally:
        await gateway.stop()
        await mail_transport.drain()


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    try:
        settings = build_settings(args)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    check_privileges(settings)
    asyncio.run(_amain(settings))


if __name__ == "__main__":
    main()
