"""SIP signalling for the voicemail service, built on aiosipua.

The gateway turns INVITEs into admission decisions, answers accepted calls
with a PCMU-only SDP answer pointing at a fresh RTP endpoint, and forwards BYE
to the call's session. Each call is handled independently; a failure in one
never reaches the others or the listener.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from aiosipua import DialogState, SipUAC, SipUAS, build_sdp
from aiosipua.transport import UdpSipTransport

from config.settings import Settings
from mail.transport import MailTransport
from telephony.media_transport import RtpEndpoint
from telephony.rtp import PT_PCMU
from voicemail.admission import Admission
from voicemail.errors import CallRejectedError, TransportUnavailableError
from voicemail.naming import CallInfo
from voicemail.session import CallSession

LOGGER = logging.getLogger(__name__)


class SipCallControl:
    """Sends BYE for an answered incoming call."""

    def __init__(self, uac: SipUAC, call: Any) -> None:
        self._uac = uac
        self._call = call

    def hangup(self) -> None:
        if self._call.dialog.state == DialogState.CONFIRMED:
            self._uac.send_bye(self._call.dialog, self._call.source_addr)


class VoicemailGateway:
    def __init__(
        self,
        settings: Settings,
        admission: Admission,
        mail_transport: MailTransport | None,
        *,
        stop_event: asyncio.Event,
    ) -> None:
        listen = settings.listen_socket
        if listen.proto != "udp":
            raise ValueError(f"Only udp listen sockets are supported, got {listen.proto}")

        self._settings = settings
        self._admission = admission
        self._mail_transport = mail_transport
        self._stop_event = stop_event
        self._local_addr = (listen.host, listen.port)
        self._uas: SipUAS | None = None
        self._uac: SipUAC | None = None
        self._sessions: dict[str, tuple[CallSession, RtpEndpoint]] = {}
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def active_calls(self) -> int:
        return len(self._sessions)

    async def start(self) -> None:
        transport = UdpSipTransport(local_addr=self._local_addr)
        self._uac = SipUAC(transport)
        self._uas = SipUAS(transport, user_agent="voicemail", uac=self._uac)

        self._uas.on_invite = lambda call: asyncio.get_running_loop().create_task(self._handle_invite(call))
        self._uas.on_bye = self._handle_bye

        await self._uas.start()
        LOGGER.info("SIP voicemail listening on udp:%s:%s as %s", *self._local_addr, self._settings.identity)

    async def stop(self) -> None:
        if self._uas is not None:
            await self._uas.stop()
            self._uas = None

    async def wait_idle(self) -> None:
        """Wait until every active call has finished its teardown."""

        await self._idle.wait()

    async def _handle_invite(self, call: Any) -> None:
        info = CallInfo(call_id=str(call.call_id or ""), caller=str(call.caller), callee=str(call.callee))

        if self._stop_event.is_set():
            LOGGER.info("Rejecting call from %s: shutting down", info.caller)
            call.reject(503, "Service Unavailable")
            return

        try:
            settings = self._admission.admit(info)
        except CallRejectedError as exc:
            LOGGER.info("Rejecting call from %s to %s: %s", info.caller, info.callee, exc.detail)
            call.reject(exc.reason.status_code, exc.reason.phrase)
            return
        except Exception:
            LOGGER.exception("Admission of call from %s to %s failed", info.caller, info.callee)
            call.reject(500, "Server Internal Error")
            return

        if call.sdp_offer is None:
            LOGGER.warning("No SDP offer in INVITE from %s, rejecting", info.caller)
            call.reject(488, "Not Acceptable Here")
            return

        try:
            endpoint = await RtpEndpoint.open(self._settings.rtp_address, self._settings.port_range)
        except TransportUnavailableError as exc:
            LOGGER.error("Cannot answer call from %s: %s", info.caller, exc.detail)
            call.reject(503, "Service Unavailable")
            return

        try:
            session = CallSession.create(
                info,
                settings,
                SipCallControl(self._uac, call),
                scheduler=asyncio.get_running_loop().call_later,
                mail_transport=self._mail_transport,
            )
            answer = build_sdp(
                local_ip=self._settings.sdp_address,
                rtp_port=endpoint.local_port,
                payload_type=PT_PCMU,
                codec_name="PCMU",
                sample_rate=8000,
            )
            call.accept(answer)
        except Exception:
            LOGGER.exception("Cannot answer call from %s", info.caller)
            endpoint.close()
            call.reject(500, "Server Internal Error")
            return

        self._sessions[info.call_id] = (session, endpoint)
        self._idle.clear()
        session.add_close_callback(lambda s: self._release(info.call_id))
        session.start()
        endpoint.attach(session, call.sdp_offer.rtp_address)
        LOGGER.info("Call %s from %s answered on RTP port %s", info.call_id, info.caller, endpoint.local_port)

    def _handle_bye(self, call: Any, request: object) -> None:
        entry = self._sessions.get(str(call.call_id or ""))
        if entry is None:
            LOGGER.warning("BYE for unknown call_id: %s", call.call_id)
            return
        entry[0].on_hangup()

    def _release(self, call_id: str) -> None:
        entry = self._sessions.pop(call_id, None)
        if entry is not None:
            entry[1].close()
        if not self._sessions:
            self._idle.set()
