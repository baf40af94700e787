"""Application-wide configuration loading and validation."""

from __future__ import annotations

import re
from dataclasses import dataclass
from email.utils import parseaddr
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LISTEN_RE = re.compile(r"^(tcp|udp|tls):([^\[\]<>:]*|\[[^\[\]<>]*\]):([0-9]+)$")
_PORTS_RE = re.compile(r"^([0-9]+)[:\-]([0-9]+)$")


@dataclass(frozen=True, slots=True)
class ListenSocket:
    proto: Literal["tcp", "udp", "tls"]
    host: str
    port: int


def parse_listen(value: str) -> ListenSocket:
    match = _LISTEN_RE.match(value)
    if not match:
        raise ValueError(f"Malformed listen address {value}")
    proto, host, port = match.groups()
    return ListenSocket(proto=proto, host=host.strip("[]"), port=int(port))  # type: ignore[arg-type]


def parse_port_range(value: str) -> tuple[int, int]:
    match = _PORTS_RE.match(value)
    if not match:
        raise ValueError(f"Malformed rtp range {value}")
    low, high = int(match.group(1)), int(match.group(2))
    if not 0 < low <= high <= 65535:
        raise ValueError(f"Invalid rtp range {value}")
    return low, high


class Settings(BaseSettings):
    """Centralized environment configuration.

    Every field can be set through a `VOICEMAIL_*` environment variable or the
    `.env` file; `main.py` overrides them from the command line.
    """

    model_config = SettingsConfigDict(
        env_prefix="VOICEMAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    log_level: str = Field(default="INFO")

    # SIP signalling
    listen: str = Field(default="udp:127.0.0.1:5062", description="SIP listen socket proto:addr:port.")
    identity: str = Field(default="Voicemail <voicemail@localhost>", description="SIP identity.")

    # RTP media
    rtp_address: str = Field(default="", description="RTP listen address (default: SIP listen address).")
    rtp_ports: str = Field(default="", description="RTP port range start:end (default: any port).")
    sdp_address: str = Field(default="", description="Address announced in SDP (default: RTP address).")

    # Recording
    welcome: str | None = Field(default=None, description="Greeting WAVE file (G.711 u-law 8kHz mono).")
    directory: str | None = Field(default=".", description="Where recordings are stored; empty disables.")
    email: str | None = Field(default=None, description="Address receiving recordings or notifications.")
    record: bool = Field(default=True, description="If false, never answer; only notify by email.")
    after_welcome: bool = Field(default=False, description="Start recording after the greeting.")
    timeout: int = Field(default=60, gt=0, description="Record at most this many seconds.")

    # Multiuser routing
    multiuser: bool = Field(default=False, description="Route calls to the local account named by the callee.")

    # Mail transport
    envelope_from: str | None = Field(default=None, description="Envelope sender (default: identity address).")
    sendmail_path: str = Field(default="/usr/sbin/sendmail")

    @field_validator("listen")
    @classmethod
    def validate_listen(cls, value: str) -> str:
        parse_listen(value)
        return value

    @field_validator("rtp_ports")
    @classmethod
    def validate_rtp_ports(cls, value: str) -> str:
        if value:
            parse_port_range(value)
        return value

    @field_validator("welcome", "directory", "email", "envelope_from")
    @classmethod
    def empty_as_none(cls, value: str | None) -> str | None:
        return value or None

    @model_validator(mode="after")
    def fill_defaults(self) -> Settings:
        if not self.rtp_address:
            self.rtp_address = self.listen_socket.host
        if not self.sdp_address:
            self.sdp_address = self.rtp_address
        if not self.envelope_from:
            self.envelope_from = parseaddr(self.identity)[1] or "voicemail@localhost"
        return self

    @property
    def listen_socket(self) -> ListenSocket:
        return parse_listen(self.listen)

    @property
    def port_range(self) -> tuple[int, int] | None:
        return parse_port_range(self.rtp_ports) if self.rtp_ports else None

    @property
    def records_to_disk(self) -> bool:
        return self.record and self.directory is not None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings from the environment alone, loaded once."""

    return Settings()
