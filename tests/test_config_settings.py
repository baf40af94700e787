from __future__ import annotations

import pytest
from pydantic import ValidationError

from config.settings import ListenSocket, Settings, get_settings, parse_listen, parse_port_range


def test_defaults_follow_listen_address() -> None:
    settings = Settings()

    assert settings.listen_socket == ListenSocket(proto="udp", host="127.0.0.1", port=5062)
    assert settings.rtp_address == "127.0.0.1"
    assert settings.sdp_address == "127.0.0.1"
    assert settings.envelope_from == "voicemail@localhost"
    assert settings.directory == "."
    assert settings.port_range is None
    assert settings.timeout == 60


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("VOICEMAIL_LISTEN", "udp:[::1]:5060")
    monkeypatch.setenv("VOICEMAIL_RTP_PORTS", "10000-10100")
    monkeypatch.setenv("VOICEMAIL_SDP_ADDRESS", "192.0.2.10")
    monkeypatch.setenv("VOICEMAIL_AFTER_WELCOME", "true")

    settings = Settings()

    assert settings.listen_socket.host == "::1"
    assert settings.rtp_address == "::1"
    assert settings.sdp_address == "192.0.2.10"
    assert settings.port_range == (10000, 10100)
    assert settings.after_welcome is True


def test_empty_paths_disable_features() -> None:
    settings = Settings(directory="", email="", welcome="")
    assert settings.directory is None
    assert settings.email is None
    assert settings.welcome is None
    assert not settings.records_to_disk


@pytest.mark.parametrize("value", ["udp:127.0.0.1", "sctp:1.2.3.4:5060", "udp:[::1:5060"])
def test_malformed_listen(value: str) -> None:
    with pytest.raises(ValueError):
        parse_listen(value)
    with pytest.raises(ValidationError):
        Settings(listen=value)


def test_port_range_parsing() -> None:
    assert parse_port_range("10000:20000") == (10000, 20000)
    assert parse_port_range("10000-10000") == (10000, 10000)
    for bad in ("10000", "2-1", "0:10", "1:70000"):
        with pytest.raises(ValueError):
            parse_port_range(bad)


def test_timeout_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(timeout=0)


def test_get_settings_is_cached(monkeypatch) -> None:
    get_settings.cache_clear()
    monkeypatch.setenv("VOICEMAIL_TIMEOUT", "45")
    try:
        settings = get_settings()
        assert settings.timeout == 45
        assert get_settings() is settings
    finally:
        get_settings.cache_clear()
