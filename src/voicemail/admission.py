"""Decide whether an incoming call is answered, before any media exists."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from config.settings import Settings
from mail.messages import NotificationComposer
from voicemail.errors import CallRejectedError, RejectReason, SinkError
from voicemail.naming import CallInfo
from voicemail.users import UserRecord, UserResolver, expand_template

LOGGER = logging.getLogger(__name__)


def local_now() -> datetime:
    return datetime.now().astimezone()


@dataclass(frozen=True, slots=True)
class CallSettings:
    """Configuration snapshot for one accepted call, templates already expanded."""

    greeting: str | None
    directory: Path | None
    email: str | None
    owner: UserRecord | None
    after_greeting: bool
    max_seconds: float


class Admission:
    """Resolves routing for a call and applies the answering policy."""

    def __init__(
        self,
        settings: Settings,
        notifier: NotificationComposer | None = None,
        *,
        resolver: UserResolver | None = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self._settings = settings
        self._notifier = notifier
        self._resolver = resolver or UserResolver()
        self._clock = clock

    def admit(self, call: CallInfo) -> CallSettings:
        """Return the call's settings or raise `CallRejectedError`."""

        settings = self._settings
        owner = self._resolver.resolve(call.callee) if settings.multiuser else None

        directory = expand_template(settings.directory, owner) if settings.record else None
        email = expand_template(settings.email, owner)

        if owner is not None and directory is not None and not Path(directory).is_dir():
            raise CallRejectedError(
                RejectReason.DIRECTORY_MISSING,
                f"Storage directory {directory} of user {owner.name} does not exist",
            )

        if directory is None and (email is None or not settings.record):
            if email is None:
                raise CallRejectedError(RejectReason.NO_RECIPIENT)
            self._notify(call, email)
            raise CallRejectedError(RejectReason.NOTIFY_ONLY, f"Missed call notification sent to {email}")

        return CallSettings(
            greeting=expand_template(settings.welcome, owner),
            directory=Path(directory) if directory is not None else None,
            email=email,
            owner=owner,
            after_greeting=settings.after_welcome,
            max_seconds=float(settings.timeout),
        )

    def _notify(self, call: CallInfo, recipient: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.send(call, recipient, self._clock())
        except (SinkError, OSError):
            LOGGER.exception("Cannot send missed call notification for %s to %s", call.caller, recipient)
