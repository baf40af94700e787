"""Multiuser routing: map a called address to a local system account."""

from __future__ import annotations

import logging
import pwd
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from voicemail.errors import CallRejectedError, RejectReason
from voicemail.naming import sip_address

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UserRecord:
    name: str
    uid: int
    gid: int
    home: str


class TemplateToken(Enum):
    USER = "%u"
    HOME = "%h"


_TOKEN_PATTERN = re.compile("|".join(re.escape(token.value) for token in TemplateToken))


def expand_template(template: str | None, user: UserRecord | None) -> str | None:
    """Substitute `%u` and `%h` in a single pass.

    Without a resolved user the template is returned unchanged. Substituted
    text is never rescanned, so a home directory containing `%u` stays literal.
    """

    if template is None or user is None:
        return template

    values = {TemplateToken.USER.value: user.name, TemplateToken.HOME.value: user.home}
    return _TOKEN_PATTERN.sub(lambda m: values[m.group(0)], template)


def user_token(callee: str) -> str:
    """Local part of the called SIP address (`sip:alice@host` -> `alice`)."""

    address = sip_address(callee)
    user, _, _ = address.partition("@")
    user, _, _ = user.partition(";")
    return user.strip()


class UserResolver:
    """Looks up the account addressed by a call."""

    def __init__(self, lookup: Callable[[str], pwd.struct_passwd] = pwd.getpwnam) -> None:
        self._lookup = lookup

    def resolve(self, callee: str) -> UserRecord:
        name = user_token(callee)
        if not name:
            raise CallRejectedError(RejectReason.UNKNOWN_USER, f"No user in called address {callee!r}")

        try:
            entry = self._lookup(name)
        except KeyError:
            raise CallRejectedError(RejectReason.UNKNOWN_USER, f"Unknown user {name}") from None

        if not entry.pw_dir:
            raise CallRejectedError(RejectReason.NO_HOME_DIRECTORY, f"User {name} has no home directory")

        LOGGER.debug("Resolved %s to uid=%s gid=%s home=%s", name, entry.pw_uid, entry.pw_gid, entry.pw_dir)
        return UserRecord(name=name, uid=entry.pw_uid, gid=entry.pw_gid, home=entry.pw_dir)
