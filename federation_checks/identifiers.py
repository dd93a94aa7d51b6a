from __future__ import annotations

import re

from federation_checks.errors import ConfigError


# https://spec.matrix.org/latest/appendices/#server-name
_SERVER_NAME_RE = re.compile(
    r"^(?:\[[0-9A-Fa-f:.]{2,45}\]|[0-9]{1,3}(?:\.[0-9]{1,3}){3}|[A-Za-z0-9.-]{1,255})(?::[0-9]{1,5})?$"
)
_USER_LOCALPART_RE = re.compile(r"^[!-9;-~]+$")  # printable ASCII except ':'

MAX_IDENTIFIER_LEN = 255


def extract_domain(participant_id: str) -> str:
    """
    Server name of a participant: everything after the first ':'.

    Returns "" when there is no separator; callers must skip such members.
    """
    _, sep, domain = str(participant_id or "").partition(":")
    if not sep:
        return ""
    return domain


def is_valid_server_name(server_name: str) -> bool:
    s = str(server_name or "")
    return bool(s) and bool(_SERVER_NAME_RE.fullmatch(s))


def _validate_sigil_id(value: str, *, sigil: str, kind: str) -> str:
    s = str(value or "").strip()
    if not s:
        raise ConfigError(f"{kind} is empty")
    if len(s) > MAX_IDENTIFIER_LEN:
        raise ConfigError(f"{kind} {s!r} is longer than {MAX_IDENTIFIER_LEN} characters")
    if not s.startswith(sigil):
        raise ConfigError(f"{kind} {s!r} must start with {sigil!r}")
    local, sep, server = s[1:].partition(":")
    if not sep or not local:
        raise ConfigError(f"{kind} {s!r} must look like {sigil}<localpart>:<server>")
    if not is_valid_server_name(server):
        raise ConfigError(f"{kind} {s!r} has an invalid server name {server!r}")
    if sigil == "@" and not _USER_LOCALPART_RE.fullmatch(local):
        raise ConfigError(f"{kind} {s!r} has an invalid localpart")
    return s


def validate_user_id(value: str) -> str:
    return _validate_sigil_id(value, sigil="@", kind="user id")


def validate_room_id(value: str) -> str:
    return _validate_sigil_id(value, sigil="!", kind="room id")
