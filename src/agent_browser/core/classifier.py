"""
Session token classification.

A token passed to `session info` / `session kill` either names a local
session or addresses a cloud-hosted (Browserbase) session. Cloud session ids
are UUID-shaped, so the decision is purely lexical: no I/O, no existence
check. A UUID-shaped token that does not exist remotely is reported by the
cloud bridge, not here.
"""

import string
from enum import Enum

from agent_browser.errors import InvalidSessionName

# Group lengths of a hyphenated UUID: 8-4-4-4-12
REMOTE_ID_GROUPS = (8, 4, 4, 4, 12)
REMOTE_ID_LENGTH = 36

_HEX_DIGITS = frozenset(string.hexdigits)
_FORBIDDEN_NAME_CHARS = ("/", "\\", "\x00")


class SessionKind(str, Enum):
    """Where a session token points."""

    LOCAL = "local"
    REMOTE = "remote"


def is_remote_id(token: str) -> bool:
    """Check if a token has the 8-4-4-4-12 hexadecimal shape of a remote id."""
    if len(token) != REMOTE_ID_LENGTH:
        return False

    parts = token.split("-")
    if len(parts) != len(REMOTE_ID_GROUPS):
        return False

    for part, expected in zip(parts, REMOTE_ID_GROUPS):
        if len(part) != expected:
            return False
        if not all(c in _HEX_DIGITS for c in part):
            return False

    return True


def classify(token: str) -> SessionKind:
    """Classify a token as a local session name or a remote session id."""
    return SessionKind.REMOTE if is_remote_id(token) else SessionKind.LOCAL


def validate_session_name(name: str) -> str:
    """
    Validate a local session name.

    Session names become part of socket and PID file names, and must never be
    mistaken for a remote id by the classifier.

    Args:
        name: Session name to validate

    Returns:
        The name, unchanged

    Raises:
        InvalidSessionName: If the name is invalid
    """
    if not name:
        raise InvalidSessionName("Session name cannot be empty")

    if any(c in name for c in _FORBIDDEN_NAME_CHARS):
        raise InvalidSessionName(
            f"Invalid session name '{name}'. Session names cannot contain path separators."
        )

    if is_remote_id(name):
        raise InvalidSessionName(
            f"Session name '{name}' is reserved: it has the shape of a cloud session id"
        )

    return name
