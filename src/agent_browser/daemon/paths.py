"""
Per-session file naming.

Every session name maps to a fixed set of paths in the socket directory:

    <socket_dir>/agent-browser-<session>.pid   liveness record (decimal PID)
    <socket_dir>/agent-browser-<session>.sock  Unix socket endpoint (POSIX)
    <socket_dir>/agent-browser-<session>.log   worker stdout/stderr
    <socket_dir>/agent-browser-<session>.lock  held by a worker while it binds (POSIX)

On Windows there are no Unix sockets; the endpoint is a localhost TCP port
derived from a hash of the session name. Clients never need a discovery step
beyond this string formatting.
"""

import hashlib
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

FILE_PREFIX = "agent-browser-"
PID_SUFFIX = ".pid"
SOCKET_SUFFIX = ".sock"
LOG_SUFFIX = ".log"
LOCK_SUFFIX = ".lock"

# Dynamic/private port range used for the Windows TCP fallback
_PORT_BASE = 49152
_PORT_SPAN = 16383

Endpoint = Union[str, Tuple[str, int]]


def uses_tcp_endpoint() -> bool:
    """Whether sessions are reached over localhost TCP instead of Unix sockets."""
    return sys.platform == "win32"


def session_port(session: str) -> int:
    """Deterministic localhost port for a session (Windows endpoint)."""
    digest = hashlib.md5(session.encode("utf-8")).hexdigest()
    return _PORT_BASE + (int(digest[:4], 16) % _PORT_SPAN)


@dataclass(frozen=True)
class SessionPaths:
    """Paths derived from one session name."""

    session: str
    pid_file: Path
    socket_path: Path
    log_file: Path
    lock_file: Path

    @property
    def endpoint(self) -> Endpoint:
        """Address to connect to: a socket path, or (host, port) on Windows."""
        if uses_tcp_endpoint():
            return ("127.0.0.1", session_port(self.session))
        return str(self.socket_path)

    def describe_endpoint(self) -> str:
        endpoint = self.endpoint
        if isinstance(endpoint, tuple):
            return f"tcp://{endpoint[0]}:{endpoint[1]}"
        return endpoint


def get_session_paths(session: str, socket_dir: Path) -> SessionPaths:
    """Get the record, endpoint and log paths for a session."""
    base = Path(socket_dir)
    return SessionPaths(
        session=session,
        pid_file=base / f"{FILE_PREFIX}{session}{PID_SUFFIX}",
        socket_path=base / f"{FILE_PREFIX}{session}{SOCKET_SUFFIX}",
        log_file=base / f"{FILE_PREFIX}{session}{LOG_SUFFIX}",
        lock_file=base / f"{FILE_PREFIX}{session}{LOCK_SUFFIX}",
    )


def session_name_from_pid_file(filename: str) -> Optional[str]:
    """
    Extract the session name from a liveness record filename.

    Returns None for files that do not follow the naming convention or that
    carry an empty session name.
    """
    if not (filename.startswith(FILE_PREFIX) and filename.endswith(PID_SUFFIX)):
        return None
    name = filename[len(FILE_PREFIX):-len(PID_SUFFIX)]
    return name or None
