"""
Local session registry.

Discovers sessions from the liveness records (PID files) that workers write
into the socket directory, and reports their status. The registry owns no
process and never caches: every call re-reads the directory, because other
CLI invocations and workers create and remove records concurrently.

A record whose process is gone is "stale". Stale records are reported as
running=False rather than raised or deleted; only an explicit kill (or the
supervisor, right before respawning) removes them.
"""

import logging
import os
import signal
import subprocess
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from agent_browser.daemon.liveness import is_alive
from agent_browser.daemon.paths import get_session_paths, session_name_from_pid_file
from agent_browser.errors import SessionNotFound, TerminationFailed

logger = logging.getLogger(__name__)


class SessionStatus(BaseModel):
    """Status of one local session, derived from its liveness record."""

    name: str
    pid: Optional[int] = None
    running: bool = False
    socket_path: str
    socket_exists: bool = False
    pid_file: str

    @property
    def stale(self) -> bool:
        """Record present but its process is gone."""
        return not self.running


def read_pid(pid_file: Path) -> Optional[int]:
    """
    Read a PID from a liveness record.

    Returns None if the file is missing, unreadable or malformed.
    """
    try:
        pid_str = pid_file.read_text().strip()
    except OSError as e:
        logger.debug(f"Error reading PID file {pid_file}: {e}")
        return None

    try:
        pid = int(pid_str)
    except ValueError:
        logger.debug(f"Malformed PID file {pid_file}: {pid_str!r}")
        return None

    return pid if pid > 0 else None


def remove_quietly(path: Path) -> None:
    """Remove a file, ignoring errors (best-effort cleanup)."""
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug(f"Error removing {path}: {e}")


class SessionRegistry:
    """Read-side view of the liveness records in a socket directory."""

    def __init__(self, socket_dir: Path):
        self.socket_dir = Path(socket_dir)

    def _status(self, name: str, pid: Optional[int]) -> SessionStatus:
        paths = get_session_paths(name, self.socket_dir)
        return SessionStatus(
            name=name,
            pid=pid,
            running=is_alive(pid) if pid is not None else False,
            socket_path=paths.describe_endpoint(),
            socket_exists=paths.socket_path.exists(),
            pid_file=str(paths.pid_file),
        )

    def list_sessions(self) -> List[SessionStatus]:
        """
        Find all local sessions by scanning PID files.

        Records that are malformed, unreadable or vanish mid-scan are skipped.

        Returns:
            Sessions sorted by name (empty if there are none)
        """
        try:
            entries = list(os.scandir(self.socket_dir))
        except OSError as e:
            logger.debug(f"Cannot scan {self.socket_dir}: {e}")
            return []

        sessions = []
        for entry in entries:
            name = session_name_from_pid_file(entry.name)
            if name is None:
                continue

            pid = read_pid(Path(entry.path))
            if pid is None:
                continue

            sessions.append(self._status(name, pid))

        # Sort by name for consistent output
        sessions.sort(key=lambda s: s.name)
        return sessions

    def status_of(self, name: str) -> Optional[SessionStatus]:
        """
        Get the status of one session.

        Returns:
            SessionStatus, or None if no liveness record exists. A socket file
            without a record still counts as not found.
        """
        pid_file = get_session_paths(name, self.socket_dir).pid_file
        if not pid_file.exists():
            return None

        try:
            pid_str = pid_file.read_text().strip()
        except FileNotFoundError:
            # Removed between the existence check and the read
            return None
        except OSError as e:
            logger.debug(f"Error reading PID file {pid_file}: {e}")
            pid_str = ""

        try:
            pid = int(pid_str)
        except ValueError:
            pid = None

        if pid is not None and pid <= 0:
            pid = None

        return self._status(name, pid)

    def terminate(self, name: str) -> SessionStatus:
        """
        Kill a local daemon session and remove its files.

        Cleanup of the PID and socket files is attempted whether or not the
        signal was accepted, and never raises.

        Returns:
            Status of the session as it was before the kill

        Raises:
            SessionNotFound: No liveness record exists (nothing is signalled)
            TerminationFailed: The record is unreadable, or the signal was
                rejected and the process is still alive
        """
        status = self.status_of(name)
        if status is None:
            raise SessionNotFound(name)

        if status.pid is None:
            raise TerminationFailed("Failed to read PID file")

        pid = status.pid
        signal_error = _send_terminate(pid)

        paths = get_session_paths(name, self.socket_dir)
        remove_quietly(paths.pid_file)
        remove_quietly(paths.socket_path)

        if signal_error is not None and is_alive(pid):
            logger.warning(f"Failed to kill process {pid}: {signal_error}")
            raise TerminationFailed(f"Failed to kill process {pid}", pid=pid)

        logger.info(f"Killed session '{name}' (PID: {pid})")
        return status


def _send_terminate(pid: int) -> Optional[str]:
    """
    Ask a process to terminate.

    Returns:
        None if the request was accepted, otherwise an error description
    """
    if sys.platform == "win32":
        try:
            result = subprocess.run(
                ["taskkill", "/PID", str(pid), "/F"],
                capture_output=True,
                text=True,
            )
        except OSError as e:
            return str(e)
        if result.returncode != 0:
            return (result.stderr or result.stdout).strip() or f"taskkill exited {result.returncode}"
        return None

    try:
        os.kill(pid, signal.SIGTERM)
    except OSError as e:
        return str(e)
    return None
