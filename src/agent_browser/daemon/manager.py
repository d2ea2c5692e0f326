"""
agent-browser Daemon Manager - Process lifecycle management for session daemons.

Guarantees that a worker is reachable for a session, starting one on demand.
Each session has its own daemon with:
- Unique socket endpoint (<socket_dir>/agent-browser-{session}.sock)
- Separate PID file (<socket_dir>/agent-browser-{session}.pid), written by the
  worker itself before it binds
- Separate log file (<socket_dir>/agent-browser-{session}.log)

Startup is a small state machine:

    NOT_REACHABLE -> SPAWNING -> POLLING_READY -> READY
                                               -> STARTUP_TIMEOUT

Two CLI invocations racing to start the same session is accepted: the worker
refuses to start when another one already listens on the endpoint, and the
loser's poll simply finds the winner.
"""

import logging
import os
import subprocess
import sys
import time
from enum import Enum
from pathlib import Path
from typing import Optional

from agent_browser.config import Settings, get_settings
from agent_browser.daemon.client import endpoint_accepts
from agent_browser.daemon.liveness import is_alive
from agent_browser.daemon.paths import SessionPaths, get_session_paths
from agent_browser.daemon.registry import read_pid, remove_quietly
from agent_browser.errors import StartupTimeout

logger = logging.getLogger(__name__)


class SupervisorState(str, Enum):
    NOT_REACHABLE = "not_reachable"
    SPAWNING = "spawning"
    POLLING_READY = "polling_ready"
    READY = "ready"
    STARTUP_TIMEOUT = "startup_timeout"


class DaemonManager:
    """
    Manages session daemon processes.

    The manager handles:
    - Checking whether a session's daemon is reachable
    - Starting a daemon in the background and waiting until it listens
    - Cleaning up a stale PID/socket pair before a respawn

    It never writes the PID file; the worker does that on startup.
    """

    def __init__(self, settings: Optional[Settings] = None, socket_dir: Optional[Path] = None):
        """
        Initialize daemon manager.

        Args:
            settings: Settings to use. If None, uses the global settings.
            socket_dir: Override the directory holding session sockets and PID files.
        """
        self.settings = settings or get_settings()
        self.socket_dir = Path(socket_dir or self.settings.socket_dir)
        self.state = SupervisorState.NOT_REACHABLE

    def _set_state(self, state: SupervisorState) -> None:
        logger.debug(f"Supervisor: {self.state.value} -> {state.value}")
        self.state = state

    def paths(self, session: str) -> SessionPaths:
        return get_session_paths(session, self.socket_dir)

    def _endpoint_accepts(self, paths: SessionPaths) -> bool:
        return endpoint_accepts(paths, self.settings.probe_timeout)

    def is_running(self, session: str) -> bool:
        """
        Check if a daemon for the session is reachable.

        Both the PID file (with a live process) and a listening endpoint are
        required: a PID file alone may be left over from a crash.
        """
        paths = self.paths(session)
        pid = read_pid(paths.pid_file)
        if pid is None or not is_alive(pid):
            return False
        return self._endpoint_accepts(paths)

    def _cleanup_stale_files(self, paths: SessionPaths) -> None:
        """Remove a PID file whose process is gone, along with its socket file."""
        if not paths.pid_file.exists():
            return
        old_pid = read_pid(paths.pid_file)
        if old_pid is not None and is_alive(old_pid):
            return
        logger.info(f"Removing stale PID file for session '{paths.session}' (process {old_pid} not running)")
        remove_quietly(paths.pid_file)
        remove_quietly(paths.socket_path)

    def _build_env(self, session: str, headed: bool) -> dict:
        env = os.environ.copy()
        env["AGENT_BROWSER_DAEMON"] = "1"
        env["AGENT_BROWSER_SESSION"] = session
        env["AGENT_BROWSER_SOCKET_DIR"] = str(self.socket_dir)
        if headed:
            env["AGENT_BROWSER_HEADED"] = "1"
        else:
            env.pop("AGENT_BROWSER_HEADED", None)
        return env

    def _spawn(self, session: str, headed: bool) -> subprocess.Popen:
        """Start one worker process in the background."""
        paths = self.paths(session)
        cmd = self.settings.get_daemon_command()

        self.socket_dir.mkdir(parents=True, exist_ok=True)

        # Open log file for output
        with open(paths.log_file, "a") as log:
            log.write(f"\n{'=' * 60}\n")
            log.write(f"Starting daemon at {time.strftime('%Y-%m-%d %H:%M:%S')}\n")
            log.write(f"Session: {session}\n")
            log.write(f"Headed: {headed}\n")
            log.write(f"Command: {' '.join(cmd)}\n")
            log.write(f"{'=' * 60}\n")
            log.flush()

            kwargs = {}
            if sys.platform == "win32":
                kwargs["creationflags"] = (
                    subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.DETACHED_PROCESS
                )
            else:
                kwargs["start_new_session"] = True  # Detach from parent

            try:
                process = subprocess.Popen(
                    cmd,
                    stdout=log,
                    stderr=log,
                    stdin=subprocess.DEVNULL,
                    env=self._build_env(session, headed),
                    **kwargs,
                )
            except OSError as e:
                self._set_state(SupervisorState.STARTUP_TIMEOUT)
                raise StartupTimeout(f"Failed to start daemon: {e}")

        logger.info(f"Started daemon for session '{session}' (PID: {process.pid})")
        return process

    def _wait_ready(self, paths: SessionPaths, process: subprocess.Popen) -> None:
        """Poll the endpoint until it accepts connections or the ceiling is hit."""
        for _ in range(self.settings.startup_retries):
            if self._endpoint_accepts(paths):
                return

            exit_code = process.poll()
            if exit_code is not None:
                # A worker that lost a startup race exits; the winner may be up
                if self._endpoint_accepts(paths):
                    return
                self._set_state(SupervisorState.STARTUP_TIMEOUT)
                raise StartupTimeout(
                    f"Daemon for session '{paths.session}' exited with code {exit_code} "
                    f"before accepting connections. Check {paths.log_file}"
                )

            time.sleep(self.settings.startup_poll_interval)

        if self._endpoint_accepts(paths):
            return

        self._set_state(SupervisorState.STARTUP_TIMEOUT)
        raise StartupTimeout(
            f"Daemon for session '{paths.session}' did not become ready within "
            f"{self.settings.startup_ceiling_seconds:g}s. Check {paths.log_file}"
        )

    def ensure_running(self, session: Optional[str] = None, headed: bool = False) -> bool:
        """
        Make sure a daemon for the session is reachable.

        Args:
            session: Session name. If None, uses the configured session.
            headed: Start a new daemon with a visible browser window. Has no
                effect on a daemon that is already running.

        Returns:
            True if a daemon was started, False if one was already running.

        Raises:
            StartupTimeout: The new daemon never accepted connections
        """
        session = session or self.settings.session
        paths = self.paths(session)

        if self.is_running(session):
            self._set_state(SupervisorState.READY)
            return False

        self._set_state(SupervisorState.NOT_REACHABLE)
        self._cleanup_stale_files(paths)

        self._set_state(SupervisorState.SPAWNING)
        process = self._spawn(session, headed)

        self._set_state(SupervisorState.POLLING_READY)
        self._wait_ready(paths, process)

        self._set_state(SupervisorState.READY)
        return True
