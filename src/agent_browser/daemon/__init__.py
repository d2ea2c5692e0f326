"""
agent-browser Daemon Package - Session worker lifecycle for the CLI.

Each named session is served by one long-lived worker process, reached over a
per-session local socket.

Components:
- paths.py: Socket, PID file and log naming per session
- liveness.py: Process liveness probe
- registry.py: Discover and inspect local sessions, kill them
- manager.py: Start a worker on demand and wait until it listens
- client.py: Send one command to a worker and read its reply
- cloud.py: Cloud session queries forwarded through a worker
- server.py: Reference worker
"""

from .client import DaemonClient
from .manager import DaemonManager
from .registry import SessionRegistry, SessionStatus

__all__ = ["DaemonClient", "DaemonManager", "SessionRegistry", "SessionStatus"]
