"""
agent-browser error taxonomy.

Every failure the CLI can surface to a user derives from AgentBrowserError and
carries a stable ``kind`` string.

Absence and staleness are NOT errors: the registry reports them as data
(``SessionStatus`` with ``running=False``). Only the supervisor, the command
channel and explicit actions (kill, cloud queries) raise.
"""

from typing import Optional


class AgentBrowserError(Exception):
    """Base class for all agent-browser failures."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SessionNotFound(AgentBrowserError):
    """No liveness record exists for the requested session."""

    kind = "not_found"

    def __init__(self, name: str):
        super().__init__(f"Session '{name}' not found")
        self.name = name


class InvalidSessionName(AgentBrowserError, ValueError):
    """Session name is empty, unsafe for a file name, or shaped like a remote id."""

    kind = "invalid_session_name"


class StartupTimeout(AgentBrowserError):
    """The worker never became reachable after spawn."""

    kind = "startup_timeout"


class TransportTimeout(AgentBrowserError):
    """The worker did not answer within the read timeout."""

    kind = "transport_timeout"


class ConnectionRefused(AgentBrowserError):
    """Nothing is listening on the session endpoint."""

    kind = "connection_refused"


class ProtocolError(AgentBrowserError):
    """The reply was empty, unparseable, or did not match the request id."""

    kind = "protocol_error"


class TerminationFailed(AgentBrowserError):
    """The kill signal was rejected and the process is still alive."""

    kind = "termination_failed"

    def __init__(self, message: str, pid: Optional[int] = None):
        super().__init__(message)
        self.pid = pid


class RemoteError(AgentBrowserError):
    """The remote control plane answered with success=false."""

    kind = "remote_error"
