"""
Command channel to a session daemon.

One call = one short-lived connection:

    connect -> write one request line -> read one reply line -> close

There is no pooling, multiplexing or automatic retry. Re-running
DaemonManager.ensure_running() and retrying is the caller's decision.

Transport failures are reduced to three kinds:
- ConnectionRefused: nothing listens on the session endpoint
- TransportTimeout: the daemon did not answer in time
- ProtocolError: the reply was empty, unparseable or answered another request
"""

import json
import logging
import socket
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from agent_browser.config import Settings, get_settings
from agent_browser.core.protocol import Command, Response
from agent_browser.daemon.paths import SessionPaths, get_session_paths
from agent_browser.errors import ConnectionRefused, ProtocolError, TransportTimeout

logger = logging.getLogger(__name__)

# Replies larger than this are treated as a protocol violation
MAX_REPLY_BYTES = 64 * 1024 * 1024
_CHUNK_SIZE = 65536


def connect(paths: SessionPaths, timeout: float) -> socket.socket:
    """
    Open a connection to a session endpoint.

    Raises:
        ConnectionRefused: No listener (missing socket file, refused, reset)
        TransportTimeout: The connect itself timed out
    """
    endpoint = paths.endpoint
    family = socket.AF_INET if isinstance(endpoint, tuple) else socket.AF_UNIX

    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.settimeout(timeout)
    try:
        sock.connect(endpoint)
    except socket.timeout:
        sock.close()
        raise TransportTimeout(
            f"Timed out connecting to daemon for session '{paths.session}'"
        )
    except OSError as e:
        sock.close()
        raise ConnectionRefused(
            f"Daemon for session '{paths.session}' is not accepting connections "
            f"({paths.describe_endpoint()}): {e.strerror or e}"
        )
    return sock


def endpoint_accepts(paths: SessionPaths, timeout: float) -> bool:
    """Check if something is accepting connections on the endpoint."""
    try:
        sock = connect(paths, timeout)
    except (ConnectionRefused, TransportTimeout):
        return False
    sock.close()
    return True


def _read_line(sock: socket.socket) -> bytes:
    """Read up to and excluding the first newline (or EOF)."""
    buf = bytearray()
    while True:
        chunk = sock.recv(_CHUNK_SIZE)
        if not chunk:
            return bytes(buf)
        newline = chunk.find(b"\n")
        if newline >= 0:
            buf.extend(chunk[:newline])
            return bytes(buf)
        buf.extend(chunk)
        if len(buf) > MAX_REPLY_BYTES:
            raise ProtocolError(f"Reply exceeds {MAX_REPLY_BYTES} bytes without a newline")


def parse_response(raw: bytes, expected_id: str) -> Response:
    """
    Parse one reply line and check that it answers the given request.

    Raises:
        ProtocolError: Empty, unparseable, not an envelope, or id mismatch
    """
    if not raw.strip():
        raise ProtocolError("No response from daemon")

    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Invalid response from daemon: {e}")

    if not isinstance(payload, dict):
        raise ProtocolError("Invalid response from daemon: expected a JSON object")

    try:
        response = Response.model_validate(payload)
    except ValidationError as e:
        raise ProtocolError(f"Invalid response envelope: {e.errors()[0].get('msg')}")

    if response.id != expected_id:
        raise ProtocolError(
            f"Response id mismatch: sent {expected_id!r}, received {response.id!r}"
        )

    return response


class DaemonClient:
    """
    Client for sending commands to session daemons.

    Each send() opens a fresh connection; the client holds no socket between
    calls and is safe to reuse for different sessions.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        socket_dir: Optional[Path] = None,
        read_timeout: Optional[float] = None,
    ):
        """
        Initialize the client.

        Args:
            settings: Settings to use. If None, uses the global settings.
            socket_dir: Override the directory holding session sockets.
            read_timeout: Override the reply timeout in seconds.
        """
        self.settings = settings or get_settings()
        self.socket_dir = Path(socket_dir or self.settings.socket_dir)
        self.read_timeout = read_timeout if read_timeout is not None else self.settings.read_timeout

    def paths(self, session: str) -> SessionPaths:
        return get_session_paths(session, self.socket_dir)

    def send(self, command: Union[Command, dict], session: Optional[str] = None) -> Response:
        """
        Send one command to a session daemon and wait for its reply.

        Args:
            command: Command envelope (a dict is validated into one)
            session: Session name. If None, uses the configured session.

        Returns:
            The daemon's Response. A reply with success=false is returned,
            not raised.

        Raises:
            ConnectionRefused, TransportTimeout, ProtocolError
        """
        if isinstance(command, dict):
            command = Command.model_validate(command)

        session = session or self.settings.session
        paths = self.paths(session)

        logger.debug(f"-> [{session}] {command.action} (id={command.id})")
        sock = connect(paths, self.read_timeout)
        try:
            try:
                sock.sendall(command.to_wire())
                raw = _read_line(sock)
            except socket.timeout:
                raise TransportTimeout(
                    f"Daemon for session '{session}' did not respond within {self.read_timeout:g}s"
                )
            except OSError as e:
                # Peer went away mid-exchange: nobody is there to answer
                raise ConnectionRefused(f"Connection to daemon for session '{session}' lost: {e}")
        finally:
            sock.close()

        response = parse_response(raw, command.id)
        logger.debug(f"<- [{session}] {command.action} success={response.success}")
        return response

    def ping(self, session: Optional[str] = None) -> bool:
        """Check if the session daemon answers a ping."""
        try:
            return self.send(Command(action="ping"), session).success
        except (ConnectionRefused, TransportTimeout, ProtocolError):
            return False
