"""
agent-browser Daemon Server - reference session worker.

This worker listens on the session endpoint and answers one newline-delimited
JSON request per connection:

- ping              - Liveness check
- launch            - Record the requested window mode ({"headless": bool})
- close             - Reply, then shut the worker down
- bb_session_list   - List cloud sessions (Browserbase)
- bb_session_get    - Get one cloud session ({"sessionId": ...})
- bb_session_stop   - Request release of a cloud session
- bb_session_debug  - Get debugger URLs for a cloud session

Browser automation verbs (open, click, snapshot, ...) are not implemented
here; they are answered with "Unknown action". Point
AGENT_BROWSER_DAEMON_COMMAND at a full worker to get them.

STARTUP:
The check-and-bind step runs under an exclusive flock on the session's
.lock file. The worker refuses to start when another worker already accepts
connections on the same endpoint. Otherwise it writes its PID file, removes a leftover
socket file and binds, so any listening endpoint already has a PID file. If
binding fails the worker removes its PID file again and exits with status 1.

Requests longer than MAX_REQUEST_BYTES get a "Request too large" reply.

The worker keeps one persistent httpx.AsyncClient for the Browserbase API.
"""

import asyncio
import json
import logging
import os
import signal
import sys
import time
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Dict, Iterator, Optional

import httpx

from agent_browser.config import Settings
from agent_browser.core.protocol import Action, Response
from agent_browser.daemon.client import MAX_REPLY_BYTES, endpoint_accepts
from agent_browser.daemon.paths import SessionPaths, get_session_paths, uses_tcp_endpoint
from agent_browser.daemon.registry import read_pid, remove_quietly

if sys.platform != "win32":
    import fcntl

logger = logging.getLogger(__name__)

# Requests and replies share one size bound
MAX_REQUEST_BYTES = MAX_REPLY_BYTES


class CloudAPIError(Exception):
    """Error talking to the Browserbase API."""
    pass


# =============================================================================
# Daemon State
# =============================================================================

class DaemonState:
    """Shared state for the daemon server."""

    def __init__(self, settings: Settings, session: str):
        self.settings = settings
        self.session = session
        self.paths: SessionPaths = get_session_paths(session, settings.socket_dir)
        self.headless = not settings.headed
        self.start_time = time.time()
        self.http_client: Optional[httpx.AsyncClient] = None
        self.closing = False
        self._shutdown_event = asyncio.Event()

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.start_time

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def wait_for_shutdown(self) -> None:
        await self._shutdown_event.wait()

    def get_http_client(self) -> httpx.AsyncClient:
        if not self.settings.is_cloud_configured:
            raise CloudAPIError("BROWSERBASE_API_KEY is not set")
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(
                base_url=self.settings.browserbase_api_url,
                timeout=30.0,
                headers={
                    "X-BB-API-Key": self.settings.browserbase_api_key,
                    "Content-Type": "application/json",
                },
            )
        return self.http_client


# =============================================================================
# Browserbase API
# =============================================================================

async def _cloud_request(state: DaemonState, method: str, path: str, body: Optional[dict] = None) -> Any:
    client = state.get_http_client()
    try:
        response = await client.request(method, path, json=body)
    except httpx.HTTPError as e:
        raise CloudAPIError(f"Browserbase request failed: {e}")

    if response.status_code == 404:
        raise CloudAPIError("Session not found")
    if response.status_code >= 400:
        raise CloudAPIError(
            f"Browserbase API error ({response.status_code}): {response.text[:200]}"
        )

    try:
        return response.json()
    except ValueError:
        raise CloudAPIError("Browserbase returned invalid JSON")


def _require_session_id(payload: Dict[str, Any]) -> str:
    session_id = payload.get("sessionId")
    if not isinstance(session_id, str) or not session_id:
        raise CloudAPIError("sessionId is required")
    return session_id


# =============================================================================
# Action Handlers
# =============================================================================

Handler = Callable[[DaemonState, Dict[str, Any]], Awaitable[Dict[str, Any]]]


async def handle_ping(state: DaemonState, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "pong": True,
        "session": state.session,
        "pid": os.getpid(),
        "uptime_seconds": round(state.uptime_seconds, 3),
    }


async def handle_launch(state: DaemonState, payload: Dict[str, Any]) -> Dict[str, Any]:
    headless = payload.get("headless", True)
    state.headless = bool(headless)
    logger.info(f"Window mode: {'headless' if state.headless else 'headed'}")
    return {"launched": True, "headless": state.headless}


async def handle_close(state: DaemonState, payload: Dict[str, Any]) -> Dict[str, Any]:
    state.closing = True
    return {"closed": True}


async def handle_remote_list(state: DaemonState, payload: Dict[str, Any]) -> Dict[str, Any]:
    result = await _cloud_request(state, "GET", "/sessions")
    sessions = result if isinstance(result, list) else result.get("sessions", [])
    return {"sessions": sessions}


async def handle_remote_get(state: DaemonState, payload: Dict[str, Any]) -> Dict[str, Any]:
    session_id = _require_session_id(payload)
    session = await _cloud_request(state, "GET", f"/sessions/{session_id}")
    return {"session": session}


async def handle_remote_stop(state: DaemonState, payload: Dict[str, Any]) -> Dict[str, Any]:
    session_id = _require_session_id(payload)
    project_id = payload.get("projectId") or state.settings.browserbase_project_id
    if not project_id:
        raise CloudAPIError("BROWSERBASE_PROJECT_ID is not set")
    await _cloud_request(
        state,
        "POST",
        f"/sessions/{session_id}",
        {"projectId": project_id, "status": "REQUEST_RELEASE"},
    )
    return {"stopped": True, "sessionId": session_id}


async def handle_remote_debug(state: DaemonState, payload: Dict[str, Any]) -> Dict[str, Any]:
    session_id = _require_session_id(payload)
    debug = await _cloud_request(state, "GET", f"/sessions/{session_id}/debug")
    return {"debug": debug}


HANDLERS: Dict[str, Handler] = {
    Action.PING.value: handle_ping,
    Action.LAUNCH.value: handle_launch,
    Action.CLOSE.value: handle_close,
    Action.REMOTE_LIST.value: handle_remote_list,
    Action.REMOTE_GET.value: handle_remote_get,
    Action.REMOTE_STOP.value: handle_remote_stop,
    Action.REMOTE_DEBUG.value: handle_remote_debug,
}


async def dispatch(state: DaemonState, raw: bytes) -> Response:
    """Turn one request line into one reply."""
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        return Response.fail(f"Invalid JSON: {e}")

    if not isinstance(payload, dict):
        return Response.fail("Invalid command: expected a JSON object")

    command_id = payload.get("id")
    if not isinstance(command_id, str):
        command_id = None
    action = payload.get("action")

    handler = HANDLERS.get(action) if isinstance(action, str) else None
    if handler is None:
        return Response.fail(f"Unknown action: {action}", id=command_id)

    try:
        data = await handler(state, payload)
    except CloudAPIError as e:
        return Response.fail(str(e), id=command_id)
    except Exception as e:
        logger.exception(f"Error handling {action}")
        return Response.fail(f"Internal error: {e}", id=command_id)

    return Response.ok(data, id=command_id)


# =============================================================================
# Connection Handling
# =============================================================================

def make_connection_handler(state: DaemonState):
    async def handle_connection(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            try:
                raw = await reader.readline()
            except (ValueError, asyncio.LimitOverrunError):
                logger.warning("Rejected request longer than the read limit")
                writer.write(Response.fail("Request too large").to_wire())
                await writer.drain()
                return
            if not raw:
                return
            response = await dispatch(state, raw)
            writer.write(response.to_wire())
            await writer.drain()
        except (ConnectionError, asyncio.IncompleteReadError) as e:
            logger.debug(f"Client went away: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

        if state.closing:
            state.request_shutdown()

    return handle_connection


def _install_signal_handlers(state: DaemonState) -> None:
    loop = asyncio.get_running_loop()

    def handle_signal(signum: int) -> None:
        logger.info(f"Received signal {signum}, initiating shutdown...")
        state.request_shutdown()

    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, handle_signal, signum)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(signum, lambda s, f: loop.call_soon_threadsafe(handle_signal, s))


@contextmanager
def startup_lock(paths: SessionPaths) -> Iterator[None]:
    """
    Hold the session's lock file while checking and binding the endpoint.

    Only one worker at a time may run the check-and-bind step. On Windows
    the TCP bind itself rejects a second listener, so no lock is taken.
    """
    if uses_tcp_endpoint():
        yield
        return

    with open(paths.lock_file, "a") as lock:
        fcntl.flock(lock.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock.fileno(), fcntl.LOCK_UN)


async def _listen(state: DaemonState, handler) -> Optional[asyncio.AbstractServer]:
    """
    Claim the session endpoint: write the PID file, then bind.

    Returns:
        The listening server, or None if the endpoint is taken or cannot be bound
    """
    paths = state.paths
    pid = os.getpid()

    with startup_lock(paths):
        if endpoint_accepts(paths, state.settings.probe_timeout):
            logger.error(
                f"Daemon for session '{state.session}' is already running at {paths.describe_endpoint()}"
            )
            return None

        paths.pid_file.write_text(str(pid))

        try:
            if uses_tcp_endpoint():
                host, port = paths.endpoint
                return await asyncio.start_server(
                    handler, host=host, port=port, limit=MAX_REQUEST_BYTES
                )
            remove_quietly(paths.socket_path)
            return await asyncio.start_unix_server(
                handler, path=str(paths.socket_path), limit=MAX_REQUEST_BYTES
            )
        except OSError as e:
            logger.error(f"Cannot listen on {paths.describe_endpoint()}: {e}")
            if read_pid(paths.pid_file) == pid:
                remove_quietly(paths.pid_file)
            return None


async def serve(settings: Settings, session: str) -> int:
    """
    Run the worker until it is closed or signalled.

    Returns:
        Process exit code
    """
    state = DaemonState(settings, session)
    paths = state.paths
    pid = os.getpid()

    settings.socket_dir.mkdir(parents=True, exist_ok=True)
    server = await _listen(state, make_connection_handler(state))
    if server is None:
        return 1

    _install_signal_handlers(state)

    logger.info(
        f"Daemon started (session: {session}, pid: {pid}, endpoint: {paths.describe_endpoint()}, "
        f"headless: {state.headless})"
    )

    try:
        async with server:
            await state.wait_for_shutdown()
    finally:
        logger.info("Daemon shutting down...")
        if state.http_client is not None:
            await state.http_client.aclose()

        # Leave files alone if a newer worker has taken over the session
        if read_pid(paths.pid_file) == pid:
            remove_quietly(paths.pid_file)
            if not uses_tcp_endpoint():
                remove_quietly(paths.socket_path)

        logger.info("Daemon stopped")

    return 0


# =============================================================================
# Entry Point
# =============================================================================

def run_server(session: Optional[str] = None, headed: Optional[bool] = None) -> int:
    """
    Run the daemon server.

    Args:
        session: Session to serve. If None, uses AGENT_BROWSER_SESSION.
        headed: Override the window mode. If None, uses AGENT_BROWSER_HEADED.
    """
    settings = Settings()
    if headed is not None:
        settings.headed = headed
    session = session or settings.session

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info(f"Starting daemon for session: {session}")
    return asyncio.run(serve(settings, session))


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="agent-browser session daemon")
    parser.add_argument(
        "--session",
        default=None,
        help="Session to serve (default: AGENT_BROWSER_SESSION or 'default')",
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        default=None,
        help="Show the browser window",
    )

    args = parser.parse_args()
    sys.exit(run_server(session=args.session, headed=args.headed))
