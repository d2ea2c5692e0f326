"""Tests for the reference worker's request dispatch."""

import asyncio
import json
import os
import sys
import threading

import httpx
import pytest

from agent_browser.daemon.client import MAX_REPLY_BYTES
from agent_browser.daemon.paths import get_session_paths
from agent_browser.daemon.registry import read_pid
from agent_browser.daemon.server import (
    MAX_REQUEST_BYTES,
    DaemonState,
    _listen,
    dispatch,
    make_connection_handler,
    startup_lock,
)

SESSION_ID = "550e8400-e29b-41d4-a716-446655440000"


def run_dispatch(settings, payload, http_handler=None):
    """Dispatch one request; optionally answer Browserbase calls with http_handler."""

    async def _run():
        state = DaemonState(settings, "foo")
        if http_handler is not None:
            state.http_client = httpx.AsyncClient(
                base_url=settings.browserbase_api_url,
                transport=httpx.MockTransport(http_handler),
            )
        raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        try:
            return state, await dispatch(state, raw)
        finally:
            if state.http_client is not None:
                await state.http_client.aclose()

    return asyncio.run(_run())


@pytest.fixture
def cloud_settings(settings):
    return settings.model_copy(
        update={"browserbase_api_key": "bb_test", "browserbase_project_id": "proj-1"}
    )


class TestDispatch:
    """Test suite for local actions."""

    def test_ping_echoes_id(self, settings):
        _, response = run_dispatch(settings, {"id": "abc", "action": "ping"})
        assert response.success is True
        assert response.id == "abc"
        assert response.data["pong"] is True
        assert response.data["session"] == "foo"

    def test_unknown_action(self, settings):
        _, response = run_dispatch(settings, {"id": "1", "action": "navigate", "url": "x"})
        assert response.success is False
        assert response.error == "Unknown action: navigate"
        assert response.id == "1"

    def test_invalid_json(self, settings):
        _, response = run_dispatch(settings, b"{nope")
        assert response.success is False
        assert "Invalid JSON" in response.error

    def test_launch_records_window_mode(self, settings):
        state, response = run_dispatch(settings, {"id": "1", "action": "launch", "headless": False})
        assert response.data == {"launched": True, "headless": False}
        assert state.headless is False

    def test_close_marks_closing(self, settings):
        state, response = run_dispatch(settings, {"id": "1", "action": "close"})
        assert response.data == {"closed": True}
        assert state.closing is True


class TestCloudActions:
    """Test suite for Browserbase-backed actions."""

    def test_missing_api_key(self, settings):
        _, response = run_dispatch(settings, {"id": "1", "action": "bb_session_list"})
        assert response.success is False
        assert "BROWSERBASE_API_KEY" in response.error

    def test_list(self, cloud_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/sessions"
            assert request.headers["X-BB-API-Key"] == "bb_test"
            return httpx.Response(200, json=[{"id": SESSION_ID, "status": "RUNNING"}])

        _, response = run_dispatch(cloud_settings, {"id": "1", "action": "bb_session_list"}, handler)
        assert response.success is True
        assert response.data == {"sessions": [{"id": SESSION_ID, "status": "RUNNING"}]}

    def test_get_not_found(self, cloud_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "not found"})

        _, response = run_dispatch(
            cloud_settings, {"id": "1", "action": "bb_session_get", "sessionId": SESSION_ID}, handler
        )
        assert response.success is False
        assert response.error == "Session not found"

    def test_stop_requests_release(self, cloud_settings):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": SESSION_ID, "status": "COMPLETED"})

        _, response = run_dispatch(
            cloud_settings, {"id": "1", "action": "bb_session_stop", "sessionId": SESSION_ID}, handler
        )
        assert response.data == {"stopped": True, "sessionId": SESSION_ID}
        assert seen == {
            "method": "POST",
            "path": f"/v1/sessions/{SESSION_ID}",
            "body": {"projectId": "proj-1", "status": "REQUEST_RELEASE"},
        }

    def test_debug(self, cloud_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == f"/v1/sessions/{SESSION_ID}/debug"
            return httpx.Response(200, json={"debuggerUrl": "https://debug", "pages": []})

        _, response = run_dispatch(
            cloud_settings, {"id": "1", "action": "bb_session_debug", "sessionId": SESSION_ID}, handler
        )
        assert response.data == {"debug": {"debuggerUrl": "https://debug", "pages": []}}

    def test_session_id_required(self, cloud_settings):
        _, response = run_dispatch(cloud_settings, {"id": "1", "action": "bb_session_get"})
        assert response.success is False
        assert response.error == "sessionId is required"


class FakeWriter:
    """Collects what a connection handler writes."""

    def __init__(self):
        self.buffer = bytearray()
        self.closed = False

    def write(self, data):
        self.buffer.extend(data)

    async def drain(self):
        pass

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


def run_connection(settings, line, limit):
    """Feed one request line to the connection handler through a bounded reader."""

    async def _run():
        state = DaemonState(settings, "foo")
        reader = asyncio.StreamReader(limit=limit)
        reader.feed_data(line)
        reader.feed_eof()
        writer = FakeWriter()
        await make_connection_handler(state)(reader, writer)
        return writer

    return asyncio.run(_run())


class TestConnectionHandler:
    """Test suite for the per-connection request loop."""

    def test_reply_is_one_line(self, settings):
        writer = run_connection(settings, b'{"id": "1", "action": "ping"}\n', limit=1024)
        reply = json.loads(writer.buffer)
        assert writer.buffer.count(b"\n") == 1
        assert reply["id"] == "1"
        assert reply["success"] is True
        assert writer.closed is True

    def test_oversized_request_gets_reply(self, settings):
        line = json.dumps({"id": "1", "action": "ping", "blob": "x" * 4096}).encode() + b"\n"
        writer = run_connection(settings, line, limit=1024)
        reply = json.loads(writer.buffer)
        assert reply == {"success": False, "error": "Request too large"}
        assert writer.closed is True

    def test_request_limit_matches_reply_limit(self):
        assert MAX_REQUEST_BYTES == MAX_REPLY_BYTES
        assert MAX_REQUEST_BYTES > 200_000


@pytest.mark.skipif(sys.platform == "win32", reason="flock on Unix socket sessions")
class TestStartupLock:
    """Test suite for the check-and-bind lock."""

    def test_lock_is_exclusive(self, settings):
        import fcntl

        paths = get_session_paths("foo", settings.socket_dir)
        entered = threading.Event()

        def contender():
            with startup_lock(paths):
                entered.set()

        with open(paths.lock_file, "a") as held:
            fcntl.flock(held.fileno(), fcntl.LOCK_EX)
            thread = threading.Thread(target=contender, daemon=True)
            thread.start()
            assert entered.wait(0.3) is False
            fcntl.flock(held.fileno(), fcntl.LOCK_UN)

        assert entered.wait(5.0) is True
        thread.join(timeout=5.0)

    def test_second_worker_refused_while_first_listens(self, settings):
        async def _run():
            first = DaemonState(settings, "foo")
            server = await _listen(first, make_connection_handler(first))
            assert server is not None
            try:
                second = DaemonState(settings, "foo")
                assert await _listen(second, make_connection_handler(second)) is None
                assert first.paths.socket_path.exists()
                assert read_pid(first.paths.pid_file) == os.getpid()
            finally:
                server.close()
                await server.wait_closed()

        asyncio.run(_run())
