"""Tests for the agent-browser command line."""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from agent_browser.config import reload_settings
from agent_browser.core.protocol import Response
from agent_browser.daemon import registry as registry_module
from agent_browser.errors import ConnectionRefused, StartupTimeout
from agent_browser.main import app

runner = CliRunner()

SESSION_ID = "550e8400-e29b-41d4-a716-446655440000"


@pytest.fixture(autouse=True)
def isolated_settings(socket_dir, monkeypatch):
    """Point the CLI at the temp socket dir."""
    monkeypatch.setenv("AGENT_BROWSER_SOCKET_DIR", str(socket_dir))
    monkeypatch.delenv("AGENT_BROWSER_SESSION", raising=False)
    monkeypatch.delenv("AGENT_BROWSER_HEADED", raising=False)
    reload_settings()
    yield
    monkeypatch.undo()
    reload_settings()


def invoke(*args):
    return runner.invoke(app, list(args))


class TestSessionList:
    """Test suite for `session list`."""

    def test_empty_json(self):
        result = invoke("--json", "session", "list")
        assert result.exit_code == 0
        assert json.loads(result.stdout) == []

    def test_empty_human(self):
        result = invoke("session", "list")
        assert result.exit_code == 0
        assert "No active sessions." in result.stdout

    def test_local_sessions(self, write_pid_file):
        write_pid_file("foo", "4242")
        write_pid_file("bar", "4343")

        with patch.object(registry_module, "is_alive", return_value=False):
            result = invoke("--json", "session", "list")

        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert [s["name"] for s in payload] == ["bar", "foo"]
        assert all(s["type"] == "local" and s["running"] is False for s in payload)

    def test_cloud_sessions_included_when_daemon_running(self):
        with patch("agent_browser.main.CloudBridge.try_list_sessions",
                   return_value=[{"id": SESSION_ID, "status": "RUNNING", "region": "us-west-2"}]):
            result = invoke("--json", "session", "list")

        payload = json.loads(result.stdout)
        assert payload == [{"id": SESSION_ID, "status": "RUNNING", "region": "us-west-2", "type": "cloud"}]


class TestSessionInfo:
    """Test suite for `session` and `session info`."""

    def test_stale_session(self, write_pid_file):
        write_pid_file("foo", "4242")

        with patch.object(registry_module, "is_alive", return_value=False):
            result = invoke("--json", "session", "info", "foo")

        assert result.exit_code == 0
        session = json.loads(result.stdout)["session"]
        assert session["name"] == "foo"
        assert session["pid"] == 4242
        assert session["running"] is False

    def test_not_found(self):
        result = invoke("--json", "session", "info", "ghost")
        assert result.exit_code == 1
        assert json.loads(result.stdout) == {"success": False, "error": "Session 'ghost' not found"}

    def test_current_session_without_subcommand(self, write_pid_file):
        write_pid_file("work", "4242")

        with patch.object(registry_module, "is_alive", return_value=True):
            result = invoke("--json", "--session", "work", "session")

        assert result.exit_code == 0
        assert json.loads(result.stdout)["session"]["name"] == "work"

    def test_uuid_routes_to_cloud(self):
        with patch("agent_browser.main.DaemonManager.ensure_running", return_value=False) as ensure, \
             patch("agent_browser.main.DaemonClient.send",
                   return_value=Response.ok({"session": {"id": SESSION_ID, "status": "RUNNING"}})) as send:
            result = invoke("--json", "session", "info", SESSION_ID)

        assert result.exit_code == 0
        ensure.assert_called_once()
        command = send.call_args.args[0]
        assert command.action == "bb_session_get"
        assert command.model_dump()["sessionId"] == SESSION_ID


class TestSessionKill:
    """Test suite for `session kill`."""

    def test_missing_argument(self):
        result = invoke("--json", "session", "kill")
        assert result.exit_code == 1
        assert "requires a session name or ID" in result.stdout

    def test_not_found(self):
        result = invoke("--json", "session", "kill", "ghost")
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error"] == "Session 'ghost' not found"

    def test_kill_local(self, write_pid_file):
        pid_file = write_pid_file("foo", "4242")

        with patch.object(registry_module, "_send_terminate", return_value=None) as send_term, \
             patch.object(registry_module, "is_alive", return_value=False):
            result = invoke("--json", "session", "kill", "foo")

        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"success": True, "killed": "foo", "pid": 4242}
        send_term.assert_called_once_with(4242)
        assert not pid_file.exists()

    def test_uuid_stops_cloud_session(self):
        with patch("agent_browser.main.DaemonManager.ensure_running", return_value=False), \
             patch("agent_browser.main.DaemonClient.send",
                   return_value=Response.ok({"stopped": True, "sessionId": SESSION_ID})) as send, \
             patch.object(registry_module, "_send_terminate") as send_term:
            result = invoke("session", "kill", SESSION_ID)

        assert result.exit_code == 0
        assert send.call_args.args[0].action == "bb_session_stop"
        send_term.assert_not_called()

    def test_cloud_failure_exits_nonzero(self):
        with patch("agent_browser.main.DaemonManager.ensure_running", return_value=False), \
             patch("agent_browser.main.DaemonClient.send", return_value=Response.fail("Session not found")):
            result = invoke("--json", "session", "kill", SESSION_ID)

        assert result.exit_code == 1
        assert json.loads(result.stdout) == {"success": False, "error": "Session not found"}


class TestSessionDebug:
    """Test suite for `session debug`."""

    def test_missing_argument(self):
        result = invoke("session", "debug")
        assert result.exit_code == 1

    def test_startup_failure_rendered(self):
        with patch("agent_browser.main.DaemonManager.ensure_running",
                   side_effect=StartupTimeout("Daemon did not become ready")):
            result = invoke("--json", "session", "debug", SESSION_ID)

        assert result.exit_code == 1
        assert json.loads(result.stdout) == {"success": False, "error": "Daemon did not become ready"}


class TestSend:
    """Test suite for `send`."""

    def test_params_parsed(self):
        with patch("agent_browser.main.DaemonManager.ensure_running", return_value=True), \
             patch("agent_browser.main.DaemonClient.send", return_value=Response.ok({})) as send:
            result = invoke("--session", "work", "send", "navigate", "url=https://example.com", "wait=500")

        assert result.exit_code == 0
        command, session = send.call_args.args
        assert session == "work"
        assert command.model_dump()["url"] == "https://example.com"
        assert command.model_dump()["wait"] == 500

    def test_null_param_sent(self):
        with patch("agent_browser.main.DaemonManager.ensure_running", return_value=False), \
             patch("agent_browser.main.DaemonClient.send", return_value=Response.ok({})) as send:
            result = invoke("send", "set", "value=null")

        assert result.exit_code == 0
        command = send.call_args.args[0]
        assert json.loads(command.to_wire())["value"] is None
        assert "value" in json.loads(command.to_wire())

    def test_headed_switches_window_first(self):
        with patch("agent_browser.main.DaemonManager.ensure_running", return_value=False) as ensure, \
             patch("agent_browser.main.DaemonClient.send", return_value=Response.ok({})) as send:
            result = invoke("--headed", "send", "snapshot")

        assert result.exit_code == 0
        assert ensure.call_args.kwargs["headed"] is True
        actions = [c.args[0].action for c in send.call_args_list]
        assert actions == ["launch", "snapshot"]
        assert send.call_args_list[0].args[0].model_dump()["headless"] is False

    def test_failed_reply_exits_nonzero(self):
        with patch("agent_browser.main.DaemonManager.ensure_running", return_value=False), \
             patch("agent_browser.main.DaemonClient.send", return_value=Response.fail("Unknown action: fly")):
            result = invoke("--json", "send", "fly")

        assert result.exit_code == 1
        assert json.loads(result.stdout)["error"] == "Unknown action: fly"

    def test_transport_error_rendered(self):
        with patch("agent_browser.main.DaemonManager.ensure_running", return_value=False), \
             patch("agent_browser.main.DaemonClient.send", side_effect=ConnectionRefused("nobody home")):
            result = invoke("--json", "send", "ping")

        assert result.exit_code == 1
        assert json.loads(result.stdout) == {"success": False, "error": "nobody home"}

    def test_bad_param(self):
        result = invoke("send", "navigate", "nourl")
        assert result.exit_code == 1

    def test_remote_shaped_session_name_rejected(self):
        result = invoke("--json", "--session", SESSION_ID, "send", "ping")
        assert result.exit_code == 1
        assert "reserved" in json.loads(result.stdout)["error"]
