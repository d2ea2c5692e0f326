import json
import logging
import sys
from typing import Callable, List, Optional

import typer

from agent_browser.config import Settings, get_settings
from agent_browser.core.classifier import SessionKind, classify, validate_session_name
from agent_browser.core.protocol import Action, Command, Response
from agent_browser.daemon.client import DaemonClient
from agent_browser.daemon.cloud import CloudBridge
from agent_browser.daemon.manager import DaemonManager
from agent_browser.daemon.registry import SessionRegistry
from agent_browser.errors import AgentBrowserError
from agent_browser.output import (
    err_console,
    console,
    print_error,
    print_json,
    print_local_session,
    print_response,
    print_session_list,
)

logger = logging.getLogger(__name__)

APP_HELP = """
agent-browser - fast browser automation CLI for AI agents.

Every command runs against a named SESSION. Each session is served by its own
background daemon, started automatically on first use and reached over a local
socket. Sessions are isolated from each other: separate browser, separate
state.

Tokens shaped like a UUID (8-4-4-4-12 hex) address cloud sessions hosted on
Browserbase instead of local ones; those queries are forwarded through the
current session's daemon.
"""

SESSION_HELP = """
Inspect and stop sessions.

Without a subcommand, shows the current session.
"""

app = typer.Typer(name="agent-browser", help=APP_HELP, no_args_is_help=True)
session_app = typer.Typer(name="session", help=SESSION_HELP, invoke_without_command=True)
daemon_app = typer.Typer(name="daemon", help="Session daemon management.")
app.add_typer(session_app, name="session")
app.add_typer(daemon_app, name="daemon")

state = {"session": None, "json": False, "headed": False}


def _settings() -> Settings:
    """Global settings with the command-line overrides applied."""
    return get_settings().model_copy(
        update={"session": state["session"], "headed": state["headed"]}
    )


def _fail(message: str, hint: str = "") -> None:
    print_error(message, state["json"], hint)
    raise typer.Exit(code=1)


def _finish(response: Response) -> None:
    """Render a reply; a failed reply exits non-zero."""
    print_response(response, state["json"])
    if not response.success:
        raise typer.Exit(code=1)


def _parse_params(params: List[str]) -> dict:
    """Parse key=value pairs; values are JSON when they parse as JSON."""
    fields = {}
    for item in params:
        if "=" not in item:
            _fail(f"Invalid parameter '{item}'", "Parameters must look like key=value")
        key, value = item.split("=", 1)
        if key in ("id", "action"):
            _fail(f"Parameter '{key}' is reserved")
        try:
            fields[key] = json.loads(value)
        except json.JSONDecodeError:
            fields[key] = value
    return fields


@app.callback()
def main(
    session: Optional[str] = typer.Option(
        None, "--session", help="Isolated session name (or AGENT_BROWSER_SESSION env)"
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output"),
    headed: bool = typer.Option(False, "--headed", help="Show browser window (not headless)"),
    debug: bool = typer.Option(False, "--debug", help="Debug output"),
):
    """
    agent-browser: browser automation CLI for AI agents.
    """
    if debug:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    settings = get_settings()
    state["json"] = json_output
    state["headed"] = headed or settings.headed

    try:
        state["session"] = validate_session_name(session or settings.session)
    except AgentBrowserError as e:
        _fail(e.message)


# ============================================================================
# Daemon Commands
# ============================================================================

@daemon_app.command("start")
def daemon_start():
    """
    Start the current session's daemon if it is not running.

    Normally unnecessary: every command that needs a daemon starts one.
    """
    settings = _settings()
    manager = DaemonManager(settings)

    try:
        started = manager.ensure_running(settings.session, headed=settings.headed)
    except AgentBrowserError as e:
        _fail(e.message)

    status = SessionRegistry(settings.socket_dir).status_of(settings.session)
    pid = status.pid if status else None

    if state["json"]:
        print_json({"success": True, "session": settings.session, "started": started, "pid": pid})
        return

    if started:
        console.print(f"[green]Daemon started for session '{settings.session}'[/green]")
    else:
        console.print(f"[green]Daemon is already running for session '{settings.session}'[/green]")
    console.print(f"PID: {pid}")
    console.print(f"[dim]Log file: {manager.paths(settings.session).log_file}[/dim]")


@daemon_app.command("status")
def daemon_status():
    """
    Show whether the current session's daemon is reachable.
    """
    settings = _settings()
    manager = DaemonManager(settings)
    client = DaemonClient(settings)

    reachable = manager.is_running(settings.session)
    responsive = client.ping(settings.session) if reachable else False
    status = SessionRegistry(settings.socket_dir).status_of(settings.session)

    result = {
        "session": settings.session,
        "running": reachable,
        "responsive": responsive,
        "pid": status.pid if status else None,
        "socket": manager.paths(settings.session).describe_endpoint(),
    }

    if state["json"]:
        print_json(result)
        return

    if reachable:
        console.print("[bold green]Daemon is running[/bold green]")
        console.print(f"  PID: {result['pid']}")
        console.print(f"  Socket: {result['socket']}")
        if not responsive:
            console.print("  [yellow]Daemon accepts connections but did not answer a ping[/yellow]")
    else:
        console.print("[dim]Daemon is not running[/dim]")
        if status is not None:
            console.print(f"  Stale PID file: {status.pid_file}")


# ============================================================================
# Session Commands
# ============================================================================

def _cloud_query(query: Callable[[CloudBridge], Response]) -> None:
    """Ensure the current session's daemon, then run one cloud query through it."""
    settings = _settings()
    manager = DaemonManager(settings)
    bridge = CloudBridge(DaemonClient(settings), manager, settings.session)

    try:
        manager.ensure_running(settings.session, headed=settings.headed)
        response = query(bridge)
    except AgentBrowserError as e:
        _fail(e.message)

    _finish(response)


def _local_name(name: str) -> str:
    try:
        return validate_session_name(name)
    except AgentBrowserError as e:
        _fail(e.message)


@session_app.callback()
def session_main(ctx: typer.Context):
    """Show the current session when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        _show_local_session(state["session"])


def _show_local_session(name: str) -> None:
    registry = SessionRegistry(_settings().socket_dir)
    status = registry.status_of(name)
    if status is None:
        _fail(f"Session '{name}' not found")
    print_local_session(status, state["json"])


@session_app.command("list")
def session_list():
    """
    List all active sessions (local + cloud).

    Cloud sessions are included only when the current session's daemon is
    already running; listing never starts a daemon.
    """
    settings = _settings()
    registry = SessionRegistry(settings.socket_dir)
    bridge = CloudBridge(DaemonClient(settings), DaemonManager(settings), settings.session)

    local_sessions = registry.list_sessions()
    cloud_sessions = bridge.try_list_sessions()
    print_session_list(local_sessions, cloud_sessions, state["json"])


@session_app.command("info")
def session_info(
    target: Optional[str] = typer.Argument(None, help="Session name or cloud session id"),
):
    """
    Show session details.

    A UUID-shaped argument is looked up as a cloud session.
    """
    target = target or state["session"]

    if classify(target) is SessionKind.REMOTE:
        _cloud_query(lambda bridge: bridge.get_session(target))
        return

    _show_local_session(_local_name(target))


@session_app.command("kill")
def session_kill(
    target: Optional[str] = typer.Argument(None, help="Session name or cloud session id"),
):
    """
    Stop/kill a session.

    Local sessions get SIGTERM and their socket and PID files are removed.
    A UUID-shaped argument stops the cloud session instead.
    """
    if not target:
        _fail(
            "session kill requires a session name or ID",
            "Usage: agent-browser session kill <name|id>",
        )

    if classify(target) is SessionKind.REMOTE:
        _cloud_query(lambda bridge: bridge.stop_session(target))
        return

    registry = SessionRegistry(_settings().socket_dir)
    try:
        status = registry.terminate(_local_name(target))
    except AgentBrowserError as e:
        _fail(e.message)

    if state["json"]:
        print_json({"success": True, "killed": status.name, "pid": status.pid})
    else:
        console.print(f"[green]✓[/green] Killed session '{status.name}' (PID: {status.pid})")


@session_app.command("debug")
def session_debug(
    target: Optional[str] = typer.Argument(None, help="Cloud session id"),
):
    """
    Get debug URLs (cloud sessions only).
    """
    if not target:
        _fail(
            "session debug requires a session ID",
            "Usage: agent-browser session debug <id>",
        )

    _cloud_query(lambda bridge: bridge.debug_session(target))


# ============================================================================
# Commands
# ============================================================================

@app.command("send")
def send(
    action: str = typer.Argument(..., help="Action name understood by the daemon"),
    params: Optional[List[str]] = typer.Argument(None, help="Action fields as key=value"),
):
    """
    Send one command to the current session's daemon.

    Starts the daemon first if needed. Values are parsed as JSON when
    possible, otherwise sent as strings.

    Examples:
        agent-browser send ping
        agent-browser --session work send navigate url=https://example.com
        agent-browser --headed send launch headless=false
    """
    settings = _settings()
    command = Command(action=action, **_parse_params(params or []))

    manager = DaemonManager(settings)
    client = DaemonClient(settings)

    try:
        manager.ensure_running(settings.session, headed=settings.headed)
    except AgentBrowserError as e:
        _fail(e.message)

    # A running daemon may have been started headless; switch it first
    if settings.headed and action != Action.LAUNCH.value:
        try:
            client.send(Command(action=Action.LAUNCH, headless=False), settings.session)
        except AgentBrowserError as e:
            if not state["json"]:
                err_console.print(f"[yellow]⚠[/yellow] Could not switch to headed mode: {e.message}")

    try:
        response = client.send(command, settings.session)
    except AgentBrowserError as e:
        _fail(e.message)

    _finish(response)


if __name__ == "__main__":
    app()
