"""Human and JSON rendering of session status and daemon replies."""

import json
from typing import Any, Dict, List

import typer
from rich.console import Console
from rich.markup import escape

from agent_browser.core.protocol import Response
from agent_browser.daemon.liveness import PROBE_IS_EXACT
from agent_browser.daemon.registry import SessionStatus

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

_STATUS_COLORS = {
    "RUNNING": "green",
    "COMPLETED": "blue",
    "ERROR": "red",
    "TIMED_OUT": "red",
}


def print_json(payload: Any) -> None:
    typer.echo(json.dumps(payload))


def print_error(message: str, json_mode: bool, hint: str = "") -> None:
    if json_mode:
        print_json({"success": False, "error": message})
        return
    err_console.print(f"[red]✗[/red] {escape(message)}")
    if hint:
        err_console.print(f"[dim]{escape(hint)}[/dim]")


def _running_marker(running: bool) -> str:
    return "[green]●[/green]" if running else "[red]○[/red]"


def print_local_session(status: SessionStatus, json_mode: bool) -> None:
    """Show detailed info about one local session."""
    if json_mode:
        print_json({
            "success": True,
            "session": {
                "name": status.name,
                "pid": status.pid,
                "running": status.running,
                "socket": status.socket_path,
                "socketExists": status.socket_exists,
                "pidFile": status.pid_file,
            },
        })
        return

    state = "running" if status.running else "stopped"
    console.print(f"Session: [bold]{escape(status.name)}[/bold]")
    console.print()
    console.print(f"  Status:      {_running_marker(status.running)} {state}")
    console.print(f"  PID:         {status.pid if status.pid is not None else '?'}")
    console.print(f"  PID File:    {escape(status.pid_file)}")
    console.print(f"  Socket:      {escape(status.socket_path)}")
    console.print(f"  Socket OK:   {'yes' if status.socket_exists else 'no'}")
    if not PROBE_IS_EXACT:
        console.print("[dim]  (process status assumed from PID file on this platform)[/dim]")


def print_session_list(local_sessions: List[SessionStatus], cloud_sessions: List[Dict[str, Any]], json_mode: bool) -> None:
    """Print the unified session list (local + cloud)."""
    if json_mode:
        combined = [
            {
                "type": "local",
                "name": s.name,
                "pid": s.pid,
                "running": s.running,
                "socket": s.socket_path,
            }
            for s in local_sessions
        ]
        combined.extend({**s, "type": "cloud"} for s in cloud_sessions)
        print_json(combined)
        return

    if not local_sessions and not cloud_sessions:
        console.print("No active sessions.")
        console.print("[dim]Start a session with: agent-browser --session <name> send launch[/dim]")
        return

    if local_sessions:
        console.print("Local Sessions:")
        for s in local_sessions:
            state = "running" if s.running else "stopped"
            console.print(f"  {_running_marker(s.running)} {escape(s.name)} (PID: {s.pid}, {state})")

    if cloud_sessions:
        if local_sessions:
            console.print()
        console.print("Cloud Sessions (Browserbase):")
        for s in cloud_sessions:
            status = str(s.get("status", "?"))
            color = _STATUS_COLORS.get(status, "default")
            console.print(
                f"  [{color}]●[/{color}] {escape(str(s.get('id', '?')))} "
                f"\\[{escape(status)}] ({escape(str(s.get('region', '?')))})"
            )

    console.print()
    console.print("[dim]Use 'session info <name|id>' for details, 'session kill <name|id>' to stop[/dim]")


def _print_cloud_session(session: Dict[str, Any]) -> None:
    status = str(session.get("status", "?"))
    color = {"RUNNING": "green", "COMPLETED": "blue"}.get(status, "red")
    console.print(f"Session: [bold]{escape(str(session.get('id', '?')))}[/bold]")
    console.print()
    console.print(f"  Status:     [{color}]●[/{color}] {escape(status)}")
    console.print(f"  Region:     {escape(str(session.get('region', '?')))}")
    console.print(f"  Project:    {escape(str(session.get('projectId', '?')))}")
    console.print(f"  Created:    {escape(str(session.get('createdAt', '?')))}")
    console.print(f"  Keep Alive: {'yes' if session.get('keepAlive') else 'no'}")
    if session.get("connectUrl"):
        console.print(f"  Connect:    {escape(str(session['connectUrl']))}")


def _print_debug_urls(debug: Dict[str, Any]) -> None:
    console.print("Debug URLs:")
    console.print(f"  Debugger:   {escape(str(debug.get('debuggerUrl', '?')))}")
    if debug.get("debuggerFullscreenUrl"):
        console.print(f"  Fullscreen: {escape(str(debug['debuggerFullscreenUrl']))}")
    if debug.get("wsUrl"):
        console.print(f"  WebSocket:  {escape(str(debug['wsUrl']))}")

    pages = debug.get("pages")
    pages = [p for p in pages if isinstance(p, dict)] if isinstance(pages, list) else []
    if pages:
        console.print()
        console.print("Pages:")
        for page in pages:
            title = page.get("title") or "Untitled"
            console.print(f"  - {escape(str(title))} ({escape(str(page.get('url', '?')))})")


def print_response(response: Response, json_mode: bool) -> None:
    """Render a daemon reply."""
    if json_mode:
        print_json(response.model_dump(exclude_none=True))
        return

    if not response.success:
        err_console.print(f"[red]✗[/red] {escape(response.error or 'Unknown error')}")
        return

    data = response.data or {}

    if isinstance(data.get("sessions"), list):
        # Entries are opaque daemon data; anything but an object is skipped
        sessions = [s for s in data["sessions"] if isinstance(s, dict)]
        if not sessions:
            console.print("No Browserbase sessions found.")
            return
        console.print("Browserbase Sessions:")
        for s in sessions:
            status = str(s.get("status", "?"))
            color = _STATUS_COLORS.get(status, "default")
            console.print(f"  [{color}]●[/{color}] {escape(str(s.get('id', '?')))} \\[{escape(status)}]")
            console.print(
                f"      Region: {escape(str(s.get('region', '?')))}, "
                f"Created: {escape(str(s.get('createdAt', '?')))}"
            )
        return

    if isinstance(data.get("session"), dict):
        _print_cloud_session(data["session"])
        return

    if isinstance(data.get("debug"), dict):
        _print_debug_urls(data["debug"])
        return

    if data.get("stopped"):
        console.print(f"[green]✓[/green] Session {escape(str(data.get('sessionId', 'session')))} stopped")
        return

    if data.get("closed"):
        console.print("[green]✓[/green] Browser closed")
        return

    if data.get("pong"):
        console.print(f"[green]✓[/green] Daemon for session '{escape(str(data.get('session', '?')))}' is alive")
        return

    if data:
        console.print_json(json.dumps(data))
        return

    console.print("[green]✓[/green] Done")
