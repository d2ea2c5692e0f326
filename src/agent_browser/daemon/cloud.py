"""
Cloud session bridge.

Cloud (Browserbase) sessions are not reached directly: the CLI asks the
daemon of the current local session to query the control plane on its
behalf. This module only shapes the four query commands and hands back the
daemon's reply.

Reply data shapes:
- list:  {"sessions": [{"id", "status", "region", "createdAt", ...}]}
- get:   {"session": {"id", "status", "region", "projectId", ...}}
- stop:  {"stopped": true, "sessionId": "..."}
- debug: {"debug": {"debuggerUrl", "debuggerFullscreenUrl", "wsUrl", "pages"}}
"""

import logging
from typing import Any, Dict, List, Optional

from agent_browser.core.protocol import Action, Command, Response
from agent_browser.daemon.client import DaemonClient
from agent_browser.daemon.manager import DaemonManager
from agent_browser.errors import AgentBrowserError

logger = logging.getLogger(__name__)


class CloudBridge:
    """Forward cloud session queries through a local session daemon."""

    def __init__(self, client: DaemonClient, manager: DaemonManager, session: Optional[str] = None):
        self.client = client
        self.manager = manager
        self.session = session or client.settings.session

    def _send(self, action: Action, **fields: Any) -> Response:
        return self.client.send(Command(action=action, **fields), self.session)

    def list_sessions(self) -> Response:
        return self._send(Action.REMOTE_LIST)

    def get_session(self, session_id: str) -> Response:
        return self._send(Action.REMOTE_GET, sessionId=session_id)

    def stop_session(self, session_id: str) -> Response:
        return self._send(Action.REMOTE_STOP, sessionId=session_id)

    def debug_session(self, session_id: str) -> Response:
        return self._send(Action.REMOTE_DEBUG, sessionId=session_id)

    def try_list_sessions(self) -> List[Dict[str, Any]]:
        """
        List cloud sessions without starting a daemon.

        Returns an empty list if the daemon is not running, the API key is
        not configured on the daemon side, or anything else goes wrong.
        """
        if not self.manager.is_running(self.session):
            return []

        try:
            response = self.list_sessions()
        except AgentBrowserError as e:
            logger.debug(f"Cloud session list unavailable: {e}")
            return []

        if not response.success or not response.data:
            return []

        sessions = response.data.get("sessions")
        if not isinstance(sessions, list):
            return []
        return [s for s in sessions if isinstance(s, dict)]
