"""
agent-browser Configuration

This module manages CLI configuration via environment variables.

Configuration is loaded from environment variables prefixed with AGENT_BROWSER_.
Command-line flags (--session, --headed) override the values loaded here.

Key settings:
- AGENT_BROWSER_SESSION: Default session name (default: "default")
- AGENT_BROWSER_SOCKET_DIR: Directory holding sockets, PID files and worker logs
  (default: the system temp directory)
- AGENT_BROWSER_READ_TIMEOUT: Seconds to wait for a daemon reply (default: 30)
- AGENT_BROWSER_STARTUP_RETRIES / AGENT_BROWSER_STARTUP_POLL_INTERVAL:
  Readiness polling ceiling when spawning a daemon
- AGENT_BROWSER_DAEMON_COMMAND: Command line used to start a worker. If unset,
  the bundled reference worker (python -m agent_browser.daemon.server) is used.
- AGENT_BROWSER_HEADED: Start new workers with a visible browser window

Cloud sessions (Browserbase):
- BROWSERBASE_API_KEY: API key used by the worker for cloud session queries
- BROWSERBASE_PROJECT_ID: Project the cloud sessions belong to
"""

import logging
import shlex
import sys
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SESSION = "default"


class Settings(BaseSettings):
    """
    agent-browser configuration settings.

    Settings are loaded from environment variables. The CLI creates one
    instance per invocation; the worker process creates its own from the
    environment the supervisor passes it.
    """

    # Session selection
    session: str = DEFAULT_SESSION
    headed: bool = False

    # Rendezvous directory for sockets, PID files and worker logs
    socket_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))

    # Command channel
    read_timeout: float = 30.0  # Seconds to wait for one reply
    probe_timeout: float = 0.2  # Connect timeout for reachability probes

    # Daemon supervisor
    startup_retries: int = 50
    startup_poll_interval: float = 0.1
    daemon_command: Optional[str] = None

    # Browserbase (read by the worker, not by the CLI)
    browserbase_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("BROWSERBASE_API_KEY", "AGENT_BROWSER_BROWSERBASE_API_KEY"),
    )
    browserbase_project_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("BROWSERBASE_PROJECT_ID", "AGENT_BROWSER_BROWSERBASE_PROJECT_ID"),
    )
    browserbase_api_url: str = "https://api.browserbase.com/v1"

    model_config = SettingsConfigDict(
        env_prefix="AGENT_BROWSER_",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def get_daemon_command(self) -> List[str]:
        """Get the argv used to spawn a worker process."""
        if self.daemon_command:
            return shlex.split(self.daemon_command, posix=sys.platform != "win32")
        return [sys.executable, "-m", "agent_browser.daemon.server"]

    @property
    def startup_ceiling_seconds(self) -> float:
        """Upper bound on how long ensure_running polls a fresh worker."""
        return self.startup_retries * self.startup_poll_interval

    @property
    def is_cloud_configured(self) -> bool:
        """Check if Browserbase credentials are available."""
        return bool(self.browserbase_api_key)


# Global settings instance - will be created lazily
_settings: Optional[Settings] = None


def get_settings(force_reload: bool = False) -> Settings:
    """
    Get the global Settings instance.

    Args:
        force_reload: Force reload settings from the environment

    Returns:
        Settings instance
    """
    global _settings

    if _settings is None or force_reload:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings from the environment.

    Returns:
        New Settings instance
    """
    return get_settings(force_reload=True)
