import shutil
import tempfile
from pathlib import Path

import pytest

from agent_browser.config import Settings


@pytest.fixture
def socket_dir():
    """Short-path temp directory (Unix socket paths are limited to ~100 bytes)."""
    path = Path(tempfile.mkdtemp(prefix="ab-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def settings(socket_dir) -> Settings:
    """Settings pointing at the temp socket dir with fast startup polling."""
    return Settings(
        socket_dir=socket_dir,
        read_timeout=2.0,
        probe_timeout=0.2,
        startup_retries=3,
        startup_poll_interval=0.0,
    )


@pytest.fixture
def write_pid_file(socket_dir):
    """Write a liveness record for a session."""

    def _write(name: str, content: str) -> Path:
        path = socket_dir / f"agent-browser-{name}.pid"
        path.write_text(content)
        return path

    return _write
