"""
Process liveness probe.

On POSIX the probe sends signal 0, which checks existence and permission
without delivering anything to the process.

Windows has no equivalent null signal. There the probe ASSUMES THE PROCESS IS
ALIVE whenever it is asked (i.e. whenever a liveness record exists). This is a
weaker approximation, exposed as PROBE_IS_EXACT = False so callers and status
output can say so.
"""

import logging
import os
import sys

logger = logging.getLogger(__name__)

PROBE_IS_EXACT = sys.platform != "win32"


def is_alive(pid: int) -> bool:
    """
    Check if a process with given PID is running.

    Never raises: a missing process, a process we may not signal, or a
    non-positive PID all report False.
    """
    try:
        pid = int(pid)
    except (TypeError, ValueError):
        return False

    # 0 and negative values address process groups, not a process
    if pid <= 0:
        return False

    if not PROBE_IS_EXACT:
        logger.debug(f"Liveness of PID {pid} assumed (no null-signal probe on {sys.platform})")
        return True

    try:
        os.kill(pid, 0)  # Signal 0 doesn't kill, just checks
        return True
    except OSError:
        return False
