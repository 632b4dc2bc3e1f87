"""
POSIX process-group teardown for the stdio transport.
"""

import logging
import os
import signal

import anyio
from anyio.abc import Process

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1


def _group_alive(pgid: int) -> bool:
    try:
        # Signal 0 only checks that the group still exists
        os.killpg(pgid, 0)
    except ProcessLookupError:
        return False
    return True


async def terminate_posix_process_tree(process: Process, timeout_seconds: float = 2.0) -> None:
    """
    Terminate a server process and everything it spawned.

    The server was started in its own session, so its pid is also its process
    group id. SIGTERM goes to the whole group; whatever is still alive after
    `timeout_seconds` gets SIGKILL.
    """
    pid = process.pid
    try:
        pgid = os.getpgid(pid)
    except ProcessLookupError:
        return

    try:
        os.killpg(pgid, signal.SIGTERM)
    except (ProcessLookupError, PermissionError) as e:
        logger.warning(f"Could not signal process group {pgid}: {e}; terminating pid {pid} only")
        process.terminate()
        with anyio.move_on_after(timeout_seconds):
            await process.wait()
            return
        process.kill()
        return

    with anyio.move_on_after(timeout_seconds):
        while _group_alive(pgid):
            await anyio.sleep(POLL_INTERVAL)
        return

    logger.warning(f"Process group {pgid} ignored SIGTERM for {timeout_seconds}s, sending SIGKILL")
    try:
        os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        pass
