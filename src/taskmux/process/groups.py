"""Process-group signalling.

Tasks are spawned with ``start_new_session=True`` so each child leads its
own process group; signalling the group reaches every descendant it
creates. The POSIX implementation sits behind ``ProcessGroups`` so tests
(and a future job-object backend) can swap it out.
"""

from __future__ import annotations

import asyncio
import os
import signal
from typing import Protocol

from taskmux.utils.logger import get_logger

logger = get_logger(__name__)


class ProcessGroups(Protocol):
    def send(self, pid: int, sig: signal.Signals) -> bool: ...

    def is_alive(self, pid: int) -> bool: ...

    async def terminate_group(
        self,
        pid: int,
        sig: signal.Signals = signal.SIGTERM,
        force_after: float | None = 0.2,
    ) -> None: ...


class PosixProcessGroups:
    """``killpg`` based group control."""

    def send(self, pid: int, sig: signal.Signals) -> bool:
        """Signal the group led by *pid*, falling back to the single process.

        Returns False when neither exists any more.
        """
        try:
            os.killpg(pid, sig)
            return True
        except (ProcessLookupError, PermissionError):
            pass
        try:
            os.kill(pid, sig)
            return True
        except (ProcessLookupError, PermissionError):
            return False

    def is_alive(self, pid: int) -> bool:
        try:
            os.killpg(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            return True

    async def terminate_group(
        self,
        pid: int,
        sig: signal.Signals = signal.SIGTERM,
        force_after: float | None = 0.2,
    ) -> None:
        """Send *sig*, wait *force_after* seconds, then SIGKILL whatever is left."""
        if not self.send(pid, sig):
            logger.debug("group_already_gone", pid=pid)
            return
        if force_after is None or sig == signal.SIGKILL:
            return
        await asyncio.sleep(force_after)
        if self.is_alive(pid):
            logger.debug("group_force_kill", pid=pid)
            self.send(pid, signal.SIGKILL)
