"""Run the update loop until interrupted and flush the session afterwards."""

from __future__ import annotations

import asyncio
import enum
import signal

from log_utils import get_logger

from .updates import SessionCheckpoint, UpdateLoop

log = get_logger().bind(module=__name__)


class LoopState(enum.Enum):
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Supervisor:
    """Own the update loop task and its orderly shutdown.

    ``interrupt`` sets the shared ``interrupted`` event, which the loop checks
    once per iteration, and cancels the task because the loop may be parked
    waiting for the next update.  Cancellation counts as a clean exit.
    """

    def __init__(
        self,
        update_loop: UpdateLoop,
        checkpoint: SessionCheckpoint,
        interrupted: asyncio.Event,
    ) -> None:
        self.update_loop = update_loop
        self.checkpoint = checkpoint
        self.interrupted = interrupted
        self.state = LoopState.RUNNING
        self._task: asyncio.Task | None = None

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.interrupt)

    def interrupt(self) -> None:
        if self.state is not LoopState.RUNNING:
            log.debug("Already stopping", state=self.state.value)
            return
        log.info("Received interrupt, stopping")
        self.state = LoopState.STOPPING
        self.interrupted.set()
        if self._task is not None:
            self._task.cancel()

    async def run(self) -> int:
        """Run the loop to completion and return the process exit status."""

        self._task = asyncio.create_task(self.update_loop.run())
        try:
            await asyncio.wait({self._task})
        finally:
            if not self._task.done():
                self._task.cancel()
            self.state = LoopState.STOPPED
            await self.checkpoint.save()
            pending = self.update_loop.media.pending
            if pending:
                log.warning("Abandoning unfinished downloads", count=pending)

        if self._task.cancelled():
            log.info("Update loop cancelled")
            return 0
        self._task.result()
        log.info("Update loop finished")
        return 0
