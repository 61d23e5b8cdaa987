"""
Debounced async actions.

Each schedule() supersedes the previous one: the pending timer is cancelled
and the new action fires once the window has elapsed with no further calls.
With no running event loop the action is held until flush().
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[None]]


class Debouncer:
    def __init__(self, delay: float):
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._action: Optional[Action] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._action is not None

    def schedule(self, action: Action) -> None:
        self.cancel()
        self._action = action

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; action held until flush()")
            return

        self._handle = loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        action, self._action = self._action, None
        if action is None:
            return
        task = asyncio.get_running_loop().create_task(action())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._action = None

    async def flush(self) -> None:
        """Run the pending action now and wait for in-flight ones."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

        action, self._action = self._action, None
        if action is not None:
            await action()

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
