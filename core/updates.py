"""
Background delivery of module update streams.

Drains `module.stream_updates(context)` into a notify callback for one
(module, user) pair. Started when a user session attaches, stopped when it
detaches.
"""

import asyncio
import inspect
from typing import Callable, Optional

from core.models import ModuleUpdate, UserContext
from utils.logger import get_logger

logger = get_logger("updates")


class UpdateStream:
    """Runs one module's update stream for one user as an asyncio task."""

    def __init__(self, module, context: UserContext, notify: Callable[[ModuleUpdate], object]):
        """
        Args:
            module: Module whose stream_updates() is consumed
            context: User the stream is for
            notify: Sync or async callable receiving each ModuleUpdate
        """
        self.module = module
        self.context = context
        self.notify = notify
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start consuming updates (must be called inside a running event loop)."""
        if self.running:
            return self._task
        self._task = asyncio.create_task(self._run())
        logger.info(f"Update stream started: {self.module.get_id()} for user {self.context.user_id}")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Update stream stopped: {self.module.get_id()} for user {self.context.user_id}")

    async def _deliver(self, update: ModuleUpdate) -> None:
        try:
            result = self.notify(update)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.error(
                f"Failed to deliver {update.type} update from {self.module.get_id()}",
                exc_info=True
            )

    async def _run(self) -> None:
        try:
            async for update in self.module.stream_updates(self.context):
                await self._deliver(update)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.error(
                f"Update stream for {self.module.get_id()} ended with an error",
                exc_info=True
            )
