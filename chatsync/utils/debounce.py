import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """Runs a callback once input has been quiet for a fixed delay.

    Every call cancels the scheduled run and schedules a new one, so only the
    last call inside the window is evaluated. The callback may be sync or async.
    """

    def __init__(self, delay: float, callback: Callable[..., Any]):
        self.delay = delay
        self.callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def call(self, *args: Any) -> None:
        """Schedule the callback, superseding any run that has not fired yet"""
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run(args))

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, args: tuple) -> None:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            return
        try:
            result = self.callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Debounced callback failed: {e}")
