from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Union

LOG = logging.getLogger("sitesmith.store")

Callback = Callable[..., Union[None, Awaitable[None]]]


class Debouncer:
    """Run ``callback`` once input has been quiet for ``delay`` seconds.

    Each ``call`` supersedes the pending one, so the callback only ever sees
    the arguments of the latest call. Must be used from a running event loop.
    """

    def __init__(self, delay: float, callback: Callback) -> None:
        self.delay = max(0.0, float(delay))
        self._callback = callback
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def call(self, *args: Any, **kwargs: Any) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._fire(args, kwargs))

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def flush(self) -> None:
        """Wait for the pending call, if any, to fire."""
        task = self._task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _fire(self, args: tuple, kwargs: dict) -> None:
        await asyncio.sleep(self.delay)
        try:
            result = self._callback(*args, **kwargs)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            LOG.exception("debounced_callback_failed")
