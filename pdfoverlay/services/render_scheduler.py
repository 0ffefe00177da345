"""Coalescing serializer for asynchronous page preview renders."""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from pdfoverlay.utils.logger import get_logger

logger = get_logger("render")

RenderFunc = Callable[[int], Awaitable[Any]]


class RenderScheduler:
    """Runs at most one render at a time.

    A request that arrives while a render is in flight replaces any pending
    request, so after the current render finishes only the latest requested
    page is rendered.
    """

    def __init__(self, render: RenderFunc):
        self._render = render
        self._rendering = False
        self._pending: Optional[int] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self.last_rendered: Optional[int] = None

    @property
    def is_rendering(self) -> bool:
        return self._rendering

    @property
    def pending(self) -> Optional[int]:
        return self._pending

    async def request(self, page: int) -> None:
        """Render ``page`` now, or mark it as the next page to render."""
        if self._rendering:
            self._pending = page
            return

        self._rendering = True
        self._idle.clear()
        try:
            next_page: Optional[int] = page
            while next_page is not None:
                self._pending = None
                try:
                    await self._render(next_page)
                    self.last_rendered = next_page
                except Exception as e:
                    logger.error(f"Preview render of page {next_page} failed: {e}")
                next_page = self._pending
        finally:
            self._pending = None
            self._rendering = False
            self._idle.set()

    async def wait_idle(self) -> None:
        await self._idle.wait()
