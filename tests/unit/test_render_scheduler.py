"""Unit tests for the preview render scheduler."""

import asyncio

from pdfoverlay.services.render_scheduler import RenderScheduler


class GatedRenderer:
    """Render function whose renders finish only when released."""

    def __init__(self):
        self.rendered: list[int] = []
        self.started: list[int] = []
        self.gate = asyncio.Event()

    async def __call__(self, page: int):
        self.started.append(page)
        await self.gate.wait()
        self.rendered.append(page)


class TestRenderScheduler:
    """Test cases for RenderScheduler."""

    async def test_single_request_renders(self):
        renderer = GatedRenderer()
        renderer.gate.set()
        scheduler = RenderScheduler(renderer)
        await scheduler.request(3)
        assert renderer.rendered == [3]
        assert scheduler.last_rendered == 3
        assert scheduler.is_rendering is False

    async def test_requests_during_render_coalesce_to_latest(self):
        renderer = GatedRenderer()
        scheduler = RenderScheduler(renderer)

        first = asyncio.create_task(scheduler.request(1))
        await asyncio.sleep(0)
        assert scheduler.is_rendering is True

        await scheduler.request(2)
        await scheduler.request(3)
        await scheduler.request(4)
        assert scheduler.pending == 4

        renderer.gate.set()
        await first
        assert renderer.rendered == [1, 4]
        assert scheduler.pending is None

    async def test_failed_render_does_not_block_next(self):
        calls = []

        async def flaky(page: int):
            calls.append(page)
            if page == 1:
                raise RuntimeError("canvas lost")

        scheduler = RenderScheduler(flaky)
        await scheduler.request(1)
        await scheduler.request(2)
        assert calls == [1, 2]
        assert scheduler.last_rendered == 2

    async def test_wait_idle(self):
        renderer = GatedRenderer()
        scheduler = RenderScheduler(renderer)
        task = asyncio.create_task(scheduler.request(1))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(scheduler.wait_idle())
        await asyncio.sleep(0)
        assert not waiter.done()
        renderer.gate.set()
        await task
        await asyncio.wait_for(waiter, timeout=1)
