"""Rendering engine (headless Chromium via Playwright) and its lifecycle.

A browser that prints hundreds of pages in a row grows without bound, so
``EngineSupervisor`` recycles it every ``restart_threshold`` tasks and
whenever it is found disconnected. Recycling closes the old instance
(close errors are logged, not raised) before launching a replacement.

The supervisor is an async context manager; leaving the ``async with``
block releases the browser exactly once on every exit path.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

import psutil
from playwright.async_api import async_playwright

from . import templates
from .tasks import ConversionTask, PageTask, TocTask
from ..errors import ResourceHealthError
from ..models import RenderConfig

logger = logging.getLogger(__name__)

BROWSER_ARGS = ["--font-render-hinting=none", "--force-color-profile=sRGB", "--no-sandbox"]


class RenderingEngine(ABC):
    """One running rendering-engine instance."""

    @abstractmethod
    async def start(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def render_task(self, task: ConversionTask, out_path: Path) -> Path:
        """Print one task to ``out_path`` and return it."""
        pass

    @abstractmethod
    async def render_cover(self, html: str, out_path: Path, width_in: float, height_in: float) -> Path:
        pass


class PlaywrightEngine(RenderingEngine):
    """Chromium driven through Playwright's async API."""

    def __init__(self, config: RenderConfig):
        self.config = config
        self._playwright = None
        self._browser = None

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.config.headless, args=BROWSER_ARGS
        )
        logger.debug("Launched Chromium %s", self._browser.version)

    async def close(self) -> None:
        try:
            if self._browser is not None:
                await self._browser.close()
        finally:
            self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def _open_page(self):
        if not self.is_connected():
            raise ResourceHealthError("Browser is not running")
        page = await self._browser.new_page(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height}
        )
        async def _dismiss(dialog):
            await dialog.dismiss()

        page.on("dialog", _dismiss)

        denylist = self.config.request_denylist
        if denylist:
            async def _filter(route):
                if any(pattern in route.request.url for pattern in denylist):
                    await route.abort()
                else:
                    await route.continue_()

            await page.route("**/*", _filter)
        return page

    async def _load(self, page, url: str) -> None:
        await page.goto(
            f"{url}?no-cache",
            wait_until="networkidle",
            timeout=self.config.page_load_timeout_s * 1000,
        )
        await page.eval_on_selector_all("img", templates.EAGER_IMAGES_JS)
        await page.eval_on_selector_all("details", templates.OPEN_DETAILS_JS)
        await asyncio.sleep(self.config.settle_delay_s)

    async def _inject_listing(self, page, task: ConversionTask) -> None:
        listing = templates.build_directory_listing(task.source)
        if not listing:
            return
        await page.evaluate(
            templates.INJECT_DIRECTORY_JS,
            {"listing": listing, "pageType": templates.directory_page_type(task.source)},
        )
        await asyncio.sleep(self.config.settle_delay_s)

    async def render_task(self, task: ConversionTask, out_path: Path) -> Path:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        page = await self._open_page()
        try:
            if isinstance(task, TocTask):
                await self._print_toc(page, task, out_path)
            elif isinstance(task, PageTask):
                await self._print_page(page, task, out_path)
            else:
                raise TypeError(f"Unknown task type: {type(task).__name__}")
        finally:
            if not page.is_closed():
                await page.close()
        return out_path

    async def _print_page(self, page, task: PageTask, out_path: Path) -> None:
        node = task.source
        await self._load(page, node.url)
        await self._inject_listing(page, task)

        prefix = await page.evaluate(templates.TITLE_LINK_JS, node.url)
        show_headers = templates.shows_headers(node)
        extra = templates.extra_page_css(node)
        if extra:
            await page.add_style_tag(content=extra)
        await page.add_style_tag(content=templates.page_css(show_headers))

        await page.pdf(
            path=str(out_path),
            display_header_footer=show_headers,
            header_template=templates.header_template(),
            footer_template=templates.footer_for(node, self.config.main_color, prefix),
            print_background=True,
            prefer_css_page_size=True,
        )
        logger.info("Converted page %s", node.url)

    async def _print_toc(self, page, task: TocTask, out_path: Path) -> None:
        node = task.source
        await self._load(page, templates.toc_url(node))
        if not node.is_main_toc:
            await self._inject_listing(page, task)

        await page.add_style_tag(content=templates.toc_css(node.is_main_toc))
        await page.pdf(
            path=str(out_path),
            display_header_footer=True,
            header_template=templates.header_template(),
            footer_template=templates.footer_template(None, self.config.main_color, None),
            print_background=True,
            prefer_css_page_size=True,
        )
        logger.info("Converted table of contents %s", node.url)

    async def render_cover(self, html: str, out_path: Path, width_in: float, height_in: float) -> Path:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        page = await self._open_page()
        try:
            await page.set_content(html, wait_until="networkidle")
            await page.pdf(
                path=str(out_path),
                print_background=True,
                width=f"{width_in}in",
                height=f"{height_in}in",
            )
        finally:
            if not page.is_closed():
                await page.close()
        return out_path


def _rss_mb() -> float:
    return psutil.Process().memory_info().rss / (1024 * 1024)


class EngineSupervisor:
    """Owns the shared engine instance for one conversion.

    Usage:
        async with EngineSupervisor(factory, restart_threshold=50) as supervisor:
            await supervisor.ensure_healthy()
            engine = await supervisor.acquire()
    """

    def __init__(self, factory: Callable[[], RenderingEngine], restart_threshold: int = 50):
        self._factory = factory
        self.restart_threshold = restart_threshold
        self.tasks_since_restart = 0
        self.restarts = 0
        self._engine: Optional[RenderingEngine] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> RenderingEngine:
        """Return the running engine, launching one if needed."""
        async with self._lock:
            if self._engine is None:
                engine = self._factory()
                await engine.start()
                self._engine = engine
            return self._engine

    async def _close_current(self, reason: str) -> None:
        engine, self._engine = self._engine, None
        if engine is None:
            return
        try:
            await engine.close()
        except Exception as e:
            logger.warning("Error closing rendering engine during %s: %s", reason, e)

    async def recycle(self) -> RenderingEngine:
        logger.info(
            "Restarting rendering engine after %d tasks (worker RSS %.0f MB)",
            self.tasks_since_restart, _rss_mb(),
        )
        async with self._lock:
            await self._close_current("restart")
        self.tasks_since_restart = 0
        self.restarts += 1
        return await self.acquire()

    async def ensure_healthy(self) -> None:
        """Recycle on the task threshold, on disconnect, or if the probe itself fails."""
        if self.tasks_since_restart >= self.restart_threshold:
            await self.recycle()
        try:
            engine = await self.acquire()
            if not engine.is_connected():
                raise ResourceHealthError("Rendering engine disconnected")
        except ResourceHealthError as e:
            logger.warning("%s, restarting", e)
            await self.recycle()
        except Exception as e:
            logger.error("Rendering engine health check failed, restarting: %s", e)
            await self.recycle()

    def record_task(self) -> None:
        self.tasks_since_restart += 1

    async def cleanup(self) -> None:
        logger.info("Releasing rendering engine")
        async with self._lock:
            await self._close_current("cleanup")

    async def __aenter__(self) -> "EngineSupervisor":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()
