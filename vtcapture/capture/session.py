"""
Render Session
==============

One headless Chromium page per capture job, driven through Playwright.
The orchestrator only talks to the page through this contract:

    start, add_init_script, expose_function, on_console,
    navigate, evaluate, screenshot, close
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from playwright.async_api import Error as PlaywrightError, async_playwright

from vtcapture.config import CaptureSettings
from vtcapture.errors import CaptureError, ConfigurationError, EngineCommunicationError
from vtcapture.schemas import CaptureJobConfig

logger = logging.getLogger(__name__)

_NO_ARG = object()


class RenderSession:
    """
    Local Chromium session sized to the capture job.

    Init scripts and exposed functions are registered on the browser
    context, so they apply to every frame and survive navigation.

    Example:
        async with RenderSession(config) as session:
            await session.add_init_script(VIRTUAL_CLOCK_SCRIPT)
            await session.navigate(config.url)
            png = await session.screenshot({"x": 0, "y": 0, "width": 640, "height": 360})
    """

    def __init__(self, config: CaptureJobConfig, settings: Optional[CaptureSettings] = None):
        """
        Initialize the session. Nothing is launched until start().

        Args:
            config: Job configuration (viewport size)
            settings: Pipeline settings (headless, browser args, timeouts)
        """
        self.config = config
        self.settings = settings or CaptureSettings()
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    @property
    def page(self):
        if self._page is None:
            raise EngineCommunicationError("Render session is not started")
        return self._page

    async def __aenter__(self) -> "RenderSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        """
        Launch Chromium and open a page with the job's viewport.

        Raises:
            EngineCommunicationError: If the browser cannot be launched
        """
        if self._page is not None:
            return

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.settings.headless,
                args=list(self.settings.browser_args),
            )
            self._context = await self._browser.new_context(
                viewport={"width": self.config.width, "height": self.config.height},
                device_scale_factor=1,
            )
            self._page = await self._context.new_page()
        except PlaywrightError as e:
            await self.close()
            raise EngineCommunicationError("Browser could not be launched", cause=e) from e

        self._page.on("pageerror", lambda error: logger.warning(f"[SESSION] Page error: {error}"))
        logger.info(
            f"[SESSION] Chromium started ({self.config.width}x{self.config.height}, "
            f"headless={self.settings.headless})"
        )

    async def add_init_script(self, script: str) -> None:
        """Register a script that runs before any page script in every document."""
        await self._context_call(self._context_or_raise().add_init_script, script=script)

    async def expose_function(self, name: str, handler: Callable[..., Any]) -> None:
        """Expose a host callable to the page as window[name]."""
        await self._context_call(self._context_or_raise().expose_function, name, handler)

    def on_console(self, handler: Callable[[str], Any]) -> None:
        """Forward the text of every console message to handler."""
        self.page.on("console", lambda message: handler(message.text))

    async def navigate(self, url: str) -> None:
        """
        Load url and wait for the load event.

        Raises:
            ConfigurationError: If the page cannot be loaded
        """
        timeout_ms = self.settings.navigation_timeout * 1000
        try:
            response = await self.page.goto(url, wait_until="load", timeout=timeout_ms)
        except PlaywrightError as e:
            raise ConfigurationError(f"Page could not be loaded: {url}", cause=e) from e

        if response is not None and response.status >= 400:
            raise ConfigurationError(f"Page returned HTTP {response.status}: {url}")
        logger.info(f"[SESSION] Loaded {url}")

    async def evaluate(self, expression: str, arg: Any = _NO_ARG) -> Any:
        """
        Evaluate a JS expression in the page, retrying once on failure.

        Raises:
            EngineCommunicationError: If both attempts fail or time out
        """
        last_error: Optional[BaseException] = None
        for attempt in range(2):
            try:
                if arg is _NO_ARG:
                    call = self.page.evaluate(expression)
                else:
                    call = self.page.evaluate(expression, arg)
                return await asyncio.wait_for(call, timeout=self.settings.evaluate_timeout)
            except (PlaywrightError, asyncio.TimeoutError) as e:
                last_error = e
                if attempt == 0:
                    logger.warning(f"[SESSION] Page evaluation failed, retrying: {e!r}")
        raise EngineCommunicationError("Page evaluation failed", cause=last_error) from last_error

    async def screenshot(self, clip: Dict[str, float]) -> bytes:
        """
        Capture the clip rectangle as PNG with a transparent background.

        Raises:
            CaptureError: If the screenshot fails or times out
        """
        try:
            return await self.page.screenshot(
                clip=clip,
                omit_background=True,
                type="png",
                timeout=self.settings.capture_timeout * 1000,
            )
        except PlaywrightError as e:
            raise CaptureError("Screenshot failed", cause=e) from e

    async def close(self) -> None:
        """Close page, browser and Playwright. Safe to call repeatedly."""
        for name, closer in (
            ("context", self._context),
            ("browser", self._browser),
        ):
            if closer is None:
                continue
            try:
                await closer.close()
            except PlaywrightError as e:
                logger.warning(f"[SESSION] Error closing {name}: {e}")

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except PlaywrightError as e:
                logger.warning(f"[SESSION] Error stopping Playwright: {e}")

        was_open = self._page is not None
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None
        if was_open:
            logger.info("[SESSION] Closed")

    def _context_or_raise(self):
        if self._context is None:
            raise EngineCommunicationError("Render session is not started")
        return self._context

    async def _context_call(self, method, *args, **kwargs) -> None:
        try:
            await method(*args, **kwargs)
        except PlaywrightError as e:
            raise EngineCommunicationError(f"{method.__name__} failed", cause=e) from e
