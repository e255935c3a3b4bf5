"""Headless Chromium session that renders the bulk results page."""
import asyncio
import logging
from typing import Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, Route, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from traffic_bulk.config import config
from traffic_bulk.parse.page import RenderedPage

logger = logging.getLogger(__name__)

# Aborted at the router; the numbers render without them
BLOCKED_RESOURCE_TYPES = {"image", "font", "stylesheet", "media"}

READY_SELECTORS = ['[class*="card"]', "table", '[class*="result"]', '[class*="domain"]']

# Body mentions something domain-shaped and something metric-shaped
CONTENT_CHECK_JS = """() => {
    const text = document.body ? document.body.innerText : "";
    const hasDomain = /[a-z0-9-]+\\.[a-z]{2,}/i.test(text);
    const hasMetric = /\\d+(\\.\\d+)?\\s*[KMB%]|\\d{2}:\\d{2}:\\d{2}/i.test(text);
    return hasDomain && hasMetric;
}"""


class NavigationError(Exception):
    """Raised when the results page cannot be reached."""


class BrowserSession:
    """One browser, one context, one page. Always closed via ``close()``."""

    def __init__(
        self,
        headless: bool = config.HEADLESS,
        user_agent: str = config.USER_AGENT,
        nav_timeout: float = config.NAV_TIMEOUT,
        network_idle_timeout: float = config.NETWORK_IDLE_TIMEOUT,
        ready_selector_timeout: float = config.READY_SELECTOR_TIMEOUT,
        settle_delay_ready: float = config.SETTLE_DELAY_READY,
        settle_delay_fallback: float = config.SETTLE_DELAY_FALLBACK,
        content_verify_timeout: float = config.CONTENT_VERIFY_TIMEOUT,
    ):
        self.headless = headless
        self.user_agent = user_agent
        self.nav_timeout = nav_timeout
        self.network_idle_timeout = network_idle_timeout
        self.ready_selector_timeout = ready_selector_timeout
        self.settle_delay_ready = settle_delay_ready
        self.settle_delay_fallback = settle_delay_fallback
        self.content_verify_timeout = content_verify_timeout
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    async def start(self) -> None:
        """Launch the browser and prepare a page with heavy resources blocked."""
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=["--disable-dev-shm-usage", "--no-sandbox"],
        )
        self._context = await self._browser.new_context(user_agent=self.user_agent)
        self._page = await self._context.new_page()
        await self._page.route("**/*", self._block_resources)

    async def close(self) -> None:
        """Close page, context, browser and driver; safe to call more than once."""
        for resource in (self._context, self._browser):
            if resource is None:
                continue
            try:
                await resource.close()
            except PlaywrightError as e:
                logger.debug(f"Error closing browser resource: {e}")
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except PlaywrightError as e:
                logger.debug(f"Error stopping playwright driver: {e}")
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @staticmethod
    async def _block_resources(route: Route) -> None:
        if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
            await route.abort()
        else:
            await route.continue_()

    async def render(self, url: str) -> RenderedPage:
        """
        Navigate and wait until results have (probably) rendered.

        Only navigation failures raise. Every later wait is best-effort and
        bounded; whether a ready selector ever matched is reported back.
        """
        if self._page is None:
            raise RuntimeError("BrowserSession.start() must be called first")
        page = self._page

        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.nav_timeout * 1000)
        except PlaywrightError as e:
            raise NavigationError(str(e)) from e

        try:
            await page.wait_for_load_state("networkidle", timeout=self.network_idle_timeout * 1000)
        except PlaywrightTimeoutError:
            logger.debug(f"Network never went idle for {url}")

        ready = False
        for selector in READY_SELECTORS:
            try:
                await page.wait_for_selector(
                    selector, state="attached", timeout=self.ready_selector_timeout * 1000
                )
                ready = True
                logger.debug(f"Ready selector matched: {selector}")
                break
            except PlaywrightTimeoutError:
                continue

        await asyncio.sleep(self.settle_delay_ready if ready else self.settle_delay_fallback)

        try:
            await page.wait_for_function(CONTENT_CHECK_JS, timeout=self.content_verify_timeout * 1000)
        except PlaywrightTimeoutError:
            logger.debug(f"Content check did not pass for {url}")

        html = await page.content()
        if not ready:
            logger.warning(f"No ready selector matched for {url}")
        return RenderedPage(url=url, html=html, ready=ready)


async def load_page(url: str) -> RenderedPage:
    """Render ``url`` in a fresh browser that is closed on every exit path."""
    session = BrowserSession()
    try:
        await session.start()
        return await session.render(url)
    finally:
        await session.close()
