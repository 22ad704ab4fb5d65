"""Playwright browser automation integration.

This module provides the PlaywrightManager class, the Playwright-backed
implementation of :class:`~sitecheck.browser.base.BaseBrowserAutomation`. It
handles browser lifecycle and resource management for engines, contexts and
pages.

CRITICAL: Proper cleanup is essential to avoid resource leaks.
"""

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Page,
    Playwright,
)
from typing import Optional, Dict, Any
import logging

from ..models.browser_models import BrowserType, PageErrors, Viewport
from ..models.result_models import ErrorKind
from ..utils.errors import (
    AutomationError,
    AssertionFailure,
    ElementNotFound,
    EngineLaunchError,
    NavigationTimeout,
    NetworkFailure,
    ScriptException,
    classify_error,
)
from .base import BaseBrowserAutomation

logger = logging.getLogger(__name__)

_ERROR_TYPES = {
    ErrorKind.TIMEOUT: NavigationTimeout,
    ErrorKind.ELEMENT_NOT_FOUND: ElementNotFound,
    ErrorKind.NETWORK_FAILURE: NetworkFailure,
    ErrorKind.SCRIPT_EXCEPTION: ScriptException,
    ErrorKind.ASSERTION_FAILURE: AssertionFailure,
}


def _automation_error(action: str, error: Exception) -> AutomationError:
    """Wrap a Playwright error into the typed automation error for its kind."""
    error_type = _ERROR_TYPES.get(classify_error(error), AutomationError)
    return error_type(f"{action} failed: {error}")


class PlaywrightManager(BaseBrowserAutomation):
    """Manage Playwright browser instances, contexts and pages.

    PATTERN: One browser instance per engine, shared by every work unit on
    that engine; a fresh context per unit for isolation.

    CRITICAL: Always call stop() or use as async context manager to ensure
    proper resource cleanup.
    """

    def __init__(self):
        """Initialize the Playwright manager."""
        self.playwright: Optional[Playwright] = None
        self.browsers: Dict[str, Browser] = {}
        self.contexts: Dict[str, BrowserContext] = {}
        self.pages: Dict[str, Page] = {}
        self.page_error_logs: Dict[str, PageErrors] = {}
        self._initialized = False

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()

    async def start(self) -> None:
        """Initialize Playwright instance.

        Raises:
            EngineLaunchError: If Playwright cannot be started
        """
        if self._initialized:
            return

        try:
            self.playwright = await async_playwright().start()
            self._initialized = True
            logger.info("Playwright initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize Playwright: {e}")
            raise EngineLaunchError(f"Playwright initialization failed: {e}") from e

    async def launch_engine(
        self,
        engine: BrowserType = BrowserType.CHROMIUM,
        headless: bool = True,
        **options: Any,
    ) -> Browser:
        """Launch a browser instance, reusing a running one for the same engine.

        Raises:
            EngineLaunchError: If the browser fails to launch
        """
        if not self._initialized:
            await self.start()

        browser_key = engine.value
        if browser_key in self.browsers:
            logger.debug(f"Reusing existing {browser_key} browser")
            return self.browsers[browser_key]

        try:
            browser_launcher = getattr(self.playwright, browser_key)
            browser = await browser_launcher.launch(headless=headless, **options)
            self.browsers[browser_key] = browser
            logger.info(f"Launched {browser_key} browser (headless={headless})")
            return browser
        except Exception as e:
            logger.error(f"Failed to launch {browser_key} browser: {e}")
            raise EngineLaunchError(f"Browser launch failed: {e}", engine=browser_key) from e

    async def new_context(
        self,
        engine_handle: Browser,
        viewport: Optional[Viewport] = None,
        **options: Any,
    ) -> BrowserContext:
        """Create an isolated browser context.

        CRITICAL: Each work unit uses its own context to prevent interference.
        Contexts provide isolation similar to incognito mode.
        """
        try:
            context_options: Dict[str, Any] = {}

            if viewport:
                context_options["viewport"] = {
                    "width": viewport.width,
                    "height": viewport.height,
                }
                context_options["device_scale_factor"] = viewport.device_scale_factor
                context_options["is_mobile"] = viewport.is_mobile
                context_options["has_touch"] = viewport.has_touch

            context_options.update(options)

            context = await engine_handle.new_context(**context_options)
            context_id = f"context_{id(context)}"
            self.contexts[context_id] = context

            logger.debug(f"Created browser context: {context_id}")
            return context
        except Exception as e:
            logger.error(f"Failed to create browser context: {e}")
            raise _automation_error("Context creation", e) from e

    async def new_page(self, context_handle: BrowserContext) -> Page:
        """Create a new page in the specified context."""
        try:
            page = await context_handle.new_page()
            page_id = f"page_{id(page)}"
            self.pages[page_id] = page
            self._watch(page_id, page)

            logger.debug(f"Created page: {page_id}")
            return page
        except Exception as e:
            logger.error(f"Failed to create page: {e}")
            raise _automation_error("Page creation", e) from e

    async def goto(self, page_handle: Page, url: str, timeout_ms: int = 30000) -> Optional[int]:
        """Navigate page to URL and wait for the load event.

        Returns:
            Status of the main response, None for same-document navigations
        """
        try:
            response = await page_handle.goto(url, wait_until="load", timeout=timeout_ms)
            status = response.status if response is not None else None
            logger.debug(f"Navigated to {url} (status={status})")
            return status
        except Exception as e:
            logger.debug(f"Navigation to {url} failed: {e}")
            raise _automation_error("Navigation", e) from e

    async def click(self, page_handle: Page, selector: str, timeout_ms: int = 5000) -> None:
        """Click an element."""
        try:
            await page_handle.click(selector, timeout=timeout_ms)
            logger.debug(f"Clicked element: {selector}")
        except Exception as e:
            logger.debug(f"Click on {selector} failed: {e}")
            raise _automation_error("Click", e) from e

    async def fill(
        self, page_handle: Page, selector: str, value: str, timeout_ms: int = 5000
    ) -> None:
        """Fill an input element."""
        try:
            await page_handle.fill(selector, value, timeout=timeout_ms)
            logger.debug(f"Filled {selector} with value")
        except Exception as e:
            logger.debug(f"Fill on {selector} failed: {e}")
            raise _automation_error("Fill", e) from e

    async def screenshot(self, page_handle: Page, full_page: bool = False) -> bytes:
        """Capture page screenshot as PNG bytes."""
        try:
            screenshot_bytes = await page_handle.screenshot(full_page=full_page, type="png")
            logger.debug(f"Captured screenshot of {page_handle.url}")
            return screenshot_bytes
        except Exception as e:
            logger.debug(f"Screenshot capture failed: {e}")
            raise _automation_error("Screenshot", e) from e

    async def evaluate(self, page_handle: Page, script: str, arg: Any = None) -> Any:
        """Evaluate JavaScript expression in page context."""
        try:
            if arg is not None:
                return await page_handle.evaluate(script, arg)
            return await page_handle.evaluate(script)
        except Exception as e:
            logger.debug(f"JavaScript evaluation failed: {e}")
            raise _automation_error("Evaluation", e) from e

    async def current_url(self, page_handle: Page) -> str:
        return page_handle.url

    async def wait_for_idle(self, page_handle: Page, timeout_ms: int) -> None:
        """Wait for network idle."""
        try:
            await page_handle.wait_for_load_state("networkidle", timeout=timeout_ms)
        except Exception as e:
            raise _automation_error("Waiting for network idle", e) from e

    def _watch(self, page_id: str, page: Page) -> None:
        """Record console errors, uncaught exceptions and failed requests."""
        log = PageErrors()
        self.page_error_logs[page_id] = log

        def on_console(message):
            if message.type == "error":
                log.console_errors.append(message.text)

        def on_response(response):
            if response.status >= 400:
                log.network_errors.append(
                    f"{response.request.method} {response.url} -> {response.status}"
                )

        page.on("console", on_console)
        page.on("pageerror", lambda error: log.console_errors.append(str(error)))
        page.on(
            "requestfailed",
            lambda request: log.network_errors.append(
                f"{request.method} {request.url}: {request.failure or 'failed'}"
            ),
        )
        page.on("response", on_response)

    async def page_errors(self, page_handle: Page) -> PageErrors:
        """Return and clear the errors recorded for a page."""
        log = self.page_error_logs.get(f"page_{id(page_handle)}")
        if log is None:
            return PageErrors()
        errors = log.model_copy(deep=True)
        log.console_errors.clear()
        log.network_errors.clear()
        return errors

    def _forget(self, handle: Any) -> None:
        for registry in (self.pages, self.contexts, self.browsers):
            for key, value in list(registry.items()):
                if value is handle:
                    del registry[key]
        self.page_error_logs.pop(f"page_{id(handle)}", None)

    async def close(self, handle: Any) -> None:
        """Close a browser, context or page."""
        try:
            await handle.close()
        finally:
            self._forget(handle)

    async def stop(self) -> None:
        """Clean up all browser resources.

        CRITICAL: Must be called to prevent resource leaks.
        Closes all pages, contexts, and browsers in the correct order.

        Raises:
            RuntimeError: If cleanup fails
        """
        errors = []

        for page_id, page in list(self.pages.items()):
            try:
                await page.close()
                logger.debug(f"Closed page: {page_id}")
            except Exception as e:
                errors.append(f"Failed to close page {page_id}: {e}")
        self.pages.clear()
        self.page_error_logs.clear()

        for context_id, context in list(self.contexts.items()):
            try:
                await context.close()
                logger.debug(f"Closed context: {context_id}")
            except Exception as e:
                errors.append(f"Failed to close context {context_id}: {e}")
        self.contexts.clear()

        for browser_type, browser in list(self.browsers.items()):
            try:
                await browser.close()
                logger.debug(f"Closed browser: {browser_type}")
            except Exception as e:
                errors.append(f"Failed to close browser {browser_type}: {e}")
        self.browsers.clear()

        if self.playwright:
            try:
                await self.playwright.stop()
                logger.info("Playwright stopped successfully")
            except Exception as e:
                errors.append(f"Failed to stop Playwright: {e}")
            self.playwright = None

        self._initialized = False

        if errors:
            error_msg = "; ".join(errors)
            logger.warning(f"Cleanup completed with errors: {error_msg}")
            raise RuntimeError(f"Cleanup errors: {error_msg}")
        logger.info("Cleanup completed successfully")
