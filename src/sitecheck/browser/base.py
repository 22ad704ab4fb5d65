"""Browser automation capability interface.

The runner and both testers only ever talk to a browser through this
interface. Handles (engine, context, page) are opaque to callers; the
Playwright implementation lives in
:mod:`sitecheck.browser.playwright_integration`.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..models.browser_models import BrowserType, PageErrors, Viewport
from ..utils.errors import NavigationTimeout
from ..utils.helpers import sleep


class BaseBrowserAutomation(ABC):
    """Abstract base class for browser automation implementations.

    Every method is a suspension point for the calling work unit. Failures
    are raised as exceptions and classified by the caller.
    """

    async def start(self) -> None:
        """Prepare the automation backend. Idempotent."""

    async def stop(self) -> None:
        """Release the automation backend."""

    @abstractmethod
    async def launch_engine(
        self, engine: BrowserType, headless: bool = True, **options: Any
    ) -> Any:
        """Launch a browser engine.

        Raises:
            EngineLaunchError: If the engine fails to launch
        """

    @abstractmethod
    async def new_context(
        self,
        engine_handle: Any,
        viewport: Optional[Viewport] = None,
        **options: Any,
    ) -> Any:
        """Open an isolated context (own cookies and storage) on an engine."""

    @abstractmethod
    async def new_page(self, context_handle: Any) -> Any:
        """Open a page in a context."""

    @abstractmethod
    async def goto(self, page_handle: Any, url: str, timeout_ms: int) -> Optional[int]:
        """Navigate a page and wait for the load event.

        Returns:
            HTTP status of the main document response, or None when the
            navigation produced no response (same-document navigation)
        """

    @abstractmethod
    async def click(self, page_handle: Any, selector: str, timeout_ms: int) -> None:
        """Click the element matching ``selector``."""

    @abstractmethod
    async def fill(
        self, page_handle: Any, selector: str, value: str, timeout_ms: int
    ) -> None:
        """Fill an input element."""

    @abstractmethod
    async def screenshot(self, page_handle: Any, full_page: bool = False) -> bytes:
        """Capture the page as PNG bytes."""

    @abstractmethod
    async def evaluate(self, page_handle: Any, script: str, arg: Any = None) -> Any:
        """Evaluate a JavaScript expression or function in the page."""

    @abstractmethod
    async def close(self, handle: Any) -> None:
        """Close an engine, context or page handle."""

    async def current_url(self, page_handle: Any) -> str:
        """URL the page currently shows."""
        return await self.evaluate(page_handle, "() => window.location.href")

    async def wait_for_idle(self, page_handle: Any, timeout_ms: int) -> None:
        """Wait until the document finished loading.

        The default polls ``document.readyState``; implementations with a
        native network-idle wait should override it.

        Raises:
            NavigationTimeout: If the page does not settle within the budget
        """
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            state = await self.evaluate(page_handle, "() => document.readyState")
            if state == "complete":
                return
            if time.monotonic() >= deadline:
                raise NavigationTimeout(f"Page did not settle within {timeout_ms}ms")
            await sleep(100)

    async def page_errors(self, page_handle: Any) -> PageErrors:
        """Console and network errors seen on the page since the last call.

        Reading clears the buffers. Implementations that cannot observe the
        page report no errors.
        """
        return PageErrors()
