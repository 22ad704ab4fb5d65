"""Browser context and lifecycle management.

This module provides the BrowserContextManager for opening isolated browser
contexts with guaranteed cleanup, and for applying the configured
authentication to them.
"""

from typing import Any, Dict, Optional
import logging
from contextlib import asynccontextmanager

from ..models.browser_models import Viewport
from ..models.config_models import AuthConfig, AuthMode
from .base import BaseBrowserAutomation

logger = logging.getLogger(__name__)


class BrowserContextManager:
    """Manage browser contexts with automatic cleanup.

    PATTERN: Use context managers for automatic resource cleanup. A context
    opened here is closed on every exit path, including exceptions and
    cancellation, so long scans do not leak handles.
    """

    def __init__(self, automation: BaseBrowserAutomation):
        """Initialize the browser context manager.

        Args:
            automation: Browser automation capability
        """
        self.automation = automation
        self.open_contexts = 0

    @staticmethod
    def auth_context_options(auth: Optional[AuthConfig]) -> Dict[str, Any]:
        """Context options carrying token or basic credentials."""
        if auth is None:
            return {}
        if auth.mode == AuthMode.TOKEN:
            value = auth.token if auth.header_name != "Authorization" else f"Bearer {auth.token}"
            return {"extra_http_headers": {auth.header_name: value}}
        if auth.mode == AuthMode.BASIC:
            return {"http_credentials": {"username": auth.username, "password": auth.password}}
        return {}

    @asynccontextmanager
    async def isolated_page(
        self,
        engine_handle: Any,
        viewport: Optional[Viewport] = None,
        auth: Optional[AuthConfig] = None,
        **options: Any,
    ):
        """Open a fresh context and page on an engine.

        Args:
            engine_handle: Launched engine
            viewport: Viewport configuration
            auth: Authentication applied to the context
            **options: Additional context options

        Yields:
            Page handle

        Example:
            async with manager.isolated_page(engine, viewport) as page:
                await automation.goto(page, url, timeout_ms)
            # Page and context closed
        """
        context_options = {**self.auth_context_options(auth), **options}
        context = await self.automation.new_context(
            engine_handle, viewport=viewport, **context_options
        )
        self.open_contexts += 1
        page = None
        try:
            page = await self.automation.new_page(context)
            yield page
        finally:
            if page is not None:
                try:
                    await self.automation.close(page)
                except Exception as e:
                    logger.error(f"Error closing page: {e}")
            try:
                await self.automation.close(context)
                logger.debug("Closed isolated context")
            except Exception as e:
                logger.error(f"Error closing context: {e}")
            self.open_contexts -= 1

    async def authenticate(
        self, page: Any, auth: Optional[AuthConfig], timeout_ms: int
    ) -> None:
        """Run the form login flow on a page, if configured.

        Token and basic auth are carried by the context options and need no
        interaction.
        """
        if auth is None or auth.mode != AuthMode.FORM:
            return

        logger.debug(f"Logging in through {auth.login_url}")
        await self.automation.goto(page, auth.login_url, timeout_ms)
        await self.automation.fill(page, auth.username_selector, auth.username, timeout_ms)
        await self.automation.fill(page, auth.password_selector, auth.password, timeout_ms)
        await self.automation.click(page, auth.submit_selector, timeout_ms)
        await self.automation.wait_for_idle(page, timeout_ms)
