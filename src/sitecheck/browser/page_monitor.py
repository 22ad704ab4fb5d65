"""Console and network error monitoring.

The automation backend buffers console errors, uncaught exceptions and failed
requests per page. The monitor turns what a page load produced into one
result per check.
"""

import logging
from typing import Any, Callable, List

from ..models.browser_models import DiscoveredPage, PageErrors
from ..models.config_models import TestConfig
from ..models.result_models import TestResult, TestStatus, TestType
from ..utils.helpers import generate_id
from .base import BaseBrowserAutomation

logger = logging.getLogger(__name__)

CONSOLE_ERRORS = "console-errors"
NETWORK_ERRORS = "network-errors"

# Errors quoted in a result message
MESSAGE_SAMPLE = 3


class PageMonitor:
    """Report the console and network errors a page produced while loading."""

    def __init__(self, config: TestConfig, id_factory: Callable[[], str] = generate_id):
        self.config = config
        self.id_factory = id_factory

    async def reset(self, automation: BaseBrowserAutomation, page_handle: Any) -> None:
        """Discard errors buffered before the page under test is loaded."""
        await automation.page_errors(page_handle)

    async def collect(self, automation: BaseBrowserAutomation, page_handle: Any) -> PageErrors:
        """Let late requests settle, then read the page's errors."""
        try:
            await automation.wait_for_idle(page_handle, self.config.timeout_ms)
        except Exception as e:
            # Long polling pages never go idle, report what arrived so far
            logger.debug(f"Page did not reach network idle: {e}")
        return await automation.page_errors(page_handle)

    def result(
        self,
        test_name: str,
        errors: List[str],
        page: DiscoveredPage,
        engine: str = "",
        viewport: str = "",
    ) -> TestResult:
        if errors:
            sample = "; ".join(errors[:MESSAGE_SAMPLE])
            message = f"{len(errors)} {test_name.replace('-', ' ')}: {sample}"
            logger.warning(f"{test_name} on {page.normalized_url} ({engine}): {message}")
            status = TestStatus.FAIL
        else:
            message = ""
            status = TestStatus.PASS

        return TestResult(
            id=self.id_factory(),
            name=test_name,
            test_type=TestType.MONITOR,
            status=status,
            page_url=page.normalized_url,
            engine=engine,
            viewport=viewport,
            message=message,
            data={"errors": list(errors)},
        )

    def results(
        self,
        test_names: List[str],
        errors: PageErrors,
        page: DiscoveredPage,
        engine: str = "",
        viewport: str = "",
    ) -> List[TestResult]:
        """One result per selected monitor check, in the given order."""
        by_name = {
            CONSOLE_ERRORS: errors.console_errors,
            NETWORK_ERRORS: errors.network_errors,
        }
        return [
            self.result(name, by_name[name], page, engine, viewport)
            for name in test_names
            if name in by_name
        ]
