"""Element interaction testing.

Clicks the buttons and links found on a discovered page and records one
result per element. Side effects stay inside the browser context handed in;
discovery state is only read.
"""

import logging
import time
from typing import Any, Callable, List, Optional

from ..models.browser_models import DiscoveredElement, DiscoveredPage, ElementKind
from ..models.config_models import TestConfig
from ..models.result_models import ErrorKind, TestResult, TestStatus, TestType
from ..utils.errors import AssertionFailure, classify_error
from ..utils.helpers import generate_id, is_allowed_host, is_internal_url, normalize_url
from .base import BaseBrowserAutomation

logger = logging.getLogger(__name__)

ACTION_SCHEMES = ("javascript:",)
ACTIONABLE_KINDS = (ElementKind.BUTTON, ElementKind.LINK)


class ElementTester:
    """Exercise the interactive elements of one page.

    Pass: the click completed and, for links, the resulting URL is internal or
    allow-listed. Fail: a post-condition did not hold. Error: the automation
    capability raised (timeout, detached element, script exception).
    External links are recorded as skipped and never followed.
    """

    def __init__(
        self,
        config: TestConfig,
        id_factory: Callable[[], str] = generate_id,
    ):
        self.config = config
        self.id_factory = id_factory

    def _allowed(self, url: str) -> bool:
        return is_internal_url(url, self.config.base_url) or is_allowed_host(
            url, self.config.allowed_hosts
        )

    def _result(
        self,
        page: DiscoveredPage,
        element: DiscoveredElement,
        status: TestStatus,
        started: float,
        engine: str,
        viewport: str,
        message: str = "",
        error_kind: Optional[ErrorKind] = None,
        data: Optional[dict] = None,
    ) -> TestResult:
        return TestResult(
            id=self.id_factory(),
            name=f"element-interaction: {element.descriptor}",
            test_type=TestType.ELEMENT,
            status=status,
            page_url=page.normalized_url,
            engine=engine,
            viewport=viewport,
            element_selector=element.selector,
            duration_ms=int((time.monotonic() - started) * 1000),
            error_kind=error_kind,
            message=message,
            data=data or {},
        )

    def actionable(self, elements: List[DiscoveredElement]) -> List[DiscoveredElement]:
        """Elements the tester will report on, capped per page."""
        candidates = [e for e in elements if e.kind in ACTIONABLE_KINDS]
        return candidates[: self.config.max_elements_per_page]

    async def test_elements(
        self,
        automation: BaseBrowserAutomation,
        page_handle: Any,
        page: DiscoveredPage,
        elements: Optional[List[DiscoveredElement]] = None,
        engine: str = "",
        viewport: str = "",
        on_result: Optional[Callable[[TestResult], None]] = None,
    ) -> List[TestResult]:
        """Click each actionable element and classify the outcome.

        Args:
            automation: Browser automation capability
            page_handle: Page already showing ``page``
            page: The discovered page
            elements: Elements to test (defaults to the page's elements)
            engine: Engine label recorded on results
            viewport: Viewport label recorded on results
            on_result: Called with each result as soon as it exists, so a
                caller can keep partial results if the unit times out

        Returns:
            One result per actionable element
        """
        elements = self.actionable(page.elements if elements is None else elements)
        results: List[TestResult] = []
        logger.info(f"Testing {len(elements)} elements on {page.normalized_url} ({engine})")

        for element in elements:
            result = await self._test_element(
                automation, page_handle, page, element, engine, viewport
            )
            results.append(result)
            if on_result is not None:
                on_result(result)

        return results

    async def _test_element(
        self,
        automation: BaseBrowserAutomation,
        page_handle: Any,
        page: DiscoveredPage,
        element: DiscoveredElement,
        engine: str,
        viewport: str,
    ) -> TestResult:
        started = time.monotonic()
        timeout_ms = self.config.timeout_ms

        def result(status, message="", error_kind=None, data=None):
            return self._result(
                page, element, status, started, engine, viewport, message, error_kind, data
            )

        if element.disabled:
            return result(TestStatus.SKIPPED, "element is disabled")

        target = None
        if element.kind == ElementKind.LINK and element.href:
            href = element.href.strip()
            if not href.lower().startswith(ACTION_SCHEMES):
                target = normalize_url(href, page.normalized_url)
                if not self._allowed(target):
                    return result(
                        TestStatus.SKIPPED,
                        f"external link to {target} not followed",
                        data={"target": target},
                    )

        try:
            await automation.click(page_handle, element.selector, timeout_ms)
            await automation.wait_for_idle(page_handle, timeout_ms)
            landed = normalize_url(await automation.current_url(page_handle))

            if not self._allowed(landed):
                raise AssertionFailure(f"interaction left the site, landed on {landed}")
            if element.kind == ElementKind.BUTTON:
                # Page must still answer after the interaction
                await automation.evaluate(page_handle, "() => document.readyState")

            outcome = result(TestStatus.PASS, data={"landed": landed, "target": target})
        except Exception as e:
            kind = classify_error(e)
            status = TestStatus.FAIL if kind == ErrorKind.ASSERTION_FAILURE else TestStatus.ERROR
            logger.warning(f"{element.descriptor} on {page.normalized_url}: {status.value} ({kind.value}) {e}")
            outcome = result(status, str(e), kind, data={"target": target})

        await self._restore(automation, page_handle, page)
        return outcome

    async def _restore(
        self, automation: BaseBrowserAutomation, page_handle: Any, page: DiscoveredPage
    ) -> None:
        """Navigate back to the page under test if an interaction moved away."""
        try:
            current = normalize_url(await automation.current_url(page_handle))
            if current != page.normalized_url:
                logger.debug(f"Returning from {current} to {page.normalized_url}")
                await automation.goto(page_handle, page.url, self.config.timeout_ms)
        except Exception as e:
            logger.warning(f"Could not return to {page.normalized_url}: {e}")
