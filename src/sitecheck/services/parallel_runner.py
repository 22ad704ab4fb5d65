"""Parallel test runner.

This module provides the ParallelRunner, the orchestration core of a run. It
launches the configured engines, discovers the site, schedules one work unit
per (page x engine) through a FIFO concurrency gate and folds the results
into a run report.

PATTERN: Run-scoped state lives in a RunContext threaded through the run,
never in module-level registries.
CRITICAL: A unit's failure is converted into results; it never aborts
sibling units or the run.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from ..browser.base import BaseBrowserAutomation
from ..browser.baseline_manager import BaselineManager
from ..browser.browser_manager import BrowserContextManager
from ..browser.element_tester import ElementTester
from ..browser.form_tester import FormTester
from ..browser.page_discovery import PageDiscoverer
from ..browser.page_monitor import PageMonitor
from ..browser.playwright_integration import PlaywrightManager
from ..browser.visual_tester import VisualTester
from ..models.browser_models import BrowserType, DiscoveredPage
from ..models.config_models import TestConfig
from ..models.result_models import (
    ErrorKind,
    RunReport,
    RunState,
    RunWarning,
    TestResult,
    TestStatus,
    TestType,
)
from ..testing.test_filter import BUILTIN_TESTS, FilterCriteria, TestDefinition, TestFilter
from ..utils.errors import (
    AGGREGATION_INCOMPLETE,
    AssertionFailure,
    EngineLaunchError,
    GateClosed,
    classify_error,
)
from ..utils.helpers import (
    ParallelLimit,
    generate_id,
    is_allowed_host,
    is_internal_url,
    normalize_url,
)
from .aggregator import ResultAggregator

logger = logging.getLogger(__name__)

# Run event types
EVENT_STATE = "state"
EVENT_UNIT_START = "unit-start"
EVENT_UNIT_END = "unit-end"
EVENT_WARNING = "warning"

PAGE_LOAD = "page-load"


@dataclass
class RunEvent:
    """Progress notification delivered to run listeners."""

    type: str
    run_id: str
    state: Optional[RunState] = None
    page_url: Optional[str] = None
    engine: Optional[str] = None
    results: List[TestResult] = field(default_factory=list)
    warning: Optional[RunWarning] = None
    timestamp: datetime = field(default_factory=datetime.now)


Listener = Callable[[RunEvent], Union[None, Awaitable[None]]]


@dataclass
class RunContext:
    """State owned by one run and shared by its work units."""

    config: TestConfig
    run_id: str
    gate: ParallelLimit
    aggregator: ResultAggregator = field(default_factory=ResultAggregator)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    state: RunState = RunState.IDLE
    engines: Dict[BrowserType, Any] = field(default_factory=dict)
    warnings: List[RunWarning] = field(default_factory=list)
    pages: List[DiscoveredPage] = field(default_factory=list)
    units_submitted: int = 0
    units_completed: int = 0
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class ParallelRunner:
    """Run the selected checks over every discovered page on every engine.

    Example:
        runner = ParallelRunner(config)
        runner.add_listener(lambda event: print(event.type))
        report = await runner.run()
    """

    def __init__(
        self,
        config: TestConfig,
        automation: Optional[BaseBrowserAutomation] = None,
        tests: Sequence[TestDefinition] = BUILTIN_TESTS,
        criteria: Optional[FilterCriteria] = None,
        id_factory: Callable[[], str] = generate_id,
    ):
        """Initialize the runner.

        Args:
            config: Resolved run configuration
            automation: Browser automation capability (defaults to Playwright)
            tests: Declared tests
            criteria: Test selection (defaults to the config's selection)
            id_factory: Result id generator
        """
        self.config = config
        self.automation = automation or PlaywrightManager()
        self.browser_manager = BrowserContextManager(self.automation)
        self.test_filter = TestFilter()
        self.tests = self.test_filter.select(
            tests, criteria if criteria is not None else FilterCriteria.from_config(config)
        )
        self.id_factory = id_factory

        self.element_tester = ElementTester(config, id_factory=id_factory)
        self.form_tester = FormTester(config, id_factory=id_factory)
        self.page_monitor = PageMonitor(config, id_factory=id_factory)
        self._visual_tester: Optional[VisualTester] = None

        self.context: Optional[RunContext] = None
        self._listeners: List[Listener] = []
        self._cancel_requested = False

    @property
    def state(self) -> RunState:
        return self.context.state if self.context else RunState.IDLE

    @property
    def visual_tester(self) -> VisualTester:
        # Created lazily so runs without visual checks never touch the output dir
        if self._visual_tester is None:
            self._visual_tester = VisualTester(
                self.config, BaselineManager(self.config.output_dir), self.id_factory
            )
        return self._visual_tester

    def _selected(self, test_type: TestType) -> List[TestDefinition]:
        return [t for t in self.tests if t.test_type == test_type]

    # ── Listeners and cancellation ───────────────────────────────────

    def add_listener(self, listener: Listener) -> None:
        """Register a sync or async callback receiving every RunEvent."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    async def _emit(self, event: RunEvent) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Run listener failed on {event.type} event: {e}")

    def cancel(self) -> None:
        """Stop admitting units. In-flight units finish; the report is partial."""
        self._cancel_requested = True
        ctx = self.context
        if ctx is None or ctx.cancelled:
            return
        logger.warning(f"Run {ctx.run_id} cancelled")
        ctx.cancel_event.set()
        ctx.gate.close()

    async def _set_state(self, ctx: RunContext, state: RunState) -> None:
        logger.info(f"Run {ctx.run_id}: {ctx.state.value} -> {state.value}")
        ctx.state = state
        await self._emit(RunEvent(type=EVENT_STATE, run_id=ctx.run_id, state=state))

    async def _warn(self, ctx: RunContext, code: str, message: str, engine: Optional[str] = None) -> None:
        warning = RunWarning(code=code, message=message, engine=engine)
        ctx.warnings.append(warning)
        logger.warning(f"{code}: {message}")
        await self._emit(RunEvent(type=EVENT_WARNING, run_id=ctx.run_id, engine=engine, warning=warning))

    # ── Run phases ───────────────────────────────────────────────────

    async def run(self) -> RunReport:
        """Execute the run.

        Returns:
            RunReport, marked incomplete when cancellation cut it short

        Raises:
            EngineLaunchError: If no engine could be launched
        """
        ctx = RunContext(
            config=self.config,
            run_id=generate_id("run"),
            gate=ParallelLimit(self.config.concurrency),
        )
        self.context = ctx
        if self._cancel_requested:
            ctx.cancel_event.set()
            ctx.gate.close()

        logger.info(
            f"Run {ctx.run_id} started for {self.config.base_url} "
            f"(engines={[e.value for e in self.config.engines]}, "
            f"concurrency={self.config.concurrency}, tests={[t.name for t in self.tests]})"
        )

        try:
            await self._set_state(ctx, RunState.LAUNCHING)
            await self._launch(ctx)

            await self._set_state(ctx, RunState.DISCOVERING)
            ctx.pages = await self._discover(ctx)

            await self._set_state(ctx, RunState.EXECUTING)
            await self._execute(ctx)

            await self._set_state(ctx, RunState.AGGREGATING)
            report = self._build_report(ctx)
            if report.incomplete:
                await self._warn(
                    ctx,
                    AGGREGATION_INCOMPLETE,
                    f"{ctx.units_completed} of {ctx.units_submitted} units completed before cancellation",
                )
                report = report.model_copy(update={"warnings": list(ctx.warnings)})

            final = RunState.CANCELLED if report.incomplete else RunState.DONE
            await self._set_state(ctx, final)
            return report.model_copy(update={"state": final, "finished_at": datetime.now()})
        except EngineLaunchError:
            await self._set_state(ctx, RunState.FAILED)
            raise
        finally:
            await self._cleanup(ctx)

    async def _launch(self, ctx: RunContext) -> None:
        """Launch every configured engine; failures shrink the engine set."""
        await self.automation.start()

        for engine in self.config.engines:
            try:
                ctx.engines[engine] = await self.automation.launch_engine(
                    engine, headless=self.config.headless
                )
            except EngineLaunchError as e:
                await self._warn(ctx, "EngineLaunchError", str(e), engine.value)

        if not ctx.engines:
            raise EngineLaunchError("No browser engine could be launched")
        logger.info(f"Active engines: {[e.value for e in ctx.engines]}")

    def _context_options(self) -> Dict[str, Any]:
        if self.config.ignore_https_errors:
            return {"ignore_https_errors": True}
        return {}

    async def _discover(self, ctx: RunContext) -> List[DiscoveredPage]:
        """Crawl the site on the first active engine and apply URL filters."""
        engine, handle = next(iter(ctx.engines.items()))
        discoverer = PageDiscoverer(self.config, self.automation)
        try:
            async with self.browser_manager.isolated_page(
                handle, self.config.viewport, self.config.auth, **self._context_options()
            ) as page:
                await self.browser_manager.authenticate(page, self.config.auth, self.config.timeout_ms)
                pages = await discoverer.discover(page, ctx.cancel_event)
        except Exception as e:
            await self._warn(ctx, "DiscoveryError", f"Discovery failed: {e}", engine.value)
            return []

        return self.test_filter.select_pages(
            pages, self.config.include_url_patterns, self.config.exclude_url_patterns
        )

    async def _execute(self, ctx: RunContext) -> None:
        """Submit every (page x engine) unit to the gate and wait for all of them."""
        engines = list(ctx.engines.items())
        units = []
        for page in ctx.pages:
            ctx.aggregator.register_page(page, len(engines))
            for engine, handle in engines:
                units.append(self._unit(ctx, page, engine, handle))

        ctx.units_submitted = len(units)
        logger.info(f"Submitting {len(units)} units ({len(ctx.pages)} pages x {len(engines)} engines)")
        await asyncio.gather(*units)

    async def _unit(
        self, ctx: RunContext, page: DiscoveredPage, engine: BrowserType, handle: Any
    ) -> None:
        """Gate admission around one unit.

        The slot is held until the unit's results are aggregated and its
        end event delivered.
        """
        try:
            await ctx.gate.acquire()
        except GateClosed:
            logger.debug(f"Unit {page.normalized_url} ({engine.value}) not admitted")
            return

        try:
            await self._emit(
                RunEvent(
                    type=EVENT_UNIT_START,
                    run_id=ctx.run_id,
                    page_url=page.normalized_url,
                    engine=engine.value,
                )
            )
            results = await self._run_unit(ctx, page, engine, handle)
            for result in results:
                try:
                    ctx.aggregator.add(result)
                except ValueError as e:
                    logger.error(f"Unit {page.normalized_url} ({engine.value}) dropped a result: {e}")
            ctx.aggregator.complete_unit(page.normalized_url)
            ctx.units_completed += 1
            logger.info(
                f"Unit {page.normalized_url} ({engine.value}) finished with {len(results)} results "
                f"[{ctx.units_completed}/{ctx.units_submitted}]"
            )
            await self._emit(
                RunEvent(
                    type=EVENT_UNIT_END,
                    run_id=ctx.run_id,
                    page_url=page.normalized_url,
                    engine=engine.value,
                    results=results,
                )
            )
        finally:
            ctx.gate.release()

    def _error_result(
        self,
        page: DiscoveredPage,
        engine: BrowserType,
        name: str,
        test_type: TestType,
        status: TestStatus,
        message: str,
        error_kind: Optional[ErrorKind] = None,
    ) -> TestResult:
        return TestResult(
            id=self.id_factory(),
            name=name,
            test_type=test_type,
            status=status,
            page_url=page.normalized_url,
            engine=engine.value,
            viewport=self.config.viewport.label,
            error_kind=error_kind,
            message=message,
        )

    async def _run_unit(
        self, ctx: RunContext, page: DiscoveredPage, engine: BrowserType, handle: Any
    ) -> List[TestResult]:
        """Run the selected checks for one page on one engine.

        Checks run sequentially in one isolated context: page load, the console
        and network monitors, element interactions, forms, then the visual
        comparison. Results recorded before a timeout or crash are kept.
        """
        config = self.config
        viewport = config.viewport.label
        results: List[TestResult] = []
        outstanding = {"name": PAGE_LOAD, "type": TestType.FUNCTIONAL}

        def record(result: TestResult) -> None:
            results.append(result.model_copy(update={"sequence": len(results)}))

        def begin(name: str, test_type: TestType) -> None:
            outstanding["name"] = name
            outstanding["type"] = test_type

        def skip_remaining(reason: str, kind: Optional[ErrorKind] = None, status=TestStatus.SKIPPED):
            for test in self.tests:
                if test.name == PAGE_LOAD:
                    continue
                record(self._error_result(page, engine, test.name, test.test_type, status, reason, kind))

        async def body() -> None:
            async with self.browser_manager.isolated_page(
                handle, config.viewport, config.auth, **self._context_options()
            ) as page_handle:
                await self.browser_manager.authenticate(page_handle, config.auth, config.timeout_ms)
                monitors = [t.name for t in self._selected(TestType.MONITOR)]
                if monitors:
                    await self.page_monitor.reset(self.automation, page_handle)

                begin(PAGE_LOAD, TestType.FUNCTIONAL)
                load = await self._page_load(page, engine, page_handle)
                if any(t.name == PAGE_LOAD for t in self.tests):
                    record(load)
                    if load.status != TestStatus.PASS:
                        skip_remaining(f"page did not load: {load.message}")
                        return
                elif load.status != TestStatus.PASS:
                    skip_remaining(load.message, load.error_kind, TestStatus.ERROR)
                    return

                if monitors:
                    begin(monitors[0], TestType.MONITOR)
                    errors = await self.page_monitor.collect(self.automation, page_handle)
                    for result in self.page_monitor.results(
                        monitors, errors, page, engine.value, viewport
                    ):
                        record(result)

                for test in self._selected(TestType.ELEMENT):
                    begin(test.name, test.test_type)
                    await self.element_tester.test_elements(
                        self.automation,
                        page_handle,
                        page,
                        engine=engine.value,
                        viewport=viewport,
                        on_result=record,
                    )

                for test in self._selected(TestType.FORM):
                    begin(test.name, test.test_type)
                    await self.form_tester.test_forms(
                        self.automation,
                        page_handle,
                        page,
                        engine=engine.value,
                        viewport=viewport,
                        on_result=record,
                    )

                for test in self._selected(TestType.VISUAL):
                    begin(test.name, test.test_type)
                    record(
                        await self.visual_tester.capture_and_compare(
                            self.automation, page_handle, page.normalized_url, engine.value, viewport
                        )
                    )

        try:
            await asyncio.wait_for(body(), timeout=config.unit_timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.error(
                f"Unit {page.normalized_url} ({engine.value}) timed out after "
                f"{config.unit_timeout_ms}ms during {outstanding['name']}"
            )
            record(
                self._error_result(
                    page,
                    engine,
                    outstanding["name"],
                    outstanding["type"],
                    TestStatus.ERROR,
                    f"unit exceeded {config.unit_timeout_ms}ms",
                    ErrorKind.TIMEOUT,
                )
            )
        except Exception as e:
            kind = classify_error(e)
            logger.error(f"Unit {page.normalized_url} ({engine.value}) crashed during {outstanding['name']}: {e}")
            record(
                self._error_result(
                    page, engine, outstanding["name"], outstanding["type"], TestStatus.ERROR, str(e), kind
                )
            )
        return results

    async def _page_load(
        self, page: DiscoveredPage, engine: BrowserType, page_handle: Any
    ) -> TestResult:
        """Navigate to the page.

        Passes when the main response is not an HTTP error and the page did
        not redirect off-site.
        """
        started = time.monotonic()
        status, message, kind, data = TestStatus.PASS, "", None, {}
        try:
            status_code = await self.automation.goto(page_handle, page.url, self.config.timeout_ms)
            data["status_code"] = status_code
            landed = normalize_url(await self.automation.current_url(page_handle))
            data["landed"] = landed
            if status_code is not None and status_code >= 400:
                raise AssertionFailure(f"page responded with HTTP {status_code}")
            if not (
                is_internal_url(landed, self.config.base_url)
                or is_allowed_host(landed, self.config.allowed_hosts)
            ):
                raise AssertionFailure(f"page redirected off-site to {landed}")
        except Exception as e:
            kind = classify_error(e)
            status = TestStatus.FAIL if kind == ErrorKind.ASSERTION_FAILURE else TestStatus.ERROR
            message = str(e)
            logger.warning(f"{PAGE_LOAD} {page.normalized_url} ({engine.value}): {message}")

        return TestResult(
            id=self.id_factory(),
            name=PAGE_LOAD,
            test_type=TestType.FUNCTIONAL,
            status=status,
            page_url=page.normalized_url,
            engine=engine.value,
            viewport=self.config.viewport.label,
            duration_ms=int((time.monotonic() - started) * 1000),
            error_kind=kind,
            message=message,
            data=data,
        )

    def _build_report(self, ctx: RunContext) -> RunReport:
        # Cancelled before any page was scheduled counts as incomplete too
        incomplete = ctx.units_completed < ctx.units_submitted or (
            ctx.cancelled and not ctx.pages
        )
        pages = ctx.aggregator.build_pages(only_with_results=incomplete)
        return RunReport(
            run_id=ctx.run_id,
            base_url=self.config.base_url,
            state=ctx.state,
            incomplete=incomplete,
            summary=ctx.aggregator.summary(pages),
            pages=pages,
            warnings=list(ctx.warnings),
            engines=[e.value for e in ctx.engines],
            units_submitted=ctx.units_submitted,
            units_completed=ctx.units_completed,
            units_rejected=ctx.gate.rejected,
            started_at=ctx.started_at,
        )

    async def _cleanup(self, ctx: RunContext) -> None:
        """Close every engine and stop the automation backend."""
        for engine, handle in list(ctx.engines.items()):
            try:
                await self.automation.close(handle)
                logger.debug(f"Closed {engine.value} engine")
            except Exception as e:
                logger.error(f"Error closing {engine.value} engine: {e}")
        try:
            await self.automation.stop()
        except Exception as e:
            logger.warning(f"Automation shutdown reported errors: {e}")


async def run_site_check(
    config: TestConfig,
    automation: Optional[BaseBrowserAutomation] = None,
    criteria: Optional[FilterCriteria] = None,
    listeners: Sequence[Listener] = (),
) -> RunReport:
    """Run a full site check and return its report.

    Example:
        config = resolve([{"base_url": "https://example.test", "engines": "chromium"}])
        report = await run_site_check(config)
        report.save(config.output_dir / "report.json")
    """
    runner = ParallelRunner(config, automation=automation, criteria=criteria)
    for listener in listeners:
        runner.add_listener(listener)
    return await runner.run()
