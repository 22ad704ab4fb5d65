"""Tests for the parallel runner.

The runner is driven end to end by the in-memory automation from conftest;
no real browser is launched.
"""

import json

import pytest

from conftest import (
    BASE_URL,
    FakeAutomation,
    FakePage,
    form,
    form_field,
    make_config,
    two_page_site,
)
from sitecheck.models.result_models import ErrorKind, RunState, TestStatus
from sitecheck.services.parallel_runner import (
    EVENT_STATE,
    EVENT_UNIT_END,
    EVENT_UNIT_START,
    ParallelRunner,
    run_site_check,
)
from sitecheck.testing.test_filter import FilterCriteria
from sitecheck.utils.errors import AGGREGATION_INCOMPLETE, EngineLaunchError

HOME = f"{BASE_URL}/"
ABOUT = f"{BASE_URL}/about"


def hub_site(count):
    """Home page linking to ``count`` leaf pages."""
    leaves = [f"{BASE_URL}/p{i}" for i in range(1, count + 1)]
    site = {HOME: FakePage(title="Home", links=leaves)}
    for url in leaves:
        site[url] = FakePage(title=url.rsplit("/", 1)[-1])
    return site


class TestEndToEnd:
    """Full runs over the two page site."""

    @pytest.mark.asyncio
    async def test_two_pages_two_engines(self, tmp_path):
        config = make_config(tmp_path, engines=["chromium", "firefox"], concurrency=2, max_depth=1)
        automation = FakeAutomation(two_page_site())
        runner = ParallelRunner(config, automation)
        states = []
        runner.add_listener(lambda e: states.append(e.state) if e.type == EVENT_STATE else None)

        report = await runner.run()

        assert report.state == RunState.DONE
        assert not report.incomplete
        assert report.units_submitted == 4
        assert report.units_completed == 4
        assert report.engines == ["chromium", "firefox"]
        assert [p.url for p in report.pages] == [HOME, ABOUT]
        assert all(p.complete for p in report.pages)

        # page-load, two monitors, one element and the visual check per unit
        assert report.summary.total == 4 * 5
        assert report.summary.passed == 16
        assert report.summary.skipped == 4  # first-run baselines
        assert report.summary.failed == report.summary.errored == 0

        assert states == [
            RunState.LAUNCHING,
            RunState.DISCOVERING,
            RunState.EXECUTING,
            RunState.AGGREGATING,
            RunState.DONE,
        ]
        assert runner.context.gate.max_active <= 2
        assert automation.max_open_contexts <= 2
        assert automation.open_contexts == 0
        assert automation.stopped

    @pytest.mark.asyncio
    async def test_results_ordered_and_unique(self, tmp_path):
        config = make_config(tmp_path, engines=["firefox", "chromium"], concurrency=2)
        report = await ParallelRunner(config, FakeAutomation(two_page_site())).run()

        home = report.pages[0]
        assert [(r.engine, r.name.split(":")[0]) for r in home.results] == [
            ("chromium", "page-load"),
            ("chromium", "console-errors"),
            ("chromium", "network-errors"),
            ("chromium", "element-interaction"),
            ("chromium", "visual-regression"),
            ("firefox", "page-load"),
            ("firefox", "console-errors"),
            ("firefox", "network-errors"),
            ("firefox", "element-interaction"),
            ("firefox", "visual-regression"),
        ]
        ids = [r.id for p in report.pages for r in p.results]
        assert len(ids) == len(set(ids))

    @pytest.mark.asyncio
    async def test_second_run_compares_with_baselines(self, tmp_path):
        config = make_config(tmp_path)
        site = two_page_site()
        await ParallelRunner(config, FakeAutomation(site)).run()

        report = await ParallelRunner(config, FakeAutomation(site)).run()
        assert report.summary.passed == report.summary.total == 10

        site[ABOUT].color = (0, 0, 0)
        report = await ParallelRunner(config, FakeAutomation(site)).run()
        visual = [r for r in report.pages[1].results if r.name == "visual-regression"]
        assert visual[0].status == TestStatus.FAIL
        assert (config.output_dir / "pending-diffs.json").exists()

    @pytest.mark.asyncio
    async def test_report_serialization(self, tmp_path):
        config = make_config(tmp_path)
        report = await run_site_check(config, automation=FakeAutomation(two_page_site()))

        data = report.to_dict()
        assert data["summary"]["total"] == 10
        assert [p["url"] for p in data["pages"]] == [HOME, ABOUT]
        assert data["pages"][0]["complete"] is True

        path = report.save(tmp_path / "report.json")
        assert json.loads(path.read_text())["state"] == "done"


class TestConcurrency:
    """The gate bounds in-flight units."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [1, 3])
    async def test_never_more_than_limit_in_flight(self, tmp_path, limit):
        config = make_config(tmp_path, engines=["chromium", "webkit"], concurrency=limit)
        automation = FakeAutomation(hub_site(8))
        runner = ParallelRunner(config, automation)

        report = await runner.run()

        assert report.units_completed == 18
        assert runner.context.gate.admitted == 18
        assert runner.context.gate.max_active <= limit
        assert automation.max_open_contexts <= limit

    @pytest.mark.asyncio
    async def test_each_unit_opens_its_own_context(self, tmp_path):
        automation = FakeAutomation(two_page_site())
        await ParallelRunner(make_config(tmp_path), automation).run()

        # One for discovery, one per unit
        assert len(automation.contexts) == 1 + 2
        assert all(c.closed for c in automation.contexts)


class TestCancellation:
    """Cancelling a run stops admission and keeps collected results."""

    @pytest.mark.asyncio
    async def test_cancel_after_first_unit(self, tmp_path):
        config = make_config(tmp_path, concurrency=1)
        runner = ParallelRunner(config, FakeAutomation(hub_site(3)))
        runner.add_listener(lambda e: runner.cancel() if e.type == EVENT_UNIT_END else None)

        report = await runner.run()

        assert report.state == RunState.CANCELLED
        assert report.incomplete
        assert report.units_submitted == 4
        assert report.units_completed == 1
        assert report.units_rejected == 3
        assert runner.context.gate.admitted == 1
        assert len(report.pages) == 1
        assert report.pages[0].url == HOME
        assert report.pages[0].complete
        assert [w.code for w in report.warnings] == [AGGREGATION_INCOMPLETE]

    @pytest.mark.asyncio
    async def test_cancel_before_run(self, tmp_path):
        automation = FakeAutomation(two_page_site())
        runner = ParallelRunner(make_config(tmp_path), automation)
        runner.cancel()

        report = await runner.run()

        assert report.state == RunState.CANCELLED
        assert report.incomplete
        assert report.pages == []
        assert automation.visits == []
        assert automation.stopped


class TestFailures:
    """Failures are contained in their unit or degrade the run."""

    @pytest.mark.asyncio
    async def test_engine_launch_failure_degrades(self, tmp_path):
        config = make_config(tmp_path, engines=["chromium", "webkit"])
        automation = FakeAutomation(two_page_site(), failing_engines=("webkit",))

        report = await ParallelRunner(config, automation).run()

        assert report.state == RunState.DONE
        assert report.engines == ["chromium"]
        assert report.units_submitted == 2
        assert [(w.code, w.engine) for w in report.warnings] == [("EngineLaunchError", "webkit")]

    @pytest.mark.asyncio
    async def test_all_engines_failing_fails_run(self, tmp_path):
        config = make_config(tmp_path, engines=["chromium", "firefox"])
        automation = FakeAutomation(two_page_site(), failing_engines=("chromium", "firefox"))
        runner = ParallelRunner(config, automation)

        with pytest.raises(EngineLaunchError):
            await runner.run()

        assert runner.state == RunState.FAILED
        assert automation.stopped

    @pytest.mark.asyncio
    async def test_page_that_does_not_load(self, tmp_path):
        site = two_page_site()
        site[HOME].links.append(f"{BASE_URL}/broken")

        report = await ParallelRunner(make_config(tmp_path), FakeAutomation(site)).run()

        broken = report.pages[-1]
        assert broken.url == f"{BASE_URL}/broken"
        assert [(r.name, r.status) for r in broken.results] == [
            ("page-load", TestStatus.ERROR),
            ("console-errors", TestStatus.SKIPPED),
            ("network-errors", TestStatus.SKIPPED),
            ("element-interaction", TestStatus.SKIPPED),
            ("form-interaction", TestStatus.SKIPPED),
            ("visual-regression", TestStatus.SKIPPED),
        ]
        assert broken.results[0].error_kind == ErrorKind.NETWORK_FAILURE
        assert report.state == RunState.DONE

    @pytest.mark.asyncio
    async def test_unit_timeout_keeps_partial_results(self, tmp_path):
        config = make_config(tmp_path, concurrency=1, unit_timeout_ms=200)
        automation = FakeAutomation(two_page_site(), click_delays={"button#go": 30})

        report = await ParallelRunner(config, automation).run()

        about = report.pages[1]
        assert [(r.name, r.status) for r in about.results] == [
            ("page-load", TestStatus.PASS),
            ("console-errors", TestStatus.PASS),
            ("network-errors", TestStatus.PASS),
            ("element-interaction", TestStatus.ERROR),
        ]
        assert about.results[-1].error_kind == ErrorKind.TIMEOUT
        assert about.complete
        assert report.state == RunState.DONE
        assert automation.open_contexts == 0

    @pytest.mark.asyncio
    async def test_unit_crash_is_contained(self, tmp_path):
        class FlakyContexts(FakeAutomation):
            calls = 0

            async def new_context(self, engine_handle, viewport=None, **options):
                self.calls += 1
                if self.calls == 3:
                    raise RuntimeError("Target closed")
                return await super().new_context(engine_handle, viewport, **options)

        config = make_config(tmp_path, concurrency=1)
        report = await ParallelRunner(config, FlakyContexts(two_page_site())).run()

        assert report.state == RunState.DONE
        assert len(report.pages[0].results) == 5
        crashed = report.pages[1].results
        assert len(crashed) == 1
        assert crashed[0].status == TestStatus.ERROR
        assert "Target closed" in crashed[0].message

    @pytest.mark.asyncio
    async def test_error_status_fails_page_load(self, tmp_path):
        site = two_page_site()
        site[ABOUT].status = 500

        report = await ParallelRunner(make_config(tmp_path), FakeAutomation(site)).run()

        home, about = report.pages
        assert home.results[0].status == TestStatus.PASS
        assert home.results[0].data["status_code"] == 200
        load = about.results[0]
        assert (load.name, load.status) == ("page-load", TestStatus.FAIL)
        assert load.error_kind == ErrorKind.ASSERTION_FAILURE
        assert load.data["status_code"] == 500
        assert "HTTP 500" in load.message
        assert {r.status for r in about.results[1:]} == {TestStatus.SKIPPED}

    @pytest.mark.asyncio
    async def test_duplicate_result_ids_do_not_abort_units(self, tmp_path):
        config = make_config(tmp_path, concurrency=1)
        runner = ParallelRunner(config, FakeAutomation(two_page_site()), id_factory=lambda: "dup")

        report = await runner.run()

        assert report.state == RunState.DONE
        assert not report.incomplete
        assert report.units_completed == report.units_submitted == 2
        assert all(p.complete for p in report.pages)
        # Only the first result with the id is kept
        assert report.summary.total == 1


class TestSelection:
    """Test selection shapes each unit."""

    @pytest.mark.asyncio
    async def test_only_visual(self, tmp_path):
        runner = ParallelRunner(
            make_config(tmp_path),
            FakeAutomation(two_page_site()),
            criteria=FilterCriteria.build(include=["visual"]),
        )

        report = await runner.run()

        assert report.summary.total == 2
        assert {r.name for p in report.pages for r in p.results} == {"visual-regression"}

    @pytest.mark.asyncio
    async def test_config_excludes_and_url_patterns(self, tmp_path):
        config = make_config(tmp_path, exclude_tests="visual", exclude_url_patterns=[r"/about$"])

        report = await ParallelRunner(config, FakeAutomation(two_page_site())).run()

        assert [p.url for p in report.pages] == [HOME]
        assert [r.name.split(":")[0] for r in report.pages[0].results] == [
            "page-load",
            "console-errors",
            "network-errors",
            "element-interaction",
        ]
        assert not (config.output_dir / "baselines.json").exists()

    @pytest.mark.asyncio
    async def test_only_monitors(self, tmp_path):
        runner = ParallelRunner(
            make_config(tmp_path),
            FakeAutomation(two_page_site()),
            criteria=FilterCriteria.build(categories=["monitor"]),
        )

        report = await runner.run()

        assert report.summary.total == 4
        assert [r.name for r in report.pages[0].results] == ["console-errors", "network-errors"]


class TestFormsAndMonitors:
    """Forms are exercised and load-time errors reported per unit."""

    @pytest.mark.asyncio
    async def test_contact_page(self, tmp_path):
        site = two_page_site()
        site[ABOUT].forms = [
            form(
                "form#contact",
                [
                    form_field("input#email", "email", "email", required=True),
                    form_field("textarea#msg", "message", "textarea"),
                ],
            )
        ]
        site[ABOUT].console_errors = ["Uncaught TypeError: widget is undefined"]
        automation = FakeAutomation(site)

        report = await ParallelRunner(make_config(tmp_path), automation).run()

        about = report.pages[1]
        assert [(r.name.split(":")[0], r.status) for r in about.results] == [
            ("page-load", TestStatus.PASS),
            ("console-errors", TestStatus.FAIL),
            ("network-errors", TestStatus.PASS),
            ("element-interaction", TestStatus.PASS),
            ("form-interaction", TestStatus.PASS),
            ("form-interaction", TestStatus.PASS),
            ("form-interaction", TestStatus.PASS),
            ("form-interaction", TestStatus.PASS),
            ("visual-regression", TestStatus.SKIPPED),
        ]
        console = about.results[1]
        assert console.data["errors"] == ["Uncaught TypeError: widget is undefined"]
        assert "widget is undefined" in console.message
        assert about.results[-2].name == "form-interaction: form 'contact' ready to submit"
        assert ("input#email", "test@example.com") in automation.fills

        home = report.pages[0]
        assert [r.status for r in home.results if r.name.endswith("-errors")] == [
            TestStatus.PASS,
            TestStatus.PASS,
        ]

    @pytest.mark.asyncio
    async def test_network_errors_fail_their_check_only(self, tmp_path):
        site = two_page_site()
        site[HOME].network_errors = ["GET https://example.test/app.js -> 404"]

        report = await ParallelRunner(make_config(tmp_path), FakeAutomation(site)).run()

        by_name = {r.name: r for r in report.pages[0].results}
        assert by_name["page-load"].status == TestStatus.PASS
        assert by_name["console-errors"].status == TestStatus.PASS
        assert by_name["network-errors"].status == TestStatus.FAIL
        assert by_name["network-errors"].data["errors"] == ["GET https://example.test/app.js -> 404"]


class TestListeners:
    """Run events reach sync and async listeners."""

    @pytest.mark.asyncio
    async def test_async_and_failing_listeners(self, tmp_path):
        seen = []

        async def record(event):
            seen.append((event.type, event.page_url))

        def broken(event):
            raise ValueError("listener bug")

        report = await run_site_check(
            make_config(tmp_path),
            automation=FakeAutomation(two_page_site()),
            listeners=[broken, record],
        )

        assert report.state == RunState.DONE
        starts = [url for kind, url in seen if kind == EVENT_UNIT_START]
        ends = [url for kind, url in seen if kind == EVENT_UNIT_END]
        assert sorted(starts) == sorted(ends) == sorted([HOME, ABOUT])
