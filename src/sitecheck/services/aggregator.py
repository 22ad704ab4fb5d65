"""Result aggregation.

Units finish in any order; the aggregator is an append-only collection keyed
by result id and folds into per-page reports only when asked, so the outcome
does not depend on arrival order.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from ..models.browser_models import DiscoveredPage
from ..models.result_models import PageTestReport, ReportSummary, TestResult

logger = logging.getLogger(__name__)


@dataclass
class _PageSlot:
    order: int
    title: str = ""
    expected_units: int = 0
    completed_units: int = 0


class ResultAggregator:
    """Collect test results and fold them into page reports."""

    def __init__(self):
        self._results: Dict[str, TestResult] = {}
        self._pages: Dict[str, _PageSlot] = {}

    def __len__(self) -> int:
        return len(self._results)

    def _slot(self, url: str) -> _PageSlot:
        slot = self._pages.get(url)
        if slot is None:
            slot = _PageSlot(order=len(self._pages))
            self._pages[url] = slot
        return slot

    def register_page(self, page: DiscoveredPage, expected_units: int) -> None:
        """Declare a page and how many units will report on it."""
        slot = self._slot(page.normalized_url)
        slot.title = page.title
        slot.expected_units += expected_units

    def add(self, result: TestResult) -> None:
        """Insert one result.

        Raises:
            ValueError: If a result with the same id was already added
        """
        if result.id in self._results:
            raise ValueError(f"Duplicate result id: {result.id}")
        self._results[result.id] = result
        self._slot(result.page_url)

    def extend(self, results: Iterable[TestResult]) -> None:
        for result in results:
            self.add(result)

    def complete_unit(self, page_url: str) -> None:
        """Mark one unit of ``page_url`` as terminated."""
        self._slot(page_url).completed_units += 1

    def results(self) -> List[TestResult]:
        return self._sorted(self._results.values())

    @staticmethod
    def _sorted(results: Iterable[TestResult]) -> List[TestResult]:
        return sorted(results, key=lambda r: (r.engine, r.sequence, r.id))

    def build_pages(self, only_with_results: bool = False) -> List[PageTestReport]:
        """Fold results into page reports, in page registration order.

        Args:
            only_with_results: Drop pages that received no result, as in a
                partial report after cancellation
        """
        by_page: Dict[str, List[TestResult]] = {url: [] for url in self._pages}
        for result in self._results.values():
            by_page[result.page_url].append(result)

        reports = []
        for url, slot in sorted(self._pages.items(), key=lambda item: item[1].order):
            results = self._sorted(by_page[url])
            if only_with_results and not results:
                continue
            reports.append(
                PageTestReport(
                    url=url,
                    title=slot.title,
                    results=results,
                    summary=ReportSummary.from_results(results),
                    expected_units=slot.expected_units,
                    completed_units=slot.completed_units,
                )
            )
        return reports

    def summary(self, pages: Optional[List[PageTestReport]] = None) -> ReportSummary:
        """Summary over every result, or over the given page reports."""
        if pages is None:
            return ReportSummary.from_results(list(self._results.values()))
        return ReportSummary.from_results([r for page in pages for r in page.results])
