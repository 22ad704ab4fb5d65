"""Test result and report models.

This module defines the result of a single executed check, the per-page
rollup and the run-level report handed to reporting.
"""

import json
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TestType(str, Enum):
    """Category of an executed check."""

    __test__ = False

    FUNCTIONAL = "functional"
    VISUAL = "visual"
    ELEMENT = "element"
    FORM = "form"
    MONITOR = "monitor"


class TestStatus(str, Enum):
    """Outcome of an executed check."""

    __test__ = False

    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"
    SKIPPED = "skipped"


class ErrorKind(str, Enum):
    """Closed taxonomy of automation failures."""

    TIMEOUT = "timeout"
    ELEMENT_NOT_FOUND = "element_not_found"
    NETWORK_FAILURE = "network_failure"
    SCRIPT_EXCEPTION = "script_exception"
    ASSERTION_FAILURE = "assertion_failure"
    UNKNOWN = "unknown"


class RunState(str, Enum):
    """Lifecycle of a run."""

    IDLE = "idle"
    LAUNCHING = "launching"
    DISCOVERING = "discovering"
    EXECUTING = "executing"
    AGGREGATING = "aggregating"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TestResult(BaseModel):
    """Result of one executed check. Immutable once created."""

    __test__ = False

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Run-unique result identifier")
    name: str = Field(description="Check name, e.g. page-load")
    test_type: TestType = Field(description="Check category")
    status: TestStatus = Field(description="Outcome")

    # Target
    page_url: str = Field(description="Normalized URL of the page under test")
    engine: str = Field(default="", description="Browser engine the check ran on")
    viewport: str = Field(default="", description="Viewport label")
    element_selector: Optional[str] = Field(default=None, description="Element under test")

    # Outcome details
    duration_ms: int = Field(default=0, ge=0, description="Wall time of the check")
    error_kind: Optional[ErrorKind] = Field(default=None, description="Error classification")
    message: str = Field(default="", description="Failure, error or skip reason")
    artifact_path: Optional[str] = Field(default=None, description="Screenshot or diff image")
    data: Dict[str, Any] = Field(default_factory=dict, description="Extra check data")

    # Ordering within a unit, for deterministic reports
    sequence: int = Field(default=0, ge=0, description="Position within its work unit")
    timestamp: datetime = Field(default_factory=datetime.now)


class ReportSummary(BaseModel):
    """Summary counts over a set of results."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    errored: int = 0
    skipped: int = 0
    pass_rate: float = Field(default=0.0, description="Passed / (total - skipped), percent")
    errors_by_kind: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_results(cls, results: List[TestResult]) -> "ReportSummary":
        counts = {status: 0 for status in TestStatus}
        errors_by_kind: Dict[str, int] = {}
        for result in results:
            counts[result.status] += 1
            if result.error_kind is not None:
                key = result.error_kind.value
                errors_by_kind[key] = errors_by_kind.get(key, 0) + 1

        executed = len(results) - counts[TestStatus.SKIPPED]
        pass_rate = (counts[TestStatus.PASS] / executed * 100) if executed else 0.0
        return cls(
            total=len(results),
            passed=counts[TestStatus.PASS],
            failed=counts[TestStatus.FAIL],
            errored=counts[TestStatus.ERROR],
            skipped=counts[TestStatus.SKIPPED],
            pass_rate=round(pass_rate, 2),
            errors_by_kind=dict(sorted(errors_by_kind.items())),
        )


class PageTestReport(BaseModel):
    """Rollup of every result recorded for one page."""

    url: str = Field(description="Normalized page URL")
    title: str = Field(default="", description="Page title from discovery")
    results: List[TestResult] = Field(default_factory=list)
    summary: ReportSummary = Field(default_factory=ReportSummary)
    expected_units: int = Field(default=0, description="Units scheduled for the page")
    completed_units: int = Field(default=0, description="Units that terminated")

    @property
    def complete(self) -> bool:
        return self.expected_units > 0 and self.completed_units >= self.expected_units

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["complete"] = self.complete
        return data


class RunWarning(BaseModel):
    """Run-level warning, e.g. an engine that failed to launch."""

    code: str = Field(description="Warning code, e.g. EngineLaunchError")
    message: str = Field(description="Human readable message")
    engine: Optional[str] = Field(default=None, description="Engine concerned, if any")


class RunReport(BaseModel):
    """Aggregate result of a run."""

    run_id: str
    base_url: str
    state: RunState = RunState.IDLE
    incomplete: bool = False
    summary: ReportSummary = Field(default_factory=ReportSummary)
    pages: List[PageTestReport] = Field(default_factory=list)
    warnings: List[RunWarning] = Field(default_factory=list)
    engines: List[str] = Field(default_factory=list, description="Engines that ran")
    units_submitted: int = 0
    units_completed: int = 0
    units_rejected: int = 0
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def duration_ms(self) -> int:
        if self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable report: ``{summary, pages, ...}``."""
        data = self.model_dump(mode="json", exclude={"pages"})
        data["pages"] = [page.to_dict() for page in self.pages]
        data["duration_ms"] = self.duration_ms
        return data

    def save(self, path: Path) -> Path:
        """Write the report as JSON and return the path."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        return path
