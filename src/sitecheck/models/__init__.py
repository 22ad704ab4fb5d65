"""Data models for sitecheck."""

from .browser_models import (
    BrowserType,
    Viewport,
    ElementKind,
    ElementRole,
    UrlOrigin,
    DiscoveredElement,
    DiscoveredButton,
    FormField,
    DiscoveredForm,
    PageErrors,
    DiscoveredPage,
)
from .config_models import AuthMode, AuthConfig, TestConfig
from .result_models import (
    TestType,
    TestStatus,
    ErrorKind,
    RunState,
    TestResult,
    ReportSummary,
    PageTestReport,
    RunWarning,
    RunReport,
)
from .baseline_models import DiffStatus, BaselineEntry, BaselineDiff

__all__ = [
    "BrowserType",
    "Viewport",
    "ElementKind",
    "ElementRole",
    "UrlOrigin",
    "DiscoveredElement",
    "DiscoveredButton",
    "FormField",
    "DiscoveredForm",
    "PageErrors",
    "DiscoveredPage",
    "AuthMode",
    "AuthConfig",
    "TestConfig",
    "TestType",
    "TestStatus",
    "ErrorKind",
    "RunState",
    "TestResult",
    "ReportSummary",
    "PageTestReport",
    "RunWarning",
    "RunReport",
    "DiffStatus",
    "BaselineEntry",
    "BaselineDiff",
]
