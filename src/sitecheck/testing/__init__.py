"""Test selection for sitecheck runs."""

from .test_filter import (
    TestDefinition,
    FilterCriteria,
    TestFilter,
    BUILTIN_TESTS,
    select,
)

__all__ = ["TestDefinition", "FilterCriteria", "TestFilter", "BUILTIN_TESTS", "select"]
