"""Helper functions, error taxonomy and concurrency primitives."""

from .errors import (
    SiteCheckError,
    ConfigError,
    EngineLaunchError,
    GateClosed,
    AutomationError,
    NavigationTimeout,
    ElementNotFound,
    ScriptException,
    NetworkFailure,
    AssertionFailure,
    AGGREGATION_INCOMPLETE,
    classify_error,
    register_error_pattern,
)
from .helpers import (
    generate_id,
    normalize_url,
    is_internal_url,
    is_allowed_host,
    to_safe_filename,
    ensure_dir,
    sleep,
    ParallelLimit,
    parallel_limit,
)

__all__ = [
    "SiteCheckError",
    "ConfigError",
    "EngineLaunchError",
    "GateClosed",
    "AutomationError",
    "NavigationTimeout",
    "ElementNotFound",
    "ScriptException",
    "NetworkFailure",
    "AssertionFailure",
    "AGGREGATION_INCOMPLETE",
    "classify_error",
    "register_error_pattern",
    "generate_id",
    "normalize_url",
    "is_internal_url",
    "is_allowed_host",
    "to_safe_filename",
    "ensure_dir",
    "sleep",
    "ParallelLimit",
    "parallel_limit",
]
