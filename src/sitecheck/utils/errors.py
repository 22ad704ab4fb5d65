"""Exception hierarchy and error classification.

Low-level automation failures come in many shapes (Playwright timeouts,
``net::ERR_*`` messages, detached handles, page script errors). Both testers
map them into :class:`~sitecheck.models.result_models.ErrorKind` through
:func:`classify_error`, which is table driven: new failure shapes are added to
``ERROR_PATTERNS`` (or via :func:`register_error_pattern`) without touching
call sites.
"""

import asyncio
import re
from typing import List, Optional, Pattern, Sequence, Tuple

from ..models.result_models import ErrorKind


class SiteCheckError(Exception):
    """Base class for sitecheck errors."""

    pass


class ConfigError(SiteCheckError):
    """Raised when the effective configuration is missing or malformed."""

    def __init__(self, message: str, problems: Optional[Sequence[str]] = None):
        self.problems: List[str] = list(problems or [])
        if self.problems:
            message = f"{message}: {'; '.join(self.problems)}"
        super().__init__(message)


class EngineLaunchError(SiteCheckError):
    """Raised when a browser engine cannot be launched."""

    def __init__(self, message: str, engine: Optional[str] = None):
        self.engine = engine
        super().__init__(message)


class GateClosed(SiteCheckError):
    """Raised to work waiting at a concurrency gate that stopped admitting."""

    pass


class AutomationError(SiteCheckError):
    """Failure raised by the browser automation capability."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class NavigationTimeout(AutomationError):
    kind = ErrorKind.TIMEOUT


class ElementNotFound(AutomationError):
    kind = ErrorKind.ELEMENT_NOT_FOUND


class ScriptException(AutomationError):
    kind = ErrorKind.SCRIPT_EXCEPTION


class NetworkFailure(AutomationError):
    kind = ErrorKind.NETWORK_FAILURE


class AssertionFailure(AutomationError):
    """An expected post-condition did not hold."""

    kind = ErrorKind.ASSERTION_FAILURE


# Warning code attached to partial reports after cancellation
AGGREGATION_INCOMPLETE = "AggregationIncomplete"


# Pattern -> kind, first match wins. Matched against "<TypeName>: <message>"
# of every exception in the cause/context chain.
ERROR_PATTERNS: List[Tuple[Pattern[str], ErrorKind]] = [
    (re.compile(r"net::ERR_|NS_ERROR_|ECONNREFUSED|ECONNRESET|ENOTFOUND", re.I), ErrorKind.NETWORK_FAILURE),
    (re.compile(r"connection (refused|reset|closed)|dns|name not resolved", re.I), ErrorKind.NETWORK_FAILURE),
    (re.compile(r"^TimeoutError\b|timeout \d+ ?ms exceeded|timed out", re.I), ErrorKind.TIMEOUT),
    (re.compile(r"not attached to the dom|element is detached|no node found", re.I), ErrorKind.ELEMENT_NOT_FOUND),
    (re.compile(r"waiting for (selector|locator)|no element matches|element not found", re.I), ErrorKind.ELEMENT_NOT_FOUND),
    (re.compile(r"failed to find element|unable to locate|strict mode violation", re.I), ErrorKind.ELEMENT_NOT_FOUND),
    (re.compile(r"evaluation failed|page\.evaluate|\b(Reference|Syntax)Error\b|uncaught", re.I), ErrorKind.SCRIPT_EXCEPTION),
    (re.compile(r"^AssertionError\b|expected .* (to be|but got)", re.I), ErrorKind.ASSERTION_FAILURE),
]


def register_error_pattern(pattern: str, kind: ErrorKind, first: bool = True) -> None:
    """Add a classification rule.

    Args:
        pattern: Case-insensitive regular expression
        kind: Kind assigned when the pattern matches
        first: Whether the rule takes precedence over existing rules
    """
    rule = (re.compile(pattern, re.I), kind)
    if first:
        ERROR_PATTERNS.insert(0, rule)
    else:
        ERROR_PATTERNS.append(rule)


def _exception_chain(error: BaseException) -> List[BaseException]:
    chain: List[BaseException] = []
    current: Optional[BaseException] = error
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def classify_error(raw: object) -> ErrorKind:
    """Map a low-level failure into the closed error taxonomy.

    Args:
        raw: An exception, or a bare error message

    Returns:
        The matching ErrorKind, ``UNKNOWN`` when nothing matches
    """
    if isinstance(raw, BaseException):
        chain = _exception_chain(raw)
        for error in chain:
            if isinstance(error, AutomationError) and error.kind != ErrorKind.UNKNOWN:
                return error.kind
            if isinstance(error, asyncio.TimeoutError):
                return ErrorKind.TIMEOUT
            if isinstance(error, AssertionError):
                return ErrorKind.ASSERTION_FAILURE
        texts = [f"{type(error).__name__}: {error}" for error in chain]
    else:
        texts = [str(raw)]

    for pattern, kind in ERROR_PATTERNS:
        if any(pattern.search(text) for text in texts):
            return kind
    return ErrorKind.UNKNOWN
