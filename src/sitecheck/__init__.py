"""sitecheck - automated browser testing of web applications.

Discovers the pages of a site, clicks its interactive elements, exercises its
forms, reports console and network errors and compares screenshots against
baselines on several browser engines in parallel.
"""

import logging

from .config import resolve, resolve_environment
from .models import RunReport, TestConfig, TestResult
from .services import ParallelRunner, run_site_check

__version__ = "0.1.0"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging with the project format."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


__all__ = [
    "resolve",
    "resolve_environment",
    "RunReport",
    "TestConfig",
    "TestResult",
    "ParallelRunner",
    "run_site_check",
    "configure_logging",
]
