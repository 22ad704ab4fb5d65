"""Run orchestration services."""

from .aggregator import ResultAggregator
from .parallel_runner import ParallelRunner, RunContext, RunEvent, run_site_check

__all__ = [
    "ResultAggregator",
    "ParallelRunner",
    "RunContext",
    "RunEvent",
    "run_site_check",
]
