"""Visual baseline bookkeeping models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class DiffStatus(str, Enum):
    """Review status of a recorded visual difference."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class BaselineEntry(BaseModel):
    """A stored reference screenshot keyed by page, engine and viewport."""

    key: str = Field(description="Artifact key: <page_key>/<engine>-<viewport>")
    page_url: str = Field(description="Normalized page URL")
    engine: str = Field(description="Browser engine")
    viewport: str = Field(description="Viewport label")
    baseline_path: str = Field(description="Path of the baseline image")
    hash: str = Field(description="SHA-256 of the baseline image bytes")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class BaselineDiff(BaseModel):
    """A failed comparison waiting for review."""

    key: str = Field(description="Baseline key the diff belongs to")
    page_url: str = Field(description="Normalized page URL")
    baseline_path: str = Field(description="Baseline image")
    current_path: str = Field(description="Capture that failed the comparison")
    diff_path: Optional[str] = Field(default=None, description="Diff image")
    diff_ratio: float = Field(description="Fraction of differing pixels")
    pixel_difference: int = Field(description="Number of differing pixels")
    status: DiffStatus = Field(default=DiffStatus.PENDING)
    timestamp: datetime = Field(default_factory=datetime.now)
