"""Run configuration models.

``TestConfig`` is the single effective configuration of a run. It is produced
by :func:`sitecheck.config.environment.resolve` and is immutable afterwards.
"""

import re
from pathlib import Path
from typing import List, Optional
from enum import Enum
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .browser_models import BrowserType, Viewport


class AuthMode(str, Enum):
    """How a run authenticates against the application under test."""

    NONE = "none"
    TOKEN = "token"
    BASIC = "basic"
    FORM = "form"


class AuthConfig(BaseModel):
    """Authentication configuration.

    Always replaced wholesale when sources are merged, so credentials from
    different sources are never mixed.
    """

    model_config = ConfigDict(frozen=True)

    mode: AuthMode = Field(default=AuthMode.NONE, description="Authentication mode")
    username: Optional[str] = Field(default=None, description="Username for basic/form auth")
    password: Optional[str] = Field(default=None, description="Password for basic/form auth")
    token: Optional[str] = Field(default=None, description="Bearer token for token auth")
    header_name: str = Field(default="Authorization", description="Header carrying the token")
    login_url: Optional[str] = Field(default=None, description="Login page for form auth")
    username_selector: str = Field(
        default="input[type='email'], input[name='username']",
        description="Selector of the username field",
    )
    password_selector: str = Field(
        default="input[type='password']", description="Selector of the password field"
    )
    submit_selector: str = Field(
        default="button[type='submit']", description="Selector of the submit button"
    )

    @model_validator(mode="after")
    def _check_mode_fields(self) -> "AuthConfig":
        if self.mode == AuthMode.TOKEN and not self.token:
            raise ValueError("token auth requires 'token'")
        if self.mode in (AuthMode.BASIC, AuthMode.FORM) and not (
            self.username and self.password
        ):
            raise ValueError(f"{self.mode.value} auth requires 'username' and 'password'")
        if self.mode == AuthMode.FORM and not self.login_url:
            raise ValueError("form auth requires 'login_url'")
        return self


class TestConfig(BaseModel):
    """Effective configuration for one run."""

    __test__ = False

    model_config = ConfigDict(frozen=True)

    # Target
    base_url: str = Field(description="Base URL of the application under test")
    engines: List[BrowserType] = Field(description="Browser engines to run against")

    # Concurrency and timing
    concurrency: int = Field(default=4, gt=0, description="Maximum in-flight work units")
    timeout_ms: int = Field(default=30000, gt=0, description="Per-operation timeout")
    unit_timeout_ms: int = Field(default=180000, gt=0, description="Per work unit budget")
    navigation_delay_ms: int = Field(default=0, ge=0, description="Delay between crawled pages")

    # Visual regression
    visual_diff_threshold: float = Field(
        default=0.01,
        ge=0.0,
        le=1.0,
        description="Maximum fraction of differing pixels for a visual pass",
    )
    pixel_tolerance: int = Field(
        default=0,
        ge=0,
        le=255,
        description="Per-channel difference below which a pixel counts as equal",
    )
    update_baselines: bool = Field(default=False, description="Overwrite baselines with captures")
    viewport: Viewport = Field(default_factory=Viewport, description="Viewport for every unit")

    # Discovery
    max_depth: int = Field(default=2, ge=0, description="Maximum link depth to crawl")
    max_pages: int = Field(default=200, gt=0, description="Maximum pages to discover")
    max_elements_per_page: int = Field(default=50, ge=0, description="Elements exercised per page")
    allowed_hosts: List[str] = Field(
        default_factory=list, description="External hosts links may lead to"
    )
    include_url_patterns: List[str] = Field(
        default_factory=list, description="Only test pages matching one of these regexes"
    )
    exclude_url_patterns: List[str] = Field(
        default_factory=list, description="Never test pages matching one of these regexes"
    )

    # Test selection
    include_tests: Optional[List[str]] = Field(default=None, description="Tests or tags to run")
    exclude_tests: Optional[List[str]] = Field(default=None, description="Tests or tags to skip")
    categories: Optional[List[str]] = Field(default=None, description="Categories to run")

    # Browser
    headless: bool = Field(default=True, description="Run browsers headless")
    ignore_https_errors: bool = Field(default=False, description="Ignore TLS errors")
    auth: AuthConfig = Field(default_factory=AuthConfig, description="Authentication")

    # Artifacts
    output_dir: Path = Field(default=Path("sitecheck-results"), description="Artifact directory")

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str) -> str:
        parsed = urlparse(value.strip())
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError(f"base_url must be an absolute http(s) URL, got {value!r}")
        return value.strip()

    @field_validator("engines", mode="before")
    @classmethod
    def _split_engines(cls, value):
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("engines")
    @classmethod
    def _check_engines(cls, value: List[BrowserType]) -> List[BrowserType]:
        if not value:
            raise ValueError("at least one engine is required")
        # Keep first occurrence, preserve order
        return list(dict.fromkeys(value))

    @field_validator(
        "allowed_hosts",
        "include_tests",
        "exclude_tests",
        "categories",
        mode="before",
    )
    @classmethod
    def _split_lists(cls, value):
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("include_url_patterns", "exclude_url_patterns", mode="before")
    @classmethod
    def _split_patterns(cls, value):
        # Regexes may contain commas, one pattern per line
        if isinstance(value, str):
            return [part.strip() for part in value.splitlines() if part.strip()]
        return value

    @field_validator("include_url_patterns", "exclude_url_patterns")
    @classmethod
    def _check_patterns(cls, value: List[str]) -> List[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid regex {pattern!r}: {e}") from e
        return value
