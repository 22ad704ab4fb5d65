"""Configuration sources: environment variables and named presets."""

import os
from typing import Any, Dict

from dotenv import load_dotenv

from ..utils.errors import ConfigError

# Load environment variables from .env file
load_dotenv()

ENV_PREFIX = "SITECHECK_"

# Environment variable suffix -> (config key, parser)
ENV_FIELDS = {
    "BASE_URL": ("base_url", str),
    "ENGINES": ("engines", str),
    "CONCURRENCY": ("concurrency", int),
    "TIMEOUT_MS": ("timeout_ms", int),
    "UNIT_TIMEOUT_MS": ("unit_timeout_ms", int),
    "NAVIGATION_DELAY_MS": ("navigation_delay_ms", int),
    "VISUAL_DIFF_THRESHOLD": ("visual_diff_threshold", float),
    "PIXEL_TOLERANCE": ("pixel_tolerance", int),
    "UPDATE_BASELINES": ("update_baselines", lambda v: v.lower() == "true"),
    "MAX_DEPTH": ("max_depth", int),
    "MAX_PAGES": ("max_pages", int),
    "MAX_ELEMENTS_PER_PAGE": ("max_elements_per_page", int),
    "ALLOWED_HOSTS": ("allowed_hosts", str),
    "INCLUDE_URL_PATTERNS": ("include_url_patterns", str),
    "EXCLUDE_URL_PATTERNS": ("exclude_url_patterns", str),
    "INCLUDE_TESTS": ("include_tests", str),
    "EXCLUDE_TESTS": ("exclude_tests", str),
    "CATEGORIES": ("categories", str),
    "HEADLESS": ("headless", lambda v: v.lower() == "true"),
    "OUTPUT_DIR": ("output_dir", str),
}

PRESETS: Dict[str, Dict[str, Any]] = {
    "smoke": {
        "engines": ["chromium"],
        "max_depth": 0,
        "max_pages": 10,
        "max_elements_per_page": 10,
        "categories": ["functional"],
        "timeout_ms": 15000,
    },
    "standard": {
        "engines": ["chromium"],
        "max_depth": 2,
        "max_pages": 50,
        "concurrency": 4,
    },
    "full": {
        "engines": ["chromium", "firefox", "webkit"],
        "max_depth": 3,
        "max_pages": 200,
        "max_elements_per_page": 100,
        "concurrency": 6,
    },
    "ci": {
        "engines": ["chromium"],
        "max_depth": 2,
        "max_pages": 100,
        "concurrency": 2,
        "headless": True,
        "timeout_ms": 45000,
    },
}


def get_preset(name: str) -> Dict[str, Any]:
    """Return a copy of a named preset.

    Raises:
        ConfigError: If the preset does not exist
    """
    try:
        return dict(PRESETS[name])
    except KeyError:
        raise ConfigError(
            "Unknown preset", [f"{name!r} is not one of {sorted(PRESETS)}"]
        ) from None


def _auth_from_env() -> Dict[str, Any]:
    auth: Dict[str, Any] = {}
    for key in ("mode", "username", "password", "token", "header_name", "login_url"):
        value = os.getenv(f"{ENV_PREFIX}AUTH_{key.upper()}")
        if value is not None:
            auth[key] = value
    return auth


def load_env_source() -> Dict[str, Any]:
    """Build a raw configuration source from ``SITECHECK_*`` variables.

    Only variables that are set appear in the result, so the source never
    masks values from earlier sources with defaults.

    Raises:
        ConfigError: If a variable cannot be parsed
    """
    source: Dict[str, Any] = {}
    problems = []
    for suffix, (key, parse) in ENV_FIELDS.items():
        raw = os.getenv(f"{ENV_PREFIX}{suffix}")
        if raw is None or raw == "":
            continue
        try:
            source[key] = parse(raw)
        except ValueError:
            problems.append(f"{ENV_PREFIX}{suffix}: cannot parse {raw!r}")

    if problems:
        raise ConfigError("Invalid environment configuration", problems)

    auth = _auth_from_env()
    if auth:
        source["auth"] = auth
    return source
