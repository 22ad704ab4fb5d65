"""Environment resolver.

Merges layered raw configuration sources into one effective, immutable
:class:`~sitecheck.models.config_models.TestConfig`. Sources are plain
mappings supplied by the caller; reading files or the process environment is
done elsewhere (see :mod:`sitecheck.config.settings`).
"""

import logging
import re
from typing import Any, Dict, Mapping, Optional, Sequence

from pydantic import ValidationError

from ..models.config_models import TestConfig
from ..utils.errors import ConfigError
from .settings import get_preset, load_env_source

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("base_url", "engines")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", key).replace("-", "_").lower()


def merge_sources(raw_sources: Sequence[Optional[Mapping[str, Any]]]) -> Dict[str, Any]:
    """Shallow-merge sources left to right.

    Later sources override earlier ones per top-level key. Nested values such
    as ``auth`` are replaced as a whole, never merged, so credentials from two
    sources cannot end up mixed. Keys whose value is ``None`` are ignored.
    """
    merged: Dict[str, Any] = {}
    for index, source in enumerate(raw_sources):
        if source is None:
            continue
        if not isinstance(source, Mapping):
            raise ConfigError(
                "Invalid configuration source",
                [f"source #{index} is {type(source).__name__}, expected a mapping"],
            )
        for key, value in source.items():
            if value is None:
                continue
            merged[_snake_case(str(key))] = value
    return merged


def _format_validation_error(error: ValidationError) -> list:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "config"
        problems.append(f"{location}: {item.get('msg', 'invalid value')}")
    return problems


def resolve(raw_sources: Sequence[Optional[Mapping[str, Any]]]) -> TestConfig:
    """Resolve layered sources into the effective run configuration.

    Args:
        raw_sources: Mappings in increasing order of precedence

    Returns:
        Frozen TestConfig

    Raises:
        ConfigError: If required fields are absent or any field is malformed
    """
    merged = merge_sources(raw_sources)

    missing = [key for key in REQUIRED_KEYS if not merged.get(key)]
    if missing:
        raise ConfigError(
            "Missing required configuration",
            [f"{key}: field required" for key in missing],
        )

    try:
        config = TestConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError("Invalid configuration", _format_validation_error(e)) from e

    logger.info(
        f"Resolved configuration: base_url={config.base_url}, "
        f"engines={[engine.value for engine in config.engines]}, "
        f"concurrency={config.concurrency}"
    )
    return config


def resolve_environment(
    preset: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    use_env: bool = True,
) -> TestConfig:
    """Resolve preset, environment and explicit overrides, in that order.

    Args:
        preset: Name of a preset from ``PRESETS``
        overrides: Explicit values, highest precedence
        use_env: Whether to read ``SITECHECK_*`` environment variables

    Raises:
        ConfigError: On an unknown preset or an invalid result
    """
    sources = []
    if preset:
        sources.append(get_preset(preset))
    if use_env:
        sources.append(load_env_source())
    sources.append(dict(overrides or {}))
    return resolve(sources)
