"""Configuration resolution for sitecheck."""

from .environment import merge_sources, resolve, resolve_environment
from .settings import PRESETS, get_preset, load_env_source

__all__ = [
    "merge_sources",
    "resolve",
    "resolve_environment",
    "PRESETS",
    "get_preset",
    "load_env_source",
]
