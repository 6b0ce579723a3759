"""Configuration — environment settings and convergence profiles."""

from converge.config.settings import HarnessSettings, get_settings

__all__ = [
    "HarnessSettings",
    "get_settings",
]
