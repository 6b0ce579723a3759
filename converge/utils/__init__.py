"""converge utilities — logging setup."""

from converge.utils.logging import configure_logging

__all__ = [
    "configure_logging",
]
