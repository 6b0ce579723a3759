"""Object-storage probe — wait for a key to show up in a bucket.

The storage client stays opaque: callers pass ``head(bucket, key)``,
plain or async, that returns object metadata or raises when the key is
absent. Not-found errors keep the wait pending; anything else fails it.
"""

from typing import Any, Callable

import structlog

from converge.engine.invoke import invoke
from converge.engine.models import Observation
from converge.engine.probe import Probe

logger = structlog.get_logger()

NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})


def error_code(error: BaseException) -> str | None:
    """Best-effort error code from an object-storage client exception.

    Understands a ``code`` attribute and the botocore-style
    ``response["Error"]["Code"]`` mapping.
    """
    code = getattr(error, "code", None)
    if code is not None:
        return str(code() if callable(code) else code)
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        nested = response.get("Error", {}).get("Code")
        if nested is not None:
            return str(nested)
    return None


def is_not_found(error: BaseException) -> bool:
    if isinstance(error, (KeyError, FileNotFoundError)):
        return True
    return error_code(error) in NOT_FOUND_CODES


def object_exists_probe(
    head: Callable[[str, str], Any],
    bucket: str,
    key: str,
) -> Probe:
    """Probe that is SATISFIED once ``key`` exists in ``bucket``."""

    async def probe() -> Observation:
        try:
            metadata = await invoke(head, bucket, key)
        except Exception as e:
            if is_not_found(e):
                logger.debug("Object not found yet", bucket=bucket, key=key)
                return Observation.pending(reason=f"{key} not found in bucket {bucket}")
            return Observation.failed(reason=f"error checking {bucket}/{key}: {e}")
        return Observation.satisfied(value=metadata, reason=f"{key} present in bucket {bucket}")

    probe.__name__ = f"object_exists[{bucket}/{key}]"
    return probe
