"""Storage layer — append-only history of scenario runs."""

from converge.storage.run_store import RunStore

__all__ = [
    "RunStore",
]
