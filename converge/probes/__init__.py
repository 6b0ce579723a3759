"""Probes — conditions and fetchers for common remote-state checks."""

from converge.probes.conditions import (
    collection_empty,
    field_equals,
    named_item_state,
    ready_condition,
    summary_state,
)
from converge.probes.http import HttpJsonProbe
from converge.probes.kube_watch import HttpWatchSource
from converge.probes.objects import object_exists_probe

__all__ = [
    "HttpJsonProbe",
    "HttpWatchSource",
    "collection_empty",
    "field_equals",
    "named_item_state",
    "object_exists_probe",
    "ready_condition",
    "summary_state",
]
