"""Kubernetes API watch source over httpx streaming.

Opens ``GET <collection>?watch=1`` narrowed by a field selector
(``metadata.name=<name>``) or a label selector, and yields one
WatchEvent per newline-delimited JSON line. Plugs into EventWatcher as
its EventSource.

Transport errors, 5xx and 429 raise TransientObservationError so the
watcher resubscribes; other 4xx responses raise
TerminalObservationError.
"""

import json
from typing import Any, AsyncIterator

import httpx
import structlog

from converge.engine.watch import EventType, ResourceRef, WatchEvent
from converge.exceptions import TerminalObservationError, TransientObservationError

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 30.0


def collection_path(resource: ResourceRef) -> str:
    """API path of the resource's collection.

    >>> collection_path(ResourceRef(api_version="catalog.cattle.io/v1", plural="apps",
    ...                             namespace="cattle-monitoring-system", name="rancher-monitoring"))
    '/apis/catalog.cattle.io/v1/namespaces/cattle-monitoring-system/apps'
    """
    prefix = "/api" if "/" not in resource.api_version else "/apis"
    path = f"{prefix}/{resource.api_version}"
    if resource.namespace:
        path += f"/namespaces/{resource.namespace}"
    return f"{path}/{resource.plural}"


def parse_event(line: str) -> WatchEvent | None:
    """Decode one watch line, or None for blank or unknown event types."""
    line = line.strip()
    if not line:
        return None
    raw = json.loads(line)
    try:
        event_type = EventType(raw.get("type", ""))
    except ValueError:
        logger.debug("Ignoring unknown watch event type", type=raw.get("type"))
        return None
    return WatchEvent(type=event_type, payload=raw.get("object"))


class HttpWatchSource:
    """EventSource backed by the Kubernetes watch API.

    Each call opens a new stream; closing the returned iterator closes
    the HTTP response.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout_seconds: int | None = None,
        verify: bool = True,
    ) -> None:
        """
        Args:
            client: Shared client; one is created lazily if omitted.
            base_url: API server URL, used only when creating a client.
            headers: Sent with every watch request (e.g. bearer token).
            timeout_seconds: Server-side watch timeout, sent as
                ``timeoutSeconds``. The server closes the stream after it.
            verify: TLS verification for a created client.
        """
        self._client = client
        self._base_url = base_url
        self._headers = headers or {}
        self._timeout_seconds = timeout_seconds
        self._verify = verify

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(DEFAULT_TIMEOUT, read=None),
                verify=self._verify,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def params_for(self, resource: ResourceRef) -> dict[str, Any]:
        params: dict[str, Any] = {"watch": "1"}
        if resource.field_selector:
            params["fieldSelector"] = resource.field_selector
        if resource.label_selector:
            params["labelSelector"] = resource.label_selector
        if self._timeout_seconds is not None:
            params["timeoutSeconds"] = str(self._timeout_seconds)
        return params

    def __call__(self, resource: ResourceRef) -> AsyncIterator[WatchEvent]:
        return self._stream(resource)

    async def _stream(self, resource: ResourceRef) -> AsyncIterator[WatchEvent]:
        client = await self._get_client()
        path = collection_path(resource)
        log = logger.bind(resource=resource.describe())

        try:
            async with client.stream(
                "GET",
                path,
                params=self.params_for(resource),
                headers=self._headers,
            ) as response:
                if response.status_code >= 500 or response.status_code == 429:
                    raise TransientObservationError(f"watch {path} returned HTTP {response.status_code}")
                if response.status_code >= 400:
                    await response.aread()
                    raise TerminalObservationError(
                        f"watch {path} returned HTTP {response.status_code}: {response.text[:200]}"
                    )

                log.debug("Watch stream opened")
                async for line in response.aiter_lines():
                    try:
                        event = parse_event(line)
                    except ValueError as e:
                        log.warning("Skipping undecodable watch line", error=str(e))
                        continue
                    if event is not None:
                        yield event
        except httpx.TransportError as e:
            raise TransientObservationError(f"watch {path} interrupted: {e}") from e
