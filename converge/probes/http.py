"""HTTP JSON probe for REST-style management APIs.

One GET per probe call. Response classification:

  - transport errors, timeouts, 5xx, 404, 408, 429 -> PENDING (look again)
  - 401 / 403 and any other 4xx                    -> FAILED (will not improve)
  - 2xx -> JSON body evaluated by the Condition

Usage:
    probe = HttpJsonProbe(
        "/v1/provisioning.cattle.io.clusters/fleet-default/c-1",
        field_equals("status.ready", True),
        base_url="https://rancher.example",
        headers={"Authorization": f"Bearer {token}"},
    )
    Poll(lambda ctx: probe(), interval_seconds=30, timeout_seconds=900)
"""

from typing import Any

import httpx
import structlog

from converge.engine.models import Observation
from converge.engine.probe import Condition

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 30.0

_PENDING_STATUSES = frozenset({404, 408, 429})


class HttpJsonProbe:
    """Async probe that GETs a JSON document and evaluates a Condition.

    Pass ``client`` to share a connection pool (or a MockTransport in
    tests); otherwise the probe owns a lazily created client and
    ``close()`` releases it.
    """

    def __init__(
        self,
        url: str,
        condition: Condition,
        client: httpx.AsyncClient | None = None,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        verify: bool = True,
    ) -> None:
        self._url = url
        self._condition = condition
        self._client = client
        self._owns_client = client is None
        self._base_url = base_url
        self._headers = headers or {}
        self._params = params or {}
        self._timeout = timeout
        self._verify = verify
        self.__name__ = f"GET {url}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                verify=self._verify,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __call__(self) -> Observation:
        client = await self._get_client()
        try:
            response = await client.get(self._url, headers=self._headers, params=self._params)
        except httpx.TimeoutException as e:
            return Observation.pending(reason=f"timeout: {e}")
        except httpx.TransportError as e:
            return Observation.pending(reason=f"{type(e).__name__}: {e}")

        status = response.status_code
        if status >= 500 or status in _PENDING_STATUSES:
            logger.debug("Probe got retryable status", url=self._url, status_code=status)
            return Observation.pending(reason=f"HTTP {status}")
        if status >= 400:
            return Observation.failed(reason=f"HTTP {status} from {self._url}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as e:
            return Observation.pending(reason=f"response is not JSON yet: {e}")
        return self._condition.evaluate(body)

    @property
    def condition(self) -> Condition:
        return self._condition

    @property
    def url(self) -> str:
        return self._url
