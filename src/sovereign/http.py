"""Rate-limited HTTP client shared by all source adapters.

Every call goes through a RateLimitPolicy. Calls through the same policy
instance are serialized and delayed; distinct policy instances (one per
source) run concurrently. No retries happen here; retry policy belongs to
the calling adapter.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

import httpx

from .config import get_settings
from .errors import FetchTimeout, HttpStatusError, NetworkError, SourceFormatError
from .logging import get_context_logger

logger = get_context_logger(__name__)


@dataclass(eq=False)
class RateLimitPolicy:
    """Per-source pacing.

    requests_per_minute is informational; pacing is enforced by the fixed
    delay applied before each dispatch.
    """

    requests_per_minute: int = 30
    delay_ms: int = 2000
    timeout_ms: int = 30_000
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    @classmethod
    def from_rpm(cls, requests_per_minute: int, timeout_ms: int = 30_000) -> "RateLimitPolicy":
        return cls(
            requests_per_minute=requests_per_minute,
            delay_ms=int(60_000 / max(requests_per_minute, 1)),
            timeout_ms=timeout_ms,
        )

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock


@dataclass
class FetchRequest:
    url: str
    method: str = "GET"
    params: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    json_body: Any = None
    form: dict[str, Any] | None = None


@dataclass
class FetchResponse:
    url: str
    status_code: int
    headers: dict[str, str]
    text: str

    def json(self) -> Any:
        try:
            return json.loads(self.text)
        except ValueError as e:
            raise SourceFormatError(f"Invalid JSON from {self.url}: {e}") from e


class RateLimitedClient:
    """HTTP client that paces and bounds every call by its policy.

    Usage:
        async with RateLimitedClient() as client:
            response = await client.fetch(FetchRequest(url=...), policy)
    """

    def __init__(
        self,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.user_agent = user_agent or settings.http_user_agent
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client with default headers."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "text/html,application/json,*/*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.9",
                },
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "RateLimitedClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def fetch(self, request: FetchRequest, policy: RateLimitPolicy) -> FetchResponse:
        """Dispatch one request under a policy.

        Raises:
            FetchTimeout: The policy deadline expired; the call was cancelled
            HttpStatusError: The source answered with status >= 400
            NetworkError: Transport failure
        """
        async with policy.lock:
            if policy.delay_ms > 0:
                await asyncio.sleep(policy.delay_ms / 1000)

            try:
                response = await asyncio.wait_for(
                    self._send(request), timeout=policy.timeout_ms / 1000
                )
            except asyncio.TimeoutError as e:
                raise FetchTimeout(
                    f"Request timed out after {policy.timeout_ms}ms", url=request.url
                ) from e
            except httpx.TimeoutException as e:
                raise FetchTimeout(f"Request timed out: {e}", url=request.url) from e
            except httpx.TransportError as e:
                raise NetworkError(f"Network error: {e}", url=request.url) from e

        if response.status_code >= 400:
            raise HttpStatusError(response.status_code, url=request.url, body=response.text)

        return FetchResponse(
            url=str(response.url),
            status_code=response.status_code,
            headers=dict(response.headers),
            text=response.text,
        )

    async def _send(self, request: FetchRequest) -> httpx.Response:
        logger.debug(f"{request.method} {request.url}")
        return await self.http_client.request(
            request.method,
            request.url,
            params=request.params,
            headers=request.headers,
            json=request.json_body,
            data=request.form,
        )

    async def get_json(
        self,
        url: str,
        policy: RateLimitPolicy,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        response = await self.fetch(
            FetchRequest(url=url, params=params, headers=headers), policy
        )
        return response.json()


async def query_arcgis(
    client: RateLimitedClient,
    service_url: str,
    policy: RateLimitPolicy,
    where: str = "1=1",
    out_fields: str = "*",
    result_record_count: int = 1000,
    result_offset: int = 0,
    order_by_fields: str | None = None,
) -> list[dict[str, Any]]:
    """Query an ArcGIS feature service layer and return attribute rows.

    Args:
        client: Rate-limited client
        service_url: Layer URL (".../FeatureServer/0")
        policy: Rate limit policy of the owning source
        where: SQL where clause
        out_fields: Comma separated field list
        result_record_count: Page size
        result_offset: Page offset
        order_by_fields: Optional ordering clause

    Returns:
        List of feature attribute dicts
    """
    params: dict[str, Any] = {
        "where": where,
        "outFields": out_fields,
        "f": "json",
        "returnGeometry": "false",
        "resultRecordCount": str(result_record_count),
        "resultOffset": str(result_offset),
    }
    if order_by_fields:
        params["orderByFields"] = order_by_fields

    data = await client.get_json(f"{service_url.rstrip('/')}/query", policy, params=params)
    if not isinstance(data, dict):
        raise SourceFormatError(f"Unexpected ArcGIS payload from {service_url}")
    if "error" in data:
        error = data["error"] or {}
        raise SourceFormatError(
            f"ArcGIS error {error.get('code')}: {error.get('message')}"
        )
    features = data.get("features")
    if not isinstance(features, list):
        raise SourceFormatError(f"ArcGIS payload from {service_url} has no features")
    return [f.get("attributes") or {} for f in features]
