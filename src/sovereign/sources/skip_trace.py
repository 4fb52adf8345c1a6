"""Skip-trace enrichment: phones, emails, age and prior addresses for a person.

Without an API key configured the client returns None for every lookup.
"""

import asyncio
from datetime import datetime

from pydantic import BaseModel, Field

from ..config import Settings, get_settings
from ..errors import FetchError, SourceFormatError
from ..http import FetchRequest, RateLimitedClient, RateLimitPolicy
from ..logging import get_context_logger
from ..models.records import utcnow

logger = get_context_logger(__name__)

BATCH_SIZE = 50


class SkipTracePhone(BaseModel):
    number: str
    type: str = "unknown"
    score: float | None = None


class SkipTraceEmail(BaseModel):
    address: str
    score: float | None = None


class SkipTraceRequest(BaseModel):
    first_name: str
    last_name: str
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    parcel_id: str | None = None


class SkipTraceResult(BaseModel):
    input_name: str
    input_address: str
    phones: list[SkipTracePhone] = Field(default_factory=list)
    emails: list[SkipTraceEmail] = Field(default_factory=list)
    age: int | None = None
    relatives: list[str] = Field(default_factory=list)
    previous_addresses: list[str] = Field(default_factory=list)
    confidence: float = 0
    provider: str = "batchskiptracing"
    scraped_at: datetime = Field(default_factory=utcnow)


class SkipTraceClient:
    def __init__(
        self,
        client: RateLimitedClient,
        settings: Settings | None = None,
        policy: RateLimitPolicy | None = None,
        batch_pause_seconds: float = 2.0,
    ):
        settings = settings or get_settings()
        self.client = client
        self.api_url = settings.skip_trace_api_url.rstrip("/")
        self.api_key = settings.skip_trace_api_key
        self.policy = policy or RateLimitPolicy(requests_per_minute=60, delay_ms=0)
        self.batch_pause_seconds = batch_pause_seconds

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def lookup(self, request: SkipTraceRequest) -> SkipTraceResult | None:
        """Look up one person. Returns None when no provider is configured."""
        if not self.enabled:
            logger.debug(
                f"No skip-trace key configured, skipping {request.first_name} {request.last_name}"
            )
            return None

        response = await self.client.fetch(
            FetchRequest(
                url=f"{self.api_url}/lookup",
                method="POST",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json_body={
                    "first_name": request.first_name,
                    "last_name": request.last_name,
                    "address": request.address,
                    "city": request.city,
                    "state": request.state,
                    "zip": request.zip,
                },
            ),
            self.policy,
        )
        data = response.json()
        if not isinstance(data, dict):
            raise SourceFormatError("Skip-trace payload is not an object")

        return SkipTraceResult(
            input_name=f"{request.first_name} {request.last_name}",
            input_address=f"{request.address}, {request.city}, {request.state} {request.zip}",
            phones=[SkipTracePhone(**p) for p in data.get("phones") or []],
            emails=[SkipTraceEmail(**e) for e in data.get("emails") or []],
            age=data.get("age"),
            relatives=data.get("relatives") or [],
            previous_addresses=data.get("previous_addresses") or [],
            confidence=data.get("confidence") or 0,
        )

    async def lookup_batch(
        self, requests: list[SkipTraceRequest]
    ) -> list[SkipTraceResult | None]:
        """Look up many people in chunks, pausing between chunks.

        A failed lookup yields None in its slot; the rest of the batch proceeds.
        """
        results: list[SkipTraceResult | None] = []
        for start in range(0, len(requests), BATCH_SIZE):
            chunk = requests[start:start + BATCH_SIZE]
            outcomes = await asyncio.gather(
                *(self.lookup(request) for request in chunk), return_exceptions=True
            )
            for request, outcome in zip(chunk, outcomes):
                if isinstance(outcome, (FetchError, SourceFormatError)):
                    logger.warning(
                        f"Skip trace failed for {request.first_name} {request.last_name}: {outcome}"
                    )
                    results.append(None)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results.append(outcome)
            if start + BATCH_SIZE < len(requests):
                await asyncio.sleep(self.batch_pause_seconds)
        return results
