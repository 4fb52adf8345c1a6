"""Shared pytest fixtures."""

import pytest
import pytest_asyncio

from sovereign.config import Settings, get_settings
from sovereign.pipeline import Pipeline
from sovereign.resolution import ResolutionEngine
from sovereign.signals import ProspectScorer, SignalService
from sovereign.sources.registry import AdapterRegistry
from sovereign.store import MemoryStore, RecordRepository

from fixtures.records import JURISDICTION_ID, make_jurisdiction


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    """Keep tests away from any local .env and database."""
    monkeypatch.setenv("SOVEREIGN_DATABASE_URL", "memory://")
    monkeypatch.setenv("SOVEREIGN_FLEET_PAUSE_SECONDS", "0")
    monkeypatch.setenv("SOVEREIGN_SKIP_TRACE_API_KEY", "")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="memory://",
        fleet_pause_seconds=0,
        fleet_max_parallel=1,
        skip_trace_api_key="",
    )


# =========================
# Store Fixtures
# =========================


@pytest_asyncio.fixture
async def store():
    """Opened in-memory store."""
    async with MemoryStore() as memory:
        yield memory


@pytest.fixture
def repository(store) -> RecordRepository:
    return RecordRepository(store)


# =========================
# Pipeline Fixtures
# =========================


@pytest.fixture
def jurisdiction():
    return make_jurisdiction()


@pytest.fixture
def registry(settings, jurisdiction) -> AdapterRegistry:
    return AdapterRegistry(
        jurisdictions={JURISDICTION_ID: jurisdiction},
        settings=settings,
        federal_factories=(),
    )


@pytest.fixture
def engine(store) -> ResolutionEngine:
    return ResolutionEngine(store)


@pytest.fixture
def signal_service(store, engine) -> SignalService:
    return SignalService(store, engine, ProspectScorer())


@pytest_asyncio.fixture
async def pipeline(store, registry, settings):
    async with Pipeline(store, registry=registry, settings=settings) as built:
        yield built
