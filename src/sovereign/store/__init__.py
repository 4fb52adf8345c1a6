"""Durable store gateway and its implementations."""

from ..config import Settings, get_settings
from .gateway import StoreGateway, UpsertResult
from .memory import MemoryStore
from .repository import RecordRepository
from .sql import SqlStore


def open_store(settings: Settings | None = None) -> StoreGateway:
    """Build (but do not open) the gateway named by settings.database_url."""
    settings = settings or get_settings()
    if settings.database_url.startswith("memory://"):
        return MemoryStore()
    return SqlStore(settings.database_url, echo=settings.database_echo)


__all__ = [
    "MemoryStore",
    "RecordRepository",
    "SqlStore",
    "StoreGateway",
    "UpsertResult",
    "open_store",
]
