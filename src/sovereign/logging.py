"""Structured logging configuration for the Sovereign Data Engine.

Production runs emit one JSON object per line; development runs use a
readable text format. Everything passed through ``extra`` ends up as a
top-level key in the JSON output.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .config import get_settings

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}

_QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine")


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        payload.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable log formatter for development."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure the root logger from settings.

    Replaces any existing root handlers with a single stderr handler.
    """
    settings = get_settings()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if settings.log_format == "json" else TextFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    root.handlers = [handler]

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    get_logger(__name__).info(
        "Logging initialized",
        extra={
            "environment": settings.environment,
            "log_level": settings.log_level,
            "log_format": settings.log_format,
        },
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Merges the adapter's context into each call's ``extra``."""

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs


def get_context_logger(name: str, **context: Any) -> LoggerAdapter:
    """Get a logger with additional context.

    Usage:
        logger = get_context_logger(__name__, jurisdiction="maricopa_az", job_id="job_1")
        logger.info("Fetching parcels")  # Includes jurisdiction and job_id
    """
    return LoggerAdapter(get_logger(name), context)


# =========================
# Events
# =========================


def _event(logger_name: str, level: int, event: str, message: str, **fields: Any) -> None:
    get_logger(logger_name).log(level, message, extra={**fields, "event": event})


def log_job_start(jurisdiction_id: str, job_id: str) -> None:
    _event(
        "sovereign.scraping", logging.INFO, "job_start",
        f"Starting scraper job for {jurisdiction_id}",
        jurisdiction_id=jurisdiction_id, job_id=job_id,
    )


def log_job_complete(
    jurisdiction_id: str,
    job_id: str,
    status: str,
    records_processed: int,
    duration_seconds: float,
) -> None:
    _event(
        "sovereign.scraping", logging.INFO, "job_complete",
        f"Scraper job for {jurisdiction_id} finished: {status}",
        jurisdiction_id=jurisdiction_id,
        job_id=job_id,
        status=status,
        records_processed=records_processed,
        duration_seconds=duration_seconds,
    )


def log_job_error(jurisdiction_id: str, job_id: str, error: str) -> None:
    _event(
        "sovereign.scraping", logging.ERROR, "job_error",
        f"Scraper job error for {jurisdiction_id}: {error}",
        jurisdiction_id=jurisdiction_id, job_id=job_id, error=error,
    )


def log_job_rate_limited(jurisdiction_id: str, job_id: str, url: str | None) -> None:
    """Log that a source answered 429 during a job.

    Rate limiting is only ever visible here; the job keeps running.
    """
    _event(
        "sovereign.scraping", logging.WARNING, "job_rate_limited",
        f"Rate limited by source for {jurisdiction_id}",
        jurisdiction_id=jurisdiction_id, job_id=job_id, url=url, status="rate_limited",
    )


def log_resolution_event(
    layer: str,
    mention: str,
    matched_entity: str | None,
    confidence: float,
    outcome: str,
) -> None:
    """Log one resolution decision at debug level.

    Args:
        layer: Cascade layer that decided the outcome
        mention: Name mention being resolved
        matched_entity: Matched entity ID (if found)
        confidence: Match confidence score
        outcome: linked, seeded, household, review or skipped
    """
    _event(
        "sovereign.resolution", logging.DEBUG, "entity_resolution",
        f"Resolution {layer}: {mention} -> {matched_entity or 'no match'} ({outcome})",
        layer=layer,
        mention=mention,
        matched_entity=matched_entity,
        confidence=confidence,
        outcome=outcome,
    )


def log_merge_event(survivor_id: str, loser_id: str, records_moved: int, signals_moved: int) -> None:
    _event(
        "sovereign.resolution", logging.INFO, "entity_merge",
        f"Merged {loser_id} into {survivor_id}",
        survivor_id=survivor_id,
        loser_id=loser_id,
        records_moved=records_moved,
        signals_moved=signals_moved,
    )


def log_signal_detected(
    entity_id: str, signal_type: str, strength: str, source: str
) -> None:
    _event(
        "sovereign.signals", logging.INFO, "signal_detected",
        f"Signal {signal_type} ({strength}) for {entity_id}",
        entity_id=entity_id,
        signal_type=signal_type,
        strength=strength,
        signal_source=source,
    )
