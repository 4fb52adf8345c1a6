"""Scraper job models: options, status, errors and result snapshots."""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .records import utcnow


class JobStatus(str, Enum):
    """Scraper job lifecycle states.

    RATE_LIMITED only appears on log events emitted while a source
    throttles the job; a job object never holds it.
    """

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"


class JobOptions(BaseModel):
    """Flat option set for one scraper job run."""

    scrape_properties: bool = True
    scrape_documents: bool = True
    scrape_court: bool = False
    scrape_federal: bool = False
    start_date: date | None = None
    end_date: date | None = None
    max_records: int | None = Field(default=None, ge=1)
    min_property_value: int | None = None


class JobError(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    context: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class ScraperJobResult(BaseModel):
    """Immutable snapshot of a finished scraper job."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    jurisdiction_id: str
    status: JobStatus
    started_at: datetime
    completed_at: datetime | None = None
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    errors: tuple[JobError, ...] = ()
    log_output: str = ""

    @computed_field
    @property
    def duration_seconds(self) -> float | None:
        """Run duration in seconds."""
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED and not self.errors

    @property
    def partial(self) -> bool:
        return self.status == JobStatus.COMPLETED and bool(self.errors)


class FleetRunResult(BaseModel):
    """Results of a fleet run, in the order jurisdictions were issued."""

    results: list[tuple[str, ScraperJobResult]] = Field(default_factory=list)
    stopped_early: bool = False

    @property
    def total_records(self) -> int:
        return sum(r.records_processed for _, r in self.results)

    def summary(self) -> dict[str, Any]:
        return {
            "total_jurisdictions": len(self.results),
            "total_records": self.total_records,
            "stopped_early": self.stopped_early,
            "by_jurisdiction": {
                jid: {
                    "status": r.status.value,
                    "records": r.records_processed,
                    "errors": len(r.errors),
                }
                for jid, r in self.results
            },
        }
