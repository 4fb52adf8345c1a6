"""Scraper job: one execution of one jurisdiction's adapters.

Lifecycle is idle -> running -> completed | failed. Recoverable failures
(an adapter call, a malformed row, a rejected write) are appended to the
error list and processing continues. Only failures that make further
processing meaningless, such as the store becoming unavailable, fail the
job. Every run returns a ScraperJobResult; run() never raises for
source or store failures.
"""

import asyncio
import logging
import time
import uuid
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any

from ..errors import (
    FetchError,
    HttpStatusError,
    SourceFormatError,
    StoreError,
    StoreUnavailable,
)
from ..logging import (
    get_context_logger,
    log_job_complete,
    log_job_error,
    log_job_rate_limited,
    log_job_start,
)
from ..models.jobs import JobError, JobOptions, JobStatus, ScraperJobResult
from ..models.records import NormalizedRecord, RecordTable
from ..sources.base import FederalSource, SourceAdapter
from ..sources.jurisdictions import JurisdictionConfig
from ..store.gateway import StoreGateway
from ..store.repository import RecordRepository
from .run_log import JobLogHandler


def new_job_id() -> str:
    return f"job_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def _preview(row: Any, limit: int = 6) -> dict[str, Any]:
    if not isinstance(row, dict):
        return {"row": repr(row)[:200]}
    return {k: row[k] for k in list(row)[:limit]}


class ScraperJob:
    """Runs the enabled phases of one jurisdiction and upserts their records.

    A job instance runs once. Its status and counters are only mutated by
    the job itself.
    """

    def __init__(
        self,
        jurisdiction: JurisdictionConfig,
        adapters: list[SourceAdapter],
        store: StoreGateway,
        federal_sources: list[FederalSource] | None = None,
        job_id: str | None = None,
    ):
        self.jurisdiction = jurisdiction
        self.adapters = adapters
        self.federal_sources = federal_sources or []
        self.repository = RecordRepository(store)
        self.job_id = job_id or new_job_id()
        self.status = JobStatus.IDLE
        self.started_at: datetime | None = None
        self.completed_at: datetime | None = None
        self.records_processed = 0
        self.records_created = 0
        self.records_updated = 0
        self.errors: list[JobError] = []
        self.logger = get_context_logger(
            "sovereign.scraping.job", jurisdiction=jurisdiction.id, job_id=self.job_id
        )

    def log_error(self, message: str, context: dict[str, Any] | None = None) -> None:
        """Record a recoverable error and keep going."""
        self.errors.append(JobError(message=message, context=context or {}))
        self.logger.warning(message, extra={"error_context": context or {}})

    async def run(self, options: JobOptions | None = None) -> ScraperJobResult:
        """Run the job.

        Args:
            options: Phase toggles, date range and caps

        Returns:
            Snapshot of the finished job, persisted to job_results
        """
        if self.status != JobStatus.IDLE:
            raise RuntimeError(f"Job {self.job_id} has already run")
        options = options or JobOptions()

        handler = JobLogHandler(self.job_id, self.jurisdiction.id)
        package_logger = logging.getLogger("sovereign")
        package_logger.addHandler(handler)

        self.status = JobStatus.RUNNING
        self.started_at = datetime.now(timezone.utc)
        log_job_start(self.jurisdiction.id, self.job_id)
        self.logger.info(
            f"Running {self.jurisdiction.label} with {len(self.adapters)} adapters",
            extra={"options": options.model_dump(mode="json")},
        )

        try:
            phases = []
            if options.scrape_properties:
                phases.append(self._run_phase(RecordTable.PROPERTIES, options))
            if options.scrape_documents:
                phases.append(self._run_phase(RecordTable.DOCUMENTS, options))
            if options.scrape_court:
                phases.append(self._run_phase(RecordTable.COURT_CASES, options))
            if options.scrape_federal:
                phases.append(self._run_federal(options))

            outcomes = await asyncio.gather(*phases, return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome

            self.status = JobStatus.COMPLETED
        except Exception as e:
            self.status = JobStatus.FAILED
            self.errors.append(
                JobError(
                    message=f"Job failed: {e}",
                    context={"error_type": type(e).__name__, "fatal": True},
                )
            )
            log_job_error(self.jurisdiction.id, self.job_id, str(e))
            self.logger.exception("Scraper job failed")
        finally:
            self.completed_at = datetime.now(timezone.utc)
            self.logger.info(
                f"Job {self.status.value}: {self.records_processed} processed, "
                f"{self.records_created} created, {self.records_updated} updated, "
                f"{len(self.errors)} errors"
            )
            package_logger.removeHandler(handler)
            log_output = handler.text()

        result = self._snapshot(log_output)
        try:
            await self.repository.append_job_result(result)
        except StoreError as e:
            self.errors.append(
                JobError(message=f"Could not persist job result: {e}", context={"fatal": False})
            )
            result = self._snapshot(log_output)

        log_job_complete(
            self.jurisdiction.id,
            self.job_id,
            result.status.value,
            result.records_processed,
            result.duration_seconds or 0,
        )
        return result

    def _snapshot(self, log_output: str) -> ScraperJobResult:
        return ScraperJobResult(
            job_id=self.job_id,
            jurisdiction_id=self.jurisdiction.id,
            status=self.status,
            started_at=self.started_at,
            completed_at=self.completed_at,
            records_processed=self.records_processed,
            records_created=self.records_created,
            records_updated=self.records_updated,
            errors=tuple(self.errors),
            log_output=log_output,
        )

    # =========================
    # Phases
    # =========================

    def _phase_methods(self, adapter: SourceAdapter, table: RecordTable):
        if table == RecordTable.PROPERTIES:
            return adapter.fetch_properties, adapter.parse_property
        if table == RecordTable.DOCUMENTS:
            return adapter.fetch_documents, adapter.parse_document
        return adapter.fetch_court_cases, adapter.parse_court_case

    async def _run_phase(self, table: RecordTable, options: JobOptions) -> None:
        for adapter in self.adapters:
            if not adapter.serves(table):
                continue
            fetch, parse = self._phase_methods(adapter, table)
            saved = 0
            context = {"adapter": adapter.name, "phase": table.value}
            try:
                async with aclosing(fetch(options)) as rows:
                    async for row in rows:
                        if options.max_records and saved >= options.max_records:
                            break
                        try:
                            record = parse(row)
                        except SourceFormatError as e:
                            self.log_error(
                                f"Skipped malformed {table.value} row from {adapter.name}: {e}",
                                {**context, "row": _preview(e.row or row)},
                            )
                            continue
                        if await self._save(record, context):
                            saved += 1
            except HttpStatusError as e:
                if e.is_rate_limited:
                    self._rate_limited(e.url)
                self.log_error(f"{adapter.name} {table.value} fetch failed: {e}", {**context, "status_code": e.status_code})
            except FetchError as e:
                self.log_error(f"{adapter.name} {table.value} fetch failed: {e}", {**context, "url": e.url})
            except SourceFormatError as e:
                self.log_error(f"{adapter.name} returned an unreadable page: {e}", context)
            self.logger.info(f"{adapter.name}: {saved} {table.value} saved")

    async def _run_federal(self, options: JobOptions) -> None:
        params = {
            "start_date": options.start_date,
            "end_date": options.end_date,
            "limit": options.max_records,
        }
        for source in self.federal_sources:
            context = {"adapter": source.name, "phase": "federal"}
            try:
                rows = await source.fetch_by_jurisdiction_key(params)
            except StoreUnavailable:
                raise
            except Exception as e:
                self.log_error(f"{source.name} lookup failed: {e}", {**context, "error_type": type(e).__name__})
                continue

            for row in rows:
                try:
                    parsed = source.parse_row(row)
                except SourceFormatError as e:
                    self.log_error(f"Skipped malformed row from {source.name}: {e}", {**context, "row": _preview(row)})
                    continue
                if isinstance(parsed, NormalizedRecord):
                    await self._save(parsed, context)
                else:
                    await self.repository.save_demographics(self.jurisdiction.id, parsed)
                    self.logger.info(f"Updated demographics for {self.jurisdiction.label}")

    async def _save(self, record: NormalizedRecord, context: dict[str, Any]) -> bool:
        try:
            outcome = await self.repository.save(record)
        except StoreUnavailable:
            raise
        except StoreError as e:
            self.log_error(
                f"Could not store {record.TABLE.value} {record.natural_key}: {e}",
                {**context, "natural_key": record.natural_key},
            )
            return False

        self.records_processed += 1
        if outcome.created:
            self.records_created += 1
        else:
            self.records_updated += 1
        if self.records_processed % 100 == 0:
            self.logger.info(
                f"Progress: {self.records_processed} processed, "
                f"{self.records_created} created, {self.records_updated} updated, "
                f"{len(self.errors)} errors"
            )
        return True

    def _rate_limited(self, url: str | None) -> None:
        # Surfaces in logs only; the job status stays RUNNING
        log_job_rate_limited(self.jurisdiction.id, self.job_id, url)
