"""Scraper jobs and the fleet orchestrator."""

from .fleet import FleetOrchestrator
from .job import ScraperJob, new_job_id

__all__ = ["FleetOrchestrator", "ScraperJob", "new_job_id"]
