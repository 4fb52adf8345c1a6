"""Shared helpers for CLI commands."""

import sys
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any, TypeVar

import click

from ..config import get_settings
from ..models.jobs import JobOptions, ScraperJobResult
from ..pipeline import Pipeline, ReadModel
from ..store import open_store

T = TypeVar("T")

STATUS_COLORS = {
    "completed": "green",
    "partial": "yellow",
    "failed": "red",
}


async def with_pipeline(work: Callable[[Pipeline], Awaitable[T]]) -> T:
    """Open the configured store, build a pipeline and run ``work`` on it."""
    settings = get_settings()
    async with open_store(settings) as store:
        async with Pipeline(store, settings=settings) as pipeline:
            return await work(pipeline)


async def with_read_model(work: Callable[[ReadModel], Awaitable[T]]) -> T:
    async with open_store(get_settings()) as store:
        return await work(ReadModel(store))


def fail(error: Exception, verbose: bool = False) -> None:
    click.echo(f"Error: {error}", err=True)
    if verbose:
        import traceback
        traceback.print_exc()
    sys.exit(1)


def job_options(func):
    """Attach the scraper job options shared by `scrape run` and `scrape fleet`."""
    options = [
        click.option("--properties/--no-properties", default=True, help="Scrape assessor parcels"),
        click.option("--documents/--no-documents", default=True, help="Scrape recorder documents"),
        click.option("--court/--no-court", default=False, help="Scrape court case indexes"),
        click.option("--federal/--no-federal", default=False, help="Query SEC EDGAR and Census ACS"),
        click.option("--start-date", type=click.DateTime(["%Y-%m-%d"]), default=None, help="Earliest recording date"),
        click.option("--end-date", type=click.DateTime(["%Y-%m-%d"]), default=None, help="Latest recording date"),
        click.option("--max-records", type=int, default=None, help="Cap per adapter and phase"),
        click.option("--min-value", type=int, default=None, help="Minimum property value"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_job_options(
    properties: bool,
    documents: bool,
    court: bool,
    federal: bool,
    start_date: Any,
    end_date: Any,
    max_records: int | None,
    min_value: int | None,
) -> JobOptions:
    def _date(value) -> date | None:
        return value.date() if value else None

    return JobOptions(
        scrape_properties=properties,
        scrape_documents=documents,
        scrape_court=court,
        scrape_federal=federal,
        start_date=_date(start_date),
        end_date=_date(end_date),
        max_records=max_records,
        min_property_value=min_value,
    )


def print_job_result(result: ScraperJobResult, verbose: bool = False) -> None:
    """Print a scraper job result."""
    status = "partial" if result.partial else result.status.value
    click.echo("\n" + "=" * 40)
    click.echo(f"{result.jurisdiction_id} ", nl=False)
    click.secho(status.upper(), fg=STATUS_COLORS.get(status, "white"))
    click.echo("=" * 40)

    click.echo(f"Job: {result.job_id}")
    click.echo(f"Duration: {result.duration_seconds or 0:.1f} seconds")
    click.echo(f"Records processed: {result.records_processed}")
    click.echo(f"Records created: {result.records_created}")
    click.echo(f"Records updated: {result.records_updated}")

    if result.errors:
        click.echo(f"\nErrors: {len(result.errors)}")
        if verbose:
            for i, error in enumerate(result.errors[:10], 1):
                click.echo(f"  {i}. {error.message}")
            if len(result.errors) > 10:
                click.echo(f"  ... and {len(result.errors) - 10} more")
