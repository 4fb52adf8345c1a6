"""CLI commands for scraping jurisdictions.

Usage:
    sovereign scrape list
    sovereign scrape run JURISDICTION [--court] [--federal] [--max-records N]
    sovereign scrape fleet [--parallel N]
    sovereign scrape results [--jurisdiction ID]
"""

import asyncio

import click

from ..logging import setup_logging
from ..sources.jurisdictions import get_jurisdiction, list_jurisdictions
from .common import (
    build_job_options,
    fail,
    job_options,
    print_job_result,
    with_pipeline,
    with_read_model,
)


@click.group(name="scrape")
def cli():
    """Public record scraping commands."""
    setup_logging()


@cli.command(name="list")
def list_cmd():
    """List configured jurisdictions."""
    click.echo("\nJurisdictions")
    click.echo("=" * 60)
    for jurisdiction_id in list_jurisdictions():
        config = get_jurisdiction(jurisdiction_id)
        label = f"{config.county}, {config.state}"
        click.echo(f"{config.id:<20} {label:<24} {config.access_method}")


@cli.command(name="run")
@click.argument("jurisdiction")
@job_options
@click.option("--no-resolve", is_flag=True, help="Skip resolution and scoring")
@click.option("--verbose", "-v", is_flag=True, help="Show errors")
def run_cmd(jurisdiction: str, no_resolve: bool, verbose: bool, **kwargs):
    """Scrape one jurisdiction, then resolve and score its records.

    Examples:

        sovereign scrape run palm_beach_fl --max-records 50

        sovereign scrape run maricopa_az --court --federal
    """
    options = build_job_options(**kwargs)

    async def _run(pipeline):
        return await pipeline.run_jurisdiction(jurisdiction, options, resolve=not no_resolve)

    try:
        result = asyncio.run(with_pipeline(_run))
    except Exception as e:
        fail(e, verbose)
        return

    print_job_result(result.job, verbose)
    if result.resolution:
        click.echo(f"\nResolution: {result.resolution.summary()}")
        click.echo(f"Entities scored: {len(result.signals)}")


@cli.command(name="fleet")
@job_options
@click.option("--parallel", type=int, default=None, help="Jurisdictions run at once (default: sequential)")
@click.option("--no-resolve", is_flag=True, help="Skip resolution and scoring")
@click.option("--verbose", "-v", is_flag=True, help="Show errors")
def fleet_cmd(parallel: int | None, no_resolve: bool, verbose: bool, **kwargs):
    """Scrape every configured jurisdiction."""
    options = build_job_options(**kwargs)

    async def _run(pipeline):
        return await pipeline.run_fleet(options, parallel=parallel, resolve=not no_resolve)

    try:
        fleet, runs = asyncio.run(with_pipeline(_run))
    except Exception as e:
        fail(e, verbose)
        return

    for run in runs:
        print_job_result(run.job, verbose)
    summary = fleet.summary()
    click.echo(f"\nTotal records: {summary['total_records']}")
    if fleet.stopped_early:
        click.secho("Fleet stopped before every jurisdiction ran", fg="yellow")


@cli.command(name="results")
@click.option("--jurisdiction", default=None, help="Filter by jurisdiction id")
@click.option("--limit", type=int, default=20, help="Maximum results to show")
def results_cmd(jurisdiction: str | None, limit: int):
    """Show recent scraper job results."""

    async def _list(read_model):
        return await read_model.list_job_results(jurisdiction)

    try:
        results = asyncio.run(with_read_model(_list))
    except Exception as e:
        fail(e)
        return

    if not results:
        click.echo("No job results found.")
        return
    for result in results[-limit:]:
        status = "partial" if result.partial else result.status.value
        click.echo(
            f"{result.started_at:%Y-%m-%d %H:%M}  {result.jurisdiction_id:<16} "
            f"{status:<10} {result.records_processed:>6} records  {len(result.errors)} errors"
        )
