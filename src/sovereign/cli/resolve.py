"""CLI commands for entity resolution.

Usage:
    sovereign resolve run [--jurisdiction ID]
    sovereign resolve show ENTITY_ID
    sovereign resolve review [--limit N]
    sovereign resolve approve ITEM_ID
    sovereign resolve reject ITEM_ID
    sovereign resolve merge SURVIVOR_ID LOSER_ID [--allow-household]
    sovereign resolve enrich ENTITY_ID
"""

import asyncio

import click

from ..logging import setup_logging
from .common import fail, with_pipeline, with_read_model


@click.group(name="resolve")
def cli():
    """Entity resolution commands."""
    setup_logging()


def _print_outcomes(summary: dict[str, int]) -> None:
    click.echo("\n" + "=" * 40)
    click.echo("Resolution Results")
    click.echo("=" * 40)
    for key, value in summary.items():
        click.echo(f"{key.replace('_', ' ').title()}: {value}")


@cli.command(name="run")
@click.option("--jurisdiction", default=None, help="Only records from this jurisdiction")
@click.option("--verbose", "-v", is_flag=True, help="Show traceback on error")
def run_cmd(jurisdiction: str | None, verbose: bool):
    """Resolve stored records that are not linked yet, then score touched entities.

    Examples:

        sovereign resolve run

        sovereign resolve run --jurisdiction palm_beach_fl
    """

    async def _run(pipeline):
        return await pipeline.resolve_and_score(jurisdiction)

    try:
        summary, results = asyncio.run(with_pipeline(_run))
    except Exception as e:
        fail(e, verbose)
        return

    _print_outcomes(summary.summary())
    click.echo(f"Entities scored: {len(results)}")
    click.echo(f"New signals: {sum(len(r.new_signals) for r in results)}")


@cli.command(name="show")
@click.argument("entity_id")
def show_cmd(entity_id: str):
    """Show an entity with its records and household."""

    async def _show(read_model):
        entity = await read_model.get_entity(entity_id)
        records = await read_model.records_for_entity(entity.entity_id)
        household = await read_model.household(entity.entity_id)
        return entity, records, household

    try:
        entity, records, household = asyncio.run(with_read_model(_show))
    except Exception as e:
        fail(e)
        return

    if entity.entity_id != entity_id:
        click.secho(f"{entity_id} was merged into {entity.entity_id}", fg="yellow")
    click.echo(f"\n{entity.canonical_name} ({entity.entity_id})")
    click.echo("=" * 40)
    click.echo(f"Confidence: {entity.confidence_score}")
    click.echo(f"Prospect score: {entity.prospect_score if entity.prospect_score is not None else '-'}")
    if entity.name_variants:
        click.echo(f"Variants: {', '.join(entity.name_variants)}")
    for address in entity.addresses:
        click.echo(f"Address: {address.line} {address.zip_code or ''}".rstrip())
    if entity.professional:
        click.echo(f"Professional: {entity.professional.title or ''} {entity.professional.company}".strip())

    click.echo(f"\nRecords ({len(records)}):")
    for record in records:
        click.echo(f"  {record.ref}")
    if household:
        click.echo("\nHousehold:")
        for link in household:
            click.echo(f"  {link.other(entity.entity_id)} ({link.surname or '-'})")


@cli.command(name="review")
@click.option("--limit", type=int, default=20, help="Maximum items to show")
def review_cmd(limit: int):
    """List pending review items, highest confidence first."""

    async def _list(read_model):
        return await read_model.pending_reviews(limit)

    try:
        items = asyncio.run(with_read_model(_list))
    except Exception as e:
        fail(e)
        return

    if not items:
        click.echo("No pending review items.")
        return
    for item in items:
        click.echo(
            f"{item.item_id}  {item.confidence:.2f}  {item.identity_name:<28} "
            f"-> {item.candidate_entity_id}  ({item.reason})"
        )


def _decide(item_id: str, approve: bool) -> None:
    async def _run(pipeline):
        if approve:
            return await pipeline.approve_review(item_id)
        return await pipeline.reject_review(item_id)

    try:
        result = asyncio.run(with_pipeline(_run))
    except Exception as e:
        fail(e)
        return

    verb = "Linked" if approve else "Seeded"
    click.secho(f"{verb} {item_id} -> {result.entity_id}", fg="green")
    click.echo(f"Prospect score: {result.score.score}")


@cli.command(name="approve")
@click.argument("item_id")
def approve_cmd(item_id: str):
    """Approve a review item: link the mention to the candidate entity."""
    _decide(item_id, approve=True)


@cli.command(name="reject")
@click.argument("item_id")
def reject_cmd(item_id: str):
    """Reject a review item: the mention seeds a new entity."""
    _decide(item_id, approve=False)


@cli.command(name="merge")
@click.argument("survivor_id")
@click.argument("loser_id")
@click.option("--allow-household", is_flag=True, help="Merge even when a household edge joins the two")
def merge_cmd(survivor_id: str, loser_id: str, allow_household: bool):
    """Merge LOSER_ID into SURVIVOR_ID.

    Examples:

        sovereign resolve merge ENT-1A2B3C4D5E6F ENT-0F9E8D7C6B5A
    """

    async def _run(pipeline):
        return await pipeline.merge(survivor_id, loser_id, allow_household=allow_household)

    try:
        result, score = asyncio.run(with_pipeline(_run))
    except Exception as e:
        fail(e)
        return

    click.secho(f"Merged {result.loser_id} into {result.survivor.entity_id}", fg="green")
    click.echo(f"Records moved: {result.records_moved}")
    click.echo(f"Signals moved: {result.signals_moved}")
    click.echo(f"Duplicate signals dropped: {result.signals_deduplicated}")
    click.echo(f"Prospect score: {score.score}")


@cli.command(name="enrich")
@click.argument("entity_id")
def enrich_cmd(entity_id: str):
    """Skip-trace an entity for contact details."""

    async def _run(pipeline):
        return await pipeline.enrich(entity_id)

    try:
        result = asyncio.run(with_pipeline(_run))
    except Exception as e:
        fail(e)
        return

    if result is None:
        click.secho("No skip-trace result (provider disabled or no match)", fg="yellow")
        return
    click.secho(f"Enriched {result.entity_id}", fg="green")
    click.echo(f"Prospect score: {result.score.score}")
