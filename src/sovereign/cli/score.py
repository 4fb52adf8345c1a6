"""CLI commands for signals and prospect scores.

Usage:
    sovereign signals list ENTITY_ID
    sovereign signals process ENTITY_ID
    sovereign signals top [--min-score N] [--limit N]
"""

import asyncio

import click

from ..logging import setup_logging
from .common import fail, with_pipeline, with_read_model

STRENGTH_COLORS = {
    "very_high": "green",
    "high": "cyan",
    "medium": "yellow",
    "low": "white",
}


@click.group(name="signals")
def cli():
    """Signal detection and prospect scoring commands."""
    setup_logging()


@cli.command(name="list")
@click.argument("entity_id")
def list_cmd(entity_id: str):
    """List the signals attached to an entity."""

    async def _list(read_model):
        return await read_model.list_signals(entity_id)

    try:
        signals = asyncio.run(with_read_model(_list))
    except Exception as e:
        fail(e)
        return

    if not signals:
        click.echo("No signals.")
        return
    for signal in signals:
        click.echo(f"{signal.detected_at:%Y-%m-%d}  ", nl=False)
        click.secho(
            f"{signal.signal_type.value:<22}",
            fg=STRENGTH_COLORS.get(signal.strength.value, "white"),
            nl=False,
        )
        click.echo(f" {signal.strength.value:<10} {signal.description}")


@cli.command(name="process")
@click.argument("entity_id")
@click.option("--rescore-only", is_flag=True, help="Recompute the score without detection")
def process_cmd(entity_id: str, rescore_only: bool):
    """Re-run signal detection for an entity and recompute its score.

    Examples:

        sovereign signals process ENT-1A2B3C4D5E6F

        sovereign signals process ENT-1A2B3C4D5E6F --rescore-only
    """

    async def _run(pipeline):
        if rescore_only:
            return None, await pipeline.signals.rescore(entity_id)
        result = await pipeline.signals.process(entity_id)
        return result, result.score

    try:
        result, score = asyncio.run(with_pipeline(_run))
    except Exception as e:
        fail(e)
        return

    click.echo("\n" + "=" * 40)
    click.echo(f"Prospect score for {score.entity_id}: ", nl=False)
    click.secho(f"{score.score}", fg="green" if score.score >= 50 else "yellow")
    click.echo("=" * 40)
    if result is not None:
        click.echo(f"New signals: {len(result.new_signals)}")
    for signal_type, contribution in sorted(
        score.signal_contributions.items(), key=lambda kv: -kv[1]
    ):
        click.echo(f"  {signal_type:<22} {contribution:6.2f}")


@cli.command(name="top")
@click.option("--min-score", type=float, default=None, help="Minimum prospect score")
@click.option("--limit", type=int, default=25, help="Maximum entities to show")
def top_cmd(min_score: float | None, limit: int):
    """List entities with the highest prospect scores."""

    async def _list(read_model):
        return await read_model.list_entities(min_score=min_score, limit=limit)

    try:
        entities = asyncio.run(with_read_model(_list))
    except Exception as e:
        fail(e)
        return

    if not entities:
        click.echo("No entities found.")
        return
    for entity in entities:
        score = entity.prospect_score if entity.prospect_score is not None else 0.0
        click.echo(f"{score:6.1f}  {entity.entity_id}  {entity.canonical_name}")
