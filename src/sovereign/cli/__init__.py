"""Command-line interface for the Sovereign data engine."""

import click

from .resolve import cli as resolve_cli
from .scrape import cli as scrape_cli
from .score import cli as signals_cli


@click.group()
@click.version_option(version="0.1.0", prog_name="sovereign")
def main():
    """Sovereign - public record acquisition, resolution and prospect signals."""
    pass


main.add_command(scrape_cli, name="scrape")
main.add_command(resolve_cli, name="resolve")
main.add_command(signals_cli, name="signals")


if __name__ == "__main__":
    main()
