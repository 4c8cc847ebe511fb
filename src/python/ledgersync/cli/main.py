"""ledgersync CLI entry point."""

from __future__ import annotations

from pathlib import Path

import click

from ledgersync.__version__ import __version__
from ledgersync.cli.card import card, card_tx
from ledgersync.cli.imports import import_statement
from ledgersync.cli.legacy import legacy
from ledgersync.cli.sync import sync


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="ledgersync")
@click.option(
    "--local-db",
    "local_db_path",
    type=click.Path(path_type=Path),
    help="Path to the local queue database.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    help="Path to the JSON config file.",
)
@click.pass_context
def main(ctx: click.Context, local_db_path: Path | None, config_path: Path | None) -> None:
    """ledgersync CLI entry point."""
    ctx.obj = {
        "local_db_path": local_db_path,
        "config_path": config_path,
    }


main.add_command(sync)
main.add_command(card)
main.add_command(card_tx)
main.add_command(import_statement)
main.add_command(legacy)


if __name__ == "__main__":
    main()
