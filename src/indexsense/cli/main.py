"""
IndexSense CLI - predicate-order and index recommendations for repository queries.

Usage:
    indexsense analyze queries.yaml --changelog db/changelog/db.changelog-master.xml
    indexsense analyze queries.json -c master.xml --output db/changelog/indexes.xml --master master.xml
    indexsense indexes db/changelog/db.changelog-master.xml
    indexsense --help
"""

from __future__ import annotations

import logging
from typing import Annotated, Optional

import typer
from rich.console import Console

from indexsense import __version__
from indexsense.cli.commands import analyze as analyze_commands

app = typer.Typer(
    name="indexsense",
    help="Predicate-order and index recommendations for repository queries",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"IndexSense version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
) -> None:
    """IndexSense - query condition and index advisor."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


analyze_commands.register(app)


if __name__ == "__main__":
    app()
