"""Typer CLI entry point for db-testsets."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from db_testsets.builder import SqlScriptTestSetBuilder
from db_testsets.config import DatabaseConfig
from db_testsets.registry import TestSetRegistry
from db_testsets.testset import SqlScriptTestSet

app = typer.Typer(add_completion=False, help="Apply and inspect database test sets.")
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


@app.command()
def split(
    script: Annotated[Path, typer.Argument(help="Path to a SQL script.")],
) -> None:
    """Show the batches a SQL script is split into on GO separators."""
    try:
        test_set = SqlScriptTestSet()
        test_set.add_sql_script(script.name, script.read_text(encoding="utf-8"))

        table = Table(title=f"Batches in {script.name}")
        table.add_column("#", style="dim", width=6)
        table.add_column("Lines", justify="right")
        table.add_column("Starts with")

        for part in test_set.parts:
            table.add_row(
                str(part.part_number),
                str(len(part.contents.strip().splitlines())),
                _first_line(part.contents),
            )
        console.print(table)
        if not test_set.parts:
            console.print("[dim]The script contains no statements.[/dim]")
    except Exception as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from None


@app.command()
def apply(
    directory: Annotated[Path, typer.Argument(help="Folder containing *.sql scripts.")],
    match: Annotated[
        Optional[str],
        typer.Option("--match", help="Only use scripts whose relative name contains this text."),
    ] = None,
    url: Annotated[
        Optional[str],
        typer.Option("--url", help="SQLAlchemy URL; defaults to the DBTS_* environment."),
    ] = None,
    atomic: Annotated[
        Optional[bool],
        typer.Option("--atomic/--no-atomic", help="Apply all scripts in one transaction."),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log every batch.")] = False,
) -> None:
    """Apply the SQL scripts under DIRECTORY, in name order, as one test set."""
    _configure_logging(verbose)
    try:
        builder = SqlScriptTestSetBuilder.from_directory(directory)
        if match:
            builder.with_names_matching(lambda name: match in name)
        else:
            builder.all()
        test_set = builder.build()
        if not test_set.parts:
            console.print("[bold red]Error:[/bold red] No SQL statements found.")
            raise typer.Exit(code=1)

        config = DatabaseConfig.from_env()
        connection_string = url or config.connection_string()
        registry = TestSetRegistry(
            connection_string,
            atomic_apply=config.atomic_apply if atomic is None else atomic,
        )
        registry.apply(test_set)

        console.print(
            f"[green]Applied[/green] {len(test_set.parts)} batch(es) from "
            f"{len(test_set.script_names)} script(s)."
        )
    except typer.Exit:
        raise
    except Exception as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from None


def main() -> None:
    """Console-script entry point."""
    app()
