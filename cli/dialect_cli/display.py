"""Rich output formatting for the starlite-dialects CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from dialect_engine.translator import (
        DialectPlugin,
        TranslatedStatement,
        TranslationErrorRecord,
        TypeMapping,
    )


# ---------------------------------------------------------------------------
# Error type colour mapping
# ---------------------------------------------------------------------------

_ERROR_COLOURS: dict[str, str] = {
    "translation": "yellow",
    "execution": "red",
}


def _coloured_error_type(error_type: str) -> str:
    colour = _ERROR_COLOURS.get(error_type, "white")
    return f"[{colour}]{error_type}[/{colour}]"


def _truncate(text: str, width: int = 60) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= width else flat[: width - 3] + "..."


# ---------------------------------------------------------------------------
# Translation result
# ---------------------------------------------------------------------------


def display_translation(console: Console, statement: TranslatedStatement) -> None:
    """Render a translated statement with its parameters and RETURNING plan.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    statement:
        Result of translating one SQLite statement.
    """
    header_lines = [
        f"[bold]Dialect:[/bold]    {statement.dialect or '(pass-through)'}",
        f"[bold]Kind:[/bold]       {statement.kind.value}",
        f"[bold]Translated:[/bold] {'yes' if statement.translated else 'no'}",
    ]
    if statement.params is not None:
        header_lines.append(f"[bold]Params:[/bold]     {escape(repr(statement.params))}")
    console.print(
        Panel(
            "\n".join(header_lines),
            title="Translation",
            border_style="blue",
        )
    )
    console.print(Panel(escape(statement.sql), title="Rewritten SQL", border_style="green"))

    info = statement.returning
    if info is None:
        return

    table = Table(title="RETURNING emulation", show_header=False, expand=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Table", escape(info.table))
    table.add_row("Columns", escape(", ".join(info.columns)) or "*")
    table.add_row("Statement", info.verb)
    table.add_row("Strategy", f"[cyan]{info.strategy.value}[/cyan]")
    table.add_row("Key", escape(info.key_sql))
    if info.where_sql is not None:
        table.add_row("Where", escape(info.where_sql))
    console.print(table)


# ---------------------------------------------------------------------------
# Plugins
# ---------------------------------------------------------------------------


def display_plugin_list(console: Console, plugins: list[DialectPlugin]) -> None:
    """Render a table of registered dialect plugins.

    Parameters
    ----------
    console:
        Rich console to write to.
    plugins:
        One bundle per registered dialect.
    """
    if not plugins:
        console.print("[dim]No plugins registered.[/dim]")
        return

    table = Table(
        title=f"Dialect plugins ({len(plugins)})",
        show_lines=False,
        pad_edge=True,
        expand=False,
    )
    table.add_column("Dialect", style="bold")
    table.add_column("Schema rewriter")
    table.add_column("Query rewriter")
    table.add_column("Type mappings", justify="right")

    for plugin in plugins:
        table.add_row(
            plugin.name,
            plugin.schema.name,
            plugin.query.name,
            str(len(plugin.type_mappings)),
        )

    console.print(table)


def display_type_mappings(console: Console, dialect: str, mappings: list[TypeMapping]) -> None:
    """Render the effective SQLite-to-target type table for *dialect*."""
    table = Table(title=f"Type mappings: {dialect}", expand=False)
    table.add_column("SQLite type", style="bold")
    table.add_column("Target type", style="cyan")
    table.add_column("Converts values")

    for mapping in sorted(mappings, key=lambda m: m.source_type):
        table.add_row(
            mapping.source_type,
            mapping.target_type,
            "[green]yes[/green]" if mapping.converter is not None else "-",
        )

    console.print(table)


# ---------------------------------------------------------------------------
# Error log
# ---------------------------------------------------------------------------


def display_error_summary(console: Console, summary: dict[str, int]) -> None:
    """Render per-dialect error counts."""
    if not summary:
        console.print("[green]No translation errors recorded.[/green]")
        return

    table = Table(title="Translation error log", expand=False)
    table.add_column("Dialect", style="bold")
    table.add_column("Errors", justify="right")

    for dialect, count in sorted(summary.items()):
        colour = "red" if count else "dim"
        table.add_row(dialect, f"[{colour}]{count}[/{colour}]")
    table.add_row("[bold]Total[/bold]", f"[bold]{sum(summary.values())}[/bold]")

    console.print(table)


def display_error_records(console: Console, dialect: str, records: list[TranslationErrorRecord]) -> None:
    """Render error log records, newest last.

    Parameters
    ----------
    console:
        Rich console to write to.
    dialect:
        Dialect whose log the records came from.
    records:
        The records to show, already limited by the caller.
    """
    if not records:
        console.print(f"[dim]No errors recorded for {dialect}.[/dim]")
        return

    table = Table(
        title=f"Errors: {dialect} ({len(records)})",
        show_lines=True,
        expand=False,
    )
    table.add_column("Time", style="dim", no_wrap=True)
    table.add_column("Type")
    table.add_column("Original SQL")
    table.add_column("Rewritten SQL")
    table.add_column("Error")

    for record in records:
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            _coloured_error_type(record.error_type.value),
            escape(_truncate(record.original_sql)),
            escape(_truncate(record.rewritten_sql)) if record.rewritten_sql else "-",
            escape(record.error_message),
        )

    console.print(table)


def records_as_json(records: list[TranslationErrorRecord]) -> list[dict[str, Any]]:
    """Serialise records with the on-disk key names."""
    return [record.model_dump(mode="json", by_alias=True) for record in records]
