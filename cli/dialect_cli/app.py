"""starlite-dialects CLI -- Typer-based operator interface.

Translates single statements, lists the built-in dialect plugins and their
type tables, and inspects the translation error log.  Human-readable output
goes to *stderr* via Rich; rewritten SQL and ``--json`` documents go to
*stdout* so that pipelines can compose cleanly.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import typer
from rich.console import Console

from dialect_cli.display import (
    display_error_records,
    display_error_summary,
    display_plugin_list,
    display_translation,
    display_type_mappings,
    records_as_json,
)

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="starlite-dialects",
    help="Translate SQLite SQL for PostgreSQL, MySQL, Oracle and SQL Server.",
    no_args_is_help=True,
)
console = Console(stderr=True)

plugins_app = typer.Typer(
    name="plugins",
    help="Inspect the built-in dialect plugins.",
    no_args_is_help=True,
)
app.add_typer(plugins_app, name="plugins")

errors_app = typer.Typer(
    name="errors",
    help="Inspect and clear the translation error log.",
    no_args_is_help=True,
)
app.add_typer(errors_app, name="errors")

# Mutable global options populated by the Typer callback.
_log_dir: Path = Path("logs")


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    log_dir: Path = typer.Option(
        Path("logs"),
        "--log-dir",
        help="Directory holding the translation error logs.",
        envvar="STARLITE_ERROR_LOG_DIR",
    ),
) -> None:
    """Global options applied to every command."""
    global _log_dir  # noqa: PLW0603
    _log_dir = log_dir


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_param(value: str) -> Any:
    """Decode a ``--param`` value as JSON, falling back to the raw string.

    ``--param 5`` binds the integer 5, ``--param null`` binds NULL and
    ``--param abc`` binds the string ``"abc"``.
    """
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _error_log() -> Any:
    from dialect_engine.translator import TranslationErrorLog

    return TranslationErrorLog(_log_dir)


def _check_dialect(dialect: str) -> str:
    from dialect_engine.translator import DialectNotFoundError, resolve_dialect

    try:
        return resolve_dialect(dialect).value
    except DialectNotFoundError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=3) from exc


def _write_json(document: Any) -> None:
    sys.stdout.write(json.dumps(document, indent=2, default=str) + "\n")


# ---------------------------------------------------------------------------
# translate
# ---------------------------------------------------------------------------


@app.command()
def translate(
    dialect: str = typer.Argument(..., help="Target dialect: postgresql, mysql, oracle or mssql."),
    sql: str = typer.Argument(..., help="One SQLite statement."),
    param: list[str] | None = typer.Option(
        None,
        "--param",
        "-p",
        help="Bound parameter, in order.  JSON values are decoded (5, null, true).",
    ),
    strict: bool = typer.Option(False, "--strict", help="Fail on constructs without a target equivalent."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log the rules applied."),
    json_mode: bool = typer.Option(False, "--json", help="Emit the result as JSON on stdout."),
) -> None:
    """Translate one SQLite statement and print the rewritten SQL."""
    from dialect_engine.config import load_settings
    from dialect_engine.logging_config import configure_logging
    from dialect_engine.translator import TranslatorError, build_context

    name = _check_dialect(dialect)
    try:
        settings = load_settings(
            dialect=name,
            strict=strict,
            verbose=verbose,
            error_log_dir=_log_dir,
        )
    except ValueError as exc:
        console.print(f"[red]Invalid configuration: {exc}[/red]")
        raise typer.Exit(code=3) from exc

    configure_logging("INFO" if verbose else settings.log_level, structured=settings.structured_logging)

    ctx = build_context(settings, register_builtins=False)
    ctx.register_builtins([name])
    params = [_parse_param(p) for p in param] if param else None

    try:
        statement = ctx.translate(sql, params)
    except TranslatorError as exc:
        console.print(f"[red]Translation failed: {exc}[/red]")
        console.print(f"[dim]Recorded in {ctx.error_log.log_path(name)}[/dim]")
        raise typer.Exit(code=3) from exc

    if json_mode:
        info = statement.returning
        _write_json(
            {
                "dialect": statement.dialect,
                "kind": statement.kind.value,
                "sql": statement.sql,
                "params": statement.params,
                "returning": None
                if info is None
                else {
                    "table": info.table,
                    "columns": list(info.columns),
                    "verb": info.verb,
                    "strategy": info.strategy.value,
                    "key": info.key_column,
                },
            }
        )
        return

    display_translation(console, statement)
    sys.stdout.write(statement.sql + "\n")


# ---------------------------------------------------------------------------
# plugins
# ---------------------------------------------------------------------------


@plugins_app.command("list")
def plugins_list(
    json_mode: bool = typer.Option(False, "--json", help="Emit the plugin list as JSON on stdout."),
) -> None:
    """List the registered schema and query rewriters."""
    from dialect_engine.translator import TranslationContext

    ctx = TranslationContext(error_log=_error_log())
    ctx.register_builtins()
    bundles = [ctx.registry.get_dialect(name) for name in ctx.registry.dialects()]
    plugins = [bundle for bundle in bundles if bundle is not None]

    if json_mode:
        _write_json(
            {
                "schema_plugins": ctx.registry.list_schema_plugins(),
                "query_plugins": ctx.registry.list_query_plugins(),
                "dialects": [
                    {
                        "dialect": p.name,
                        "schema": p.schema.name,
                        "query": p.query.name,
                        "type_mappings": len(p.type_mappings),
                    }
                    for p in plugins
                ],
            }
        )
        return

    display_plugin_list(console, plugins)


# ---------------------------------------------------------------------------
# types
# ---------------------------------------------------------------------------


@app.command()
def types(
    dialect: str = typer.Argument(..., help="Target dialect."),
    json_mode: bool = typer.Option(False, "--json", help="Emit the mapping table as JSON on stdout."),
) -> None:
    """Show the effective SQLite-to-target type mappings of a dialect."""
    from dialect_engine.config import load_settings
    from dialect_engine.translator import create_dialect_plugin

    name = _check_dialect(dialect)
    try:
        settings = load_settings(dialect=name, error_log_dir=_log_dir)
    except ValueError as exc:
        console.print(f"[red]Invalid configuration: {exc}[/red]")
        raise typer.Exit(code=3) from exc

    plugin = create_dialect_plugin(name, settings.plugin_options())
    mappings = plugin.type_mappings

    if json_mode:
        _write_json({m.source_type: m.target_type for m in mappings})
        return

    display_type_mappings(console, name, mappings)


# ---------------------------------------------------------------------------
# errors
# ---------------------------------------------------------------------------


@errors_app.command("summary")
def errors_summary(
    json_mode: bool = typer.Option(False, "--json", help="Emit the counts as JSON on stdout."),
) -> None:
    """Count the recorded errors per dialect."""
    summary = _error_log().get_error_summary()

    if json_mode:
        _write_json(summary)
        return

    display_error_summary(console, summary)


@errors_app.command("show")
def errors_show(
    dialect: str = typer.Argument(..., help="Dialect whose log to show."),
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Show at most this many of the newest records."),
    json_mode: bool = typer.Option(False, "--json", help="Emit the records as JSON on stdout."),
) -> None:
    """Show the newest records of one dialect's error log."""
    try:
        records = _error_log().read_errors(dialect)
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=3) from exc

    records = records[-limit:]
    if json_mode:
        _write_json(records_as_json(records))
        return

    display_error_records(console, dialect, records)


@errors_app.command("clear")
def errors_clear(
    dialect: str = typer.Argument(..., help="Dialect whose log to delete."),
) -> None:
    """Delete one dialect's error log."""
    log = _error_log()
    try:
        log.clear_errors(dialect)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Failed to clear error log: {exc}[/red]")
        raise typer.Exit(code=3) from exc

    console.print(f"[green]Cleared error log for {dialect}[/green]")
