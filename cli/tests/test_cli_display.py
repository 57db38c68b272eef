"""Tests for cli/dialect_cli/display.py -- Rich output formatting.

Rendered output is captured via a Console writing to a StringIO buffer
rather than stderr.
"""

from __future__ import annotations

import io
from datetime import UTC, datetime

import pytest
from rich.console import Console

from dialect_cli.display import (
    _ERROR_COLOURS,
    _coloured_error_type,
    _truncate,
    display_error_records,
    display_error_summary,
    display_plugin_list,
    display_translation,
    display_type_mappings,
    records_as_json,
)
from dialect_engine.translator import (
    ErrorType,
    ReturningEmulationInfo,
    ReturningStrategy,
    StatementKind,
    TranslatedStatement,
    TranslationErrorRecord,
    TypeMapping,
    create_dialect_plugin,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _capture_console() -> tuple[Console, io.StringIO]:
    """Console writing plain text to a buffer, wide enough to avoid wrapping."""
    buf = io.StringIO()
    console = Console(file=buf, no_color=True, highlight=False, width=160)
    return console, buf


def _record(error_type: ErrorType = ErrorType.TRANSLATION, **overrides) -> TranslationErrorRecord:
    fields = {
        "timestamp": datetime(2025, 5, 15, 12, 34, 56, tzinfo=UTC),
        "dialect": "mysql",
        "original_sql": "SELECT * FROM t WHERE a = ?",
        "rewritten_sql": None,
        "error_message": "Statement has 1 placeholder(s) but 2 parameter(s) were supplied",
        "error_type": error_type,
    }
    fields.update(overrides)
    return TranslationErrorRecord(**fields)


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_error_colours(self) -> None:
        assert _ERROR_COLOURS == {"translation": "yellow", "execution": "red"}
        assert _coloured_error_type("execution") == "[red]execution[/red]"
        assert _coloured_error_type("other") == "[white]other[/white]"

    def test_truncate(self) -> None:
        assert _truncate("SELECT   a\n FROM t") == "SELECT a FROM t"
        long = "SELECT " + ", ".join(f"c{i}" for i in range(40)) + " FROM t"
        truncated = _truncate(long, width=30)
        assert len(truncated) == 30
        assert truncated.endswith("...")


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


class TestDisplayTranslation:
    def test_plain_statement(self) -> None:
        console, buf = _capture_console()
        statement = TranslatedStatement(
            original_sql="SELECT * FROM t LIMIT 5",
            sql="SELECT TOP (5) * FROM t",
            params=None,
            kind=StatementKind.DML,
            dialect="mssql",
            translated=True,
        )
        display_translation(console, statement)
        output = buf.getvalue()
        assert "mssql" in output
        assert "Translated: yes" in output
        assert "SELECT TOP (5) * FROM t" in output
        assert "Params" not in output
        assert "RETURNING emulation" not in output

    def test_pass_through_with_params(self) -> None:
        console, buf = _capture_console()
        statement = TranslatedStatement(
            original_sql="SELECT ?",
            sql="SELECT ?",
            params=[1, "[x]"],
            kind=StatementKind.DML,
        )
        display_translation(console, statement)
        output = buf.getvalue()
        assert "(pass-through)" in output
        assert "Translated: no" in output
        assert "[1, '[x]']" in output

    def test_returning_plan(self) -> None:
        console, buf = _capture_console()
        info = ReturningEmulationInfo(
            table="items",
            columns=("id", "name"),
            verb="UPDATE",
            strategy=ReturningStrategy.KEY_CAPTURE,
            key_sql='"id"',
            where_sql="name = ?",
            where_params=("a",),
        )
        statement = TranslatedStatement(
            original_sql="UPDATE items SET name = 'b' WHERE name = ? RETURNING id, name",
            sql="UPDATE items SET name = 'b' WHERE name = %s",
            params=["a"],
            kind=StatementKind.DML,
            dialect="mysql",
            returning=info,
            translated=True,
        )
        display_translation(console, statement)
        output = buf.getvalue()
        assert "RETURNING emulation" in output
        assert "key_capture" in output
        assert "id, name" in output
        assert "name = ?" in output


# ---------------------------------------------------------------------------
# Plugins and types
# ---------------------------------------------------------------------------


class TestDisplayPlugins:
    def test_empty(self) -> None:
        console, buf = _capture_console()
        display_plugin_list(console, [])
        assert "No plugins registered" in buf.getvalue()

    def test_table(self) -> None:
        console, buf = _capture_console()
        display_plugin_list(console, [create_dialect_plugin("oracle"), create_dialect_plugin("mysql")])
        output = buf.getvalue()
        assert "Dialect plugins (2)" in output
        assert "oracle-schema" in output
        assert "mysql-query" in output


class TestDisplayTypeMappings:
    def test_sorted_with_converters(self) -> None:
        console, buf = _capture_console()
        mappings = [
            TypeMapping("TEXT", "CLOB"),
            TypeMapping("BOOLEAN", "NUMBER(1)", converter=int),
        ]
        display_type_mappings(console, "oracle", mappings)
        output = buf.getvalue()
        assert "Type mappings: oracle" in output
        assert output.index("BOOLEAN") < output.index("TEXT")
        boolean_line = next(line for line in output.splitlines() if "BOOLEAN" in line)
        assert "yes" in boolean_line


# ---------------------------------------------------------------------------
# Error log
# ---------------------------------------------------------------------------


class TestDisplayErrors:
    def test_empty_summary(self) -> None:
        console, buf = _capture_console()
        display_error_summary(console, {})
        assert "No translation errors recorded" in buf.getvalue()

    def test_summary_total(self) -> None:
        console, buf = _capture_console()
        display_error_summary(console, {"oracle": 1, "mysql": 3})
        output = buf.getvalue()
        assert output.index("mysql") < output.index("oracle")
        total_line = next(line for line in output.splitlines() if "Total" in line)
        assert "4" in total_line

    def test_no_records(self) -> None:
        console, buf = _capture_console()
        display_error_records(console, "oracle", [])
        assert "No errors recorded for oracle" in buf.getvalue()

    def test_records(self) -> None:
        console, buf = _capture_console()
        records = [
            _record(),
            _record(ErrorType.EXECUTION, rewritten_sql="SELECT * FROM t WHERE a = %s", error_message="[1146] no table"),
        ]
        display_error_records(console, "mysql", records)
        output = buf.getvalue()
        assert "Errors: mysql (2)" in output
        assert "2025-05-15 12:34:56" in output
        assert "execution" in output
        assert "[1146] no table" in output

    @pytest.mark.parametrize("error_type", list(ErrorType))
    def test_records_as_json(self, error_type: ErrorType) -> None:
        document = records_as_json([_record(error_type, params=[b"\x00", 2])])[0]
        assert document["errorType"] == error_type.value
        assert document["originalSQL"] == "SELECT * FROM t WHERE a = ?"
        assert document["params"] == ["base64:AA==", 2]
