"""SQLite to PostgreSQL rewriting.

PostgreSQL is the closest target: RETURNING, ``ON CONFLICT`` upserts,
``IF [NOT] EXISTS`` and partial indexes are native.  The rules below cover
types, identity columns, functions, null-safe comparisons and ``$n``
placeholders.
"""

from __future__ import annotations

import re

from .._registry import DialectPlugin
from .._types import (
    Feature,
    PlaceholderStyle,
    PluginOptions,
    ReturningMode,
    TargetDialect,
    TypeMapping,
)
from ..base import BaseQueryRewriter, BaseSchemaRewriter, ColumnDef
from ..error_log import TranslationErrorLog
from ..functions import (
    date_handler,
    group_concat_handler,
    iif_to_case,
    json_extract_handler,
    json_path,
    julianday_handler,
    rename,
    scalar_extremum,
    sql_string,
    strftime_handler,
    total_to_coalesce,
)
from ..lexer import replace_spans
from ..pagination import PaginationStyle
from ..rules import CallSite, OperatorRule, RewriteState, Rule, TransformRule
from ..type_mapping import base_type
from ._common import (
    cast_rule,
    equality_operator_rule,
    function_rules,
    insert_or_abort_rule,
    null_identity_rule,
    plain_insert_rule,
    returning_insert_point,
    to_bool,
    to_bytes,
    to_json_text,
)

POSTGRESQL_TYPE_MAPPINGS: tuple[TypeMapping, ...] = (
    # Integer affinity
    TypeMapping("INTEGER", "INTEGER"),
    TypeMapping("INT", "INTEGER"),
    TypeMapping("TINYINT", "SMALLINT"),
    TypeMapping("SMALLINT", "SMALLINT"),
    TypeMapping("MEDIUMINT", "INTEGER"),
    TypeMapping("BIGINT", "BIGINT"),
    TypeMapping("UNSIGNED BIG INT", "NUMERIC(20)"),
    TypeMapping("INT2", "SMALLINT"),
    TypeMapping("INT8", "BIGINT"),
    # Text affinity
    TypeMapping("TEXT", "TEXT"),
    TypeMapping("CLOB", "TEXT"),
    TypeMapping("CHARACTER", "CHAR"),
    TypeMapping("CHAR", "CHAR"),
    TypeMapping("NCHAR", "CHAR"),
    TypeMapping("NATIVE CHARACTER", "CHAR"),
    TypeMapping("VARCHAR", "VARCHAR"),
    TypeMapping("VARYING CHARACTER", "VARCHAR"),
    TypeMapping("NVARCHAR", "VARCHAR"),
    # Real and numeric affinity
    TypeMapping("REAL", "DOUBLE PRECISION"),
    TypeMapping("DOUBLE", "DOUBLE PRECISION"),
    TypeMapping("DOUBLE PRECISION", "DOUBLE PRECISION"),
    TypeMapping("FLOAT", "DOUBLE PRECISION"),
    TypeMapping("NUMERIC", "NUMERIC"),
    TypeMapping("DECIMAL", "DECIMAL"),
    # Everything else
    TypeMapping("BLOB", "BYTEA", converter=to_bytes),
    TypeMapping("BOOLEAN", "BOOLEAN", converter=to_bool),
    TypeMapping("BOOL", "BOOLEAN", converter=to_bool),
    TypeMapping("DATE", "DATE"),
    TypeMapping("DATETIME", "TIMESTAMP"),
    TypeMapping("TIMESTAMP", "TIMESTAMP"),
    TypeMapping("TIME", "TIME"),
    TypeMapping("JSON", "JSONB", converter=to_json_text),
    TypeMapping("UUID", "UUID"),
)

CAST_TYPES: dict[str, str] = {
    "INTEGER": "BIGINT",
    "INT": "BIGINT",
    "REAL": "DOUBLE PRECISION",
    "FLOAT": "DOUBLE PRECISION",
    "DOUBLE": "DOUBLE PRECISION",
    "BLOB": "BYTEA",
    "DATETIME": "TIMESTAMP",
}

# strftime specifier -> TO_CHAR pattern
STRFTIME_FORMATS: dict[str, str] = {
    "%Y": "YYYY",
    "%m": "MM",
    "%d": "DD",
    "%H": "HH24",
    "%M": "MI",
    "%S": "SS",
    "%f": "SS.MS",
    "%j": "DDD",
    "%W": "WW",
    "%%": "%",
}

_NOW = "CURRENT_TIMESTAMP"
_INSERT_OR_IGNORE = re.compile(r"^(\s*)INSERT\s+OR\s+IGNORE\b", re.IGNORECASE)


def _timestamp(value: str) -> str:
    return f"CAST({value} AS TIMESTAMP)"


def _shift(value: str, amount: str, unit: str) -> str:
    return f"({_timestamp(value)} + INTERVAL '{amount} {unit.lower()}')"


def _string_agg(expression: str, separator: str, distinct: bool) -> str:
    prefix = "DISTINCT " if distinct else ""
    return f"STRING_AGG({prefix}CAST({expression} AS TEXT), {separator})"


def _json_extract(document: str, path: str) -> str | None:
    parts = json_path(path)
    if parts is None:
        return None
    return f"(CAST({document} AS JSONB) #>> {sql_string('{' + ','.join(parts) + '}')})"


def _char(call: CallSite) -> str | None:
    if not call.args:
        return None
    return " || ".join(f"CHR({arg})" for arg in call.args)


def _typeof(call: CallSite) -> str | None:
    if len(call.args) != 1:
        return None
    return f"CAST(pg_typeof({call.args[0]}) AS TEXT)"


class PostgreSQLSchemaRewriter(BaseSchemaRewriter):
    """SQLite DDL to PostgreSQL."""

    DIALECT = TargetDialect.POSTGRESQL
    TYPE_MAPPINGS = POSTGRESQL_TYPE_MAPPINGS
    FALLBACK_TYPE = "TEXT"
    IDENTITY_TYPE = "SERIAL"

    def adjust_column(self, column: ColumnDef) -> ColumnDef:
        column = super().adjust_column(column)
        if self.needs_translation(Feature.DEFAULT) and base_type(column.type) == "BOOLEAN":
            column.sub(r"\bDEFAULT\s+\(?\s*0\s*\)?(?!\w)", "DEFAULT FALSE")
            column.sub(r"\bDEFAULT\s+\(?\s*1\s*\)?(?!\w)", "DEFAULT TRUE")
        return column


class PostgreSQLQueryRewriter(BaseQueryRewriter):
    """SQLite DML to PostgreSQL."""

    DIALECT = TargetDialect.POSTGRESQL
    PLACEHOLDER_STYLE = PlaceholderStyle.NUMERIC_DOLLAR
    PAGINATION_STYLE = PaginationStyle.LIMIT_OFFSET
    UNBOUNDED_LIMIT = "ALL"
    RETURNING_MODE = ReturningMode.NATIVE

    def function_rules(self) -> list[Rule]:
        dialect = self.dialect
        return function_rules(
            {
                "date": date_handler(dialect, now=_NOW, cast=lambda v: f"CAST({v} AS DATE)", shift=_shift),
                "datetime": date_handler(dialect, now=_NOW, cast=_timestamp, shift=_shift),
                "time": date_handler(dialect, now=_NOW, cast=lambda v: f"CAST({v} AS TIME)", shift=_shift),
                "strftime": strftime_handler(
                    dialect,
                    table=STRFTIME_FORMATS,
                    render=lambda value, fmt: f"TO_CHAR({_timestamp(value)}, {fmt})",
                    now=_NOW,
                    literal=lambda text: f'"{text}"',
                    epoch=lambda value: f"CAST(EXTRACT(EPOCH FROM {_timestamp(value)}) AS BIGINT)",
                ),
                "julianday": julianday_handler(
                    dialect,
                    now=_NOW,
                    epoch_days=lambda value: f"EXTRACT(EPOCH FROM {_timestamp(value)}) / 86400.0",
                ),
                "ifnull": rename("COALESCE"),
                "iif": iif_to_case,
                "group_concat": group_concat_handler(_string_agg),
                "instr": rename("STRPOS", arity=2),
                "last_insert_rowid": rename("LASTVAL", arity=0),
                "total": total_to_coalesce(),
                "typeof": _typeof,
                "char": _char,
                "json_extract": json_extract_handler(dialect, _json_extract),
                "max": scalar_extremum("GREATEST"),
                "min": scalar_extremum("LEAST"),
            }
        )

    def operator_rules(self) -> list[Rule]:
        return [
            cast_rule(CAST_TYPES),
            equality_operator_rule(),
            OperatorRule(
                name="is-not-null-safe",
                operator="IS NOT",
                target="IS DISTINCT FROM",
                pattern=re.compile(r"\bIS\s+NOT\b(?!\s+(?:NULL|TRUE|FALSE|DISTINCT)\b)", re.IGNORECASE),
            ),
            OperatorRule(
                name="is-null-safe",
                operator="IS",
                target="IS NOT DISTINCT FROM",
                pattern=re.compile(r"\bIS\b(?!\s+(?:NOT|NULL|TRUE|FALSE|DISTINCT)\b)", re.IGNORECASE),
            ),
            OperatorRule(name="like-case-insensitive", operator="LIKE", target="ILIKE"),
        ]

    def statement_rules(self) -> list[Rule]:
        return [
            insert_or_abort_rule(),
            TransformRule(name="insert-or-ignore", transform=_on_conflict_do_nothing, trigger=_INSERT_OR_IGNORE),
            plain_insert_rule(
                "insert-or-replace",
                r"INSERT\s+OR\s+REPLACE|REPLACE",
                "INSERT OR REPLACE without a conflict target",
                self.dialect,
                "so conflicting rows raise; use ON CONFLICT (...) DO UPDATE",
            ),
            null_identity_rule(self._options.returning_key_column),
        ]


def _on_conflict_do_nothing(state: RewriteState) -> None:
    scanned = state.scanned
    match = _INSERT_OR_IGNORE.match(scanned.masked)
    if match is None:
        return
    at = returning_insert_point(scanned)
    edits = [(match.start(), match.end(), f"{match.group(1)}INSERT"), (at, at, " ON CONFLICT DO NOTHING")]
    state.update(replace_spans(scanned.sql, edits))


def create_plugin(
    options: PluginOptions | None = None,
    error_log: TranslationErrorLog | None = None,
) -> DialectPlugin:
    """Build the PostgreSQL schema/query rewriter pair."""
    return DialectPlugin(
        name=TargetDialect.POSTGRESQL.value,
        schema=PostgreSQLSchemaRewriter(options, error_log),
        query=PostgreSQLQueryRewriter(options, error_log),
    )
