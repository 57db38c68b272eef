"""SQLite to MySQL rewriting.

MySQL has no RETURNING: the clause is stripped and re-read through
``LAST_INSERT_ID()``.  ``||`` is logical OR unless ``PIPES_AS_CONCAT`` is
set, so concatenation becomes ``CONCAT()``.  Placeholders use the ``%s``
format style, which means literal ``%`` signs are doubled whenever the
statement carries parameters.
"""

from __future__ import annotations

import re

from .._registry import DialectPlugin
from .._types import (
    Feature,
    PlaceholderStyle,
    PluginOptions,
    ReturningMode,
    ReturningStrategy,
    TargetDialect,
    TypeMapping,
)
from ..base import BaseQueryRewriter, BaseSchemaRewriter, ColumnDef
from ..error_log import TranslationErrorLog
from ..functions import (
    date_handler,
    group_concat_handler,
    json_extract_handler,
    julianday_handler,
    rename,
    scalar_extremum,
    strftime_handler,
    total_to_coalesce,
    unsupported,
)
from ..lexer import IDENTIFIER_PATTERN, replace_spans, statement_end
from ..pagination import PaginationStyle
from ..rules import OperatorRule, PatternRule, RewriteState, Rule, RuleKind, TransformRule
from ..type_mapping import normalise_type
from ._common import (
    cast_rule,
    concat_function_rule,
    distinct_from_rules,
    drop_index_warning_rule,
    equality_operator_rule,
    function_rules,
    insert_or_abort_rule,
    null_safe_comparison_rule,
    partial_index_rule,
    to_bytes,
    to_flag,
    to_json_text,
)

MYSQL_TYPE_MAPPINGS: tuple[TypeMapping, ...] = (
    # Integer affinity
    TypeMapping("INTEGER", "INT"),
    TypeMapping("INT", "INT"),
    TypeMapping("TINYINT", "TINYINT"),
    TypeMapping("SMALLINT", "SMALLINT"),
    TypeMapping("MEDIUMINT", "MEDIUMINT"),
    TypeMapping("BIGINT", "BIGINT"),
    TypeMapping("UNSIGNED BIG INT", "BIGINT UNSIGNED"),
    TypeMapping("INT2", "SMALLINT"),
    TypeMapping("INT8", "BIGINT"),
    # Text affinity
    TypeMapping("TEXT", "TEXT"),
    TypeMapping("CLOB", "LONGTEXT"),
    TypeMapping("CHARACTER", "CHAR"),
    TypeMapping("CHAR", "CHAR"),
    TypeMapping("NCHAR", "CHAR"),
    TypeMapping("NATIVE CHARACTER", "CHAR"),
    TypeMapping("VARCHAR", "VARCHAR(255)"),
    TypeMapping("VARYING CHARACTER", "VARCHAR(255)"),
    TypeMapping("NVARCHAR", "VARCHAR(255)"),
    # Real and numeric affinity
    TypeMapping("REAL", "DOUBLE"),
    TypeMapping("DOUBLE", "DOUBLE"),
    TypeMapping("DOUBLE PRECISION", "DOUBLE"),
    TypeMapping("FLOAT", "DOUBLE"),
    TypeMapping("NUMERIC", "DECIMAL(65,30)"),
    TypeMapping("DECIMAL", "DECIMAL(65,30)"),
    # Everything else
    TypeMapping("BLOB", "LONGBLOB", converter=to_bytes),
    TypeMapping("BOOLEAN", "TINYINT(1)", converter=to_flag),
    TypeMapping("BOOL", "TINYINT(1)", converter=to_flag),
    TypeMapping("DATE", "DATE"),
    TypeMapping("DATETIME", "DATETIME"),
    TypeMapping("TIMESTAMP", "DATETIME"),
    TypeMapping("TIME", "TIME"),
    TypeMapping("JSON", "JSON", converter=to_json_text),
    TypeMapping("UUID", "CHAR(36)"),
)

CAST_TYPES: dict[str, str] = {
    "INTEGER": "SIGNED",
    "INT": "SIGNED",
    "BIGINT": "SIGNED",
    "TEXT": "CHAR",
    "VARCHAR": "CHAR",
    "REAL": "DOUBLE",
    "FLOAT": "DOUBLE",
    "NUMERIC": "DECIMAL(65,30)",
    "BLOB": "BINARY",
}

# strftime specifier -> DATE_FORMAT specifier
STRFTIME_FORMATS: dict[str, str] = {
    "%Y": "%Y",
    "%m": "%m",
    "%d": "%d",
    "%H": "%H",
    "%M": "%i",
    "%S": "%s",
    "%f": "%s.%f",
    "%j": "%j",
    "%w": "%w",
    "%W": "%u",
    "%%": "%%",
}

UNBOUNDED_LIMIT = "18446744073709551615"

_NOW = "CURRENT_TIMESTAMP"
_IS_NOT = re.compile(r"\bIS\s+NOT\b(?!\s+(?:NULL|TRUE|FALSE|UNKNOWN|DISTINCT)\b)", re.IGNORECASE)
_CONFLICT = re.compile(
    r"\s*\bON\s+CONFLICT\b(?:\s*\([^()]*\))?\s*DO\s+(NOTHING|UPDATE\s+SET)\b",
    re.IGNORECASE,
)
_EXCLUDED = re.compile(rf"\bexcluded\s*\.\s*({IDENTIFIER_PATTERN})", re.IGNORECASE)
_PLAIN_INSERT = re.compile(r"^(\s*)INSERT\b(?!\s+IGNORE\b)", re.IGNORECASE)
_WHERE = re.compile(r"\bWHERE\b", re.IGNORECASE)
_RETURNING = re.compile(r"\bRETURNING\b", re.IGNORECASE)


def _shift(value: str, amount: str, unit: str) -> str:
    return f"DATE_ADD({value}, INTERVAL {amount.lstrip('+')} {unit})"


def _group_concat(expression: str, separator: str, distinct: bool) -> str:
    prefix = "DISTINCT " if distinct else ""
    return f"GROUP_CONCAT({prefix}{expression} SEPARATOR {separator})"


class MySQLSchemaRewriter(BaseSchemaRewriter):
    """SQLite DDL to MySQL 8."""

    DIALECT = TargetDialect.MYSQL
    QUOTES = ("`", "`")
    TYPE_MAPPINGS = MYSQL_TYPE_MAPPINGS
    FALLBACK_TYPE = "TEXT"
    TIMESTAMP_TYPE = "DATETIME"
    UNINDEXABLE_TYPES = frozenset({"TINYTEXT", "TEXT", "MEDIUMTEXT", "LONGTEXT"})
    KEY_TEXT_TYPE = "VARCHAR(255)"
    # Expression defaults need parentheses on MySQL.
    NOW_DEFAULTS = {
        "datetime": "CURRENT_TIMESTAMP",
        "date": "(CURRENT_DATE)",
        "time": "(CURRENT_TIME)",
    }
    SUPPORTS_DEFERRABLE = False
    NATIVE_TABLE_OPTIONS = True

    def identity_column(self, column: ColumnDef) -> ColumnDef:
        column.type = self.column_type(column.source_type)
        column.sub(r"\bAUTOINCREMENT\b", "AUTO_INCREMENT")
        return column

    def adjust_column(self, column: ColumnDef) -> ColumnDef:
        column = super().adjust_column(column)
        default = column.default
        if (
            self.needs_translation(Feature.DEFAULT)
            and normalise_type(column.type) in self.UNINDEXABLE_TYPES
            and default is not None
            and default.startswith("'")
        ):
            column.sub(r"\bDEFAULT\s+'[^']*'", f"DEFAULT ({default})")
        return column

    def index_rules(self) -> list[Rule]:
        return [
            PatternRule(
                name="index-if-not-exists",
                kind=RuleKind.SCHEMA,
                feature=Feature.INDEX,
                pattern=re.compile(r"(\bINDEX)\s+IF\s+NOT\s+EXISTS\b", re.IGNORECASE),
                replacement="\\1",
                warning="MySQL has no CREATE INDEX IF NOT EXISTS; creating an existing index will fail",
            ),
            partial_index_rule("MySQL"),
            drop_index_warning_rule("MySQL"),
        ]

    def table_rules(self) -> list[Rule]:
        return [
            *super().table_rules(),
            PatternRule(
                name="temporary-table",
                kind=RuleKind.SCHEMA,
                pattern=re.compile(r"^(\s*CREATE\s+)TEMP\s+TABLE\b", re.IGNORECASE),
                replacement="\\1TEMPORARY TABLE",
            ),
        ]


class MySQLQueryRewriter(BaseQueryRewriter):
    """SQLite DML to MySQL 8."""

    DIALECT = TargetDialect.MYSQL
    QUOTES = ("`", "`")
    PLACEHOLDER_STYLE = PlaceholderStyle.FORMAT
    PAGINATION_STYLE = PaginationStyle.LIMIT_OFFSET
    UNBOUNDED_LIMIT = UNBOUNDED_LIMIT
    RETURNING_MODE = ReturningMode.EMULATED
    INSERT_RETURNING = ReturningStrategy.LAST_INSERT_ID

    def function_rules(self) -> list[Rule]:
        dialect = self.dialect
        return function_rules(
            {
                "date": date_handler(dialect, now=_NOW, cast=lambda v: f"DATE({v})", shift=_shift),
                "datetime": date_handler(dialect, now=_NOW, cast=lambda v: f"CAST({v} AS DATETIME)", shift=_shift),
                "time": date_handler(dialect, now=_NOW, cast=lambda v: f"TIME({v})", shift=_shift),
                "strftime": strftime_handler(
                    dialect,
                    table=STRFTIME_FORMATS,
                    render=lambda value, fmt: f"DATE_FORMAT({value}, {fmt})",
                    now=_NOW,
                    literal=lambda text: text,
                    epoch=lambda value: f"UNIX_TIMESTAMP({value})",
                ),
                "julianday": julianday_handler(
                    dialect,
                    now=_NOW,
                    epoch_days=lambda value: f"UNIX_TIMESTAMP({value}) / 86400.0",
                ),
                "iif": rename("IF", arity=3),
                "group_concat": group_concat_handler(_group_concat),
                "length": rename("CHAR_LENGTH", arity=1),
                "random": rename("RAND", arity=0),
                "last_insert_rowid": rename("LAST_INSERT_ID", arity=0),
                "total": total_to_coalesce(),
                "typeof": unsupported(dialect, "MySQL does not expose value storage classes"),
                "json_extract": json_extract_handler(
                    dialect,
                    lambda document, path: f"JSON_UNQUOTE(JSON_EXTRACT({document}, {path}))",
                ),
                "max": scalar_extremum("GREATEST"),
                "min": scalar_extremum("LEAST"),
            }
        )

    def operator_rules(self) -> list[Rule]:
        return [
            cast_rule(CAST_TYPES),
            concat_function_rule(),
            equality_operator_rule(),
            *distinct_from_rules(lambda a, b: f"{a} <=> {b}", lambda a, b: f"NOT ({a} <=> {b})"),
            null_safe_comparison_rule("is-not-null-safe", _IS_NOT, lambda a, b: f"NOT ({a} <=> {b})"),
            OperatorRule(
                name="is-null-safe",
                operator="IS",
                target="<=>",
                pattern=re.compile(r"\bIS\b(?!\s+(?:NOT|NULL|TRUE|FALSE|UNKNOWN|DISTINCT)\b)", re.IGNORECASE),
            ),
        ]

    def statement_rules(self) -> list[Rule]:
        return [
            insert_or_abort_rule(),
            PatternRule(
                name="insert-or-ignore",
                pattern=re.compile(r"^(\s*)INSERT\s+OR\s+IGNORE\b", re.IGNORECASE),
                replacement="\\1INSERT IGNORE",
            ),
            PatternRule(
                name="insert-or-replace",
                pattern=re.compile(r"^(\s*)INSERT\s+OR\s+REPLACE\b", re.IGNORECASE),
                replacement="\\1REPLACE",
            ),
            TransformRule(name="upsert", transform=self._upsert, trigger=_CONFLICT),
        ]

    def _upsert(self, state: RewriteState) -> None:
        scanned = state.scanned
        found = scanned.top_level(_CONFLICT)
        if not found:
            return
        match = found[0]
        edits = []
        if match.group(1).upper() == "NOTHING":
            edits.append((match.start(), match.end(), ""))
            head = _PLAIN_INSERT.match(scanned.masked)
            if head is not None:
                edits.append((head.start(), head.end(), f"{head.group(1)}INSERT IGNORE"))
        else:
            returning = scanned.top_level(_RETURNING, match.end())
            stop = returning[0].start() if returning else statement_end(scanned)
            update_end = stop
            where = scanned.top_level(_WHERE, match.end(), stop)
            if where:
                self._warn("MySQL ON DUPLICATE KEY UPDATE has no WHERE; the upsert condition is dropped")
                update_end = len(scanned.sql[: where[0].start()].rstrip())
                edits.append((update_end, stop, " " if returning else ""))
                dropped = scanned.placeholders_between(update_end, stop)
                if state.params is not None and dropped:
                    state.params = [p for i, p in enumerate(state.params) if i not in dropped]
            edits.append((match.start(), match.end(), " ON DUPLICATE KEY UPDATE"))
            for excluded in _EXCLUDED.finditer(scanned.masked, match.end(), update_end):
                column = scanned.sql[excluded.start(1) : excluded.end(1)]
                edits.append((excluded.start(), excluded.end(), f"VALUES({column})"))
        state.update(replace_spans(scanned.sql, edits))


def create_plugin(
    options: PluginOptions | None = None,
    error_log: TranslationErrorLog | None = None,
) -> DialectPlugin:
    """Build the MySQL schema/query rewriter pair."""
    return DialectPlugin(
        name=TargetDialect.MYSQL.value,
        schema=MySQLSchemaRewriter(options, error_log),
        query=MySQLQueryRewriter(options, error_log),
    )
