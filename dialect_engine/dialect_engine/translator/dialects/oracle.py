"""SQLite to Oracle rewriting.

Targets Oracle 19c.  There are no ``IF [NOT] EXISTS`` clauses, no boolean
SQL type, and a SELECT always needs a FROM clause.  RETURNING is emulated
by re-reading the inserted row through the ``ROWID`` the driver reports as
its last-row id.  Statements must not end with a semicolon.
"""

from __future__ import annotations

import re
from typing import Callable

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
    iif_to_case,
    json_extract_handler,
    julianday_handler,
    rename,
    scalar_extremum,
    strftime_handler,
    string_literal,
    total_to_coalesce,
    unsupported,
)
from ..lexer import QUALIFIED_PATTERN, replace_spans, statement_end
from ..pagination import PaginationStyle
from ..rules import CallSite, PatternRule, RewriteState, Rule, RuleKind, TransformRule
from ._common import (
    boolean_default_rule,
    boolean_literals_rule,
    cast_rule,
    distinct_from_rules,
    equality_operator_rule,
    function_rules,
    insert_or_abort_rule,
    null_safe_comparison_rule,
    partial_index_rule,
    plain_insert_rule,
    to_bytes,
    to_flag,
    to_json_text,
    trailing_semicolon_rule,
    upsert_warning_rule,
)

ORACLE_TYPE_MAPPINGS: tuple[TypeMapping, ...] = (
    # Integer affinity
    TypeMapping("INTEGER", "NUMBER(19)"),
    TypeMapping("INT", "NUMBER(10)"),
    TypeMapping("TINYINT", "NUMBER(3)"),
    TypeMapping("SMALLINT", "NUMBER(5)"),
    TypeMapping("MEDIUMINT", "NUMBER(7)"),
    TypeMapping("BIGINT", "NUMBER(19)"),
    TypeMapping("UNSIGNED BIG INT", "NUMBER(20)"),
    TypeMapping("INT2", "NUMBER(5)"),
    TypeMapping("INT8", "NUMBER(19)"),
    # Text affinity
    TypeMapping("TEXT", "CLOB"),
    TypeMapping("CLOB", "CLOB"),
    TypeMapping("CHARACTER", "CHAR"),
    TypeMapping("CHAR", "CHAR"),
    TypeMapping("NCHAR", "NCHAR"),
    TypeMapping("NATIVE CHARACTER", "NCHAR"),
    TypeMapping("VARCHAR", "VARCHAR2(4000)"),
    TypeMapping("VARYING CHARACTER", "VARCHAR2(4000)"),
    TypeMapping("NVARCHAR", "NVARCHAR2(2000)"),
    # Real and numeric affinity
    TypeMapping("REAL", "BINARY_DOUBLE"),
    TypeMapping("DOUBLE", "BINARY_DOUBLE"),
    TypeMapping("DOUBLE PRECISION", "BINARY_DOUBLE"),
    TypeMapping("FLOAT", "BINARY_DOUBLE"),
    TypeMapping("NUMERIC", "NUMBER"),
    TypeMapping("DECIMAL", "NUMBER"),
    # Everything else
    TypeMapping("BLOB", "BLOB", converter=to_bytes),
    TypeMapping("BOOLEAN", "NUMBER(1)", converter=to_flag),
    TypeMapping("BOOL", "NUMBER(1)", converter=to_flag),
    TypeMapping("DATE", "DATE"),
    TypeMapping("DATETIME", "TIMESTAMP"),
    TypeMapping("TIMESTAMP", "TIMESTAMP"),
    TypeMapping("TIME", "VARCHAR2(16)"),
    TypeMapping("JSON", "CLOB", converter=to_json_text),
    TypeMapping("UUID", "VARCHAR2(36)"),
)

CAST_TYPES: dict[str, str] = {
    "INTEGER": "NUMBER(19)",
    "INT": "NUMBER(10)",
    "BIGINT": "NUMBER(19)",
    "TEXT": "VARCHAR2(4000)",
    "VARCHAR": "VARCHAR2(4000)",
    "REAL": "BINARY_DOUBLE",
    "FLOAT": "BINARY_DOUBLE",
    "DOUBLE": "BINARY_DOUBLE",
    "NUMERIC": "NUMBER",
    "BLOB": "RAW(2000)",
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
    "%f": "SS.FF3",
    "%j": "DDD",
    "%W": "WW",
    "%%": "%",
}

_NOW = "CURRENT_TIMESTAMP"
_TIMESTAMP_FORMAT = "'YYYY-MM-DD HH24:MI:SS'"
_UNIX_EPOCH = "DATE '1970-01-01'"

_IS_NOT = re.compile(r"\bIS\s+NOT\b(?!\s+(?:NULL|TRUE|FALSE|DISTINCT)\b)", re.IGNORECASE)
_IS = re.compile(r"\bIS\b(?!\s+(?:NOT|NULL|TRUE|FALSE|DISTINCT)\b)", re.IGNORECASE)
_STARTS_WITH_SELECT = re.compile(r"^\s*SELECT\b", re.IGNORECASE)
_SELECT = re.compile(r"\bSELECT\b", re.IGNORECASE)
_FROM = re.compile(r"\bFROM\b", re.IGNORECASE)
_COMPOUND = re.compile(r"\b(?:UNION(?:\s+ALL)?|INTERSECT|EXCEPT|MINUS)\b", re.IGNORECASE)
_SELECT_TAIL = re.compile(r"\b(?:WHERE|GROUP\s+BY|HAVING|ORDER\s+BY|LIMIT)\b", re.IGNORECASE)
_ADD_COLUMN = re.compile(rf"^(\s*ALTER\s+TABLE\s+{QUALIFIED_PATTERN}\s+ADD)\s+(?:COLUMN\s+)?", re.IGNORECASE)
_TEMP_TABLE = re.compile(r"^(\s*CREATE\s+)TEMP(?:ORARY)?\s+TABLE\b", re.IGNORECASE)


def _moment(value: str) -> str:
    """String literals become TIMESTAMPs; columns and expressions pass through."""
    if string_literal(value) is None:
        return value
    return f"TO_TIMESTAMP({value}, {_TIMESTAMP_FORMAT})"


def _interval(amount: str, unit: str) -> str:
    amount = amount.lstrip("+")
    if unit in ("YEAR", "MONTH"):
        return f"NUMTOYMINTERVAL({amount}, '{unit}')"
    return f"NUMTODSINTERVAL({amount}, '{unit}')"


def _shift(value: str, amount: str, unit: str) -> str:
    return f"({_moment(value)} + {_interval(amount, unit)})"


def _formatted(pattern: str) -> Callable[[str], str]:
    return lambda value: f"TO_CHAR({_moment(value)}, '{pattern}')"


def _epoch_days(value: str) -> str:
    return f"(CAST({_moment(value)} AS DATE) - {_UNIX_EPOCH})"


def _listagg(expression: str, separator: str, distinct: bool) -> str:
    prefix = "DISTINCT " if distinct else ""
    return f"LISTAGG({prefix}{expression}, {separator}) WITHIN GROUP (ORDER BY NULL)"


def _json_value(document: str, path: str) -> str | None:
    if string_literal(path) is None:
        return None
    return f"JSON_VALUE({document}, {path})"


def _random(call: CallSite) -> str | None:
    return "DBMS_RANDOM.RANDOM" if not call.args else None


def _char(call: CallSite) -> str | None:
    if not call.args:
        return None
    return " || ".join(f"CHR({arg})" for arg in call.args)


class OracleSchemaRewriter(BaseSchemaRewriter):
    """SQLite DDL to Oracle 19c."""

    DIALECT = TargetDialect.ORACLE
    TYPE_MAPPINGS = ORACLE_TYPE_MAPPINGS
    FALLBACK_TYPE = "CLOB"
    IDENTITY_TYPE = "NUMBER(19) GENERATED BY DEFAULT ON NULL AS IDENTITY"
    UNINDEXABLE_TYPES = frozenset({"CLOB", "NCLOB"})
    KEY_TEXT_TYPE = "VARCHAR2(4000)"
    NOW_DEFAULTS = {
        "datetime": "CURRENT_TIMESTAMP",
        "date": "CURRENT_DATE",
        "time": "TO_CHAR(CURRENT_TIMESTAMP, 'HH24:MI:SS')",
    }

    def statement_rules(self) -> list[Rule]:
        return [
            *super().statement_rules(),
            PatternRule(
                name="if-not-exists",
                kind=RuleKind.SCHEMA,
                pattern=re.compile(r"\s+IF\s+NOT\s+EXISTS\b", re.IGNORECASE),
                replacement="",
                warning="Oracle has no IF NOT EXISTS; creating an existing object will fail",
            ),
            PatternRule(
                name="drop-if-exists",
                kind=RuleKind.SCHEMA,
                pattern=re.compile(r"^(\s*DROP\s+(?:TABLE|INDEX|VIEW|TRIGGER)\s+)IF\s+EXISTS\s+", re.IGNORECASE),
                replacement="\\1",
                warning="Oracle has no DROP ... IF EXISTS; dropping a missing object will fail",
            ),
        ]

    def default_rules(self) -> list[Rule]:
        return [*super().default_rules(), boolean_default_rule()]

    def constraint_rules(self) -> list[Rule]:
        return [
            *super().constraint_rules(),
            PatternRule(
                name="no-action",
                kind=RuleKind.SCHEMA,
                feature=Feature.FOREIGN_KEY,
                pattern=re.compile(r"\s+ON\s+(?:UPDATE|DELETE)\s+(?:RESTRICT|NO\s+ACTION)\b", re.IGNORECASE),
                replacement="",
            ),
            PatternRule(
                name="referential-actions",
                kind=RuleKind.SCHEMA,
                feature=Feature.FOREIGN_KEY,
                pattern=re.compile(
                    r"\s+(ON\s+(?:UPDATE\s+(?:CASCADE|SET\s+NULL|SET\s+DEFAULT)|DELETE\s+SET\s+DEFAULT))\b",
                    re.IGNORECASE,
                ),
                replacement="",
                warning="Oracle foreign keys do not support \\1; clause dropped",
            ),
        ]

    def index_rules(self) -> list[Rule]:
        return [partial_index_rule("Oracle")]

    def table_rules(self) -> list[Rule]:
        return [
            *super().table_rules(),
            TransformRule(
                name="temporary-table",
                kind=RuleKind.SCHEMA,
                transform=_global_temporary_table,
                trigger=_TEMP_TABLE,
            ),
            TransformRule(
                name="add-column",
                kind=RuleKind.SCHEMA,
                transform=_parenthesise_added_column,
                trigger=_ADD_COLUMN,
            ),
        ]

    def cleanup_rules(self) -> list[Rule]:
        return [trailing_semicolon_rule(RuleKind.SCHEMA)]

    def adjust_column(self, column: ColumnDef) -> ColumnDef:
        column = super().adjust_column(column)
        # DEFAULT must precede inline constraints.
        column.move_default_first()
        return column


def _global_temporary_table(state: RewriteState) -> None:
    scanned = state.scanned
    match = _TEMP_TABLE.match(scanned.masked)
    if match is None:
        return
    end = statement_end(scanned)
    edits = [
        (match.start(), match.end(), f"{match.group(1)}GLOBAL TEMPORARY TABLE"),
        (end, end, " ON COMMIT PRESERVE ROWS"),
    ]
    state.update(replace_spans(scanned.sql, edits))


def _parenthesise_added_column(state: RewriteState) -> None:
    scanned = state.scanned
    match = _ADD_COLUMN.match(scanned.masked)
    if match is None:
        return
    end = statement_end(scanned)
    definition = scanned.sql[match.end() : end].strip()
    if not definition or definition.startswith("("):
        return
    state.update(replace_spans(scanned.sql, [(match.end(1), end, f" ({definition})")]))


class OracleQueryRewriter(BaseQueryRewriter):
    """SQLite DML to Oracle 19c."""

    DIALECT = TargetDialect.ORACLE
    PLACEHOLDER_STYLE = PlaceholderStyle.NUMERIC_COLON
    PAGINATION_STYLE = PaginationStyle.OFFSET_FETCH
    RETURNING_MODE = ReturningMode.EMULATED
    INSERT_RETURNING = ReturningStrategy.ROW_LOCATOR
    ROW_KEY_SQL = "ROWID"

    def function_rules(self) -> list[Rule]:
        dialect = self.dialect
        return function_rules(
            {
                "date": date_handler(dialect, now=_NOW, cast=_formatted("YYYY-MM-DD"), shift=_shift),
                "datetime": date_handler(dialect, now=_NOW, cast=_formatted("YYYY-MM-DD HH24:MI:SS"), shift=_shift),
                "time": date_handler(dialect, now=_NOW, cast=_formatted("HH24:MI:SS"), shift=_shift),
                "strftime": strftime_handler(
                    dialect,
                    table=STRFTIME_FORMATS,
                    render=lambda value, fmt: f"TO_CHAR({_moment(value)}, {fmt})",
                    now=_NOW,
                    literal=lambda text: f'"{text}"',
                    epoch=lambda value: f"ROUND({_epoch_days(value)} * 86400)",
                ),
                "julianday": julianday_handler(dialect, now=_NOW, epoch_days=_epoch_days),
                "ifnull": rename("NVL", arity=2),
                "iif": iif_to_case,
                "group_concat": group_concat_handler(_listagg),
                "random": _random,
                "last_insert_rowid": unsupported(dialect, "use RETURNING, which is emulated through ROWID"),
                "total": total_to_coalesce(),
                "typeof": unsupported(dialect, "Oracle does not expose value storage classes"),
                "char": _char,
                "json_extract": json_extract_handler(dialect, _json_value),
                "max": scalar_extremum("GREATEST"),
                "min": scalar_extremum("LEAST"),
            }
        )

    def operator_rules(self) -> list[Rule]:
        # DECODE treats two NULLs as equal.
        return [
            cast_rule(CAST_TYPES),
            equality_operator_rule(),
            *distinct_from_rules(
                lambda a, b: f"DECODE({a}, {b}, 1, 0) = 1",
                lambda a, b: f"DECODE({a}, {b}, 0, 1) = 1",
            ),
            null_safe_comparison_rule("is-not-null-safe", _IS_NOT, lambda a, b: f"DECODE({a}, {b}, 0, 1) = 1"),
            null_safe_comparison_rule("is-null-safe", _IS, lambda a, b: f"DECODE({a}, {b}, 1, 0) = 1"),
        ]

    def statement_rules(self) -> list[Rule]:
        dialect = "Oracle"
        return [
            insert_or_abort_rule(),
            plain_insert_rule(
                "insert-or-ignore",
                r"INSERT\s+OR\s+IGNORE",
                "INSERT OR IGNORE",
                dialect,
                "so conflicting rows raise ORA-00001",
            ),
            plain_insert_rule(
                "insert-or-replace",
                r"INSERT\s+OR\s+REPLACE|REPLACE",
                "INSERT OR REPLACE",
                dialect,
                "so conflicting rows raise; use MERGE",
            ),
            upsert_warning_rule(dialect),
            PatternRule(name="except-to-minus", pattern=re.compile(r"\bEXCEPT\b", re.IGNORECASE), replacement="MINUS"),
            TransformRule(name="from-dual", transform=_from_dual, trigger=_STARTS_WITH_SELECT),
            boolean_literals_rule(),
        ]

    def cleanup_rules(self) -> list[Rule]:
        return [trailing_semicolon_rule(RuleKind.CLEANUP)]


def _from_dual(state: RewriteState) -> None:
    """Add ``FROM DUAL`` to every top-level SELECT branch that has no FROM."""
    scanned = state.scanned
    end = statement_end(scanned)
    segments = []
    cursor = 0
    for match in scanned.top_level(_COMPOUND):
        segments.append((cursor, match.start()))
        cursor = match.end()
    segments.append((cursor, end))

    edits = []
    for start, stop in segments:
        if not scanned.top_level(_SELECT, start, stop) or scanned.top_level(_FROM, start, stop):
            continue
        tail = scanned.top_level(_SELECT_TAIL, start, stop)
        at = len(scanned.sql[: tail[0].start() if tail else stop].rstrip())
        edits.append((at, at, " FROM DUAL"))
    if edits:
        state.update(replace_spans(scanned.sql, edits))


def create_plugin(
    options: PluginOptions | None = None,
    error_log: TranslationErrorLog | None = None,
) -> DialectPlugin:
    """Build the Oracle schema/query rewriter pair."""
    return DialectPlugin(
        name=TargetDialect.ORACLE.value,
        schema=OracleSchemaRewriter(options, error_log),
        query=OracleQueryRewriter(options, error_log),
    )
