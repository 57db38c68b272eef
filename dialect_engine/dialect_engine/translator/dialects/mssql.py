"""SQLite to SQL Server rewriting.

Targets SQL Server 2022 (``GREATEST``/``LEAST`` and ``IS [NOT] DISTINCT
FROM`` are used).  RETURNING becomes an ``OUTPUT`` clause, identifiers are
bracket-quoted and pagination uses ``TOP`` or ``OFFSET ... FETCH``.

``||`` is rewritten to ``+``, which adds instead of concatenating when both
operands are numeric.  Cast such operands to NVARCHAR in the source query.
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
from ..base import BaseQueryRewriter, BaseSchemaRewriter
from ..error_log import TranslationErrorLog
from ..functions import (
    Handler,
    date_handler,
    group_concat_handler,
    json_extract_handler,
    julianday_handler,
    rename,
    scalar_extremum,
    strftime_handler,
    string_literal,
    total_to_coalesce,
)
from ..lexer import IDENTIFIER_PATTERN, QUALIFIED_PATTERN, replace_spans, unquote_identifier
from ..pagination import PaginationStyle
from ..rules import CallSite, OperatorRule, PatternRule, RewriteState, Rule, RuleKind, TransformRule, quote_identifier
from ._common import (
    boolean_default_rule,
    boolean_literals_rule,
    cast_rule,
    drop_index_warning_rule,
    equality_operator_rule,
    function_rules,
    insert_or_abort_rule,
    null_identity_rule,
    plain_insert_rule,
    to_bytes,
    to_flag,
    to_json_text,
    upsert_warning_rule,
)

MSSQL_TYPE_MAPPINGS: tuple[TypeMapping, ...] = (
    # Integer affinity
    TypeMapping("INTEGER", "INT"),
    TypeMapping("INT", "INT"),
    TypeMapping("TINYINT", "TINYINT"),
    TypeMapping("SMALLINT", "SMALLINT"),
    TypeMapping("MEDIUMINT", "INT"),
    TypeMapping("BIGINT", "BIGINT"),
    TypeMapping("UNSIGNED BIG INT", "DECIMAL(20,0)"),
    TypeMapping("INT2", "SMALLINT"),
    TypeMapping("INT8", "BIGINT"),
    # Text affinity
    TypeMapping("TEXT", "NVARCHAR(MAX)"),
    TypeMapping("CLOB", "NVARCHAR(MAX)"),
    TypeMapping("CHARACTER", "NCHAR"),
    TypeMapping("CHAR", "NCHAR"),
    TypeMapping("NCHAR", "NCHAR"),
    TypeMapping("NATIVE CHARACTER", "NCHAR"),
    TypeMapping("VARCHAR", "NVARCHAR(255)"),
    TypeMapping("VARYING CHARACTER", "NVARCHAR(255)"),
    TypeMapping("NVARCHAR", "NVARCHAR(255)"),
    # Real and numeric affinity
    TypeMapping("REAL", "FLOAT"),
    TypeMapping("DOUBLE", "FLOAT"),
    TypeMapping("DOUBLE PRECISION", "FLOAT"),
    TypeMapping("FLOAT", "FLOAT"),
    TypeMapping("NUMERIC", "NUMERIC"),
    TypeMapping("DECIMAL", "DECIMAL"),
    # Everything else
    TypeMapping("BLOB", "VARBINARY(MAX)", converter=to_bytes),
    TypeMapping("BOOLEAN", "BIT", converter=to_flag),
    TypeMapping("BOOL", "BIT", converter=to_flag),
    TypeMapping("DATE", "DATE"),
    TypeMapping("DATETIME", "DATETIME2"),
    TypeMapping("TIMESTAMP", "DATETIME2"),
    TypeMapping("TIME", "TIME"),
    TypeMapping("JSON", "NVARCHAR(MAX)", converter=to_json_text),
    TypeMapping("UUID", "UNIQUEIDENTIFIER"),
)

CAST_TYPES: dict[str, str] = {
    "INTEGER": "BIGINT",
    "TEXT": "NVARCHAR(MAX)",
    "VARCHAR": "NVARCHAR(MAX)",
    "REAL": "FLOAT",
    "DOUBLE": "FLOAT",
    "BLOB": "VARBINARY(MAX)",
    "BOOLEAN": "BIT",
    "DATETIME": "DATETIME2",
}

# strftime specifier -> FORMAT() pattern
STRFTIME_FORMATS: dict[str, str] = {
    "%Y": "yyyy",
    "%m": "MM",
    "%d": "dd",
    "%H": "HH",
    "%M": "mm",
    "%S": "ss",
    "%f": "ss.fff",
    "%%": "\\%",
}

_NOW = "SYSDATETIME()"
_UNIX_EPOCH = "'1970-01-01'"
# SUBSTRING requires a length; this covers any NVARCHAR(MAX) value.
_MAX_LENGTH = "2147483647"

_CREATE_TABLE_HEAD = re.compile(
    r"^(?P<lead>\s*)CREATE\s+(?P<temp>(?:TEMP|TEMPORARY)\s+)?TABLE\s+(?P<guard>IF\s+NOT\s+EXISTS\s+)?"
    rf"(?P<name>{QUALIFIED_PATTERN})",
    re.IGNORECASE,
)
_CREATE_INDEX_GUARDED = re.compile(
    r"^(?P<lead>\s*)(?P<create>CREATE\s+(?:UNIQUE\s+)?INDEX)\s+IF\s+NOT\s+EXISTS\s+"
    rf"(?P<name>{QUALIFIED_PATTERN})\s+ON\s+(?P<table>{QUALIFIED_PATTERN})",
    re.IGNORECASE,
)
_RENAME = re.compile(
    rf"^\s*ALTER\s+TABLE\s+(?P<table>{QUALIFIED_PATTERN})\s+RENAME\s+"
    rf"(?:TO\s+(?P<new_table>{IDENTIFIER_PATTERN})"
    rf"|(?:COLUMN\s+)?(?P<column>{IDENTIFIER_PATTERN})\s+TO\s+(?P<new_column>{IDENTIFIER_PATTERN}))"
    r"\s*;?\s*$",
    re.IGNORECASE,
)
_PLAIN_NAME = re.compile(r"[A-Za-z_][\w$]*")


def _plain(name_sql: str) -> str:
    """``"dbo"."users"`` to ``dbo.users``."""
    return ".".join(unquote_identifier(part) for part in re.findall(IDENTIFIER_PATTERN, name_sql))


def _n_string(value: str) -> str:
    return "N'" + value.replace("'", "''") + "'"


def _datetime2(value: str) -> str:
    return f"CAST({value} AS DATETIME2)"


def _shift(value: str, amount: str, unit: str) -> str:
    return f"DATEADD({unit}, {amount.lstrip('+')}, {_datetime2(value)})"


def _string_agg(expression: str, separator: str, distinct: bool) -> str:
    return f"STRING_AGG(CAST({expression} AS NVARCHAR(MAX)), {separator})"


_STRING_AGG: Handler = group_concat_handler(_string_agg)


def _group_concat(call: CallSite) -> str | None:
    if call.args and re.match(r"DISTINCT\s", call.args[0], re.IGNORECASE):
        call.warn("STRING_AGG has no DISTINCT on SQL Server; deduplicate in a subquery")
        return None
    return _STRING_AGG(call)


def _instr(call: CallSite) -> str | None:
    if len(call.args) != 2:
        return None
    text, needle = call.args
    call.reorder(1, 0)
    return f"CHARINDEX({needle}, {text})"


def _substr(call: CallSite) -> str | None:
    if len(call.args) == 3:
        return f"SUBSTRING({', '.join(call.args)})"
    if len(call.args) == 2:
        text, start = call.args
        return f"SUBSTRING({text}, {start}, {_MAX_LENGTH})"
    return None


def _random(call: CallSite) -> str | None:
    return "CHECKSUM(NEWID())" if not call.args else None


def _round(call: CallSite) -> str | None:
    """SQL Server's ROUND requires the precision argument."""
    if len(call.args) != 1:
        return None
    return f"ROUND({call.args[0]}, 0)"


def _typeof(call: CallSite) -> str | None:
    if len(call.args) != 1:
        return None
    return f"CAST(SQL_VARIANT_PROPERTY({call.args[0]}, 'BaseType') AS NVARCHAR(128))"


def _char(call: CallSite) -> str | None:
    if not call.args:
        return None
    return " + ".join(f"NCHAR({arg})" for arg in call.args)


def _json_value(document: str, path: str) -> str | None:
    if string_literal(path) is None:
        return None
    return f"JSON_VALUE({document}, {path})"


class MSSQLSchemaRewriter(BaseSchemaRewriter):
    """SQLite DDL to SQL Server."""

    DIALECT = TargetDialect.MSSQL
    QUOTES = ("[", "]")
    TYPE_MAPPINGS = MSSQL_TYPE_MAPPINGS
    FALLBACK_TYPE = "NVARCHAR(MAX)"
    IDENTITY_TYPE = "INT IDENTITY(1,1)"
    TIMESTAMP_TYPE = "DATETIME2"
    UNINDEXABLE_TYPES = frozenset({"NVARCHAR(MAX)", "VARCHAR(MAX)", "VARBINARY(MAX)"})
    KEY_TEXT_TYPE = "NVARCHAR(450)"
    NOW_DEFAULTS = {
        "datetime": "CURRENT_TIMESTAMP",
        "date": "CAST(GETDATE() AS DATE)",
        "time": "CAST(GETDATE() AS TIME)",
    }
    SUPPORTS_DEFERRABLE = False

    def statement_rules(self) -> list[Rule]:
        return [
            *super().statement_rules(),
            TransformRule(name="rename", kind=RuleKind.SCHEMA, transform=_sp_rename, trigger=_RENAME),
        ]

    def default_rules(self) -> list[Rule]:
        return [*super().default_rules(), boolean_default_rule()]

    def index_rules(self) -> list[Rule]:
        return [
            TransformRule(
                name="index-if-not-exists",
                kind=RuleKind.SCHEMA,
                feature=Feature.INDEX,
                transform=_guard_index,
                trigger=_CREATE_INDEX_GUARDED,
            ),
            drop_index_warning_rule("SQL Server"),
        ]

    def table_rules(self) -> list[Rule]:
        return [
            *super().table_rules(),
            PatternRule(
                name="add-column",
                kind=RuleKind.SCHEMA,
                pattern=re.compile(rf"^(\s*ALTER\s+TABLE\s+{QUALIFIED_PATTERN}\s+ADD)\s+COLUMN\b", re.IGNORECASE),
                replacement="\\1",
            ),
            TransformRule(
                name="create-table-head",
                kind=RuleKind.SCHEMA,
                transform=_create_table_head,
                trigger=_CREATE_TABLE_HEAD,
            ),
        ]


def _create_table_head(state: RewriteState) -> None:
    """Temporary tables become ``#name``; IF NOT EXISTS becomes an OBJECT_ID guard."""
    scanned = state.scanned
    match = _CREATE_TABLE_HEAD.match(scanned.masked)
    if match is None or not (match.group("temp") or match.group("guard")):
        return
    name_sql = scanned.sql[match.start("name") : match.end("name")]
    plain = _plain(name_sql)
    if match.group("temp"):
        local = f"#{plain.rsplit('.', 1)[-1]}"
        name_sql = local if _PLAIN_NAME.fullmatch(local[1:]) else quote_identifier(local, ("[", "]"))
        plain = f"tempdb..{local}"
    head = f"CREATE TABLE {name_sql}"
    if match.group("guard"):
        head = f"IF OBJECT_ID({_n_string(plain)}, N'U') IS NULL {head}"
    state.update(replace_spans(scanned.sql, [(match.end("lead"), match.end("name"), head)]))


def _guard_index(state: RewriteState) -> None:
    scanned = state.scanned
    match = _CREATE_INDEX_GUARDED.match(scanned.masked)
    if match is None:
        return
    index = _plain(scanned.sql[match.start("name") : match.end("name")]).rsplit(".", 1)[-1]
    table = _plain(scanned.sql[match.start("table") : match.end("table")])
    create = " ".join(scanned.sql[match.start("create") : match.end("create")].split())
    guard = (
        f"IF NOT EXISTS (SELECT 1 FROM sys.indexes WHERE name = {_n_string(index)} "
        f"AND object_id = OBJECT_ID({_n_string(table)}))"
    )
    state.update(replace_spans(scanned.sql, [(match.end("lead"), match.start("name"), f"{guard} {create} ")]))


def _sp_rename(state: RewriteState) -> None:
    scanned = state.scanned
    match = _RENAME.match(scanned.masked)
    if match is None:
        return

    def text(group: str) -> str:
        return scanned.sql[match.start(group) : match.end(group)]

    table = _plain(text("table"))
    if match.group("new_table") is not None:
        sql = f"EXEC sp_rename {_n_string(table)}, {_n_string(_plain(text('new_table')))}"
    else:
        column = f"{table}.{_plain(text('column'))}"
        sql = f"EXEC sp_rename {_n_string(column)}, {_n_string(_plain(text('new_column')))}, N'COLUMN'"
    state.update(sql)


class MSSQLQueryRewriter(BaseQueryRewriter):
    """SQLite DML to SQL Server."""

    DIALECT = TargetDialect.MSSQL
    QUOTES = ("[", "]")
    PLACEHOLDER_STYLE = PlaceholderStyle.QMARK
    PAGINATION_STYLE = PaginationStyle.TOP_OR_OFFSET_FETCH
    RETURNING_MODE = ReturningMode.OUTPUT_CLAUSE

    def function_rules(self) -> list[Rule]:
        dialect = self.dialect
        return function_rules(
            {
                "date": date_handler(dialect, now=_NOW, cast=lambda v: f"CAST({v} AS DATE)", shift=_shift),
                "datetime": date_handler(dialect, now=_NOW, cast=_datetime2, shift=_shift),
                "time": date_handler(dialect, now=_NOW, cast=lambda v: f"CAST({v} AS TIME)", shift=_shift),
                "strftime": strftime_handler(
                    dialect,
                    table=STRFTIME_FORMATS,
                    render=lambda value, fmt: f"FORMAT({_datetime2(value)}, {fmt})",
                    now=_NOW,
                    literal=lambda text: f'"{text}"',
                    epoch=lambda value: f"DATEDIFF_BIG(SECOND, {_UNIX_EPOCH}, {value})",
                ),
                "julianday": julianday_handler(
                    dialect,
                    now=_NOW,
                    epoch_days=lambda value: f"DATEDIFF_BIG(MILLISECOND, {_UNIX_EPOCH}, {value}) / 86400000.0",
                ),
                "ifnull": rename("ISNULL", arity=2),
                "group_concat": _group_concat,
                "instr": _instr,
                "substr": _substr,
                "length": rename("LEN", arity=1),
                "random": _random,
                "round": _round,
                "last_insert_rowid": rename("SCOPE_IDENTITY", arity=0),
                "total": total_to_coalesce(),
                "typeof": _typeof,
                "char": _char,
                "json_extract": json_extract_handler(dialect, _json_value),
                "max": scalar_extremum("GREATEST"),
                "min": scalar_extremum("LEAST"),
            }
        )

    def operator_rules(self) -> list[Rule]:
        return [
            cast_rule(CAST_TYPES),
            equality_operator_rule(),
            OperatorRule(name="concat-operator", operator="||", target="+"),
            OperatorRule(
                name="is-not-null-safe",
                operator="IS NOT",
                target="IS DISTINCT FROM",
                pattern=re.compile(r"\bIS\s+NOT\b(?!\s+(?:NULL|DISTINCT)\b)", re.IGNORECASE),
            ),
            OperatorRule(
                name="is-null-safe",
                operator="IS",
                target="IS NOT DISTINCT FROM",
                pattern=re.compile(r"\bIS\b(?!\s+(?:NOT|NULL|DISTINCT)\b)", re.IGNORECASE),
            ),
        ]

    def statement_rules(self) -> list[Rule]:
        dialect = "SQL Server"
        return [
            insert_or_abort_rule(),
            plain_insert_rule(
                "insert-or-ignore",
                r"INSERT\s+OR\s+IGNORE",
                "INSERT OR IGNORE",
                dialect,
                "so conflicting rows raise",
            ),
            plain_insert_rule(
                "insert-or-replace",
                r"INSERT\s+OR\s+REPLACE|REPLACE",
                "INSERT OR REPLACE",
                dialect,
                "so conflicting rows raise; use MERGE",
            ),
            upsert_warning_rule(dialect),
            null_identity_rule(self._options.returning_key_column),
            boolean_literals_rule(),
        ]


def create_plugin(
    options: PluginOptions | None = None,
    error_log: TranslationErrorLog | None = None,
) -> DialectPlugin:
    """Build the SQL Server schema/query rewriter pair."""
    return DialectPlugin(
        name=TargetDialect.MSSQL.value,
        schema=MSSQLSchemaRewriter(options, error_log),
        query=MSSQLQueryRewriter(options, error_log),
    )
