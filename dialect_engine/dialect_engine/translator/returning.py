"""RETURNING clause translation and emulation.

Three target behaviours are supported:

* native -- the clause is left alone;
* ``OUTPUT`` clause -- rewritten to ``OUTPUT INSERTED.x`` / ``DELETED.x``;
* emulated -- the clause is stripped and a :class:`ReturningEmulationInfo`
  describes the reads that reconstruct its rows.

The follow-up statements built here are SQLite-shaped; the session sends them
through the same query rewriter as any other statement.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from ._types import (
    ExecutionResult,
    ReturningEmulationError,
    ReturningEmulationInfo,
    ReturningMode,
    ReturningStrategy,
    TranslationFailure,
)
from .lexer import (
    IDENTIFIER_PATTERN,
    QUALIFIED_PATTERN,
    ScannedSql,
    replace_spans,
    scan,
    split_top_level,
    statement_end,
    strip_span,
    unquote_identifier,
)
from .rules import RewriteState, Rule, RuleKind

_RETURNING = re.compile(r"\bRETURNING\b", re.IGNORECASE)
_WHERE = re.compile(r"\bWHERE\b", re.IGNORECASE)
_TARGETS = {
    "INSERT": re.compile(rf"^\s*(?:INSERT(?:\s+OR\s+\w+|\s+IGNORE)?|REPLACE)\s+INTO\s+(?P<table>{QUALIFIED_PATTERN})", re.I),
    "UPDATE": re.compile(rf"^\s*UPDATE(?:\s+OR\s+\w+)?\s+(?P<table>{QUALIFIED_PATTERN})", re.I),
    "DELETE": re.compile(rf"^\s*DELETE\s+FROM\s+(?P<table>{QUALIFIED_PATTERN})", re.I),
}
_VERB = re.compile(r"^\s*(INSERT|REPLACE|UPDATE|DELETE)\b", re.I)
_COLUMN = re.compile(rf"^(?:{IDENTIFIER_PATTERN}\s*\.\s*)?(?P<column>{IDENTIFIER_PATTERN}|\*)$")
_INSERT_BODY = re.compile(r"\b(?:VALUES|SELECT|DEFAULT\s+VALUES)\b", re.I)
_UPDATE_TAIL = re.compile(r"\b(?:FROM|WHERE)\b", re.I)

# ---------------------------------------------------------------------------
# Clause parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ReturningClause:
    """A top-level RETURNING clause and the statement parts around it."""

    verb: str
    table: str
    table_sql: str
    table_end: int
    columns: tuple[str, ...]
    column_sql: tuple[str, ...]
    start: int
    end: int
    where: tuple[int, int] | None


def find_returning(scanned: ScannedSql) -> ReturningClause | None:
    """Parse the RETURNING clause of an INSERT/UPDATE/DELETE, if any.

    Raises:
        TranslationFailure: If the clause returns expressions rather than
            plain columns, or belongs to a statement that cannot carry one.
    """
    matches = scanned.top_level(_RETURNING)
    if not matches:
        return None
    clause = matches[-1]
    verb_match = _VERB.match(scanned.masked)
    if verb_match is None:
        raise TranslationFailure("RETURNING is only supported on INSERT, UPDATE and DELETE statements")
    verb = verb_match.group(1).upper()
    verb = "INSERT" if verb == "REPLACE" else verb

    target = _TARGETS[verb].match(scanned.masked)
    if target is None:
        raise TranslationFailure(f"Could not locate the target table of this {verb} statement")
    table_sql = scanned.sql[target.start("table") : target.end("table")]
    table = ".".join(unquote_identifier(part.strip()) for part in _split_qualified(table_sql))

    end = statement_end(scanned)
    column_sql: list[str] = []
    columns: list[str] = []
    for a, b in split_top_level(scanned.masked, clause.end(), end):
        a, b = strip_span(scanned.sql, a, b)
        text = scanned.sql[a:b]
        match = _COLUMN.match(text)
        if match is None:
            raise TranslationFailure(f"RETURNING expression {text!r} cannot be translated; return plain columns")
        column_sql.append(text)
        columns.append(unquote_identifier(match.group("column")))

    where = None
    if verb != "INSERT":
        found = scanned.top_level(_WHERE, target.end(), clause.start())
        if found:
            where = strip_span(scanned.sql, found[0].end(), clause.start())

    return ReturningClause(
        verb=verb,
        table=table,
        table_sql=table_sql,
        table_end=target.end("table"),
        columns=tuple(columns),
        column_sql=tuple(column_sql),
        start=clause.start(),
        end=end,
        where=where,
    )


def _split_qualified(text: str) -> list[str]:
    return re.findall(IDENTIFIER_PATTERN, text)


def _strip_clause(scanned: ScannedSql, clause: ReturningClause) -> tuple[int, int, str]:
    start = len(scanned.sql[: clause.start].rstrip())
    return (start, clause.end, "")


def _output_edits(scanned: ScannedSql, clause: ReturningClause) -> list[tuple[int, int, str]]:
    prefix = "DELETED" if clause.verb == "DELETE" else "INSERTED"
    output = "OUTPUT " + ", ".join(f"{prefix}.{_bare_column(col)}" for col in clause.column_sql)
    if clause.verb == "INSERT":
        body = scanned.top_level(_INSERT_BODY, clause.table_end, clause.start)
        if not body:
            raise TranslationFailure("Could not place the OUTPUT clause: INSERT has no VALUES or SELECT")
        at = body[0].start()
        edit = (at, at, f"{output} ")
    elif clause.verb == "UPDATE":
        tail = scanned.top_level(_UPDATE_TAIL, clause.table_end, clause.start)
        if tail:
            at = tail[0].start()
            edit = (at, at, f"{output} ")
        else:
            at = len(scanned.sql[: clause.start].rstrip())
            edit = (at, at, f" {output}")
    else:
        edit = (clause.table_end, clause.table_end, f" {output}")
    return [edit, _strip_clause(scanned, clause)]


def _bare_column(column_sql: str) -> str:
    match = _COLUMN.match(column_sql)
    return match.group("column") if match else column_sql


# ---------------------------------------------------------------------------
# Rule
# ---------------------------------------------------------------------------


@dataclass(frozen=True, kw_only=True)
class ReturningRule(Rule):
    """Translate or emulate ``RETURNING`` for one dialect.

    ``insert_strategy`` picks the follow-up read for INSERT; UPDATE captures
    keys and DELETE reads a pre-image.  ``key_column``/``key_sql`` name the
    row key used by those reads.
    """

    kind: RuleKind = RuleKind.RETURNING
    mode: ReturningMode
    insert_strategy: ReturningStrategy = ReturningStrategy.LAST_INSERT_ID
    key_column: str = "id"
    key_sql: str = '"id"'

    def triggers(self, scanned: ScannedSql) -> bool:
        return self.mode is not ReturningMode.NATIVE and bool(scanned.top_level(_RETURNING))

    def apply(self, state: RewriteState) -> None:
        if self.mode is ReturningMode.NATIVE:
            return
        scanned = state.scanned
        clause = find_returning(scanned)
        if clause is None:
            return
        if self.mode is ReturningMode.OUTPUT_CLAUSE:
            state.update(replace_spans(scanned.sql, _output_edits(scanned, clause)))
            return

        source = scan(state.original_sql)
        original = find_returning(source) or clause
        state.returning = self._describe(source, original, state.original_params)
        state.update(replace_spans(scanned.sql, [_strip_clause(scanned, clause)]))

    def _describe(
        self,
        source: ScannedSql,
        clause: ReturningClause,
        params: tuple[Any, ...] | None,
    ) -> ReturningEmulationInfo:
        strategy = {
            "INSERT": self.insert_strategy,
            "UPDATE": ReturningStrategy.KEY_CAPTURE,
            "DELETE": ReturningStrategy.PRE_IMAGE,
        }[clause.verb]
        where_sql = None
        where_params: tuple[Any, ...] | None = ()
        if clause.where is not None:
            start, end = clause.where
            where_sql = source.sql[start:end]
            ordinals = source.placeholders_between(start, end)
            if params is None:
                where_params = None if ordinals else ()
            else:
                where_params = tuple(params[i] for i in ordinals)
        return ReturningEmulationInfo(
            table=clause.table,
            columns=clause.columns,
            verb=clause.verb,
            strategy=strategy,
            table_sql=clause.table_sql,
            column_sql=clause.column_sql,
            key_column=self.key_column,
            key_sql=self.key_sql,
            where_sql=where_sql,
            where_params=where_params,
        )


# ---------------------------------------------------------------------------
# Follow-up reads
# ---------------------------------------------------------------------------


def _select_list(info: ReturningEmulationInfo) -> str:
    return ", ".join(info.column_sql) if info.column_sql else "*"


def _where_suffix(info: ReturningEmulationInfo) -> tuple[str, list[Any]]:
    if info.where_sql is None:
        return "", []
    if info.where_params is None:
        raise ReturningEmulationError(
            f"Bound parameters are required to emulate RETURNING on {info.verb} {info.table}"
        )
    return f" WHERE {info.where_sql}", list(info.where_params)


def prefetch_statement(info: ReturningEmulationInfo) -> tuple[str, list[Any]] | None:
    """Read to run *before* the modifying statement, or ``None``."""
    if info.strategy is ReturningStrategy.PRE_IMAGE:
        where, params = _where_suffix(info)
        return f"SELECT {_select_list(info)} FROM {info.table_sql}{where}", params
    if info.strategy is ReturningStrategy.KEY_CAPTURE:
        where, params = _where_suffix(info)
        return f"SELECT {info.key_sql} FROM {info.table_sql}{where}", params
    return None


def followup_statement(
    info: ReturningEmulationInfo,
    result: ExecutionResult,
    captured: list[dict[str, Any]] | None = None,
) -> tuple[str, list[Any]] | None:
    """Read to run *after* the modifying statement, or ``None`` when no rows remain.

    Raises:
        ReturningEmulationError: If the driver did not report what the read
            needs (no last-insert id, several rows behind a single locator).
    """
    if info.strategy is ReturningStrategy.PRE_IMAGE:
        return None
    if info.strategy is ReturningStrategy.KEY_CAPTURE:
        keys = [next(iter(row.values())) for row in (captured or []) if row]
        if not keys:
            return None
        markers = ", ".join("?" for _ in keys)
        return f"SELECT {_select_list(info)} FROM {info.table_sql} WHERE {info.key_sql} IN ({markers})", keys

    if result.rows_affected == 0:
        return None
    if result.last_insert_id is None:
        raise ReturningEmulationError(
            f"Driver reported no last-insert id for INSERT into {info.table}; cannot emulate RETURNING"
        )
    if info.strategy is ReturningStrategy.ROW_LOCATOR:
        if result.rows_affected > 1:
            raise ReturningEmulationError(
                f"RETURNING for a {result.rows_affected}-row INSERT into {info.table} cannot be emulated"
            )
        return f"SELECT {_select_list(info)} FROM {info.table_sql} WHERE {info.key_sql} = ?", [result.last_insert_id]

    rows = max(result.rows_affected, 1)
    sql = (
        f"SELECT {_select_list(info)} FROM {info.table_sql} "
        f"WHERE {info.key_sql} >= ? ORDER BY {info.key_sql} LIMIT ?"
    )
    return sql, [result.last_insert_id, rows]
