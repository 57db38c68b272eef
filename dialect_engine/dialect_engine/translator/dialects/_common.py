"""Rule builders shared by several dialect modules."""

from __future__ import annotations

import json
import re
from typing import Any, Callable

from .._types import Feature
from ..functions import Handler
from ..lexer import (
    QUALIFIED_PATTERN,
    ScannedSql,
    matching_paren,
    operand_after,
    operand_before,
    replace_spans,
    split_top_level,
    statement_end,
    unquote_identifier,
)
from ..rules import (
    CallSite,
    FunctionRule,
    OperatorRule,
    OriginalMatch,
    PatternRule,
    RewriteState,
    Rule,
    RuleKind,
    TransformRule,
)
from ..type_mapping import base_type

_CAST_BODY = re.compile(
    r"^(?P<expr>.*)\s+AS\s+(?P<type>[A-Za-z_][\w ]*?(?:\s*\(\s*[\d\s,]*\))?)\s*$",
    re.IGNORECASE | re.DOTALL,
)
_CONCAT = re.compile(r"\|\|")
_CONCAT_NEXT = re.compile(r"\s*\|\|")
_INSERT_COLUMNS = re.compile(rf"^\s*INSERT\s+INTO\s+{QUALIFIED_PATTERN}\s*\(", re.IGNORECASE)
_VALUES = re.compile(r"\s*VALUES\s*", re.IGNORECASE)
_ROW = re.compile(r"\s*\(")
_ROW_SEPARATOR = re.compile(r"\s*,")
_RETURNING = re.compile(r"\bRETURNING\b", re.IGNORECASE)
_WHERE = re.compile(r"\bWHERE\b", re.IGNORECASE)
_CREATE_INDEX = re.compile(r"^\s*CREATE\s+(?:UNIQUE\s+)?INDEX\b", re.IGNORECASE)
_IS_DISTINCT_FROM = re.compile(r"\bIS\s+DISTINCT\s+FROM\b", re.IGNORECASE)
_IS_NOT_DISTINCT_FROM = re.compile(r"\bIS\s+NOT\s+DISTINCT\s+FROM\b", re.IGNORECASE)

# ---------------------------------------------------------------------------
# Value converters
# ---------------------------------------------------------------------------


def to_bool(value: Any) -> bool:
    return bool(int(value)) if isinstance(value, str) else bool(value)


def to_flag(value: Any) -> int:
    """Booleans as the 0/1 integers of engines without a boolean type."""
    return 1 if to_bool(value) else 0


def to_bytes(value: Any) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def to_json_text(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


# ---------------------------------------------------------------------------
# Function and operator rules
# ---------------------------------------------------------------------------


def function_rules(table: dict[str, Handler]) -> list[Rule]:
    """One :class:`FunctionRule` per entry, in table order."""
    return [FunctionRule(name=f"fn-{name}", function=name, handler=handler) for name, handler in table.items()]


def cast_rule(types: dict[str, str]) -> Rule:
    """Rewrite ``CAST(x AS <sqlite type>)`` through *types* (keyed by base type)."""

    def handler(call: CallSite) -> str | None:
        if len(call.args) != 1:
            return None
        match = _CAST_BODY.match(call.args[0])
        if match is None:
            return None
        target = types.get(base_type(match.group("type")))
        if target is None:
            return None
        return f"CAST({match.group('expr')} AS {target})"

    return FunctionRule(
        name="cast-types",
        kind=RuleKind.OPERATOR,
        feature=Feature.OPERATOR,
        function="cast",
        handler=handler,
    )


def _concat_chains(state: RewriteState) -> None:
    while True:
        scanned = state.scanned
        match = _CONCAT.search(scanned.masked)
        if match is None:
            return
        start = operand_before(scanned, match.start())
        operands = [(start, match.start())]
        cursor = match.end()
        while True:
            end = operand_after(scanned, cursor)
            operands.append((cursor, end))
            following = _CONCAT_NEXT.match(scanned.masked, end)
            if following is None:
                break
            cursor = following.end()
        pieces = ", ".join(scanned.sql[a:b].strip() for a, b in operands)
        state.update(replace_spans(scanned.sql, [(start, end, f"CONCAT({pieces})")]))


def concat_function_rule() -> Rule:
    """``a || b || c`` to ``CONCAT(a, b, c)``."""
    return TransformRule(
        name="concat-operator",
        kind=RuleKind.OPERATOR,
        feature=Feature.OPERATOR,
        transform=_concat_chains,
        trigger=_CONCAT,
    )


def equality_operator_rule() -> Rule:
    """SQLite accepts ``==`` as a synonym of ``=``."""
    return OperatorRule(name="double-equals", operator="==", target="=")


def null_safe_comparison_rule(name: str, pattern: re.Pattern[str], render: Callable[[str, str], str]) -> Rule:
    """Rewrite ``a <op> b`` matched by *pattern* to ``render(a, b)``.

    Used for SQLite's null-safe ``IS``/``IS NOT`` on engines that have no
    infix spelling for them.
    """

    def transform(state: RewriteState) -> None:
        while True:
            scanned = state.scanned
            match = pattern.search(scanned.masked)
            if match is None:
                return
            left = operand_before(scanned, match.start())
            right = operand_after(scanned, match.end())
            lhs = scanned.sql[left : match.start()].strip()
            rhs = scanned.sql[match.end() : right].strip()
            state.update(replace_spans(scanned.sql, [(left, right, render(lhs, rhs))]))

    return TransformRule(
        name=name,
        kind=RuleKind.OPERATOR,
        feature=Feature.OPERATOR,
        transform=transform,
        trigger=pattern,
    )


def distinct_from_rules(equal: Callable[[str, str], str], unequal: Callable[[str, str], str]) -> list[Rule]:
    """``IS [NOT] DISTINCT FROM`` for engines without it.

    Must precede the ``IS``/``IS NOT`` rules, whose patterns skip ``DISTINCT``.
    """
    return [
        null_safe_comparison_rule("is-not-distinct-from", _IS_NOT_DISTINCT_FROM, equal),
        null_safe_comparison_rule("is-distinct-from", _IS_DISTINCT_FROM, unequal),
    ]


# ---------------------------------------------------------------------------
# Schema rules
# ---------------------------------------------------------------------------


def _boolean_default(match: OriginalMatch) -> str:
    return f"DEFAULT {_boolean(match)}"


def boolean_default_rule() -> Rule:
    """``DEFAULT TRUE``/``DEFAULT FALSE`` to ``1``/``0``."""
    return PatternRule(
        name="boolean-defaults",
        kind=RuleKind.SCHEMA,
        feature=Feature.DEFAULT,
        pattern=re.compile(r"\bDEFAULT\s+\(?\s*(TRUE|FALSE)\s*\)?(?!\w)", re.IGNORECASE),
        replacement=_boolean_default,
    )


def partial_index_rule(dialect: str) -> Rule:
    """Drop the WHERE clause of a partial index, warning."""

    def transform(state: RewriteState) -> None:
        scanned = state.scanned
        found = scanned.top_level(_WHERE)
        if not found:
            return
        state.warn(f"{dialect} has no partial indexes; dropped the index WHERE clause")
        start = len(scanned.sql[: found[0].start()].rstrip())
        state.update(replace_spans(scanned.sql, [(start, statement_end(scanned), "")]))

    return TransformRule(
        name="partial-index",
        kind=RuleKind.SCHEMA,
        feature=Feature.INDEX,
        transform=transform,
        trigger=_CREATE_INDEX,
    )


def drop_index_warning_rule(dialect: str) -> Rule:
    return PatternRule(
        name="drop-index-table",
        kind=RuleKind.SCHEMA,
        feature=Feature.INDEX,
        pattern=re.compile(r"^\s*DROP\s+INDEX\b(?![\s\S]*\bON\b)", re.IGNORECASE),
        warning=f"{dialect} requires DROP INDEX <name> ON <table>; statement left as written",
    )


# ---------------------------------------------------------------------------
# Statement rules
# ---------------------------------------------------------------------------


def _boolean(match: OriginalMatch) -> str:
    return "1" if (match.group(1) or "").upper() == "TRUE" else "0"


def boolean_literals_rule(kind: RuleKind = RuleKind.STATEMENT) -> Rule:
    """``TRUE``/``FALSE`` to ``1``/``0`` for engines without boolean literals."""
    return PatternRule(
        name="boolean-literals",
        kind=kind,
        pattern=re.compile(r"(?<![\w.$])(TRUE|FALSE)\b", re.IGNORECASE),
        replacement=_boolean,
    )


def plain_insert_rule(name: str, pattern: str, label: str, dialect: str, consequence: str) -> Rule:
    """Downgrade an INSERT form matched by *pattern* to a plain INSERT, warning."""
    return PatternRule(
        name=name,
        pattern=re.compile(rf"^(?P<lead>\s*)(?:{pattern})\s+INTO\b", re.IGNORECASE),
        replacement=r"\g<lead>INSERT INTO",
        warning=f"{dialect} has no {label}; rewritten as a plain INSERT, {consequence}",
    )


def insert_or_abort_rule() -> Rule:
    """``INSERT OR ABORT`` is SQLite's default conflict behaviour."""
    return PatternRule(
        name="insert-or-abort",
        pattern=re.compile(r"^(?P<lead>\s*)INSERT\s+OR\s+ABORT\b", re.IGNORECASE),
        replacement=r"\g<lead>INSERT",
    )


def upsert_warning_rule(dialect: str) -> Rule:
    return PatternRule(
        name="upsert",
        pattern=re.compile(r"\bON\s+CONFLICT\b", re.IGNORECASE),
        warning=f"ON CONFLICT upserts have no {dialect} translation; rewrite the statement as MERGE",
    )


def returning_insert_point(scanned: ScannedSql) -> int:
    """Where a clause that must precede RETURNING is appended."""
    found = scanned.top_level(_RETURNING)
    end = found[-1].start() if found else statement_end(scanned)
    return len(scanned.sql[:end].rstrip())


def _removal(items: list[tuple[int, int]], index: int, text: str) -> tuple[int, int, str]:
    if index < len(items) - 1:
        following = items[index + 1][0]
        while following < len(text) and text[following].isspace():
            following += 1
        return (items[index][0], following, "")
    return (items[index - 1][1], items[index][1], "")


def null_identity_rule(key_column: str) -> Rule:
    """Drop ``key_column`` from an INSERT whose every row supplies ``NULL`` for it.

    Identity columns on engines that reject explicit ``NULL`` keys only
    generate a value when the column is omitted.
    """
    key = key_column.lower()

    def transform(state: RewriteState) -> None:
        scanned = state.scanned
        masked = scanned.masked
        head = _INSERT_COLUMNS.match(masked)
        if head is None:
            return
        opening = head.end() - 1
        closing = matching_paren(masked, opening)
        columns = split_top_level(masked, opening + 1, closing)
        names = [unquote_identifier(scanned.sql[a:b].strip()).lower() for a, b in columns]
        if key not in names or len(columns) < 2:
            return
        index = names.index(key)
        values = _VALUES.match(masked, closing + 1)
        if values is None:
            return
        rows: list[list[tuple[int, int]]] = []
        cursor = values.end()
        while True:
            row = _ROW.match(masked, cursor)
            if row is None:
                break
            row_close = matching_paren(masked, row.end() - 1)
            items = split_top_level(masked, row.end(), row_close)
            if len(items) != len(columns):
                return
            rows.append(items)
            separator = _ROW_SEPARATOR.match(masked, row_close + 1)
            if separator is None:
                break
            cursor = separator.end()
        if not rows or any(masked[r[index][0] : r[index][1]].strip().upper() != "NULL" for r in rows):
            return
        edits = [_removal(columns, index, masked)]
        edits.extend(_removal(r, index, masked) for r in rows)
        state.update(replace_spans(scanned.sql, edits))

    return TransformRule(
        name="null-identity-insert",
        feature=Feature.AUTO_INCREMENT,
        transform=transform,
        trigger=_INSERT_COLUMNS,
    )


def trailing_semicolon_rule(kind: RuleKind) -> Rule:
    return PatternRule(
        name="trailing-semicolon",
        kind=kind,
        pattern=re.compile(r"\s*;\s*$"),
        replacement="",
    )


def wrap(template: str) -> Callable[[str], str]:
    """``wrap("CAST({} AS DATE)")`` returns a one-argument renderer."""
    return lambda value: template.format(value)
