"""LIMIT/OFFSET translation with parameter inlining.

Not every target driver accepts bound parameters in pagination clauses, so
when the caller supplies parameters the values behind ``LIMIT ?`` and
``OFFSET ?`` are validated as integers, written into the SQL text, and
removed from the parameter list handed back to the caller.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Any

from ._types import TranslationFailure
from .lexer import ScannedSql, replace_spans
from .rules import RewriteState, Rule, RuleKind

_LIMIT = re.compile(
    r"\bLIMIT\s+(?P<first>\?|-?\s*\d+)(?:\s*(?P<sep>,|\bOFFSET\b)\s*(?P<second>\?|-?\s*\d+))?",
    re.IGNORECASE,
)
_SELECT = re.compile(r"\bSELECT\b(?:\s+(?:DISTINCT|ALL)\b)?", re.IGNORECASE)
_ORDER_BY = re.compile(r"\bORDER\s+BY\b", re.IGNORECASE)
_COMPOUND = re.compile(r"\b(?:UNION|INTERSECT|EXCEPT)\b", re.IGNORECASE)
_INTEGER = re.compile(r"\s*-?\d+\s*")


class PaginationStyle(str, enum.Enum):
    """How a dialect spells row limiting."""

    LIMIT_OFFSET = "limit_offset"
    OFFSET_FETCH = "offset_fetch"
    TOP_OR_OFFSET_FETCH = "top_or_offset_fetch"


@dataclass(frozen=True, slots=True)
class Operand:
    """A LIMIT or OFFSET value: an integer, or a placeholder left unbound."""

    value: int | None = None
    placeholder: bool = False

    @property
    def sql(self) -> str:
        return "?" if self.placeholder else str(self.value)


@dataclass(frozen=True, slots=True)
class PaginationClause:
    """One ``LIMIT`` clause located in a statement.

    ``limit`` is ``None`` when the statement asks for no limit (SQLite's
    negative ``LIMIT``).
    """

    start: int
    end: int
    limit: Operand | None
    offset: Operand | None
    inlined: tuple[int, ...]
    limit_first: bool = True


def coerce_row_count(value: Any, part: str) -> int:
    """Validate a bound LIMIT/OFFSET value and return it as an ``int``."""
    if isinstance(value, bool):
        raise TranslationFailure(f"{part} parameter must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _INTEGER.fullmatch(value):
        return int(value)
    raise TranslationFailure(f"{part} parameter must be an integer, got {value!r}")


def find_clauses(scanned: ScannedSql, params: list[Any] | None) -> list[PaginationClause]:
    """Locate every ``LIMIT`` clause and resolve its operands."""
    clauses = []
    for match in _LIMIT.finditer(scanned.masked):
        first, second = match.group("first"), match.group("second")
        comma = match.group("sep") == ","
        # SQLite's "LIMIT a, b" means OFFSET a LIMIT b.
        limit_text, offset_text = (second, first) if comma else (first, second)
        limit_start = match.start("second") if comma else match.start("first")
        offset_start = match.start("first") if comma else match.start("second")

        inlined: list[int] = []
        limit = _resolve(scanned, limit_text, limit_start, params, inlined, "LIMIT")
        offset = _resolve(scanned, offset_text, offset_start, params, inlined, "OFFSET")
        if limit is not None and limit.value is not None and limit.value < 0:
            limit = None
        if offset is not None and offset.value is not None and offset.value < 0:
            offset = Operand(value=0)
        clauses.append(
            PaginationClause(
                start=match.start(),
                end=match.end(),
                limit=limit,
                offset=offset,
                inlined=tuple(inlined),
                limit_first=not comma,
            )
        )
    return clauses


def _resolve(
    scanned: ScannedSql,
    text: str | None,
    start: int,
    params: list[Any] | None,
    inlined: list[int],
    part: str,
) -> Operand | None:
    if text is None:
        return None
    if text != "?":
        return Operand(value=int(text.replace(" ", "")))
    ordinal = scanned.placeholders.index(start)
    if params is None:
        return Operand(placeholder=True)
    if ordinal >= len(params):
        raise TranslationFailure(
            f"{part} placeholder #{ordinal + 1} has no bound parameter ({len(params)} supplied)"
        )
    inlined.append(ordinal)
    return Operand(value=coerce_row_count(params[ordinal], part))


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _level_start(scanned: ScannedSql, index: int) -> int:
    """Offset just after the parenthesis that opens the level of *index*."""
    depth = scanned.depth(index)
    if depth == 0:
        return 0
    for i in range(index - 1, -1, -1):
        if scanned.masked[i] == "(" and scanned.depth(i) == depth - 1:
            return i + 1
    return 0


def _render_limit_offset(clause: PaginationClause, unbounded: str | None) -> str:
    if clause.limit is None:
        if clause.offset is None:
            return ""
        if unbounded is None:
            return f"OFFSET {clause.offset.sql}"
        return f"LIMIT {unbounded} OFFSET {clause.offset.sql}"
    if clause.offset is None:
        return f"LIMIT {clause.limit.sql}"
    return f"LIMIT {clause.limit.sql} OFFSET {clause.offset.sql}"


def _render_offset_fetch(clause: PaginationClause) -> str:
    parts = []
    if clause.offset is not None:
        parts.append(f"OFFSET {clause.offset.sql} ROWS")
    if clause.limit is not None:
        word = "NEXT" if clause.offset is not None else "FIRST"
        parts.append(f"FETCH {word} {clause.limit.sql} ROWS ONLY")
    return " ".join(parts)


def _mssql_edits(scanned: ScannedSql, clause: PaginationClause) -> list[tuple[int, int, str]]:
    level = _level_start(scanned, clause.start)
    select = scanned.top_level(_SELECT, level, clause.start)
    compound = scanned.top_level(_COMPOUND, level, clause.start)
    if clause.offset is None and clause.limit is not None and select and not compound:
        head = select[0]
        return [(head.end(), head.end(), f" TOP ({clause.limit.sql})"), _removal(scanned, clause)]

    if clause.limit is None and clause.offset is None:
        return [_removal(scanned, clause)]
    parts = []
    if not scanned.top_level(_ORDER_BY, level, clause.start):
        parts.append("ORDER BY (SELECT NULL)")
    offset = clause.offset.sql if clause.offset is not None else "0"
    parts.append(f"OFFSET {offset} ROWS")
    if clause.limit is not None:
        parts.append(f"FETCH NEXT {clause.limit.sql} ROWS ONLY")
    return [(clause.start, clause.end, " ".join(parts))]


def _removal(scanned: ScannedSql, clause: PaginationClause) -> tuple[int, int, str]:
    start = len(scanned.sql[: clause.start].rstrip())
    return (start, clause.end, "")


@dataclass(frozen=True, kw_only=True)
class PaginationRule(Rule):
    """Render LIMIT/OFFSET in the target style, inlining bound values.

    ``unbounded_limit`` is the literal used when an OFFSET needs an explicit
    "no limit" (``ALL`` on PostgreSQL); ``None`` means the style can express
    an offset on its own.
    """

    kind: RuleKind = RuleKind.PAGINATION
    style: PaginationStyle
    unbounded_limit: str | None = None

    def triggers(self, scanned: ScannedSql) -> bool:
        return _LIMIT.search(scanned.masked) is not None

    def apply(self, state: RewriteState) -> None:
        scanned = state.scanned
        clauses = find_clauses(scanned, state.params)
        if not clauses:
            return
        edits: list[tuple[int, int, str]] = []
        inlined: set[int] = set()
        for clause in clauses:
            self._check_order(state, clause)
            inlined.update(clause.inlined)
            if self.style is PaginationStyle.LIMIT_OFFSET:
                rendered = _render_limit_offset(clause, self.unbounded_limit)
                edits.append((clause.start, clause.end, rendered) if rendered else _removal(scanned, clause))
            elif self.style is PaginationStyle.OFFSET_FETCH:
                rendered = _render_offset_fetch(clause)
                edits.append((clause.start, clause.end, rendered) if rendered else _removal(scanned, clause))
            else:
                edits.extend(_mssql_edits(scanned, clause))
        state.update(replace_spans(scanned.sql, edits))
        if state.params is not None and inlined:
            state.params = [p for i, p in enumerate(state.params) if i not in inlined]

    def _check_order(self, state: RewriteState, clause: PaginationClause) -> None:
        limit_unbound = clause.limit is not None and clause.limit.placeholder
        offset_unbound = clause.offset is not None and clause.offset.placeholder
        both = limit_unbound and offset_unbound
        if self.style is PaginationStyle.LIMIT_OFFSET:
            moves = both and not clause.limit_first
        elif self.style is PaginationStyle.OFFSET_FETCH:
            moves = both and clause.limit_first
        else:
            moves = (both and clause.limit_first) or (limit_unbound and clause.offset is None)
        if moves:
            raise TranslationFailure(
                f"LIMIT/OFFSET placeholders must be bound to translate pagination for {state.dialect}",
                dialect=state.dialect,
                sql=state.original_sql,
            )
