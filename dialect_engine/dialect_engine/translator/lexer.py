"""Statement scanning backed by the SQLGlot tokenizer.

This is the ONLY module that imports ``sqlglot``.  Rewrite rules never see
tokens: they run regular expressions over a *masked* copy of the statement
in which the interiors of string literals and quoted identifiers are blanked
out and comments become whitespace.  Offsets in the masked text equal
offsets in the original text, so a match found on the mask is replaced in
the original.

Supports SQLGlot v25.x.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

import sqlglot
from sqlglot.errors import TokenError
from sqlglot.tokens import TokenType

from ._types import StatementKind, TranslationFailure

MASK_CHAR = "_"

IDENTIFIER_PATTERN = r'(?:"[^"]*"|`[^`]*`|\[[^\]]*\]|[A-Za-z_][\w$]*)'
QUALIFIED_PATTERN = rf"{IDENTIFIER_PATTERN}(?:\s*\.\s*{IDENTIFIER_PATTERN})?"

_COMMENT = re.compile(r"--[^\n]*|/\*.*?(?:\*/|$)", re.DOTALL)
_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_DDL_KEYWORDS = frozenset({"CREATE", "ALTER", "DROP"})
_DML_KEYWORDS = frozenset({"SELECT", "INSERT", "UPDATE", "DELETE", "REPLACE", "WITH", "VALUES"})

# ---------------------------------------------------------------------------
# Scan result
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class QuotedSpan:
    """A string literal or quoted identifier, ``end`` exclusive."""

    start: int
    end: int
    identifier: bool


@dataclass(frozen=True, slots=True)
class ScannedSql:
    """A statement together with its masked twin and placeholder offsets."""

    sql: str
    masked: str
    placeholders: tuple[int, ...]
    quoted: tuple[QuotedSpan, ...]
    depths: tuple[int, ...]

    @property
    def identifiers(self) -> tuple[QuotedSpan, ...]:
        return tuple(span for span in self.quoted if span.identifier)

    def depth(self, index: int) -> int:
        """Parenthesis depth in effect *before* the character at *index*."""
        return self.depths[min(index, len(self.depths) - 1)]

    def placeholders_between(self, start: int, end: int) -> list[int]:
        """Ordinals of the placeholders whose offsets fall in ``[start, end)``."""
        return [i for i, offset in enumerate(self.placeholders) if start <= offset < end]

    def top_level(self, pattern: re.Pattern[str], start: int = 0, end: int | None = None) -> list[re.Match[str]]:
        """Matches of *pattern* that start at the same depth as *start*."""
        stop = len(self.masked) if end is None else end
        base = self.depth(start)
        return [m for m in pattern.finditer(self.masked, start, stop) if self.depth(m.start()) == base]


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


def _tokenize(sql: str) -> list:
    try:
        return sqlglot.tokenize(sql, read="sqlite")
    except TokenError as exc:
        raise TranslationFailure(f"Could not tokenize statement: {exc}", sql=sql) from exc


def scan(sql: str) -> ScannedSql:
    """Tokenize *sql* and build its masked representation.

    Raises:
        TranslationFailure: If the statement cannot be tokenized (for example
            an unterminated string literal).
    """
    tokens = _tokenize(sql)
    chars = list(sql)
    placeholders: list[int] = []
    quoted: list[QuotedSpan] = []

    cursor = 0
    for token in tokens:
        start, end = token.start, token.end + 1
        if start > cursor:
            _mask_comments(chars, sql, cursor, start)
        cursor = max(cursor, end)

        if token.token_type == TokenType.PLACEHOLDER and token.text == "?":
            placeholders.append(start)
        elif token.token_type == TokenType.IDENTIFIER:
            quoted.append(QuotedSpan(start, end, identifier=True))
            _mask_interior(chars, start, end)
        elif token.token_type.name.endswith("STRING"):
            opening = _first_quote(sql, start, end)
            quoted.append(QuotedSpan(opening, end, identifier=False))
            _mask_interior(chars, opening, end)
    if cursor < len(sql):
        _mask_comments(chars, sql, cursor, len(sql))

    masked = "".join(chars)
    return ScannedSql(
        sql=sql,
        masked=masked,
        placeholders=tuple(placeholders),
        quoted=tuple(quoted),
        depths=_depths(masked),
    )


def _first_quote(sql: str, start: int, end: int) -> int:
    for i in range(start, end):
        if sql[i] in "'\"":
            return i
    return start


def _mask_interior(chars: list[str], start: int, end: int) -> None:
    for i in range(start + 1, end - 1):
        if chars[i] != "\n":
            chars[i] = MASK_CHAR


def _mask_comments(chars: list[str], sql: str, start: int, end: int) -> None:
    for match in _COMMENT.finditer(sql, start, end):
        for i in range(match.start(), match.end()):
            if chars[i] != "\n":
                chars[i] = " "


def _depths(masked: str) -> tuple[int, ...]:
    depths = []
    depth = 0
    for char in masked:
        depths.append(depth)
        if char == "(":
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
    depths.append(depth)
    return tuple(depths)


# ---------------------------------------------------------------------------
# Statement classification
# ---------------------------------------------------------------------------


def leading_keyword(sql: str) -> str:
    """Return the first keyword of *sql* in upper case, or ``""``.

    Comments, whitespace and opening parentheses are skipped.
    """
    for token in _tokenize(sql):
        if token.token_type in (TokenType.L_PAREN, TokenType.SEMICOLON):
            continue
        match = _WORD.match(token.text)
        return match.group(0).upper() if match else ""
    return ""


def statement_kind(sql: str) -> StatementKind:
    keyword = leading_keyword(sql)
    if keyword in _DDL_KEYWORDS:
        return StatementKind.DDL
    if keyword in _DML_KEYWORDS:
        return StatementKind.DML
    return StatementKind.OTHER


# ---------------------------------------------------------------------------
# Structural helpers over masked text
# ---------------------------------------------------------------------------


def matching_paren(masked: str, open_index: int) -> int:
    """Return the index of the parenthesis closing the one at *open_index*."""
    depth = 0
    for i in range(open_index, len(masked)):
        if masked[i] == "(":
            depth += 1
        elif masked[i] == ")":
            depth -= 1
            if depth == 0:
                return i
    raise TranslationFailure(f"Unbalanced parentheses at offset {open_index}")


def split_top_level(masked: str, start: int, end: int) -> list[tuple[int, int]]:
    """Split ``masked[start:end]`` on commas outside nested parentheses."""
    spans: list[tuple[int, int]] = []
    depth = 0
    piece = start
    for i in range(start, end):
        char = masked[i]
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif char == "," and depth == 0:
            spans.append((piece, i))
            piece = i + 1
    spans.append((piece, end))
    return spans


def strip_span(text: str, start: int, end: int) -> tuple[int, int]:
    """Shrink ``[start, end)`` so that it excludes surrounding whitespace."""
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return start, end


def statement_end(scanned: ScannedSql) -> int:
    """Offset just past the last meaningful character (trailing ``;`` excluded)."""
    end = len(scanned.masked)
    while end > 0 and (scanned.masked[end - 1].isspace() or scanned.masked[end - 1] == ";"):
        end -= 1
    return end


@dataclass(frozen=True, slots=True)
class Call:
    """A function call located in a statement, ``end`` exclusive."""

    name: str
    start: int
    end: int
    args: tuple[tuple[int, int], ...]


def find_calls(scanned: ScannedSql, name: str) -> list[Call]:
    """Locate every call of function *name* (case-insensitive)."""
    pattern = re.compile(rf"(?<![\w.$]){re.escape(name)}\s*\(", re.IGNORECASE)
    calls = []
    for match in pattern.finditer(scanned.masked):
        open_index = match.end() - 1
        close = matching_paren(scanned.masked, open_index)
        inner = scanned.masked[open_index + 1 : close]
        if inner.strip():
            args = tuple(
                strip_span(scanned.sql, a, b) for a, b in split_top_level(scanned.masked, open_index + 1, close)
            )
        else:
            args = ()
        calls.append(Call(name=name, start=match.start(), end=close + 1, args=args))
    return calls


def operand_before(scanned: ScannedSql, index: int) -> int:
    """Start offset of the operand that ends just before *index*."""
    masked = scanned.masked
    i = index
    while i > 0 and masked[i - 1].isspace():
        i -= 1
    end = i
    if i > 0 and masked[i - 1] == ")":
        depth = 0
        while i > 0:
            i -= 1
            if masked[i] == ")":
                depth += 1
            elif masked[i] == "(":
                depth -= 1
                if depth == 0:
                    break
        while i > 0 and (masked[i - 1].isalnum() or masked[i - 1] in "_.$"):
            i -= 1
        return i
    quoted = _quoted_ending_at(scanned, end)
    if quoted is not None:
        i = quoted.start
        while i > 0 and masked[i - 1] == ".":
            prefix = _quoted_ending_at(scanned, i - 1)
            i = prefix.start if prefix is not None else _word_start(masked, i - 1)
        return i
    return _word_start(masked, end)


def operand_after(scanned: ScannedSql, index: int) -> int:
    """End offset (exclusive) of the operand that starts at or after *index*."""
    masked = scanned.masked
    i = index
    while i < len(masked) and masked[i].isspace():
        i += 1
    if i < len(masked) and masked[i] in "+-":
        i += 1
    if i < len(masked) and masked[i] == "(":
        return matching_paren(masked, i) + 1
    quoted = _quoted_starting_at(scanned, i)
    if quoted is not None:
        i = quoted.end
    else:
        while i < len(masked) and (masked[i].isalnum() or masked[i] in "_.$?"):
            i += 1
    if i < len(masked) and masked[i] == ".":
        return operand_after(scanned, i + 1)
    j = i
    while j < len(masked) and masked[j].isspace():
        j += 1
    if j < len(masked) and masked[j] == "(":
        return matching_paren(masked, j) + 1
    return i


def _word_start(masked: str, end: int) -> int:
    i = end
    while i > 0 and (masked[i - 1].isalnum() or masked[i - 1] in "_.$?"):
        i -= 1
    return i


def _quoted_ending_at(scanned: ScannedSql, end: int) -> QuotedSpan | None:
    for span in scanned.quoted:
        if span.end == end:
            return span
    return None


def _quoted_starting_at(scanned: ScannedSql, start: int) -> QuotedSpan | None:
    for span in scanned.quoted:
        if span.start == start:
            return span
    return None


# ---------------------------------------------------------------------------
# Editing
# ---------------------------------------------------------------------------


def replace_spans(sql: str, edits: Iterable[tuple[int, int, str]]) -> str:
    """Apply non-overlapping ``(start, end, replacement)`` edits to *sql*."""
    ordered = sorted(edits, key=lambda edit: edit[0])
    parts: list[str] = []
    cursor = 0
    for start, end, replacement in ordered:
        if start < cursor:
            raise ValueError(f"Overlapping edit at offset {start}")
        parts.append(sql[cursor:start])
        parts.append(replacement)
        cursor = end
    parts.append(sql[cursor:])
    return "".join(parts)


def unquote_identifier(text: str) -> str:
    """Strip SQLite identifier quotes (``"x"``, `` `x` ``, ``[x]``) from *text*."""
    if len(text) >= 2:
        first, last = text[0], text[-1]
        if first == '"' and last == '"':
            return text[1:-1].replace('""', '"')
        if first == "`" and last == "`":
            return text[1:-1].replace("``", "`")
        if first == "[" and last == "]":
            return text[1:-1]
    return text
