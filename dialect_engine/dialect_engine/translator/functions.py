"""Building blocks for function-call rewrite handlers.

Dialect modules compose these into :class:`~.rules.FunctionRule` handlers.
A handler receives a :class:`~.rules.CallSite` and returns replacement SQL,
or ``None`` to leave the call as written.
"""

from __future__ import annotations

import re
from typing import Callable

from .rules import CallSite

Handler = Callable[[CallSite], "str | None"]

_MODIFIER = re.compile(r"^\s*([+-]?\d+(?:\.\d+)?)\s+(year|month|day|hour|minute|second)s?\s*$", re.IGNORECASE)
_JSON_PATH = re.compile(r"\.([A-Za-z_][\w]*)|\[(\d+)\]")

# ---------------------------------------------------------------------------
# Literal helpers
# ---------------------------------------------------------------------------


def string_literal(arg: str) -> str | None:
    """Value of a single-quoted SQL literal, or ``None`` if *arg* is not one."""
    text = arg.strip()
    if len(text) >= 2 and text[0] == "'" and text[-1] == "'":
        return text[1:-1].replace("''", "'")
    return None


def sql_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def is_now(arg: str) -> bool:
    value = string_literal(arg)
    return value is not None and value.strip().lower() == "now"


def parse_modifier(arg: str) -> tuple[str, str] | None:
    """Parse a SQLite date modifier such as ``'+7 days'`` into ``("+7", "DAY")``."""
    value = string_literal(arg)
    if value is None:
        return None
    match = _MODIFIER.match(value)
    if match is None:
        return None
    return match.group(1), match.group(2).upper()


def convert_strftime(
    fmt: str,
    table: dict[str, str],
    literal: Callable[[str], str] | None = None,
) -> str | None:
    """Translate a ``strftime`` format through *table*.

    Runs of letters outside specifiers are passed to *literal* so the target
    does not read them as format codes.  Returns ``None`` when the format
    uses a specifier the table lacks, or contains letters and no *literal*
    escape is given.
    """
    out: list[str] = []
    i = 0
    while i < len(fmt):
        char = fmt[i]
        if char == "%" and i + 1 < len(fmt):
            spec = fmt[i : i + 2]
            if spec == "%%":
                out.append(table.get("%%", "%"))
            elif spec in table:
                out.append(table[spec])
            else:
                return None
            i += 2
            continue
        if char.isalpha():
            if literal is None:
                return None
            end = i
            while end < len(fmt) and fmt[end].isalpha():
                end += 1
            out.append(literal(fmt[i:end]))
            i = end
            continue
        out.append(char)
        i += 1
    return "".join(out)


def json_path(arg: str) -> list[str] | None:
    """Split a literal ``'$.a.b[0]'`` path into ``["a", "b", "0"]``."""
    value = string_literal(arg)
    if value is None or not value.startswith("$"):
        return None
    rest = value[1:]
    parts: list[str] = []
    position = 0
    for match in _JSON_PATH.finditer(rest):
        if match.start() != position:
            return None
        parts.append(match.group(1) or match.group(2))
        position = match.end()
    if position != len(rest):
        return None
    return parts


# ---------------------------------------------------------------------------
# Handler factories
# ---------------------------------------------------------------------------


def rename(target: str, *, arity: int | None = None) -> Handler:
    """Keep the arguments and change the function name."""

    def handler(call: CallSite) -> str | None:
        if arity is not None and len(call.args) != arity:
            return None
        return f"{target}({', '.join(call.args)})"

    return handler


def iif_to_case(call: CallSite) -> str | None:
    if len(call.args) != 3:
        return None
    condition, when_true, when_false = call.args
    return f"CASE WHEN {condition} THEN {when_true} ELSE {when_false} END"


def total_to_coalesce(zero: str = "0.0") -> Handler:
    """SQLite ``total(x)`` never returns NULL."""

    def handler(call: CallSite) -> str | None:
        if len(call.args) != 1:
            return None
        return f"COALESCE(SUM({call.args[0]}), {zero})"

    return handler


def scalar_extremum(target: str) -> Handler:
    """Multi-argument ``min``/``max`` are scalar in SQLite; one argument is the aggregate."""

    def handler(call: CallSite) -> str | None:
        if len(call.args) < 2:
            return None
        return f"{target}({', '.join(call.args)})"

    return handler


def unsupported(dialect: str, hint: str = "") -> Handler:
    """Warn (or fail in strict mode) and keep the call as written."""

    def handler(call: CallSite) -> str | None:
        message = f"{call.name}() has no {dialect} equivalent"
        call.warn(f"{message}; {hint}" if hint else message)
        return None

    return handler


def date_handler(
    dialect: str,
    *,
    now: str,
    cast: Callable[[str], str],
    shift: Callable[[str, str, str], str],
) -> Handler:
    """Handler for SQLite ``date``/``datetime``/``time`` calls.

    Parameters
    ----------
    now:
        Target expression for the ``'now'`` time value.
    cast:
        Wraps a time value in the target conversion for this function.
    shift:
        ``shift(value, amount, unit)`` applies one modifier.
    """

    def handler(call: CallSite) -> str | None:
        if not call.args:
            return cast(now)
        value = now if is_now(call.args[0]) else call.args[0]
        if len(call.args) == 1:
            return cast(value)
        for arg in call.args[1:]:
            modifier = parse_modifier(arg)
            if modifier is None:
                call.warn(f"{call.name}() modifier {arg.strip()} has no {dialect} translation")
                return None
            value = shift(value, *modifier)
        return cast(value)

    return handler


def _time_value(call: CallSite, args: tuple[str, ...], now: str, dialect: str) -> str | None:
    """Resolve the time-value argument of a date function, rejecting modifiers."""
    if not args:
        return now
    if len(args) > 1:
        call.warn(f"{call.name}() modifiers have no {dialect} translation")
        return None
    return now if is_now(args[0]) else args[0]


def strftime_handler(
    dialect: str,
    *,
    table: dict[str, str],
    render: Callable[[str, str], str],
    now: str,
    literal: Callable[[str], str] | None = None,
    epoch: Callable[[str], str] | None = None,
) -> Handler:
    """Handler for ``strftime(format, value)``.

    Parameters
    ----------
    table:
        SQLite specifier to target format-code translation.
    render:
        ``render(value, format_literal)`` builds the target call.
    epoch:
        Builds the target expression for the bare ``'%s'`` format, which no
        target format function supports.
    """

    def handler(call: CallSite) -> str | None:
        if not call.args:
            return None
        fmt = string_literal(call.args[0])
        if fmt is None:
            call.warn(f"strftime() with a non-literal format has no {dialect} translation")
            return None
        value = _time_value(call, call.args[1:], now, dialect)
        if value is None:
            return None
        if fmt == "%s" and epoch is not None:
            return epoch(value)
        converted = convert_strftime(fmt, table, literal)
        if converted is None:
            call.warn(f"strftime() format {call.args[0].strip()} has no {dialect} translation")
            return None
        return render(value, sql_string(converted))

    return handler


JULIAN_UNIX_EPOCH = "2440587.5"


def julianday_handler(dialect: str, *, now: str, epoch_days: Callable[[str], str]) -> Handler:
    """Handler for ``julianday(value)``: days since the Unix epoch plus its Julian day."""

    def handler(call: CallSite) -> str | None:
        value = _time_value(call, call.args, now, dialect)
        if value is None:
            return None
        return f"({epoch_days(value)} + {JULIAN_UNIX_EPOCH})"

    return handler


def group_concat_handler(render: Callable[[str, str, bool], str]) -> Handler:
    """Handler for ``group_concat(x[, separator])``.

    ``render(expression, separator, distinct)`` builds the target aggregate.
    """

    def handler(call: CallSite) -> str | None:
        if not call.args or len(call.args) > 2:
            return None
        expression = call.args[0]
        distinct = False
        match = re.match(r"DISTINCT\s+", expression, re.IGNORECASE)
        if match is not None:
            distinct = True
            expression = expression[match.end() :]
        separator = call.args[1] if len(call.args) == 2 else "','"
        return render(expression, separator, distinct)

    return handler


def json_extract_handler(dialect: str, render: Callable[[str, str], "str | None"]) -> Handler:
    """Handler for single-path ``json_extract(document, path)``.

    *render* returns ``None`` when it cannot express the path.
    """

    def handler(call: CallSite) -> str | None:
        if len(call.args) != 2:
            call.warn(f"json_extract() with {len(call.args)} arguments has no {dialect} translation")
            return None
        rendered = render(call.args[0], call.args[1])
        if rendered is None:
            call.warn(f"json_extract() path {call.args[1].strip()} has no {dialect} translation")
        return rendered

    return handler
