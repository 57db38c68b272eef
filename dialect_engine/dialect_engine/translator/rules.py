"""Named rewrite rules and the ordered rule sets built from them.

A :class:`Rule` is a small, independently testable rewrite step.  Each
variant owns one category of rewriting and the invariants that go with it:

* :class:`PatternRule` -- regular expression over the masked statement.
* :class:`FunctionRule` -- rewrites every call of one built-in function,
  innermost calls first.
* :class:`OperatorRule` -- swaps one operator for its target spelling.
* :class:`TransformRule` -- arbitrary stateful transform.
* :class:`QuotingRule` -- converts quoted identifiers to the target quotes.
* :class:`PlaceholderRule` -- renumbers ``?`` markers; always last.

Pagination and RETURNING rules live in their own modules.  A
:class:`RuleSet` applies rules in order and, for queries, enforces the phase
order in :data:`QUERY_PHASES`.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator, Sequence

from ._types import (
    Feature,
    PlaceholderStyle,
    ReturningEmulationInfo,
    TranslationFailure,
)
from .lexer import ScannedSql, find_calls, replace_spans, scan, unquote_identifier

# ---------------------------------------------------------------------------
# Rule kinds
# ---------------------------------------------------------------------------


class RuleKind(str, enum.Enum):
    """Category tag of a rule; determines where it may sit in a rule set."""

    SCHEMA = "schema"
    FUNCTION = "function"
    OPERATOR = "operator"
    STATEMENT = "statement"
    PAGINATION = "pagination"
    RETURNING = "returning"
    QUOTING = "quoting"
    CLEANUP = "cleanup"
    PLACEHOLDER = "placeholder"


QUERY_PHASES: tuple[RuleKind, ...] = (
    RuleKind.FUNCTION,
    RuleKind.OPERATOR,
    RuleKind.STATEMENT,
    RuleKind.PAGINATION,
    RuleKind.RETURNING,
    RuleKind.QUOTING,
    RuleKind.CLEANUP,
    RuleKind.PLACEHOLDER,
)


def _ignore(message: str) -> None:
    return None


# ---------------------------------------------------------------------------
# Rewrite state
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class RewriteState:
    """Mutable working copy threaded through one rule-set application."""

    sql: str
    dialect: str
    params: list[Any] | None = None
    original_sql: str = ""
    original_params: tuple[Any, ...] | None = None
    returning: ReturningEmulationInfo | None = None
    warn: Callable[[str], None] = _ignore
    applied: list[str] = field(default_factory=list)
    _scanned: ScannedSql | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.original_sql:
            self.original_sql = self.sql
        if self.original_params is None and self.params is not None:
            self.original_params = tuple(self.params)

    @property
    def scanned(self) -> ScannedSql:
        if self._scanned is None or self._scanned.sql != self.sql:
            self._scanned = scan(self.sql)
        return self._scanned

    def update(self, sql: str) -> None:
        self.sql = sql


class OriginalMatch:
    """A match found on masked text, reporting groups from the original text."""

    __slots__ = ("_match", "_sql")

    _TEMPLATE_REF = re.compile(r"\\g<(\w+)>|\\(\d+)")

    def __init__(self, match: re.Match[str], sql: str) -> None:
        self._match = match
        self._sql = sql

    def group(self, ref: int | str = 0) -> str | None:
        start, end = self._match.span(ref)
        if start < 0:
            return None
        return self._sql[start:end]

    def start(self, ref: int | str = 0) -> int:
        return self._match.start(ref)

    def end(self, ref: int | str = 0) -> int:
        return self._match.end(ref)

    def expand(self, template: str) -> str:
        def _sub(ref: re.Match[str]) -> str:
            key: int | str = ref.group(1) if ref.group(1) is not None else int(ref.group(2))
            if isinstance(key, str) and key.isdigit():
                key = int(key)
            return self.group(key) or ""

        return self._TEMPLATE_REF.sub(_sub, template)


@dataclass(frozen=True, slots=True)
class CallSite:
    """A function call handed to a :class:`FunctionRule` handler."""

    name: str
    args: tuple[str, ...]
    text: str
    warn: Callable[[str], None] = _ignore
    order: list[int] = field(default_factory=list)

    def reorder(self, *order: int) -> None:
        """Declare that the replacement emits the arguments in *order*.

        Bound parameters inside the arguments are permuted to match.
        """
        if sorted(order) != list(range(len(self.args))):
            raise ValueError(f"{self.name}() argument order {order} is not a permutation")
        self.order[:] = order


# ---------------------------------------------------------------------------
# Rule variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True, kw_only=True)
class Rule:
    """Base rule.  Subclasses implement :meth:`apply`."""

    name: str
    kind: RuleKind
    feature: Feature | None = None

    def triggers(self, scanned: ScannedSql) -> bool:
        """Cheap check whether :meth:`apply` could change *scanned*."""
        return True

    def apply(self, state: RewriteState) -> None:
        raise NotImplementedError


@dataclass(frozen=True, kw_only=True)
class PatternRule(Rule):
    """Replace every match of *pattern* on the masked statement.

    ``replacement`` may be a template (``\\1``, ``\\g<name>``), a callable
    receiving an :class:`OriginalMatch`, or ``None`` to keep the matched text
    and only emit ``warning``.
    """

    kind: RuleKind = RuleKind.STATEMENT
    pattern: re.Pattern[str]
    replacement: str | Callable[[OriginalMatch], str] | None = None
    warning: str | None = None
    top_level_only: bool = False

    def triggers(self, scanned: ScannedSql) -> bool:
        return self.pattern.search(scanned.masked) is not None

    def apply(self, state: RewriteState) -> None:
        scanned = state.scanned
        if self.top_level_only:
            matches = scanned.top_level(self.pattern)
        else:
            matches = list(self.pattern.finditer(scanned.masked))
        if not matches:
            return
        edits = []
        for match in matches:
            original = OriginalMatch(match, scanned.sql)
            if self.warning:
                state.warn(original.expand(self.warning))
            edits.append((match.start(), match.end(), self._render(original)))
        state.update(replace_spans(scanned.sql, edits))

    def _render(self, match: OriginalMatch) -> str:
        if self.replacement is None:
            return match.group(0) or ""
        if callable(self.replacement):
            return self.replacement(match)
        return match.expand(self.replacement)


@dataclass(frozen=True, kw_only=True)
class FunctionRule(Rule):
    """Rewrite calls of one function through *handler*.

    The handler returns the replacement text, or ``None`` to leave the call
    untouched.  Arguments arrive with nested calls already rewritten.  A
    replacement must keep every ``?`` marker of the call exactly once; one
    that moves arguments declares it through :meth:`CallSite.reorder`.
    """

    kind: RuleKind = RuleKind.FUNCTION
    feature: Feature | None = Feature.FUNCTION
    function: str
    handler: Callable[[CallSite], str | None]

    def triggers(self, scanned: ScannedSql) -> bool:
        pattern = re.compile(rf"(?<![\w.$]){re.escape(self.function)}\s*\(", re.IGNORECASE)
        return pattern.search(scanned.masked) is not None

    def apply(self, state: RewriteState) -> None:
        # Right-to-left: any call nested inside another starts later, so it
        # is handled before the call enclosing it.
        limit: int | None = None
        while True:
            scanned = state.scanned
            calls = [c for c in find_calls(scanned, self.function) if limit is None or c.start < limit]
            if not calls:
                return
            call = max(calls, key=lambda c: c.start)
            limit = call.start
            site = CallSite(
                name=self.function,
                args=tuple(scanned.sql[a:b] for a, b in call.args),
                text=scanned.sql[call.start : call.end],
                warn=state.warn,
            )
            replacement = self.handler(site)
            if replacement is None or replacement == site.text:
                continue
            state.update(replace_spans(scanned.sql, [(call.start, call.end, replacement)]))
            if len(state.scanned.placeholders) != len(scanned.placeholders):
                raise TranslationFailure(
                    f"{self.function}() rewrite would change the number of bound parameters",
                    dialect=state.dialect,
                    sql=state.original_sql,
                )
            if site.order:
                _permute_params(state, scanned, call.args, site.order)


def _permute_params(
    state: RewriteState,
    scanned: ScannedSql,
    args: tuple[tuple[int, int], ...],
    order: Sequence[int],
) -> None:
    """Reorder the parameters bound inside *args* to follow *order*."""
    if state.params is None or len(state.params) != len(scanned.placeholders):
        return
    groups = [scanned.placeholders_between(start, end) for start, end in args]
    slots = [ordinal for group in groups for ordinal in group]
    moved = [state.params[ordinal] for position in order for ordinal in groups[position]]
    params = list(state.params)
    for slot, value in zip(slots, moved):
        params[slot] = value
    state.params = params


def _operator_pattern(operator: str) -> re.Pattern[str]:
    words = operator.split()
    if all(w.isalpha() for w in words):
        return re.compile(r"\b" + r"\s+".join(map(re.escape, words)) + r"\b", re.IGNORECASE)
    return re.compile(re.escape(operator))


@dataclass(frozen=True, kw_only=True)
class OperatorRule(Rule):
    """Replace an infix operator with the target's spelling."""

    kind: RuleKind = RuleKind.OPERATOR
    feature: Feature | None = Feature.OPERATOR
    operator: str
    target: str
    pattern: re.Pattern[str] | None = None

    def __post_init__(self) -> None:
        if self.pattern is None:
            object.__setattr__(self, "pattern", _operator_pattern(self.operator))

    def maps(self, operator: str) -> bool:
        return " ".join(operator.split()).upper() == " ".join(self.operator.split()).upper()

    def triggers(self, scanned: ScannedSql) -> bool:
        assert self.pattern is not None
        return self.pattern.search(scanned.masked) is not None

    def apply(self, state: RewriteState) -> None:
        assert self.pattern is not None
        scanned = state.scanned
        edits = [(m.start(), m.end(), self.target) for m in self.pattern.finditer(scanned.masked)]
        if edits:
            state.update(replace_spans(scanned.sql, edits))


@dataclass(frozen=True, kw_only=True)
class TransformRule(Rule):
    """Run an arbitrary transform when *trigger* matches the masked text."""

    kind: RuleKind = RuleKind.STATEMENT
    transform: Callable[[RewriteState], None]
    trigger: re.Pattern[str]

    def triggers(self, scanned: ScannedSql) -> bool:
        return self.trigger.search(scanned.masked) is not None

    def apply(self, state: RewriteState) -> None:
        if self.triggers(state.scanned):
            self.transform(state)


def quote_identifier(name: str, quotes: tuple[str, str]) -> str:
    opening, closing = quotes
    return f"{opening}{name.replace(closing, closing * 2)}{closing}"


@dataclass(frozen=True, kw_only=True)
class QuotingRule(Rule):
    """Convert ``"x"``, `` `x` `` and ``[x]`` identifiers to *quotes*."""

    kind: RuleKind = RuleKind.QUOTING
    quotes: tuple[str, str]

    def triggers(self, scanned: ScannedSql) -> bool:
        return any(scanned.sql[span.start] != self.quotes[0] for span in scanned.identifiers)

    def apply(self, state: RewriteState) -> None:
        scanned = state.scanned
        edits = []
        for span in scanned.identifiers:
            text = scanned.sql[span.start : span.end]
            if text[0] == self.quotes[0]:
                continue
            edits.append((span.start, span.end, quote_identifier(unquote_identifier(text), self.quotes)))
        if edits:
            state.update(replace_spans(scanned.sql, edits))


def render_placeholder(style: PlaceholderStyle, index: int) -> str:
    """Marker for the *index*-th (1-based) parameter in *style*."""
    if style is PlaceholderStyle.NUMERIC_DOLLAR:
        return f"${index}"
    if style is PlaceholderStyle.NUMERIC_COLON:
        return f":{index}"
    if style is PlaceholderStyle.FORMAT:
        return "%s"
    return "?"


@dataclass(frozen=True, kw_only=True)
class PlaceholderRule(Rule):
    """Renumber ``?`` markers left to right into the target style.

    Must be the last rule of a query rule set: any earlier rule may insert
    or remove markers.  With ``FORMAT`` style literal ``%`` signs are
    doubled, since the driver interpolates the whole statement.
    """

    kind: RuleKind = RuleKind.PLACEHOLDER
    style: PlaceholderStyle

    def triggers(self, scanned: ScannedSql) -> bool:
        return self.style is not PlaceholderStyle.QMARK and bool(scanned.placeholders)

    def apply(self, state: RewriteState) -> None:
        scanned = state.scanned
        count = len(scanned.placeholders)
        if state.params is not None and len(state.params) != count:
            raise TranslationFailure(
                f"Statement has {count} placeholder(s) but {len(state.params)} parameter(s) were supplied",
                dialect=state.dialect,
                sql=state.original_sql,
            )
        if self.style is PlaceholderStyle.QMARK or not count:
            return
        edits = [(offset, offset + 1, render_placeholder(self.style, i)) for i, offset in enumerate(scanned.placeholders, 1)]
        if self.style is PlaceholderStyle.FORMAT:
            edits.extend((i, i + 1, "%%") for i, char in enumerate(scanned.sql) if char == "%")
        state.update(replace_spans(scanned.sql, edits))


# ---------------------------------------------------------------------------
# Rule set
# ---------------------------------------------------------------------------


def _always(feature: Feature) -> bool:
    return True


class RuleSet:
    """Immutable, ordered collection of uniquely named rules.

    Parameters
    ----------
    rules:
        Rules in application order.
    phases:
        When given, every rule's kind must appear in *phases* and rules must
        be sorted by phase.  Query rule sets use :data:`QUERY_PHASES`.
    """

    def __init__(self, rules: Iterable[Rule], *, phases: Sequence[RuleKind] | None = None) -> None:
        self._rules = tuple(rules)
        self._phases = tuple(phases) if phases is not None else None
        seen: set[str] = set()
        for rule in self._rules:
            if rule.name in seen:
                raise ValueError(f"Duplicate rule name: {rule.name}")
            seen.add(rule.name)
        if self._phases is not None:
            self._check_phase_order()

    def _check_phase_order(self) -> None:
        assert self._phases is not None
        last = 0
        for rule in self._rules:
            if rule.kind not in self._phases:
                raise ValueError(f"Rule {rule.name!r} of kind {rule.kind.value} is not allowed in this rule set")
            position = self._phases.index(rule.kind)
            if position < last:
                raise ValueError(
                    f"Rule {rule.name!r} ({rule.kind.value}) must run before "
                    f"{self._phases[last].value} rules"
                )
            last = position

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, name: object) -> bool:
        return any(rule.name == name for rule in self._rules)

    @property
    def names(self) -> list[str]:
        return [rule.name for rule in self._rules]

    def get(self, name: str) -> Rule | None:
        for rule in self._rules:
            if rule.name == name:
                return rule
        return None

    def of_kind(self, *kinds: RuleKind) -> list[Rule]:
        return [rule for rule in self._rules if rule.kind in kinds]

    def without(self, *names: str) -> RuleSet:
        return RuleSet((r for r in self._rules if r.name not in names), phases=self._phases)

    def replaced(self, name: str, rule: Rule) -> RuleSet:
        if name not in self:
            raise KeyError(name)
        return RuleSet((rule if r.name == name else r for r in self._rules), phases=self._phases)

    def inserted_before(self, name: str, rule: Rule) -> RuleSet:
        if name not in self:
            raise KeyError(name)
        rules: list[Rule] = []
        for existing in self._rules:
            if existing.name == name:
                rules.append(rule)
            rules.append(existing)
        return RuleSet(rules, phases=self._phases)

    def needs_rewrite(self, scanned: ScannedSql, enabled: Callable[[Feature], bool] = _always) -> bool:
        return any(
            rule.triggers(scanned) for rule in self._rules if rule.feature is None or enabled(rule.feature)
        )

    def apply(self, state: RewriteState, enabled: Callable[[Feature], bool] = _always) -> RewriteState:
        """Run every enabled rule over *state* and return it.

        Raises:
            TranslationFailure: If a rule rejects the statement.  Unexpected
                errors raised by a rule are wrapped, naming the rule.
        """
        for rule in self._rules:
            if rule.feature is not None and not enabled(rule.feature):
                continue
            before = (state.sql, state.params, state.returning)
            try:
                rule.apply(state)
            except TranslationFailure as exc:
                exc.rule = exc.rule or rule.name
                exc.dialect = exc.dialect or state.dialect
                exc.sql = exc.sql or state.original_sql
                exc.rewritten_sql = exc.rewritten_sql or state.sql
                raise
            except (ValueError, LookupError, TypeError, AttributeError) as exc:
                raise TranslationFailure(
                    f"SQL translation failed in rule {rule.name!r}: {exc}",
                    dialect=state.dialect,
                    sql=state.original_sql,
                    rewritten_sql=state.sql,
                    rule=rule.name,
                ) from exc
            if (state.sql, state.params, state.returning) != before:
                state.applied.append(rule.name)
        return state
