"""Base schema and query rewriters.

Dialect plugins subclass :class:`BaseSchemaRewriter` and
:class:`BaseQueryRewriter`, declare their tables as class attributes and
extend the rule hooks (``*_rules``).  The base classes own everything that
is not dialect specific: statement classification, strict-mode handling,
error-log recording and the fixed query phase order.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, ClassVar, Sequence

from ._types import (
    Feature,
    PlaceholderStyle,
    PluginOptions,
    ReturningMode,
    ReturningStrategy,
    RewrittenQuery,
    TargetDialect,
    TranslationFailure,
    TypeMapping,
    UnsupportedConstructError,
)
from .error_log import TranslationErrorLog
from .lexer import (
    IDENTIFIER_PATTERN,
    QUALIFIED_PATTERN,
    ScannedSql,
    leading_keyword,
    matching_paren,
    replace_spans,
    scan,
    split_top_level,
    statement_end,
    strip_span,
    unquote_identifier,
)
from .pagination import PaginationRule, PaginationStyle
from .returning import ReturningRule
from .rules import (
    QUERY_PHASES,
    OriginalMatch,
    OperatorRule,
    PatternRule,
    PlaceholderRule,
    QuotingRule,
    RewriteState,
    Rule,
    RuleKind,
    RuleSet,
    TransformRule,
    quote_identifier,
)
from .type_mapping import TypeMapper, base_type, normalise_type

logger = logging.getLogger(__name__)

_DDL_VERBS = frozenset({"CREATE", "ALTER", "DROP"})

# Target types that accept a length/precision argument list.
SIZED_TYPES = frozenset(
    {
        "BINARY",
        "CHAR",
        "CHARACTER",
        "DECIMAL",
        "NCHAR",
        "NUMBER",
        "NUMERIC",
        "NVARCHAR",
        "NVARCHAR2",
        "RAW",
        "VARBINARY",
        "VARCHAR",
        "VARCHAR2",
    }
)

_TYPE_WORD = (
    r"(?!(?:CONSTRAINT|PRIMARY|NOT|NULL|UNIQUE|CHECK|DEFAULT|COLLATE|REFERENCES|GENERATED|AS|ON)\b)"
    r"[A-Za-z_]\w*"
)
_COLUMN_HEAD = re.compile(
    rf"^(?P<name>{IDENTIFIER_PATTERN})(?:\s+(?P<type>{_TYPE_WORD}(?:\s+{_TYPE_WORD})*(?:\s*\([^()]*\))?))?",
    re.IGNORECASE,
)
_TYPE_ARGS = re.compile(r"\(\s*[^()]*\)\s*$")
_TABLE_CONSTRAINT = re.compile(r"^\s*(?:CONSTRAINT|PRIMARY\s+KEY|UNIQUE|CHECK|FOREIGN\s+KEY)\b", re.IGNORECASE)
_CREATE_TABLE = re.compile(
    r"^\s*CREATE\s+(?:(?:TEMP|TEMPORARY|GLOBAL\s+TEMPORARY)\s+)?TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?"
    rf"{QUALIFIED_PATTERN}\s*\(",
    re.IGNORECASE,
)
_ALTER_ADD = re.compile(
    rf"^\s*ALTER\s+TABLE\s+{QUALIFIED_PATTERN}\s+ADD\s+(?:COLUMN\s+)?",
    re.IGNORECASE,
)
_COLUMN_TRIGGER = re.compile(r"^\s*(?:CREATE\s+(?:\w+\s+)*TABLE|ALTER\s+TABLE)\b", re.IGNORECASE)
_DEFAULT_VALUE = re.compile(r"\bDEFAULT\s+(\([^()]*(?:\([^()]*\)[^()]*)*\)|'[^']*'|[^\s,]+)", re.IGNORECASE)

# ---------------------------------------------------------------------------
# Column definitions
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ColumnDef:
    """One column definition split into name, type and trailing constraints.

    ``type`` starts as the declared source type and is replaced by the target
    type during rewriting; ``source_type`` keeps the declaration.
    ``constraints`` and ``masked_constraints`` are edited in lock step.
    """

    name: str
    source_type: str
    type: str
    constraints: str
    masked_constraints: str

    @classmethod
    def parse(cls, scanned: ScannedSql, start: int, end: int) -> ColumnDef | None:
        start, end = strip_span(scanned.masked, start, end)
        masked = scanned.masked[start:end]
        if not masked or _TABLE_CONSTRAINT.match(masked):
            return None
        head = _COLUMN_HEAD.match(masked)
        if head is None:
            return None
        source_type = ""
        if head.group("type"):
            source_type = scanned.sql[start + head.start("type") : start + head.end("type")]
        rest_start = start + head.end()
        rest_start, rest_end = strip_span(scanned.masked, rest_start, end)
        return cls(
            name=scanned.sql[start + head.start("name") : start + head.end("name")],
            source_type=source_type,
            type=source_type,
            constraints=scanned.sql[rest_start:rest_end],
            masked_constraints=scanned.masked[rest_start:rest_end],
        )

    @property
    def plain_name(self) -> str:
        return unquote_identifier(self.name)

    def has(self, pattern: str) -> bool:
        return re.search(rf"\b{pattern}\b", self.masked_constraints, re.IGNORECASE) is not None

    @property
    def is_key(self) -> bool:
        return self.has(r"PRIMARY\s+KEY") or self.has("UNIQUE")

    @property
    def autoincrement(self) -> bool:
        return self.has("AUTOINCREMENT")

    @property
    def default(self) -> str | None:
        """The DEFAULT expression as written, or ``None``."""
        match = _DEFAULT_VALUE.search(self.masked_constraints)
        if match is None:
            return None
        return self.constraints[match.start(1) : match.end(1)]

    def sub(self, pattern: str, replacement: str) -> None:
        """Replace *pattern* (matched on the masked text) with plain *replacement*."""
        compiled = re.compile(pattern, re.IGNORECASE)
        edits = [(m.start(), m.end(), replacement) for m in compiled.finditer(self.masked_constraints)]
        if edits:
            self.constraints = replace_spans(self.constraints, edits).strip()
            self.masked_constraints = replace_spans(self.masked_constraints, edits).strip()

    def move_default_first(self) -> None:
        """Move the DEFAULT clause ahead of the other column constraints."""
        match = _DEFAULT_VALUE.search(self.masked_constraints)
        if match is None or match.start() == 0:
            return
        start = match.start()
        while start > 0 and self.masked_constraints[start - 1].isspace():
            start -= 1
        end = match.end()

        def moved(text: str) -> str:
            return f"{text[match.start() : end]} {text[:start]}{text[end:]}".strip()

        self.constraints = moved(self.constraints)
        self.masked_constraints = moved(self.masked_constraints)

    def render(self) -> str:
        return " ".join(part for part in (self.name, self.type, self.constraints) if part)


def column_spans(scanned: ScannedSql) -> list[tuple[int, int]]:
    """Spans of the column definitions in a CREATE TABLE or ALTER TABLE ADD."""
    create = _CREATE_TABLE.match(scanned.masked)
    if create is not None:
        opening = create.end() - 1
        closing = matching_paren(scanned.masked, opening)
        return split_top_level(scanned.masked, opening + 1, closing)
    alter = _ALTER_ADD.match(scanned.masked)
    if alter is not None:
        return [(alter.end(), statement_end(scanned))]
    return []


# ---------------------------------------------------------------------------
# Shared plumbing
# ---------------------------------------------------------------------------


class _BaseRewriter:
    """Options, strict-mode warnings and failure recording."""

    DIALECT: ClassVar[TargetDialect]
    KIND: ClassVar[str]
    QUOTES: ClassVar[tuple[str, str]] = ('"', '"')

    def __init__(
        self,
        options: PluginOptions | None = None,
        error_log: TranslationErrorLog | None = None,
    ) -> None:
        self._options = options or PluginOptions()
        self._error_log = error_log

    @property
    def name(self) -> str:
        return f"{self.dialect}-{self.KIND}"

    @property
    def dialect(self) -> str:
        return self.DIALECT.value

    @property
    def options(self) -> PluginOptions:
        return self._options

    def needs_translation(self, feature: Feature | str) -> bool:
        """Return whether rules of *feature*'s category are enabled."""
        return self._options.transformations.enabled(feature)

    def _warn(self, message: str) -> None:
        if self._options.strict:
            raise UnsupportedConstructError(message, dialect=self.dialect)
        logger.warning("[%s] %s", self.name, message, extra={"dialect": self.dialect})

    def _log(self, message: str, *args: Any) -> None:
        if self._options.verbose:
            logger.info("[%s] " + message, self.name, *args)

    def _record_failure(self, sql: str, exc: TranslationFailure) -> None:
        logger.debug(
            "[%s] Translation failed: %s", self.name, exc, extra={"dialect": self.dialect, "rule": exc.rule}
        )
        if self._error_log is not None:
            self._error_log.log_translation_error(self.dialect, sql, exc, exc.rewritten_sql)


# ---------------------------------------------------------------------------
# Schema rewriter
# ---------------------------------------------------------------------------


class BaseSchemaRewriter(_BaseRewriter):
    """Rewrite SQLite DDL through an ordered rule set.

    Subclasses set the class attributes below and extend the rule hooks.
    ``build_rules`` runs once, at construction.

    Parameters
    ----------
    options:
        Plugin options; ``custom_type_mappings`` override ``TYPE_MAPPINGS``.
    error_log:
        Sink receiving one record per failed :meth:`rewrite_schema` call.
    """

    KIND = "schema"
    TYPE_MAPPINGS: ClassVar[tuple[TypeMapping, ...]] = ()
    FALLBACK_TYPE: ClassVar[str] = "TEXT"
    IDENTITY_TYPE: ClassVar[str] = "INTEGER"
    TIMESTAMP_TYPE: ClassVar[str] = "TIMESTAMP"
    # Types that cannot back a key or unique column, and their replacement.
    UNINDEXABLE_TYPES: ClassVar[frozenset[str]] = frozenset()
    KEY_TEXT_TYPE: ClassVar[str | None] = None
    NOW_DEFAULTS: ClassVar[dict[str, str]] = {
        "datetime": "CURRENT_TIMESTAMP",
        "date": "CURRENT_DATE",
        "time": "CURRENT_TIME",
    }
    SUPPORTS_DEFERRABLE: ClassVar[bool] = True
    NATIVE_TABLE_OPTIONS: ClassVar[bool] = False

    def __init__(
        self,
        options: PluginOptions | None = None,
        error_log: TranslationErrorLog | None = None,
    ) -> None:
        super().__init__(options, error_log)
        self._types = TypeMapper(
            self.dialect,
            self.TYPE_MAPPINGS,
            fallback=self.FALLBACK_TYPE,
            custom=self._options.custom_type_mappings,
            verbose=self._options.verbose,
        )
        self._rules = self.build_rules()

    @property
    def rules(self) -> RuleSet:
        return self._rules

    # -- type mapping ------------------------------------------------------------

    def get_type_mappings(self) -> list[TypeMapping]:
        return self._types.mappings()

    def map_type(self, source_type: str) -> str:
        return self._types.map_type(source_type)

    def column_type(self, source_type: str) -> str:
        """Target type for a declared column type, keeping size arguments."""
        if not source_type:
            self._log("Column has no declared type; using %s", self._types.fallback)
            return self._types.fallback
        target = self.map_type(source_type)
        args = _TYPE_ARGS.search(normalise_type(source_type))
        if args is None or base_type(target) not in SIZED_TYPES:
            return target
        mapping = self._types.lookup(source_type)
        if mapping is not None and normalise_type(mapping.source_type) == normalise_type(source_type):
            # An exact mapping for the sized declaration wins.
            return target
        return f"{base_type(target)}{args.group(0).strip()}"

    def convert_value(self, source_type: str, value: Any) -> Any:
        """Convert a bound value for a column declared as *source_type*.

        Statements carry no column types, so translation and execution never
        call this.  Callers that know the declared type of a parameter apply
        it before binding.
        """
        return self._types.convert(source_type, value)

    # -- entry point -------------------------------------------------------------

    def rewrite_schema(self, sql: str) -> str:
        """Rewrite one CREATE/ALTER/DROP statement.

        Raises:
            TranslationFailure: If *sql* does not start with a DDL verb, or a
                rule rejects it.  The failure is recorded in the error log
                before it propagates.
        """
        try:
            keyword = leading_keyword(sql)
            if keyword not in _DDL_VERBS:
                found = repr(keyword) if keyword else "an empty statement"
                raise TranslationFailure(
                    f"Schema rewriting expects CREATE, ALTER or DROP, got {found}",
                    dialect=self.dialect,
                    sql=sql,
                )
            state = RewriteState(sql=sql, dialect=self.dialect, warn=self._warn)
            self._rules.apply(state, self.needs_translation)
        except TranslationFailure as exc:
            self._record_failure(sql, exc)
            raise
        if state.applied:
            self._log("Applied %s", ", ".join(state.applied))
        return state.sql

    # -- rules -------------------------------------------------------------------

    def build_rules(self) -> RuleSet:
        """Assemble the schema rule set in application order."""
        return RuleSet(
            [
                *self.statement_rules(),
                TransformRule(
                    name="column-definitions",
                    kind=RuleKind.SCHEMA,
                    transform=self._rewrite_columns,
                    trigger=_COLUMN_TRIGGER,
                ),
                *self.default_rules(),
                *self.constraint_rules(),
                *self.index_rules(),
                *self.table_rules(),
                QuotingRule(name="quote-identifiers", kind=RuleKind.SCHEMA, quotes=self.QUOTES),
                *self.cleanup_rules(),
            ]
        )

    def statement_rules(self) -> list[Rule]:
        return [
            PatternRule(
                name="virtual-table",
                kind=RuleKind.SCHEMA,
                pattern=re.compile(r"^\s*CREATE\s+VIRTUAL\s+TABLE\b", re.IGNORECASE),
                warning=f"CREATE VIRTUAL TABLE has no {self.dialect} equivalent; statement left as written",
            ),
            PatternRule(
                name="trigger",
                kind=RuleKind.SCHEMA,
                pattern=re.compile(r"^\s*CREATE\s+(?:TEMP(?:ORARY)?\s+)?TRIGGER\b", re.IGNORECASE),
                warning=f"Trigger bodies are not translated to {self.dialect}; statement left as written",
            ),
        ]

    def default_rules(self) -> list[Rule]:
        return [
            PatternRule(
                name="now-defaults",
                kind=RuleKind.SCHEMA,
                feature=Feature.DEFAULT,
                pattern=re.compile(
                    r"\bDEFAULT\s*\(\s*(datetime|date|time)\s*\(\s*'[^']*'\s*\)\s*\)",
                    re.IGNORECASE,
                ),
                replacement=self._now_default,
            ),
        ]

    def constraint_rules(self) -> list[Rule]:
        rules: list[Rule] = [
            PatternRule(
                name="conflict-clauses",
                kind=RuleKind.SCHEMA,
                feature=Feature.CHECK,
                pattern=re.compile(r"\s+ON\s+CONFLICT\s+(ROLLBACK|ABORT|FAIL|IGNORE|REPLACE)\b", re.IGNORECASE),
                replacement="",
                warning=f"Dropped ON CONFLICT \\1 constraint clause; {self.dialect} has no equivalent",
            ),
        ]
        if not self.SUPPORTS_DEFERRABLE:
            rules.append(
                PatternRule(
                    name="deferrable",
                    kind=RuleKind.SCHEMA,
                    feature=Feature.FOREIGN_KEY,
                    pattern=re.compile(
                        r"\s+(?:NOT\s+)?DEFERRABLE(?:\s+INITIALLY\s+(?:DEFERRED|IMMEDIATE))?\b",
                        re.IGNORECASE,
                    ),
                    replacement="",
                    warning=f"Dropped DEFERRABLE; {self.dialect} checks constraints immediately",
                )
            )
        return rules

    def index_rules(self) -> list[Rule]:
        return []

    def table_rules(self) -> list[Rule]:
        rules: list[Rule] = [
            PatternRule(
                name="sqlite-table-options",
                kind=RuleKind.SCHEMA,
                pattern=re.compile(
                    r"(\))\s*(?:WITHOUT\s+ROWID|STRICT)(?:\s*,\s*(?:WITHOUT\s+ROWID|STRICT))?",
                    re.IGNORECASE,
                ),
                replacement="\\1",
            ),
        ]
        if not self.NATIVE_TABLE_OPTIONS:
            rules.append(
                PatternRule(
                    name="engine-options",
                    kind=RuleKind.SCHEMA,
                    pattern=re.compile(
                        r"\s*\b(?:ENGINE|(?:DEFAULT\s+)?(?:CHARSET|CHARACTER\s+SET)|COLLATE|AUTO_INCREMENT)"
                        r"\s*=\s*\w+",
                        re.IGNORECASE,
                    ),
                    replacement="",
                )
            )
        return rules

    def cleanup_rules(self) -> list[Rule]:
        return []

    # -- column hooks ------------------------------------------------------------

    def _now_default(self, match: OriginalMatch) -> str:
        function = (match.group(1) or "").lower()
        text = match.group(0) or ""
        if "'now'" not in text.lower().replace(" ", ""):
            return text
        return f"DEFAULT {self.NOW_DEFAULTS[function]}"

    def _rewrite_columns(self, state: RewriteState) -> None:
        scanned = state.scanned
        edits = []
        for start, end in column_spans(scanned):
            column = ColumnDef.parse(scanned, start, end)
            if column is None:
                continue
            start, end = strip_span(scanned.masked, start, end)
            rendered = self.rewrite_column(column).render()
            if rendered != scanned.sql[start:end]:
                edits.append((start, end, rendered))
        if edits:
            state.update(replace_spans(scanned.sql, edits))

    def rewrite_column(self, column: ColumnDef) -> ColumnDef:
        """Map the column's type, convert identity syntax and run dialect hooks."""
        if column.autoincrement and self.needs_translation(Feature.AUTO_INCREMENT):
            column = self.identity_column(column)
        else:
            column.type = self.column_type(column.source_type)
        return self.adjust_column(column)

    def identity_column(self, column: ColumnDef) -> ColumnDef:
        """``INTEGER PRIMARY KEY AUTOINCREMENT`` in the target's identity syntax."""
        column.type = self.IDENTITY_TYPE
        column.sub(r"\s*\bAUTOINCREMENT\b", "")
        return column

    def adjust_column(self, column: ColumnDef) -> ColumnDef:
        """Dialect fix-ups applied after type mapping."""
        if (
            self.needs_translation(Feature.DEFAULT)
            and base_type(column.source_type) == "TEXT"
            and (column.has(r"DEFAULT\s+CURRENT_TIMESTAMP") or column.has(r"DEFAULT\s*\(\s*datetime"))
        ):
            column.type = self.TIMESTAMP_TYPE
        if (
            self.KEY_TEXT_TYPE is not None
            and column.is_key
            and normalise_type(column.type) in self.UNINDEXABLE_TYPES
        ):
            self._log("Column %s is a key; using %s instead of %s", column.plain_name, self.KEY_TEXT_TYPE, column.type)
            column.type = self.KEY_TEXT_TYPE
        return column


# ---------------------------------------------------------------------------
# Query rewriter
# ---------------------------------------------------------------------------


class BaseQueryRewriter(_BaseRewriter):
    """Rewrite SQLite DML through a phase-ordered rule set.

    Phases run in :data:`~.rules.QUERY_PHASES` order: functions, operators,
    statement transforms, pagination, RETURNING, quoting, cleanup and
    finally placeholder renumbering.

    Parameters
    ----------
    options:
        Plugin options; ``placeholder_style`` overrides ``PLACEHOLDER_STYLE``.
    error_log:
        Sink receiving one record per failed :meth:`rewrite` call.
    """

    KIND = "query"
    PLACEHOLDER_STYLE: ClassVar[PlaceholderStyle] = PlaceholderStyle.QMARK
    PAGINATION_STYLE: ClassVar[PaginationStyle] = PaginationStyle.LIMIT_OFFSET
    UNBOUNDED_LIMIT: ClassVar[str | None] = None
    RETURNING_MODE: ClassVar[ReturningMode] = ReturningMode.NATIVE
    INSERT_RETURNING: ClassVar[ReturningStrategy] = ReturningStrategy.LAST_INSERT_ID
    # Row key used by emulated RETURNING; ``None`` uses ``returning_key_column``.
    ROW_KEY_SQL: ClassVar[str | None] = None

    def __init__(
        self,
        options: PluginOptions | None = None,
        error_log: TranslationErrorLog | None = None,
    ) -> None:
        super().__init__(options, error_log)
        self._placeholder_style = self._options.placeholder_style or self.PLACEHOLDER_STYLE
        self._rules = self.build_rules()
        self._function_rules = RuleSet(self._rules.of_kind(RuleKind.FUNCTION))

    @property
    def rules(self) -> RuleSet:
        return self._rules

    @property
    def placeholder_style(self) -> PlaceholderStyle:
        return self._placeholder_style

    # -- entry points ------------------------------------------------------------

    def rewrite(self, sql: str, params: Sequence[Any] | None = None) -> RewrittenQuery:
        """Rewrite *sql* and its parameters.

        Raises:
            TranslationFailure: If a rule rejects the statement.  The failure
                is recorded in the error log before it propagates.
        """
        state = RewriteState(
            sql=sql,
            dialect=self.dialect,
            params=list(params) if params is not None else None,
            warn=self._warn,
        )
        try:
            self._rules.apply(state, self.needs_translation)
        except TranslationFailure as exc:
            self._record_failure(sql, exc)
            raise
        if state.applied:
            self._log("Applied %s", ", ".join(state.applied))
        return RewrittenQuery(
            sql=state.sql,
            params=state.params,
            returning=state.returning,
            applied_rules=tuple(state.applied),
        )

    def rewrite_query(self, sql: str) -> str:
        return self.rewrite(sql).sql

    def needs_rewrite(self, sql: str) -> bool:
        try:
            scanned = scan(sql)
        except TranslationFailure:
            # Let rewrite() report it.
            return True
        return self._rules.needs_rewrite(scanned, self.needs_translation)

    def rewrite_function(self, call: str) -> str:
        """Apply the function rules to a single call expression."""
        state = RewriteState(sql=call, dialect=self.dialect, warn=self._warn)
        self._function_rules.apply(state, self.needs_translation)
        return state.sql

    def rewrite_operator(self, operator: str) -> str:
        if not self.needs_translation(Feature.OPERATOR):
            return operator
        for rule in self._rules.of_kind(RuleKind.OPERATOR):
            if isinstance(rule, OperatorRule) and rule.maps(operator):
                return rule.target
        return operator

    # -- rules -------------------------------------------------------------------

    def build_rules(self) -> RuleSet:
        """Assemble the query rule set; phase order is checked by ``RuleSet``."""
        return RuleSet(
            [
                *self.function_rules(),
                *self.operator_rules(),
                *self.statement_rules(),
                PaginationRule(
                    name="pagination",
                    style=self.PAGINATION_STYLE,
                    unbounded_limit=self.UNBOUNDED_LIMIT,
                ),
                self.returning_rule(),
                QuotingRule(name="quote-identifiers", quotes=self.QUOTES),
                *self.cleanup_rules(),
                PlaceholderRule(name="placeholders", style=self._placeholder_style),
            ],
            phases=QUERY_PHASES,
        )

    def function_rules(self) -> list[Rule]:
        return []

    def operator_rules(self) -> list[Rule]:
        return []

    def statement_rules(self) -> list[Rule]:
        return []

    def cleanup_rules(self) -> list[Rule]:
        return []

    def returning_rule(self) -> ReturningRule:
        key = self._options.returning_key_column
        return ReturningRule(
            name="returning",
            mode=self.RETURNING_MODE,
            insert_strategy=self.INSERT_RETURNING,
            key_column=self.ROW_KEY_SQL or key,
            key_sql=self.ROW_KEY_SQL or quote_identifier(key, ('"', '"')),
        )
