"""Translator shared types.

Every type here is dialect-agnostic.  Rewriters, the registry, the error log
and the execution facade all exchange these types; the per-dialect modules
only supply rule tables built on top of them.

ZERO dependency on the tokenizer backend.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Dialects & vocabularies
# ---------------------------------------------------------------------------


class TargetDialect(str, enum.Enum):
    """Database engines SQLite-shaped statements can be translated to."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    ORACLE = "oracle"
    MSSQL = "mssql"


class Feature(str, enum.Enum):
    """Rewrite categories that can be switched off through ``transformations``."""

    AUTO_INCREMENT = "AUTO_INCREMENT"
    DEFAULT = "DEFAULT"
    CHECK = "CHECK"
    FOREIGN_KEY = "FOREIGN_KEY"
    INDEX = "INDEX"
    FUNCTION = "FUNCTION"
    OPERATOR = "OPERATOR"


class StatementKind(str, enum.Enum):
    """Coarse statement classification used to pick a rewriter."""

    DDL = "ddl"
    DML = "dml"
    OTHER = "other"


class PlaceholderStyle(str, enum.Enum):
    """Positional parameter markers understood by target drivers."""

    QMARK = "qmark"  # ?
    NUMERIC_DOLLAR = "numeric_dollar"  # $1, $2
    FORMAT = "format"  # %s
    NUMERIC_COLON = "numeric_colon"  # :1, :2


class ReturningMode(str, enum.Enum):
    """How a dialect satisfies ``RETURNING``."""

    NATIVE = "native"
    OUTPUT_CLAUSE = "output_clause"
    EMULATED = "emulated"


class ReturningStrategy(str, enum.Enum):
    """Follow-up read used to reconstruct emulated ``RETURNING`` rows."""

    LAST_INSERT_ID = "last_insert_id"
    ROW_LOCATOR = "row_locator"
    PRE_IMAGE = "pre_image"
    KEY_CAPTURE = "key_capture"


class ErrorType(str, enum.Enum):
    """Stage at which a translated statement failed."""

    TRANSLATION = "translation"
    EXECUTION = "execution"


# ---------------------------------------------------------------------------
# Type mapping
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TypeMapping:
    """A single source-type to target-type substitution.

    Immutable.  ``source_type`` is matched case-insensitively by
    :class:`~dialect_engine.translator.type_mapping.TypeMapper`.
    """

    source_type: str
    target_type: str
    converter: Callable[[Any], Any] | None = field(default=None, compare=False)

    def convert(self, value: Any) -> Any:
        """Apply the value converter, leaving ``None`` untouched."""
        if value is None or self.converter is None:
            return value
        return self.converter(value)


# ---------------------------------------------------------------------------
# Plugin options
# ---------------------------------------------------------------------------

_FEATURE_FLAGS: dict[Feature, str] = {
    Feature.AUTO_INCREMENT: "auto_increment",
    Feature.DEFAULT: "default_values",
    Feature.CHECK: "constraints",
    Feature.FOREIGN_KEY: "constraints",
    Feature.INDEX: "indexes",
    Feature.FUNCTION: "functions",
    Feature.OPERATOR: "operators",
}


class Transformations(BaseModel):
    """Per-category opt-out switches for rewrite rules."""

    model_config = ConfigDict(frozen=True)

    auto_increment: bool = Field(default=True, description="Rewrite identity/auto-increment columns.")
    default_values: bool = Field(default=True, description="Rewrite column DEFAULT expressions.")
    constraints: bool = Field(default=True, description="Rewrite CHECK and FOREIGN KEY clauses.")
    indexes: bool = Field(default=True, description="Rewrite CREATE/DROP INDEX statements.")
    functions: bool = Field(default=True, description="Translate built-in function calls.")
    operators: bool = Field(default=True, description="Translate operators and casts.")

    def enabled(self, feature: Feature | str) -> bool:
        """Return whether rules tagged with *feature* should fire.

        Unknown feature names are treated as enabled.
        """
        if isinstance(feature, Feature):
            key = feature
        else:
            try:
                key = Feature(feature.upper())
            except ValueError:
                return True
        return bool(getattr(self, _FEATURE_FLAGS[key]))


class PluginOptions(BaseModel):
    """Externally supplied configuration for a dialect plugin."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    verbose: bool = Field(default=False, description="Log rewrite and fallback notices.")
    strict: bool = Field(
        default=False,
        description="Raise instead of warning when a construct cannot be translated.",
    )
    custom_type_mappings: tuple[TypeMapping, ...] = Field(
        default=(),
        description="Mappings that override the dialect's built-in type table.",
    )
    transformations: Transformations = Field(default_factory=Transformations)
    placeholder_style: PlaceholderStyle | None = Field(
        default=None,
        description="Override the dialect's default placeholder style.",
    )
    returning_key_column: str = Field(
        default="id",
        description="Key column used to re-read rows for emulated RETURNING.",
    )


# ---------------------------------------------------------------------------
# Rewrite results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ReturningEmulationInfo:
    """Describes a ``RETURNING`` clause the target cannot express natively.

    ``table`` and ``columns`` are plain names; the ``*_sql`` fields keep the
    identifiers exactly as written so that follow-up reads resolve the same
    objects on case-folding engines.  ``where_sql`` and ``where_params``
    are SQLite-shaped and only set for UPDATE/DELETE.
    """

    table: str
    columns: tuple[str, ...]
    verb: str = "INSERT"
    strategy: ReturningStrategy = ReturningStrategy.LAST_INSERT_ID
    table_sql: str = ""
    column_sql: tuple[str, ...] = ()
    key_column: str = "id"
    key_sql: str = '"id"'
    where_sql: str | None = None
    where_params: tuple[Any, ...] | None = None


@dataclass(frozen=True, slots=True)
class RewrittenQuery:
    """Output of a query rewrite.

    ``params`` is the parameter list callers must bind: pagination values
    may have been inlined into ``sql`` and removed from it.
    """

    sql: str
    params: list[Any] | None = None
    returning: ReturningEmulationInfo | None = None
    applied_rules: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.applied_rules)


@dataclass(frozen=True, slots=True)
class TranslatedStatement:
    """A statement ready for the target driver."""

    original_sql: str
    sql: str
    params: list[Any] | None
    kind: StatementKind
    dialect: str | None = None
    returning: ReturningEmulationInfo | None = None
    translated: bool = False


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of running one statement on the target driver."""

    rows_affected: int = 0
    last_insert_id: Any = None
    rows: list[dict[str, Any]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class TranslatorError(Exception):
    """Base exception for all translator errors."""


class TranslationFailure(TranslatorError):
    """The rewrite rules could not process a statement."""

    def __init__(
        self,
        message: str,
        *,
        dialect: str | None = None,
        sql: str | None = None,
        rewritten_sql: str | None = None,
        rule: str | None = None,
    ) -> None:
        super().__init__(message)
        self.dialect = dialect
        self.sql = sql
        self.rewritten_sql = rewritten_sql
        self.rule = rule


class UnsupportedConstructError(TranslationFailure):
    """A construct has no target equivalent and strict mode is enabled."""


class ExecutionFailure(TranslatorError):
    """The target engine rejected a successfully rewritten statement."""

    def __init__(
        self,
        message: str,
        *,
        dialect: str | None = None,
        original_sql: str = "",
        rewritten_sql: str = "",
        params: list[Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.dialect = dialect
        self.original_sql = original_sql
        self.rewritten_sql = rewritten_sql
        self.params = params


class ReturningEmulationError(TranslatorError):
    """A RETURNING descriptor could not be produced, consumed or replayed."""


class DialectNotFoundError(TranslatorError):
    """No plugin is registered for a dialect that requires translation."""
