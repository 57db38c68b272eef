"""Translator protocol definitions.

These define the contract every dialect plugin must satisfy.  The registry,
the session and the CLI depend on these protocols, never on the concrete
rewriter classes.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence, runtime_checkable

from ._types import ExecutionResult, Feature, RewrittenQuery, TypeMapping

# ---------------------------------------------------------------------------
# Rewriter Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class SchemaRewriterPlugin(Protocol):
    """Rewrite SQLite DDL into one target dialect."""

    @property
    def name(self) -> str:
        """Human-readable plugin name."""
        ...

    @property
    def dialect(self) -> str:
        """Dialect the plugin is registered under."""
        ...

    def rewrite_schema(self, sql: str) -> str:
        """Rewrite a ``CREATE``/``ALTER``/``DROP`` statement.

        Args:
            sql: SQLite-shaped DDL.

        Returns:
            The statement in the target dialect.

        Raises:
            TranslationFailure: If *sql* is not DDL, or strict mode rejects
                a construct.
        """
        ...

    def get_type_mappings(self) -> list[TypeMapping]:
        """Return the effective type-mapping table."""
        ...

    def map_type(self, source_type: str) -> str:
        """Map a source column type; falls back to a generic text type."""
        ...

    def needs_translation(self, feature: Feature | str) -> bool:
        """Return whether rules of *feature*'s category are enabled."""
        ...


@runtime_checkable
class QueryRewriterPlugin(Protocol):
    """Rewrite SQLite DML into one target dialect."""

    @property
    def name(self) -> str: ...

    @property
    def dialect(self) -> str: ...

    def rewrite_query(self, sql: str) -> str:
        """Rewrite a DML statement, returning only the SQL text."""
        ...

    def rewrite(self, sql: str, params: Sequence[Any] | None = None) -> RewrittenQuery:
        """Rewrite a DML statement together with its bound parameters.

        Args:
            sql: SQLite-shaped DML using ``?`` placeholders.
            params: Positional parameters, or ``None`` when not yet known.

        Returns:
            ``RewrittenQuery`` whose ``params`` must be used instead of the
            caller's original list.
        """
        ...

    def needs_rewrite(self, sql: str) -> bool:
        """Cheap pre-check; ``False`` means the statement can run as is."""
        ...

    def rewrite_function(self, call: str) -> str:
        """Rewrite a single function-call expression."""
        ...

    def rewrite_operator(self, operator: str) -> str:
        """Return the target spelling of an infix operator."""
        ...


# ---------------------------------------------------------------------------
# Execution Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class StatementExecutor(Protocol):
    """Native-driver execution function the facade delegates to."""

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> ExecutionResult:
        """Run *sql* with positional *params* and report the outcome."""
        ...
