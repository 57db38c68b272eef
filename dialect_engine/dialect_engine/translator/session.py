"""Per-connection translation state.

A :class:`TranslationSession` routes each statement to the registered schema
or query rewriter of its dialect and keeps the RETURNING emulation
descriptor of the statement in flight.  Sessions are not shared between
threads; one logical connection owns one session.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ._registry import PluginRegistry
from ._types import (
    DialectNotFoundError,
    ReturningEmulationError,
    ReturningEmulationInfo,
    StatementKind,
    TargetDialect,
    TranslatedStatement,
    TranslationFailure,
)
from .error_log import TranslationErrorLog
from .lexer import statement_kind

logger = logging.getLogger(__name__)


class TranslationSession:
    """Translate SQLite statements for one connection.

    Parameters
    ----------
    registry:
        Where the dialect's plugins are looked up, on every statement.
    dialect:
        Target dialect name, or ``None`` to pass every statement through.
    error_log:
        Receives execution failures and failures detected before a plugin
        runs.  Plugins record their own translation failures.
    require_plugins:
        Raise :class:`DialectNotFoundError` instead of passing a statement
        through when the dialect has no plugin for it.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        dialect: str | TargetDialect | None = None,
        *,
        error_log: TranslationErrorLog | None = None,
        require_plugins: bool = False,
    ) -> None:
        self._registry = registry
        if isinstance(dialect, TargetDialect):
            dialect = dialect.value
        self._dialect = dialect.strip().lower() if dialect else None
        self._error_log = error_log
        self._require_plugins = require_plugins
        self._pending: ReturningEmulationInfo | None = None

    @property
    def dialect(self) -> str | None:
        return self._dialect

    @property
    def pending_returning(self) -> ReturningEmulationInfo | None:
        return self._pending

    # -- translation -------------------------------------------------------------

    def translate(self, sql: str, params: Sequence[Any] | None = None) -> TranslatedStatement:
        """Translate one statement.

        Raises:
            TranslationFailure: If the statement cannot be classified or a
                rewriter rejects it.
            DialectNotFoundError: If ``require_plugins`` is set and the
                dialect has no plugin for the statement.
            ReturningEmulationError: If the statement needs RETURNING
                emulation while a previous descriptor is still unconsumed.
        """
        param_list = list(params) if params is not None else None
        if self._dialect is None:
            return TranslatedStatement(
                original_sql=sql,
                sql=sql,
                params=param_list,
                kind=self._classify(sql),
            )

        kind = self._classify(sql)
        if kind is StatementKind.DDL:
            return self._translate_schema(sql, param_list)
        if kind is StatementKind.DML:
            return self._translate_query(sql, param_list)
        return self._passthrough(sql, param_list, kind)

    def translate_followup(self, sql: str, params: Sequence[Any] | None = None) -> TranslatedStatement:
        """Translate a RETURNING follow-up read without touching the pending descriptor."""
        param_list = list(params) if params is not None else None
        if self._dialect is None:
            return TranslatedStatement(original_sql=sql, sql=sql, params=param_list, kind=StatementKind.DML)
        plugin = self._registry.get_query_plugin(self._dialect)
        if plugin is None:
            return self._missing(sql, param_list, StatementKind.DML, "query")
        result = plugin.rewrite(sql, param_list)
        return TranslatedStatement(
            original_sql=sql,
            sql=result.sql,
            params=result.params,
            kind=StatementKind.DML,
            dialect=self._dialect,
            translated=True,
        )

    def _classify(self, sql: str) -> StatementKind:
        try:
            return statement_kind(sql)
        except TranslationFailure as exc:
            if self._dialect is not None:
                exc.dialect = exc.dialect or self._dialect
                self.record_translation_error(sql, exc)
            raise

    def _translate_schema(self, sql: str, params: list[Any] | None) -> TranslatedStatement:
        plugin = self._registry.get_schema_plugin(self._dialect or "")
        if plugin is None:
            return self._missing(sql, params, StatementKind.DDL, "schema")
        return TranslatedStatement(
            original_sql=sql,
            sql=plugin.rewrite_schema(sql),
            params=params,
            kind=StatementKind.DDL,
            dialect=self._dialect,
            translated=True,
        )

    def _translate_query(self, sql: str, params: list[Any] | None) -> TranslatedStatement:
        plugin = self._registry.get_query_plugin(self._dialect or "")
        if plugin is None:
            return self._missing(sql, params, StatementKind.DML, "query")
        result = plugin.rewrite(sql, params)
        if result.returning is not None:
            if self._pending is not None:
                exc = ReturningEmulationError(
                    f"RETURNING descriptor for {self._pending.table} was never consumed; "
                    "execute statements one at a time"
                )
                self.record_translation_error(sql, exc)
                raise exc
            self._pending = result.returning
        return TranslatedStatement(
            original_sql=sql,
            sql=result.sql,
            params=result.params,
            kind=StatementKind.DML,
            dialect=self._dialect,
            returning=result.returning,
            translated=True,
        )

    def _passthrough(self, sql: str, params: list[Any] | None, kind: StatementKind) -> TranslatedStatement:
        return TranslatedStatement(original_sql=sql, sql=sql, params=params, kind=kind, dialect=self._dialect)

    def _missing(self, sql: str, params: list[Any] | None, kind: StatementKind, plugin_kind: str) -> TranslatedStatement:
        if self._require_plugins:
            raise DialectNotFoundError(f"No {plugin_kind} plugin registered for dialect {self._dialect!r}")
        logger.debug("No %s plugin for %s; passing statement through", plugin_kind, self._dialect)
        return self._passthrough(sql, params, kind)

    # -- RETURNING bookkeeping ---------------------------------------------------

    def consume_returning(self) -> ReturningEmulationInfo | None:
        """Return the pending descriptor and clear it."""
        info, self._pending = self._pending, None
        return info

    def discard_returning(self) -> None:
        """Drop an unconsumed descriptor, e.g. after the statement failed."""
        if self._pending is not None:
            logger.warning("Discarding unconsumed RETURNING descriptor for %s", self._pending.table)
            self._pending = None

    # -- error recording ---------------------------------------------------------

    def record_translation_error(self, sql: str, exc: Exception) -> None:
        """Append a translation failure for this session's dialect."""
        if self._error_log is not None and self._dialect is not None:
            self._error_log.log_translation_error(self._dialect, sql, exc)

    def record_execution_error(
        self,
        original_sql: str,
        rewritten_sql: str,
        error: BaseException | str,
        params: Sequence[Any] | None = None,
    ) -> None:
        """Append an execution failure for this session's dialect."""
        logger.warning("Execution failed on %s: %s", self._dialect or "pass-through", error)
        if self._error_log is not None and self._dialect is not None:
            self._error_log.log_execution_error(
                self._dialect,
                original_sql,
                rewritten_sql,
                error,
                list(params) if params is not None else None,
            )
