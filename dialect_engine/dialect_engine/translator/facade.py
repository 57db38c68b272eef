"""Driver-facing execution of translated statements.

:class:`TranslatingConnection` pairs a :class:`TranslationSession` with a
:class:`StatementExecutor`: every statement is translated, executed, and, when
its RETURNING clause had to be emulated, followed by the reads that rebuild
the returned rows.

The emulation is not atomic.  Run emulated RETURNING statements inside a
transaction when concurrent writers may touch the same rows.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ._types import (
    ExecutionFailure,
    ExecutionResult,
    ReturningEmulationError,
    ReturningEmulationInfo,
    ReturningStrategy,
    TranslatedStatement,
)
from .returning import followup_statement, prefetch_statement
from .session import TranslationSession

logger = logging.getLogger(__name__)


class SqlAlchemyExecutor:
    """Run statements on a SQLAlchemy ``Connection`` with ``exec_driver_sql``.

    The SQL is handed to the DBAPI cursor as-is, so it must already use the
    driver's placeholder style.
    """

    def __init__(self, connection: Any) -> None:
        self._connection = connection

    @property
    def connection(self) -> Any:
        return self._connection

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> ExecutionResult:
        result = self._connection.exec_driver_sql(sql, tuple(params) if params else None)
        if not result.returns_rows:
            # Read before the result is released.
            last_insert_id = result.lastrowid
            rowcount = result.rowcount
            return ExecutionResult(
                rows_affected=rowcount if rowcount is not None and rowcount >= 0 else 0,
                last_insert_id=last_insert_id,
            )
        rows = [dict(row) for row in result.mappings()]
        rowcount = result.rowcount
        return ExecutionResult(
            rows_affected=rowcount if rowcount is not None and rowcount >= 0 else len(rows),
            rows=rows,
        )


class TranslatingConnection:
    """Translate and execute SQLite statements against a target engine.

    Parameters
    ----------
    executor:
        Anything satisfying :class:`~._protocols.StatementExecutor`.
    session:
        The translation session owned by this connection.
    """

    def __init__(self, executor: Any, session: TranslationSession) -> None:
        self._executor = executor
        self._session = session

    @property
    def session(self) -> TranslationSession:
        return self._session

    @property
    def dialect(self) -> str | None:
        return self._session.dialect

    def translate(self, sql: str, params: Sequence[Any] | None = None) -> TranslatedStatement:
        """Translate without executing; a RETURNING descriptor is discarded."""
        statement = self._session.translate(sql, params)
        if statement.returning is not None:
            self._session.consume_returning()
        return statement

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> ExecutionResult:
        """Translate and run one statement.

        Rows requested through RETURNING are in ``ExecutionResult.rows``,
        whether the target returned them natively or they were read back.

        Raises:
            TranslationFailure: If the statement cannot be translated.
            ExecutionFailure: If the target rejects the statement or one of
                its follow-up reads.
            ReturningEmulationError: If the returned rows cannot be rebuilt
                from what the driver reported.
        """
        statement = self._session.translate(sql, params)
        if statement.returning is None:
            return self._run(statement)

        info = self._session.consume_returning() or statement.returning
        try:
            return self._execute_emulated(statement, info)
        except ReturningEmulationError as exc:
            self._session.record_translation_error(sql, exc)
            raise

    def _execute_emulated(self, statement: TranslatedStatement, info: ReturningEmulationInfo) -> ExecutionResult:
        captured: list[dict[str, Any]] | None = None
        prefetch = prefetch_statement(info)
        if prefetch is not None:
            captured = self._run(self._session.translate_followup(*prefetch)).rows

        result = self._run(statement)

        if info.strategy is ReturningStrategy.PRE_IMAGE:
            rows = captured or []
        else:
            followup = followup_statement(info, result, captured)
            rows = self._run(self._session.translate_followup(*followup)).rows if followup else []
        logger.debug("Rebuilt %d RETURNING row(s) for %s %s", len(rows), info.verb, info.table)
        return ExecutionResult(
            rows_affected=result.rows_affected,
            last_insert_id=result.last_insert_id,
            rows=rows,
        )

    def _run(self, statement: TranslatedStatement) -> ExecutionResult:
        try:
            return self._executor.execute(statement.sql, statement.params)
        except Exception as exc:
            self._session.record_execution_error(statement.original_sql, statement.sql, exc, statement.params)
            raise ExecutionFailure(
                f"Statement failed on {statement.dialect or 'target'}: {exc}",
                dialect=statement.dialect,
                original_sql=statement.original_sql,
                rewritten_sql=statement.sql,
                params=statement.params,
            ) from exc
