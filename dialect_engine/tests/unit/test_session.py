"""Unit tests for per-connection statement routing and RETURNING bookkeeping."""

from __future__ import annotations

import logging

import pytest

from dialect_engine.translator import (
    DialectNotFoundError,
    ErrorType,
    PluginRegistry,
    ReturningEmulationError,
    ReturningStrategy,
    StatementKind,
    TargetDialect,
    TranslationErrorLog,
    TranslationFailure,
    TranslationSession,
)

# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


class TestRouting:
    def test_no_dialect_passes_through(self, registry: PluginRegistry) -> None:
        session = TranslationSession(registry)
        statement = session.translate("SELECT ifnull(a, 0) FROM t LIMIT ?", (5,))
        assert statement.sql == "SELECT ifnull(a, 0) FROM t LIMIT ?"
        assert statement.params == [5]
        assert statement.kind is StatementKind.DML
        assert statement.dialect is None
        assert not statement.translated

    def test_dialect_name_normalised(self, registry: PluginRegistry) -> None:
        assert TranslationSession(registry, " MySQL ").dialect == "mysql"
        assert TranslationSession(registry, TargetDialect.ORACLE).dialect == "oracle"

    def test_ddl_uses_schema_rewriter(self, registry: PluginRegistry) -> None:
        session = TranslationSession(registry, "postgresql")
        statement = session.translate("CREATE TABLE t (id INTEGER PRIMARY KEY AUTOINCREMENT)")
        assert statement.sql == "CREATE TABLE t (id SERIAL PRIMARY KEY)"
        assert statement.kind is StatementKind.DDL
        assert statement.dialect == "postgresql"
        assert statement.translated

    def test_dml_uses_query_rewriter(self, registry: PluginRegistry) -> None:
        session = TranslationSession(registry, "postgresql")
        statement = session.translate("SELECT * FROM t WHERE a = ?", [1])
        assert statement.sql == "SELECT * FROM t WHERE a = $1"
        assert statement.params == [1]
        assert statement.kind is StatementKind.DML
        assert statement.returning is None

    def test_other_statements_untouched(self, registry: PluginRegistry) -> None:
        session = TranslationSession(registry, "mysql")
        statement = session.translate("PRAGMA foreign_keys = ON")
        assert statement.sql == "PRAGMA foreign_keys = ON"
        assert statement.kind is StatementKind.OTHER
        assert statement.dialect == "mysql"
        assert not statement.translated

    def test_missing_plugin_passes_through(self) -> None:
        session = TranslationSession(PluginRegistry(), "mysql")
        statement = session.translate("SELECT * FROM t WHERE a = ?", [1])
        assert statement.sql == "SELECT * FROM t WHERE a = ?"
        assert not statement.translated

    def test_missing_plugin_required(self) -> None:
        session = TranslationSession(PluginRegistry(), "mysql", require_plugins=True)
        with pytest.raises(DialectNotFoundError, match="No query plugin registered for dialect 'mysql'"):
            session.translate("SELECT 1")
        with pytest.raises(DialectNotFoundError, match="No schema plugin registered"):
            session.translate("DROP TABLE t")


# ---------------------------------------------------------------------------
# Error recording
# ---------------------------------------------------------------------------


class TestErrorRecording:
    def test_unclassifiable_statement_recorded(self, registry: PluginRegistry, error_log: TranslationErrorLog) -> None:
        session = TranslationSession(registry, "mysql", error_log=error_log)
        with pytest.raises(TranslationFailure, match="tokenize"):
            session.translate("SELECT 'abc")
        records = error_log.read_errors("mysql")
        assert len(records) == 1
        assert records[0].error_type is ErrorType.TRANSLATION
        assert records[0].original_sql == "SELECT 'abc"

    def test_rewriter_failure_recorded_once(self, registry: PluginRegistry, error_log: TranslationErrorLog) -> None:
        session = TranslationSession(registry, "mysql", error_log=error_log)
        with pytest.raises(TranslationFailure, match="1 placeholder"):
            session.translate("SELECT * FROM t WHERE a = ?", [1, 2])
        assert len(error_log.read_errors("mysql")) == 1

    def test_execution_error_recorded(
        self,
        registry: PluginRegistry,
        error_log: TranslationErrorLog,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        session = TranslationSession(registry, "oracle", error_log=error_log)
        with caplog.at_level(logging.WARNING):
            session.record_execution_error("SELECT 1", "SELECT 1 FROM DUAL", "ORA-00942", [])
        assert "Execution failed on oracle: ORA-00942" in caplog.text
        record = error_log.read_errors("oracle")[0]
        assert record.error_type is ErrorType.EXECUTION
        assert record.rewritten_sql == "SELECT 1 FROM DUAL"

    def test_pass_through_session_writes_nothing(self, registry: PluginRegistry, error_log: TranslationErrorLog) -> None:
        session = TranslationSession(registry, error_log=error_log)
        session.record_execution_error("SELECT 1", "SELECT 1", "boom")
        assert error_log.get_error_summary() == {}


# ---------------------------------------------------------------------------
# RETURNING descriptors
# ---------------------------------------------------------------------------


class TestReturningDescriptor:
    def test_descriptor_kept_pending(self, registry: PluginRegistry) -> None:
        session = TranslationSession(registry, "mysql")
        statement = session.translate("INSERT INTO t (a) VALUES (?) RETURNING id", [1])
        assert statement.returning is not None
        assert session.pending_returning is statement.returning
        assert statement.returning.strategy is ReturningStrategy.LAST_INSERT_ID

    def test_consume_clears(self, registry: PluginRegistry) -> None:
        session = TranslationSession(registry, "mysql")
        statement = session.translate("DELETE FROM t WHERE a = 1 RETURNING a")
        assert session.consume_returning() is statement.returning
        assert session.pending_returning is None
        assert session.consume_returning() is None

    def test_native_returning_leaves_nothing_pending(self, registry: PluginRegistry) -> None:
        session = TranslationSession(registry, "postgresql")
        statement = session.translate("INSERT INTO t (a) VALUES (1) RETURNING id")
        assert statement.sql == "INSERT INTO t (a) VALUES (1) RETURNING id"
        assert session.pending_returning is None

    def test_second_descriptor_rejected(self, registry: PluginRegistry, error_log: TranslationErrorLog) -> None:
        session = TranslationSession(registry, "mysql", error_log=error_log)
        session.translate("INSERT INTO t (a) VALUES (1) RETURNING id")
        with pytest.raises(ReturningEmulationError, match="RETURNING descriptor for t was never consumed"):
            session.translate("INSERT INTO u (a) VALUES (2) RETURNING id")
        assert session.pending_returning is not None
        assert session.pending_returning.table == "t"
        assert len(error_log.read_errors("mysql")) == 1

    def test_plain_statement_does_not_disturb_pending(self, registry: PluginRegistry) -> None:
        session = TranslationSession(registry, "mysql")
        session.translate("INSERT INTO t (a) VALUES (1) RETURNING id")
        session.translate("SELECT 1")
        assert session.pending_returning is not None

    def test_discard_logs(self, registry: PluginRegistry, caplog: pytest.LogCaptureFixture) -> None:
        session = TranslationSession(registry, "mysql")
        session.translate("INSERT INTO t (a) VALUES (1) RETURNING id")
        with caplog.at_level(logging.WARNING):
            session.discard_returning()
        assert session.pending_returning is None
        assert "Discarding unconsumed RETURNING descriptor for t" in caplog.text

    def test_followup_ignores_pending(self, registry: PluginRegistry) -> None:
        session = TranslationSession(registry, "mysql")
        pending = session.translate("INSERT INTO t (a) VALUES (1) RETURNING id").returning
        followup = session.translate_followup("SELECT id FROM t WHERE id >= ? LIMIT ?", [7, 1])
        assert followup.sql == "SELECT id FROM t WHERE id >= %s LIMIT 1"
        assert followup.params == [7]
        assert followup.translated
        assert session.pending_returning is pending
