"""Unit tests for the PostgreSQL dialect plugin."""

from __future__ import annotations

import logging

import pytest

from dialect_engine.translator import (
    DialectPlugin,
    PluginOptions,
    Transformations,
    UnsupportedConstructError,
    create_dialect_plugin,
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class TestPostgreSQLSchema:
    def test_identity_column(self, postgresql: DialectPlugin) -> None:
        sql = "CREATE TABLE t (id INTEGER PRIMARY KEY AUTOINCREMENT, a TEXT)"
        assert postgresql.schema.rewrite_schema(sql) == "CREATE TABLE t (id SERIAL PRIMARY KEY, a TEXT)"

    def test_integer_primary_key_without_autoincrement_kept(self, postgresql: DialectPlugin) -> None:
        sql = "CREATE TABLE t (id INTEGER PRIMARY KEY)"
        assert postgresql.schema.rewrite_schema(sql) == sql

    def test_type_mapping(self, postgresql: DialectPlugin) -> None:
        sql = "CREATE TABLE t (data BLOB, doc JSON, score REAL, flag BOOLEAN)"
        assert postgresql.schema.rewrite_schema(sql) == (
            "CREATE TABLE t (data BYTEA, doc JSONB, score DOUBLE PRECISION, flag BOOLEAN)"
        )

    @pytest.mark.parametrize(
        "default, expected",
        [("0", "DEFAULT FALSE"), ("1", "DEFAULT TRUE"), ("(1)", "DEFAULT TRUE")],
    )
    def test_boolean_defaults(self, postgresql: DialectPlugin, default: str, expected: str) -> None:
        sql = f"CREATE TABLE t (flag BOOLEAN NOT NULL DEFAULT {default})"
        assert postgresql.schema.rewrite_schema(sql) == f"CREATE TABLE t (flag BOOLEAN NOT NULL {expected})"

    def test_alter_add_column(self, postgresql: DialectPlugin) -> None:
        sql = "ALTER TABLE t ADD COLUMN flag BOOLEAN DEFAULT 0"
        assert postgresql.schema.rewrite_schema(sql) == "ALTER TABLE t ADD COLUMN flag BOOLEAN DEFAULT FALSE"

    def test_partial_index_passes_through(self, postgresql: DialectPlugin) -> None:
        sql = "CREATE INDEX IF NOT EXISTS ix ON t (a) WHERE a IS NOT NULL"
        assert postgresql.schema.rewrite_schema(sql) == sql

    def test_convert_value(self, postgresql: DialectPlugin) -> None:
        assert postgresql.schema.convert_value("BOOLEAN", 0) is False
        assert postgresql.schema.convert_value("BLOB", "x") == b"x"


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestPostgreSQLPlaceholders:
    def test_numbered(self, postgresql: DialectPlugin) -> None:
        result = postgresql.query.rewrite("SELECT * FROM t WHERE a = ? AND b = ?", [1, 2])
        assert result.sql == "SELECT * FROM t WHERE a = $1 AND b = $2"
        assert result.params == [1, 2]

    def test_question_mark_in_string_untouched(self, postgresql: DialectPlugin) -> None:
        result = postgresql.query.rewrite("SELECT '?' FROM t WHERE a = ?", [1])
        assert result.sql == "SELECT '?' FROM t WHERE a = $1"

    def test_override_to_qmark(self, qmark_options: PluginOptions) -> None:
        plugin = create_dialect_plugin("postgresql", qmark_options)
        assert plugin.query.rewrite_query("SELECT * FROM t WHERE a = ?") == "SELECT * FROM t WHERE a = ?"


class TestPostgreSQLPagination:
    def test_bound_values_inlined(self, postgresql: DialectPlugin) -> None:
        result = postgresql.query.rewrite("SELECT * FROM t WHERE a = ? LIMIT ? OFFSET ?", ["x", 10, 5])
        assert result.sql == "SELECT * FROM t WHERE a = $1 LIMIT 10 OFFSET 5"
        assert result.params == ["x"]

    def test_comma_form(self, postgresql: DialectPlugin) -> None:
        assert postgresql.query.rewrite_query("SELECT * FROM t LIMIT 5, 10") == "SELECT * FROM t LIMIT 10 OFFSET 5"

    def test_negative_limit_is_unbounded(self, postgresql: DialectPlugin) -> None:
        assert postgresql.query.rewrite_query("SELECT * FROM t LIMIT -1 OFFSET 5") == (
            "SELECT * FROM t LIMIT ALL OFFSET 5"
        )

    def test_unbound_placeholders_kept(self, postgresql: DialectPlugin) -> None:
        assert postgresql.query.rewrite_query("SELECT * FROM t LIMIT ? OFFSET ?") == (
            "SELECT * FROM t LIMIT $1 OFFSET $2"
        )


class TestPostgreSQLFunctions:
    @pytest.mark.parametrize(
        "source, expected",
        [
            ("SELECT ifnull(a, 0) FROM t", "SELECT COALESCE(a, 0) FROM t"),
            ("SELECT iif(a > 1, 'x', 'y') FROM t", "SELECT CASE WHEN a > 1 THEN 'x' ELSE 'y' END FROM t"),
            ("SELECT group_concat(name, ';') FROM t", "SELECT STRING_AGG(CAST(name AS TEXT), ';') FROM t"),
            ("SELECT instr(a, 'x') FROM t", "SELECT STRPOS(a, 'x') FROM t"),
            ("SELECT max(a, b) FROM t", "SELECT GREATEST(a, b) FROM t"),
            ("SELECT max(a) FROM t", "SELECT max(a) FROM t"),
            ("SELECT total(a) FROM t", "SELECT COALESCE(SUM(a), 0.0) FROM t"),
            ("SELECT datetime('now')", "SELECT CAST(CURRENT_TIMESTAMP AS TIMESTAMP)"),
            (
                "SELECT strftime('%Y-%m-%d', created) FROM t",
                "SELECT TO_CHAR(CAST(created AS TIMESTAMP), 'YYYY-MM-DD') FROM t",
            ),
            (
                "SELECT json_extract(doc, '$.a.b') FROM t",
                "SELECT (CAST(doc AS JSONB) #>> '{a,b}') FROM t",
            ),
        ],
    )
    def test_rewrites(self, postgresql: DialectPlugin, source: str, expected: str) -> None:
        assert postgresql.query.rewrite_query(source) == expected

    def test_date_modifier(self, postgresql: DialectPlugin) -> None:
        assert postgresql.query.rewrite_query("SELECT date('now', '+7 days')") == (
            "SELECT CAST((CAST(CURRENT_TIMESTAMP AS TIMESTAMP) + INTERVAL '+7 day') AS DATE)"
        )

    def test_nested_calls(self, postgresql: DialectPlugin) -> None:
        assert postgresql.query.rewrite_query("SELECT ifnull(ifnull(a, b), 0) FROM t") == (
            "SELECT COALESCE(COALESCE(a, b), 0) FROM t"
        )

    def test_function_name_in_string_untouched(self, postgresql: DialectPlugin) -> None:
        sql = "SELECT 'ifnull(a, b)' FROM t"
        assert postgresql.query.rewrite_query(sql) == sql

    def test_unknown_modifier_warns(self, postgresql: DialectPlugin, caplog: pytest.LogCaptureFixture) -> None:
        sql = "SELECT datetime('now', 'start of month')"
        with caplog.at_level(logging.WARNING):
            assert postgresql.query.rewrite_query(sql) == sql
        assert "modifier 'start of month' has no postgresql translation" in caplog.text

    def test_unknown_modifier_strict(self, strict_options: PluginOptions) -> None:
        plugin = create_dialect_plugin("postgresql", strict_options)
        with pytest.raises(UnsupportedConstructError, match="start of month"):
            plugin.query.rewrite("SELECT datetime('now', 'start of month')")

    def test_functions_disabled(self) -> None:
        options = PluginOptions(transformations=Transformations(functions=False))
        plugin = create_dialect_plugin("postgresql", options)
        assert plugin.query.rewrite_query("SELECT ifnull(a, 0) FROM t") == "SELECT ifnull(a, 0) FROM t"

    def test_rewrite_function(self, postgresql: DialectPlugin) -> None:
        assert postgresql.query.rewrite_function("ifnull(a, b)") == "COALESCE(a, b)"


class TestPostgreSQLOperators:
    @pytest.mark.parametrize(
        "source, expected",
        [
            ("SELECT * FROM t WHERE a == 1", "SELECT * FROM t WHERE a = 1"),
            ("SELECT * FROM t WHERE a IS b", "SELECT * FROM t WHERE a IS NOT DISTINCT FROM b"),
            ("SELECT * FROM t WHERE a IS NOT b", "SELECT * FROM t WHERE a IS DISTINCT FROM b"),
            ("SELECT * FROM t WHERE a IS NOT NULL", "SELECT * FROM t WHERE a IS NOT NULL"),
            ("SELECT * FROM t WHERE a LIKE 'x%'", "SELECT * FROM t WHERE a ILIKE 'x%'"),
            ("SELECT CAST(a AS INTEGER) FROM t", "SELECT CAST(a AS BIGINT) FROM t"),
            ("SELECT a || b FROM t", "SELECT a || b FROM t"),
        ],
    )
    def test_rewrites(self, postgresql: DialectPlugin, source: str, expected: str) -> None:
        assert postgresql.query.rewrite_query(source) == expected

    def test_rewrite_operator(self, postgresql: DialectPlugin) -> None:
        assert postgresql.query.rewrite_operator("is") == "IS NOT DISTINCT FROM"
        assert postgresql.query.rewrite_operator("+") == "+"


class TestPostgreSQLStatements:
    def test_insert_or_ignore(self, postgresql: DialectPlugin) -> None:
        result = postgresql.query.rewrite("INSERT OR IGNORE INTO t (a) VALUES (?)", [1])
        assert result.sql == "INSERT INTO t (a) VALUES ($1) ON CONFLICT DO NOTHING"

    def test_insert_or_ignore_before_returning(self, postgresql: DialectPlugin) -> None:
        assert postgresql.query.rewrite_query("INSERT OR IGNORE INTO t (a) VALUES (1) RETURNING id") == (
            "INSERT INTO t (a) VALUES (1) ON CONFLICT DO NOTHING RETURNING id"
        )

    def test_insert_or_replace_downgraded(self, postgresql: DialectPlugin, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            sql = postgresql.query.rewrite_query("INSERT OR REPLACE INTO t (a) VALUES (1)")
        assert sql == "INSERT INTO t (a) VALUES (1)"
        assert "postgresql has no INSERT OR REPLACE without a conflict target" in caplog.text

    def test_native_upsert_untouched(self, postgresql: DialectPlugin) -> None:
        sql = "INSERT INTO t (a) VALUES (1) ON CONFLICT (a) DO UPDATE SET a = excluded.a"
        assert postgresql.query.rewrite_query(sql) == sql

    def test_native_returning(self, postgresql: DialectPlugin) -> None:
        result = postgresql.query.rewrite("INSERT INTO t (a) VALUES (?) RETURNING id", [1])
        assert result.sql == "INSERT INTO t (a) VALUES ($1) RETURNING id"
        assert result.returning is None

    def test_null_identity_dropped(self, postgresql: DialectPlugin) -> None:
        result = postgresql.query.rewrite("INSERT INTO t (id, a) VALUES (NULL, ?)", [1])
        assert result.sql == "INSERT INTO t (a) VALUES ($1)"
        assert result.params == [1]

    def test_identifiers_requoted(self, postgresql: DialectPlugin) -> None:
        assert postgresql.query.rewrite_query("SELECT `a`, [b] FROM t") == 'SELECT "a", "b" FROM t'

    def test_applied_rules_reported(self, postgresql: DialectPlugin) -> None:
        result = postgresql.query.rewrite("SELECT ifnull(a, 0) FROM t WHERE b = ?", [1])
        assert result.applied_rules == ("fn-ifnull", "placeholders")

    def test_needs_rewrite(self, postgresql: DialectPlugin) -> None:
        assert not postgresql.query.needs_rewrite("SELECT a FROM t")
        assert postgresql.query.needs_rewrite("SELECT ifnull(a, 0) FROM t")
        assert postgresql.query.needs_rewrite("SELECT 'unterminated")
