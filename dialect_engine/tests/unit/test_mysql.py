"""Unit tests for the MySQL dialect plugin."""

from __future__ import annotations

import logging

import pytest

from dialect_engine.translator import (
    DialectPlugin,
    PluginOptions,
    ReturningStrategy,
    UnsupportedConstructError,
    create_dialect_plugin,
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class TestMySQLSchema:
    def test_auto_increment(self, mysql: DialectPlugin) -> None:
        sql = "CREATE TABLE t (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT)"
        assert mysql.schema.rewrite_schema(sql) == (
            "CREATE TABLE t (id INT PRIMARY KEY AUTO_INCREMENT, name TEXT)"
        )

    def test_backtick_quoting(self, mysql: DialectPlugin) -> None:
        assert mysql.schema.rewrite_schema('CREATE TABLE "t" ("a" TEXT)') == "CREATE TABLE `t` (`a` TEXT)"

    def test_text_key_becomes_varchar(self, mysql: DialectPlugin) -> None:
        assert mysql.schema.rewrite_schema("CREATE TABLE t (email TEXT UNIQUE)") == (
            "CREATE TABLE t (email VARCHAR(255) UNIQUE)"
        )

    def test_text_literal_default_parenthesised(self, mysql: DialectPlugin) -> None:
        assert mysql.schema.rewrite_schema("CREATE TABLE t (note TEXT DEFAULT 'x')") == (
            "CREATE TABLE t (note TEXT DEFAULT ('x'))"
        )

    def test_timestamp_text_column(self, mysql: DialectPlugin) -> None:
        assert mysql.schema.rewrite_schema("CREATE TABLE t (created_at TEXT DEFAULT CURRENT_TIMESTAMP)") == (
            "CREATE TABLE t (created_at DATETIME DEFAULT CURRENT_TIMESTAMP)"
        )

    def test_sized_varchar_keeps_length(self, mysql: DialectPlugin) -> None:
        assert mysql.schema.rewrite_schema("CREATE TABLE t (code VARCHAR(20), title VARCHAR)") == (
            "CREATE TABLE t (code VARCHAR(20), title VARCHAR(255))"
        )

    def test_boolean_column(self, mysql: DialectPlugin) -> None:
        assert mysql.schema.rewrite_schema("CREATE TABLE t (flag BOOLEAN DEFAULT 0)") == (
            "CREATE TABLE t (flag TINYINT(1) DEFAULT 0)"
        )

    def test_engine_options_kept(self, mysql: DialectPlugin) -> None:
        sql = "CREATE TABLE t (a INT) ENGINE=InnoDB"
        assert mysql.schema.rewrite_schema(sql) == sql

    def test_temp_table(self, mysql: DialectPlugin) -> None:
        assert mysql.schema.rewrite_schema("CREATE TEMP TABLE t (a INTEGER)") == (
            "CREATE TEMPORARY TABLE t (a INT)"
        )

    def test_deferrable_dropped(self, mysql: DialectPlugin) -> None:
        sql = "CREATE TABLE c (p INTEGER REFERENCES t(id) DEFERRABLE INITIALLY DEFERRED)"
        assert mysql.schema.rewrite_schema(sql) == "CREATE TABLE c (p INT REFERENCES t(id))"

    def test_index_if_not_exists(self, mysql: DialectPlugin, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            result = mysql.schema.rewrite_schema("CREATE INDEX IF NOT EXISTS ix ON t (a)")
        assert result == "CREATE INDEX ix ON t (a)"
        assert "MySQL has no CREATE INDEX IF NOT EXISTS" in caplog.text

    def test_partial_index(self, mysql: DialectPlugin, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            result = mysql.schema.rewrite_schema("CREATE INDEX ix ON t (a) WHERE a > 0")
        assert result == "CREATE INDEX ix ON t (a)"
        assert "MySQL has no partial indexes" in caplog.text

    def test_partial_index_strict(self, strict_options: PluginOptions) -> None:
        plugin = create_dialect_plugin("mysql", strict_options)
        with pytest.raises(UnsupportedConstructError, match="partial indexes"):
            plugin.schema.rewrite_schema("CREATE INDEX ix ON t (a) WHERE a > 0")

    def test_boolean_converter(self, mysql: DialectPlugin) -> None:
        assert mysql.schema.convert_value("BOOLEAN", True) == 1
        assert mysql.schema.convert_value("BOOL", "0") == 0


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestMySQLPlaceholders:
    def test_format_style(self, mysql: DialectPlugin) -> None:
        result = mysql.query.rewrite("SELECT * FROM t WHERE a = ? AND b = ?", [1, 2])
        assert result.sql == "SELECT * FROM t WHERE a = %s AND b = %s"
        assert result.params == [1, 2]

    def test_percent_doubled_with_placeholders(self, mysql: DialectPlugin) -> None:
        result = mysql.query.rewrite("SELECT * FROM t WHERE a LIKE 'x%' AND b = ?", [1])
        assert result.sql == "SELECT * FROM t WHERE a LIKE 'x%%' AND b = %s"

    def test_percent_kept_without_placeholders(self, mysql: DialectPlugin) -> None:
        sql = "SELECT * FROM t WHERE a LIKE 'x%'"
        assert mysql.query.rewrite_query(sql) == sql


class TestMySQLQueries:
    @pytest.mark.parametrize(
        "source, expected",
        [
            ("SELECT first || ' ' || last FROM people", "SELECT CONCAT(first, ' ', last) FROM people"),
            ("SELECT * FROM t WHERE a IS b", "SELECT * FROM t WHERE a <=> b"),
            ("SELECT * FROM t WHERE a IS NOT b", "SELECT * FROM t WHERE NOT (a <=> b)"),
            ("SELECT * FROM t WHERE a IS DISTINCT FROM b", "SELECT * FROM t WHERE NOT (a <=> b)"),
            ("SELECT * FROM t WHERE a IS NOT DISTINCT FROM b", "SELECT * FROM t WHERE a <=> b"),
            ("SELECT * FROM t WHERE a IS NULL", "SELECT * FROM t WHERE a IS NULL"),
            ("SELECT CAST(a AS INTEGER) FROM t", "SELECT CAST(a AS SIGNED) FROM t"),
            ("SELECT length(name) FROM t", "SELECT CHAR_LENGTH(name) FROM t"),
            ("SELECT random()", "SELECT RAND()"),
            ("SELECT iif(a, 1, 2) FROM t", "SELECT IF(a, 1, 2) FROM t"),
            ("SELECT group_concat(a, ';') FROM t", "SELECT GROUP_CONCAT(a SEPARATOR ';') FROM t"),
            ("SELECT group_concat(DISTINCT a) FROM t", "SELECT GROUP_CONCAT(DISTINCT a SEPARATOR ',') FROM t"),
            ("SELECT strftime('%Y-%m', d) FROM t", "SELECT DATE_FORMAT(d, '%Y-%m') FROM t"),
            ("SELECT strftime('%s', d) FROM t", "SELECT UNIX_TIMESTAMP(d) FROM t"),
            ("SELECT date('now', '+1 month')", "SELECT DATE(DATE_ADD(CURRENT_TIMESTAMP, INTERVAL 1 MONTH))"),
            ("SELECT ifnull(a, 0) FROM t", "SELECT ifnull(a, 0) FROM t"),
            ('SELECT "a" FROM t', "SELECT `a` FROM t"),
        ],
    )
    def test_rewrites(self, mysql: DialectPlugin, source: str, expected: str) -> None:
        assert mysql.query.rewrite_query(source) == expected

    def test_concat_with_calls(self, mysql: DialectPlugin) -> None:
        assert mysql.query.rewrite_query("SELECT upper(a) || b FROM t") == "SELECT CONCAT(upper(a), b) FROM t"

    def test_typeof_unsupported(self, mysql: DialectPlugin, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            assert mysql.query.rewrite_query("SELECT typeof(a) FROM t") == "SELECT typeof(a) FROM t"
        assert "typeof() has no mysql equivalent" in caplog.text

    def test_unbounded_offset(self, mysql: DialectPlugin) -> None:
        assert mysql.query.rewrite_query("SELECT * FROM t LIMIT -1 OFFSET 5") == (
            "SELECT * FROM t LIMIT 18446744073709551615 OFFSET 5"
        )

    def test_pagination_inlined(self, mysql: DialectPlugin) -> None:
        result = mysql.query.rewrite("SELECT * FROM t LIMIT ?, ?", [20, 10])
        assert result.sql == "SELECT * FROM t LIMIT 10 OFFSET 20"
        assert result.params == []


class TestMySQLInsertForms:
    def test_insert_or_ignore(self, mysql: DialectPlugin) -> None:
        assert mysql.query.rewrite_query("INSERT OR IGNORE INTO t (a) VALUES (1)") == (
            "INSERT IGNORE INTO t (a) VALUES (1)"
        )

    def test_insert_or_replace(self, mysql: DialectPlugin) -> None:
        assert mysql.query.rewrite_query("INSERT OR REPLACE INTO t (a) VALUES (1)") == (
            "REPLACE INTO t (a) VALUES (1)"
        )

    def test_upsert_do_nothing(self, mysql: DialectPlugin) -> None:
        assert mysql.query.rewrite_query("INSERT INTO t (a) VALUES (1) ON CONFLICT (a) DO NOTHING") == (
            "INSERT IGNORE INTO t (a) VALUES (1)"
        )

    def test_upsert_do_update(self, mysql: DialectPlugin) -> None:
        sql = "INSERT INTO t (a, b) VALUES (1, 2) ON CONFLICT (a) DO UPDATE SET b = excluded.b"
        assert mysql.query.rewrite_query(sql) == (
            "INSERT INTO t (a, b) VALUES (1, 2) ON DUPLICATE KEY UPDATE b = VALUES(b)"
        )

    def test_upsert_where_dropped(self, mysql: DialectPlugin, caplog: pytest.LogCaptureFixture) -> None:
        sql = "INSERT INTO t (a, b) VALUES (1, 2) ON CONFLICT (a) DO UPDATE SET b = excluded.b WHERE t.b < excluded.b"
        with caplog.at_level(logging.WARNING):
            result = mysql.query.rewrite_query(sql)
        assert result == "INSERT INTO t (a, b) VALUES (1, 2) ON DUPLICATE KEY UPDATE b = VALUES(b)"
        assert "ON DUPLICATE KEY UPDATE has no WHERE" in caplog.text

    def test_upsert_where_parameters_dropped(self, mysql: DialectPlugin) -> None:
        sql = "INSERT INTO t (a, b) VALUES (?, ?) ON CONFLICT (a) DO UPDATE SET b = ? WHERE t.b < ? RETURNING a"
        result = mysql.query.rewrite(sql, [1, 2, 3, 4])
        assert result.sql == "INSERT INTO t (a, b) VALUES (%s, %s) ON DUPLICATE KEY UPDATE b = %s"
        assert result.params == [1, 2, 3]
        assert result.returning is not None

    def test_upsert_where_strict(self, strict_options: PluginOptions) -> None:
        plugin = create_dialect_plugin("mysql", strict_options)
        with pytest.raises(UnsupportedConstructError, match="has no WHERE"):
            plugin.query.rewrite("INSERT INTO t (a) VALUES (1) ON CONFLICT (a) DO UPDATE SET a = 2 WHERE a > 0")


class TestMySQLReturning:
    def test_insert_emulated(self, mysql: DialectPlugin) -> None:
        result = mysql.query.rewrite("INSERT INTO t (a) VALUES (?) RETURNING id, a", [1])
        assert result.sql == "INSERT INTO t (a) VALUES (%s)"
        assert result.params == [1]
        assert result.returning is not None
        assert result.returning.strategy is ReturningStrategy.LAST_INSERT_ID
        assert result.returning.columns == ("id", "a")
        assert result.changed

    def test_delete_emulated(self, mysql: DialectPlugin) -> None:
        result = mysql.query.rewrite("DELETE FROM t WHERE a = ? RETURNING *", [3])
        assert result.sql == "DELETE FROM t WHERE a = %s"
        assert result.returning is not None
        assert result.returning.strategy is ReturningStrategy.PRE_IMAGE
        assert result.returning.where_params == (3,)
