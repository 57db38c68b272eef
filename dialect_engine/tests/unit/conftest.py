"""Shared fixtures for translator unit tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from dialect_engine.translator import (
    PlaceholderStyle,
    PluginOptions,
    PluginRegistry,
    TranslationErrorLog,
    create_dialect_plugin,
    register_builtin_plugins,
)


@pytest.fixture()
def log_dir(tmp_path: Path) -> Path:
    return tmp_path / "logs"


@pytest.fixture()
def error_log(log_dir: Path) -> TranslationErrorLog:
    return TranslationErrorLog(log_dir)


@pytest.fixture()
def registry(error_log: TranslationErrorLog) -> PluginRegistry:
    """A registry holding every built-in dialect."""
    reg = PluginRegistry()
    register_builtin_plugins(reg, error_log=error_log)
    return reg


@pytest.fixture()
def postgresql(error_log: TranslationErrorLog):
    return create_dialect_plugin("postgresql", error_log=error_log)


@pytest.fixture()
def mysql(error_log: TranslationErrorLog):
    return create_dialect_plugin("mysql", error_log=error_log)


@pytest.fixture()
def oracle(error_log: TranslationErrorLog):
    return create_dialect_plugin("oracle", error_log=error_log)


@pytest.fixture()
def mssql(error_log: TranslationErrorLog):
    return create_dialect_plugin("mssql", error_log=error_log)


@pytest.fixture()
def strict_options() -> PluginOptions:
    return PluginOptions(strict=True)


@pytest.fixture()
def qmark_options() -> PluginOptions:
    return PluginOptions(placeholder_style=PlaceholderStyle.QMARK)
