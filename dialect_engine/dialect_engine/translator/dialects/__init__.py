"""Built-in dialect plugins: PostgreSQL, MySQL, Oracle and SQL Server."""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from .._registry import DialectPlugin, PluginRegistry
from .._types import DialectNotFoundError, PluginOptions, TargetDialect
from ..error_log import TranslationErrorLog
from . import mssql, mysql, oracle, postgresql

logger = logging.getLogger(__name__)

PluginFactory = Callable[[PluginOptions | None, TranslationErrorLog | None], DialectPlugin]

BUILTIN_DIALECTS: dict[TargetDialect, PluginFactory] = {
    TargetDialect.POSTGRESQL: postgresql.create_plugin,
    TargetDialect.MYSQL: mysql.create_plugin,
    TargetDialect.ORACLE: oracle.create_plugin,
    TargetDialect.MSSQL: mssql.create_plugin,
}


def resolve_dialect(dialect: str | TargetDialect) -> TargetDialect:
    """Parse a dialect name.

    Raises:
        DialectNotFoundError: If *dialect* names no built-in dialect.
    """
    if isinstance(dialect, TargetDialect):
        return dialect
    try:
        return TargetDialect(dialect.strip().lower())
    except ValueError:
        supported = ", ".join(d.value for d in TargetDialect)
        raise DialectNotFoundError(f"Unknown dialect {dialect!r}; supported: {supported}") from None


def create_dialect_plugin(
    dialect: str | TargetDialect,
    options: PluginOptions | None = None,
    error_log: TranslationErrorLog | None = None,
) -> DialectPlugin:
    """Build the schema/query rewriter pair for a built-in *dialect*."""
    return BUILTIN_DIALECTS[resolve_dialect(dialect)](options, error_log)


def register_builtin_plugins(
    registry: PluginRegistry,
    options: PluginOptions | None = None,
    error_log: TranslationErrorLog | None = None,
    dialects: Iterable[str | TargetDialect] | None = None,
) -> list[str]:
    """Register the built-in plugins (all of them unless *dialects* is given).

    Returns the names of the dialects registered.
    """
    selected = [resolve_dialect(d) for d in dialects] if dialects is not None else list(BUILTIN_DIALECTS)
    for dialect in selected:
        registry.register_dialect(create_dialect_plugin(dialect, options, error_log))
    names = [d.value for d in selected]
    logger.debug("Registered built-in dialect plugins: %s", ", ".join(names))
    return names


__all__ = [
    "BUILTIN_DIALECTS",
    "PluginFactory",
    "create_dialect_plugin",
    "register_builtin_plugins",
    "resolve_dialect",
]
