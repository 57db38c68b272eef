"""SQLite to target-engine SQL translation.

Usage::

    from dialect_engine.translator import TranslationContext

    ctx = TranslationContext()
    ctx.register_builtins()
    statement = ctx.translate("SELECT * FROM t LIMIT ? OFFSET ?", [10, 5], dialect="mssql")

Application code keeps writing SQLite; each statement is classified, routed
to the dialect's schema or query rewriter, and handed back with its
parameters and any RETURNING emulation descriptor.  Dialects without a
registered plugin pass through unchanged.
"""

from ._context import TranslationContext, build_context
from ._protocols import QueryRewriterPlugin, SchemaRewriterPlugin, StatementExecutor
from ._registry import DialectPlugin, PluginRegistry
from ._types import (
    DialectNotFoundError,
    ErrorType,
    ExecutionFailure,
    ExecutionResult,
    Feature,
    PlaceholderStyle,
    PluginOptions,
    ReturningEmulationError,
    ReturningEmulationInfo,
    ReturningMode,
    ReturningStrategy,
    RewrittenQuery,
    StatementKind,
    TargetDialect,
    TranslatedStatement,
    TranslationFailure,
    TranslatorError,
    Transformations,
    TypeMapping,
    UnsupportedConstructError,
)
from .base import BaseQueryRewriter, BaseSchemaRewriter
from .dialects import create_dialect_plugin, register_builtin_plugins, resolve_dialect
from .error_log import TranslationErrorLog, TranslationErrorRecord
from .facade import SqlAlchemyExecutor, TranslatingConnection
from .session import TranslationSession
from .type_mapping import TypeMapper

__all__ = [
    # Context
    "TranslationContext",
    "build_context",
    # Protocols
    "QueryRewriterPlugin",
    "SchemaRewriterPlugin",
    "StatementExecutor",
    # Registry
    "DialectPlugin",
    "PluginRegistry",
    "create_dialect_plugin",
    "register_builtin_plugins",
    "resolve_dialect",
    # Rewriters
    "BaseQueryRewriter",
    "BaseSchemaRewriter",
    "TypeMapper",
    # Sessions
    "SqlAlchemyExecutor",
    "TranslatingConnection",
    "TranslationSession",
    # Error log
    "TranslationErrorLog",
    "TranslationErrorRecord",
    # Types
    "ErrorType",
    "ExecutionResult",
    "Feature",
    "PlaceholderStyle",
    "PluginOptions",
    "ReturningEmulationInfo",
    "ReturningMode",
    "ReturningStrategy",
    "RewrittenQuery",
    "StatementKind",
    "TargetDialect",
    "TranslatedStatement",
    "Transformations",
    "TypeMapping",
    # Exceptions
    "DialectNotFoundError",
    "ExecutionFailure",
    "ReturningEmulationError",
    "TranslationFailure",
    "TranslatorError",
    "UnsupportedConstructError",
]
