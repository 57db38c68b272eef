"""Translation context: the registry, error log and options of one application.

Usage::

    from dialect_engine.translator import build_context

    ctx = build_context(dialect="mysql")
    statement = ctx.translate("INSERT INTO t (a) VALUES (?) RETURNING a", [1])

    with engine.connect() as conn:
        translating = ctx.connect(SqlAlchemyExecutor(conn))
        rows = translating.execute("SELECT * FROM t LIMIT ?", [10]).rows

Nothing here is module-global; tests and applications build as many
contexts as they need.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from ._registry import PluginRegistry
from ._types import PluginOptions, TargetDialect, TranslatedStatement
from .dialects import register_builtin_plugins
from .error_log import TranslationErrorLog
from .facade import TranslatingConnection
from .session import TranslationSession

if TYPE_CHECKING:
    from dialect_engine.config import Settings

logger = logging.getLogger(__name__)


class TranslationContext:
    """Own the plugin registry, the error log and the shared plugin options.

    Parameters
    ----------
    options:
        Options handed to every built-in plugin this context registers.
    registry:
        An existing registry to share; a new one is created otherwise.
    error_log:
        Error log shared by plugins and sessions.  Defaults to ``./logs``.
    require_plugins:
        Sessions raise instead of passing statements through when their
        dialect has no plugin.
    default_dialect:
        Dialect used when :meth:`session` is called without one.
    """

    def __init__(
        self,
        options: PluginOptions | None = None,
        registry: PluginRegistry | None = None,
        error_log: TranslationErrorLog | None = None,
        *,
        require_plugins: bool = False,
        default_dialect: str | TargetDialect | None = None,
    ) -> None:
        self._options = options or PluginOptions()
        self._registry = registry if registry is not None else PluginRegistry()
        self._error_log = error_log if error_log is not None else TranslationErrorLog(Path("logs"))
        self._require_plugins = require_plugins
        self._default_dialect = default_dialect

    @property
    def options(self) -> PluginOptions:
        return self._options

    @property
    def registry(self) -> PluginRegistry:
        return self._registry

    @property
    def error_log(self) -> TranslationErrorLog:
        return self._error_log

    @property
    def default_dialect(self) -> str | None:
        dialect = self._default_dialect
        return dialect.value if isinstance(dialect, TargetDialect) else dialect

    def register_builtins(self, dialects: Iterable[str | TargetDialect] | None = None) -> list[str]:
        """Register the built-in plugins with this context's options and error log."""
        return register_builtin_plugins(self._registry, self._options, self._error_log, dialects)

    def session(self, dialect: str | TargetDialect | None = None) -> TranslationSession:
        """Open a session for *dialect*, or for the default dialect."""
        return TranslationSession(
            self._registry,
            dialect if dialect is not None else self._default_dialect,
            error_log=self._error_log,
            require_plugins=self._require_plugins,
        )

    def translate(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        dialect: str | TargetDialect | None = None,
    ) -> TranslatedStatement:
        """Translate one statement in a throwaway session."""
        return self.session(dialect).translate(sql, params)

    def connect(self, executor: Any, dialect: str | TargetDialect | None = None) -> TranslatingConnection:
        """Wrap *executor* in a :class:`TranslatingConnection` with its own session."""
        return TranslatingConnection(executor, self.session(dialect))


def build_context(
    settings: Settings | None = None,
    *,
    register_builtins: bool = True,
    **overrides: object,
) -> TranslationContext:
    """Bootstrap a :class:`TranslationContext` from settings.

    *overrides* are passed to :func:`~dialect_engine.config.load_settings`
    when *settings* is not given.
    """
    if settings is None:
        from dialect_engine.config import load_settings

        settings = load_settings(**overrides)

    ctx = TranslationContext(
        options=settings.plugin_options(),
        error_log=TranslationErrorLog(settings.error_log_dir),
        require_plugins=settings.require_plugins,
        default_dialect=settings.dialect,
    )
    if register_builtins:
        names = ctx.register_builtins()
        logger.debug("Translation context ready with %d dialect(s)", len(names))
    return ctx
