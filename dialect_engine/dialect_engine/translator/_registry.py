"""Dialect plugin registry.

Maps a dialect name to its schema and query rewriters under the keys
``"<dialect>-schema"`` and ``"<dialect>-query"``.

Readers never lock.  Writers serialise on a lock, build a new mapping and
publish it with a single reference assignment, so a racing read sees either
the previous plugin or the new one and never a half-applied update.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from ._protocols import QueryRewriterPlugin, SchemaRewriterPlugin
from ._types import TargetDialect, TypeMapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DialectPlugin:
    """A schema rewriter and a query rewriter registered under one name."""

    name: str
    schema: SchemaRewriterPlugin
    query: QueryRewriterPlugin

    @property
    def type_mappings(self) -> list[TypeMapping]:
        return self.schema.get_type_mappings()


def _dialect_name(dialect: str | TargetDialect) -> str:
    value = dialect.value if isinstance(dialect, TargetDialect) else dialect
    return value.strip().lower()


def schema_key(dialect: str | TargetDialect) -> str:
    return f"{_dialect_name(dialect)}-schema"


def query_key(dialect: str | TargetDialect) -> str:
    return f"{_dialect_name(dialect)}-query"


class PluginRegistry:
    """Registry of schema and query rewriters.

    Registration is idempotent: registering a plugin for a dialect that
    already has one replaces it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._schema: Mapping[str, SchemaRewriterPlugin] = MappingProxyType({})
        self._query: Mapping[str, QueryRewriterPlugin] = MappingProxyType({})

    # -- registration ----------------------------------------------------------

    def register_schema_plugin(self, plugin: SchemaRewriterPlugin) -> None:
        """Register *plugin* under ``"<plugin.dialect>-schema"``.

        Raises
        ------
        TypeError
            If *plugin* does not satisfy :class:`SchemaRewriterPlugin`.
        """
        if not isinstance(plugin, SchemaRewriterPlugin):
            raise TypeError(f"{type(plugin).__name__} is not a schema rewriter plugin")
        key = schema_key(plugin.dialect)
        with self._lock:
            updated = dict(self._schema)
            replaced = key in updated
            updated[key] = plugin
            self._schema = MappingProxyType(updated)
        logger.debug("%s schema plugin: %s (%s)", "Replaced" if replaced else "Registered", key, plugin.name)

    def register_query_plugin(self, plugin: QueryRewriterPlugin) -> None:
        """Register *plugin* under ``"<plugin.dialect>-query"``.

        Raises
        ------
        TypeError
            If *plugin* does not satisfy :class:`QueryRewriterPlugin`.
        """
        if not isinstance(plugin, QueryRewriterPlugin):
            raise TypeError(f"{type(plugin).__name__} is not a query rewriter plugin")
        key = query_key(plugin.dialect)
        with self._lock:
            updated = dict(self._query)
            replaced = key in updated
            updated[key] = plugin
            self._query = MappingProxyType(updated)
        logger.debug("%s query plugin: %s (%s)", "Replaced" if replaced else "Registered", key, plugin.name)

    def register_dialect(self, plugin: DialectPlugin) -> None:
        """Register both halves of a :class:`DialectPlugin`."""
        self.register_schema_plugin(plugin.schema)
        self.register_query_plugin(plugin.query)

    def clear(self) -> None:
        """Remove every plugin.  Intended for test teardown."""
        with self._lock:
            self._schema = MappingProxyType({})
            self._query = MappingProxyType({})
        logger.debug("Cleared plugin registry")

    # -- lookup ----------------------------------------------------------------

    def get_schema_plugin(self, dialect: str | TargetDialect) -> SchemaRewriterPlugin | None:
        """Return the schema rewriter for *dialect*, or ``None``."""
        return self._schema.get(schema_key(dialect))

    def get_query_plugin(self, dialect: str | TargetDialect) -> QueryRewriterPlugin | None:
        """Return the query rewriter for *dialect*, or ``None``."""
        return self._query.get(query_key(dialect))

    def get_dialect(self, dialect: str | TargetDialect) -> DialectPlugin | None:
        """Return both rewriters for *dialect*, or ``None`` unless both exist."""
        schema = self.get_schema_plugin(dialect)
        query = self.get_query_plugin(dialect)
        if schema is None or query is None:
            return None
        return DialectPlugin(name=_dialect_name(dialect), schema=schema, query=query)

    def list_schema_plugins(self) -> list[str]:
        """Return the registered schema keys, sorted."""
        return sorted(self._schema)

    def list_query_plugins(self) -> list[str]:
        """Return the registered query keys, sorted."""
        return sorted(self._query)

    def dialects(self) -> list[str]:
        """Return every dialect with at least one registered plugin."""
        names = {key.rsplit("-", 1)[0] for key in (*self._schema, *self._query)}
        return sorted(names)

    def __len__(self) -> int:
        return len(self._schema) + len(self._query)

    def __contains__(self, dialect: object) -> bool:
        if not isinstance(dialect, (str, TargetDialect)):
            return False
        return schema_key(dialect) in self._schema or query_key(dialect) in self._query
