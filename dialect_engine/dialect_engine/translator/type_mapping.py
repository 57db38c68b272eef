"""Column type resolution for schema rewriting."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from ._types import TypeMapping

logger = logging.getLogger(__name__)

_ARGS = re.compile(r"\s*\(.*\)\s*$", re.DOTALL)


def normalise_type(name: str) -> str:
    """Upper-case *name* and collapse internal whitespace."""
    return " ".join(name.split()).upper().replace(" (", "(")


def base_type(name: str) -> str:
    """Strip a trailing argument list: ``VARCHAR(20)`` -> ``VARCHAR``."""
    return _ARGS.sub("", normalise_type(name))


class TypeMapper:
    """Resolve source column types to one dialect's target types.

    Resolution order is: custom mappings, the built-in table, then the
    dialect's generic text type.  Every lookup tries the full declared type
    first (``VARCHAR(20)``) and then its base name (``VARCHAR``).

    Parameters
    ----------
    dialect:
        Name used in log messages.
    builtin:
        The dialect's built-in mapping table.
    fallback:
        Type returned when nothing matches.
    custom:
        Mappings supplied through plugin options; they override built-ins
        with the same ``source_type``.
    verbose:
        Emit a warning for each fallback.
    """

    def __init__(
        self,
        dialect: str,
        builtin: Iterable[TypeMapping],
        *,
        fallback: str,
        custom: Iterable[TypeMapping] = (),
        verbose: bool = False,
    ) -> None:
        self._dialect = dialect
        self._fallback = fallback
        self._verbose = verbose
        self._builtin = {normalise_type(m.source_type): m for m in builtin}
        self._custom = {normalise_type(m.source_type): m for m in custom}

    @property
    def fallback(self) -> str:
        return self._fallback

    def lookup(self, source_type: str) -> TypeMapping | None:
        """Return the mapping for *source_type*, or ``None``.  Never logs."""
        full = normalise_type(source_type)
        base = base_type(source_type)
        for table in (self._custom, self._builtin):
            for key in (full, base):
                mapping = table.get(key)
                if mapping is not None:
                    return mapping
        return None

    def map_type(self, source_type: str) -> str:
        """Return the target type for *source_type*; never fails."""
        mapping = self.lookup(source_type)
        if mapping is not None:
            return mapping.target_type
        if self._verbose:
            logger.warning(
                "[%s] No type mapping for %r; falling back to %s",
                self._dialect,
                source_type,
                self._fallback,
            )
        return self._fallback

    def convert(self, source_type: str, value: Any) -> Any:
        """Convert *value* with the converter registered for *source_type*."""
        mapping = self.lookup(source_type)
        return mapping.convert(value) if mapping is not None else value

    def mappings(self) -> list[TypeMapping]:
        """Effective table: built-ins in declaration order, custom entries applied."""
        merged = dict(self._builtin)
        merged.update(self._custom)
        return list(merged.values())
