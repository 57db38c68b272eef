"""Append-only, per-dialect log of translation and execution failures.

Each dialect writes newline-delimited JSON to its own file::

    <log_dir>/translate-error-<dialect>.log

One record per line, keys in camelCase so the files can be fed straight to
the rule-patching tooling::

    {
        "timestamp": "2025-05-15T12:34:56.789012Z",
        "dialect": "postgresql",
        "originalSQL": "...",
        "rewrittenSQL": "...",      // null for most translation failures
        "errorMessage": "...",
        "errorType": "translation", // or "execution"
        "params": [...],            // execution failures only
        "stackTrace": "Traceback ..."
    }

Appends for one dialect are serialised by that dialect's lock and written
with a single ``write`` call, so a concurrent reader never observes a
partial record.  Different dialects never contend.  Failing to write a
record is logged and swallowed: the caller's own error must still propagate.
"""

from __future__ import annotations

import base64
import logging
import re
import threading
import traceback
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer

from ._types import ErrorType

logger = logging.getLogger(__name__)

LOG_FILE_PREFIX = "translate-error-"
LOG_FILE_SUFFIX = ".log"

_DIALECT_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "base64:" + base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    return repr(value)


class TranslationErrorRecord(BaseModel):
    """One failed translation or execution."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    dialect: str
    original_sql: str = Field(alias="originalSQL")
    rewritten_sql: str | None = Field(default=None, alias="rewrittenSQL")
    error_message: str = Field(alias="errorMessage")
    error_type: ErrorType = Field(alias="errorType")
    params: list[Any] | None = None
    stack_trace: str | None = Field(default=None, alias="stackTrace")

    @field_serializer("params")
    def _serialise_params(self, params: list[Any] | None) -> list[Any] | None:
        if params is None:
            return None
        return [_json_safe(p) for p in params]

    def to_json_line(self) -> str:
        return self.model_dump_json(by_alias=True) + "\n"


def _stack_trace(error: BaseException | str) -> str | None:
    if isinstance(error, BaseException) and error.__traceback__ is not None:
        return "".join(traceback.format_exception(error))
    return None


class TranslationErrorLog:
    """File-backed error sink, one file and one lock per dialect.

    Parameters
    ----------
    log_dir:
        Directory holding the log files.  Created on the first write.
    """

    def __init__(self, log_dir: Path | str = Path("logs")) -> None:
        self._log_dir = Path(log_dir)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def log_path(self, dialect: str) -> Path:
        """Return the log file for *dialect*."""
        if not _DIALECT_NAME.match(dialect):
            raise ValueError(f"Invalid dialect name for error log: {dialect!r}")
        return self._log_dir / f"{LOG_FILE_PREFIX}{dialect}{LOG_FILE_SUFFIX}"

    def _lock_for(self, dialect: str) -> threading.Lock:
        lock = self._locks.get(dialect)
        if lock is not None:
            return lock
        with self._locks_guard:
            return self._locks.setdefault(dialect, threading.Lock())

    # -- writing -------------------------------------------------------------

    def log_translation_error(
        self,
        dialect: str,
        original_sql: str,
        error: BaseException | str,
        rewritten_sql: str | None = None,
    ) -> TranslationErrorRecord:
        """Record a statement the rewrite rules could not process."""
        record = TranslationErrorRecord(
            dialect=dialect,
            original_sql=original_sql,
            rewritten_sql=rewritten_sql,
            error_message=str(error),
            error_type=ErrorType.TRANSLATION,
            stack_trace=_stack_trace(error),
        )
        self.append(record)
        return record

    def log_execution_error(
        self,
        dialect: str,
        original_sql: str,
        rewritten_sql: str,
        error: BaseException | str,
        params: list[Any] | tuple[Any, ...] | None = None,
    ) -> TranslationErrorRecord:
        """Record a rewritten statement the target engine rejected."""
        record = TranslationErrorRecord(
            dialect=dialect,
            original_sql=original_sql,
            rewritten_sql=rewritten_sql,
            error_message=str(error),
            error_type=ErrorType.EXECUTION,
            params=list(params) if params is not None else None,
            stack_trace=_stack_trace(error),
        )
        self.append(record)
        return record

    def append(self, record: TranslationErrorRecord) -> bool:
        """Append *record*; returns ``False`` if the sink was unavailable."""
        line = record.to_json_line()
        try:
            path = self.log_path(record.dialect)
            with self._lock_for(record.dialect):
                path.parent.mkdir(parents=True, exist_ok=True)
                with path.open("a", encoding="utf-8") as fh:
                    fh.write(line)
        except (OSError, ValueError) as exc:
            logger.error(
                "Failed to write %s error record for %s to %s: %s",
                record.error_type.value,
                record.dialect,
                self._log_dir,
                exc,
            )
            return False
        return True

    # -- reading -------------------------------------------------------------

    def read_errors(self, dialect: str) -> list[TranslationErrorRecord]:
        """Return every readable record for *dialect*, oldest first.

        Unparsable or unterminated lines are skipped.
        """
        path = self.log_path(dialect)
        with self._lock_for(dialect):
            if not path.exists():
                return []
            content = path.read_text(encoding="utf-8")

        records = []
        lines = content.split("\n")
        # The final element is whatever follows the last newline: either ""
        # or a record still being written by another process.
        for number, line in enumerate(lines[:-1], 1):
            if not line.strip():
                continue
            try:
                records.append(TranslationErrorRecord.model_validate_json(line))
            except ValidationError:
                logger.warning("Skipping unreadable record at %s:%d", path, number)
        return records

    def clear_errors(self, dialect: str) -> None:
        """Delete the log file for *dialect*, if present."""
        path = self.log_path(dialect)
        with self._lock_for(dialect):
            path.unlink(missing_ok=True)
        logger.info("Cleared translation error log for %s", dialect)

    def get_error_summary(self) -> dict[str, int]:
        """Return ``{dialect: record_count}`` for every log file on disk."""
        if not self._log_dir.is_dir():
            return {}
        summary: dict[str, int] = {}
        for path in sorted(self._log_dir.glob(f"{LOG_FILE_PREFIX}*{LOG_FILE_SUFFIX}")):
            dialect = path.name[len(LOG_FILE_PREFIX) : -len(LOG_FILE_SUFFIX)]
            if not _DIALECT_NAME.match(dialect):
                continue
            summary[dialect] = len(self.read_errors(dialect))
        return summary
