"""Tests for the JSON log formatter and root logger setup."""

from __future__ import annotations

import contextlib
import json
import logging
import sys
from typing import Iterator

from dialect_engine.logging_config import JSONFormatter, configure_logging


def _record(msg: str = "hello %s", args: tuple = ("world",), exc_info=None, **extra) -> logging.LogRecord:
    record = logging.LogRecord("dialect_engine.test", logging.WARNING, __file__, 1, msg, args, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@contextlib.contextmanager
def _preserved_root() -> Iterator[logging.Logger]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    try:
        yield root
    finally:
        root.handlers[:] = handlers
        root.setLevel(level)


class TestJSONFormatter:
    def test_basic_fields(self) -> None:
        payload = json.loads(JSONFormatter().format(_record()))
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "dialect_engine.test"
        assert payload["message"] == "hello world"
        assert payload["timestamp"].endswith("+00:00")
        assert "dialect" not in payload
        assert "exc_info" not in payload

    def test_extras(self) -> None:
        payload = json.loads(JSONFormatter().format(_record(dialect="mysql", rule="partial-index")))
        assert payload["dialect"] == "mysql"
        assert payload["rule"] == "partial-index"

    def test_exception(self) -> None:
        try:
            raise ValueError("bad value")
        except ValueError:
            record = _record(exc_info=sys.exc_info())
        payload = json.loads(JSONFormatter().format(record))
        assert "ValueError: bad value" in payload["exc_info"]

    def test_single_line(self) -> None:
        assert "\n" not in JSONFormatter().format(_record(msg="a\nb", args=()))


class TestConfigureLogging:
    def test_structured(self) -> None:
        with _preserved_root() as root:
            handler = configure_logging("debug", structured=True)
            assert root.handlers == [handler]
            assert root.level == logging.DEBUG
            assert isinstance(handler.formatter, JSONFormatter)

    def test_plain_text(self) -> None:
        with _preserved_root() as root:
            handler = configure_logging(logging.ERROR)
            assert root.level == logging.ERROR
            assert not isinstance(handler.formatter, JSONFormatter)
