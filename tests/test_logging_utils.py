"""Tests for :mod:`zapdeck.logging_utils`."""

from __future__ import annotations

import logging
from pathlib import Path
from types import ModuleType, SimpleNamespace
from typing import Any, Iterator

import pytest

from zapdeck import logging_utils


@pytest.fixture
def fresh_logging(monkeypatch: pytest.MonkeyPatch) -> Iterator[ModuleType]:
    """Give each test an unconfigured package logger."""

    monkeypatch.setenv("ZAPDECK_LOG_FILE", "")
    monkeypatch.delenv("ZAPDECK_LOG_LEVEL", raising=False)
    monkeypatch.setattr(logging_utils, "_state", logging_utils._LoggingState())
    logger = logging.getLogger("zapdeck")
    previous = list(logger.handlers)
    previous_level = logger.level
    yield logging_utils
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        if handler not in previous:
            handler.close()
    for handler in previous:
        logger.addHandler(handler)
    logger.setLevel(previous_level)


def test_configure_logging_installs_handlers_once(fresh_logging: ModuleType) -> None:
    logger = fresh_logging.configure_logging(level="INFO")
    state = fresh_logging._state
    assert logger.handlers == [state.stream, state.relay]
    assert logger.propagate is False

    fresh_logging.configure_logging()
    assert logger.handlers == [state.stream, state.relay]
    assert fresh_logging.get_log_file_path() is None


def test_first_configuration_replaces_leftover_handlers(fresh_logging: ModuleType) -> None:
    logger = logging.getLogger("zapdeck")
    stale = [logging.StreamHandler(), logging.NullHandler()]
    for handler in stale:
        logger.addHandler(handler)

    fresh_logging.configure_logging(level="INFO")

    assert len(logger.handlers) == 2
    assert not any(handler in logger.handlers for handler in stale)


def test_configure_logging_updates_level(fresh_logging: ModuleType) -> None:
    """Runtime calls should be able to update the log level."""

    logger = fresh_logging.configure_logging(level="INFO")
    assert logger.getEffectiveLevel() == logging.INFO

    fresh_logging.configure_logging(level="DEBUG")
    assert logger.getEffectiveLevel() == logging.DEBUG
    assert all(handler.level == logging.DEBUG for handler in logger.handlers)

    fresh_logging.configure_logging(level="10")
    assert logger.getEffectiveLevel() == logging.DEBUG
    fresh_logging.configure_logging(level="nonsense")
    assert logger.getEffectiveLevel() == logging.INFO


def test_environment_level_is_used(
    fresh_logging: ModuleType, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("ZAPDECK_LOG_LEVEL", "warning")
    logger = fresh_logging.configure_logging()
    assert logger.getEffectiveLevel() == logging.WARNING


def test_configure_logging_changes_file_destination(
    fresh_logging: ModuleType, tmp_path: Path
) -> None:
    """Switching log files should replace the active file handler."""

    logger = fresh_logging.configure_logging(level="INFO")
    assert not any(isinstance(h, logging.FileHandler) for h in logger.handlers)

    first = tmp_path / "first.log"
    fresh_logging.configure_logging(log_file=str(first))
    second = tmp_path / "nested" / "second.log"
    fresh_logging.configure_logging(log_file=str(second))

    file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
    assert len(file_handlers) == 1
    assert Path(file_handlers[0].baseFilename) == second
    assert fresh_logging.get_log_file_path() == second
    assert second.exists()


def test_environment_log_file(
    fresh_logging: ModuleType, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    target = tmp_path / "env.log"
    monkeypatch.setenv("ZAPDECK_LOG_FILE", str(target))
    logger = fresh_logging.configure_logging()
    fresh_logging.get_logger("zapdeck.tests").info("hello from the environment")
    for handler in logger.handlers:
        handler.flush()
    assert "hello from the environment" in target.read_text(encoding="utf8")


def test_get_logger_namespaces_modules(fresh_logging: ModuleType) -> None:
    assert fresh_logging.get_logger().name == "zapdeck"
    assert fresh_logging.get_logger("zapdeck.fetcher").name == "zapdeck.fetcher"
    assert fresh_logging.get_logger("plugins").name == "zapdeck.plugins"


class RecordingViewer:
    """Stand-in for the Textual log viewer outside of a running app."""

    def __init__(self) -> None:
        self.messages: list[str] = []
        self.app = SimpleNamespace(call_from_thread=self._not_in_app)

    @staticmethod
    def _not_in_app(*args: Any, **kwargs: Any) -> None:
        raise RuntimeError("no running app")

    def replace_messages(self, messages: list[str]) -> None:
        self.messages = list(messages)

    def append_message(self, message: str) -> None:
        self.messages.append(message)


def test_log_viewer_receives_buffered_and_new_records(fresh_logging: ModuleType) -> None:
    logger = fresh_logging.configure_logging(level="INFO")
    logger.info("before viewer")
    stream_handler = fresh_logging._state.stream

    viewer = RecordingViewer()
    fresh_logging.register_log_viewer(viewer)
    logger.info("after viewer")

    assert any("before viewer" in message for message in viewer.messages)
    assert any("after viewer" in message for message in viewer.messages)
    assert stream_handler not in logger.handlers

    fresh_logging.register_log_viewer(None)
    assert stream_handler in logger.handlers
    logger.info("after detach")
    assert not any("after detach" in message for message in viewer.messages)
