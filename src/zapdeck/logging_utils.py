"""Logging helpers for :mod:`zapdeck`.

Everything zapdeck logs goes through the ``zapdeck`` logger, which owns
three handlers: stderr, an optional log file and an in-app handler that
keeps recent lines for the Logs tab.
"""

from __future__ import annotations

import logging
import os
import threading
import weakref
from collections import deque
from pathlib import Path
from typing import Optional, TYPE_CHECKING


if TYPE_CHECKING:  # pragma: no cover - only for typing
    from .log_viewer import LogViewer

__all__ = [
    "configure_logging",
    "get_log_file_path",
    "get_logger",
    "register_log_viewer",
]

LOGGER_NAME = "zapdeck"
_ENV_LEVEL = "ZAPDECK_LOG_LEVEL"
_ENV_FILE = "ZAPDECK_LOG_FILE"
_DEFAULT_LOG_PATH = Path.home() / ".cache" / "zapdeck.log"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _ViewerRelay(logging.Handler):
    """Keep the most recent formatted lines and push new ones to a viewer."""

    def __init__(self, *, capacity: int = 200) -> None:
        super().__init__()
        self._recent: deque[str] = deque(maxlen=capacity)
        self._viewer: Optional[weakref.ReferenceType["LogViewer"]] = None
        self._guard = threading.RLock()

    def attach(self, viewer: Optional["LogViewer"]) -> None:
        with self._guard:
            self._viewer = weakref.ref(viewer) if viewer is not None else None
            backlog = list(self._recent)
        if viewer is not None:
            _deliver(viewer, viewer.replace_messages, backlog)

    def emit(self, record: logging.LogRecord) -> None:
        line = self.format(record)
        with self._guard:
            self._recent.append(line)
            viewer = self._viewer() if self._viewer is not None else None
        if viewer is None:
            return
        try:
            _deliver(viewer, viewer.append_message, line)
        except Exception:  # pragma: no cover - the UI may be shutting down
            self.handleError(record)


def _deliver(viewer: "LogViewer", method, payload) -> None:
    # call_from_thread refuses to run on the app's own thread.
    try:
        viewer.app.call_from_thread(method, payload)
    except RuntimeError:
        method(payload)


class _LoggingState:
    """Handlers installed on the package logger by :func:`configure_logging`."""

    __slots__ = ("stream", "relay", "file", "log_path", "level")

    def __init__(self) -> None:
        self.stream: Optional[logging.Handler] = None
        self.relay: Optional[_ViewerRelay] = None
        self.file: Optional[logging.Handler] = None
        self.log_path: Optional[Path] = None
        self.level = logging.INFO

    @property
    def ready(self) -> bool:
        return self.relay is not None


_state = _LoggingState()


def _parse_level(value: str) -> int:
    """Map ``"debug"``, ``"10"`` and friends to a logging level; INFO otherwise."""

    text = value.strip().upper()
    if text.isdigit() and int(text) <= logging.CRITICAL:
        return int(text)
    level = logging.getLevelName(text)
    return level if isinstance(level, int) else logging.INFO


def _formatter() -> logging.Formatter:
    return logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)


def _replace_file_handler(logger: logging.Logger, destination: Optional[str]) -> None:
    if _state.file is not None:
        logger.removeHandler(_state.file)
        _state.file.close()
    _state.file = None
    _state.log_path = None
    if not destination:
        return
    path = Path(destination).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf8")
    except OSError:
        logger.warning("Cannot write log file %s; file logging disabled", path)
        return
    handler.setFormatter(_formatter())
    logger.addHandler(handler)
    _state.file = handler
    _state.log_path = path
    logger.debug("Writing log file %s", path)


def _install(logger: logging.Logger, destination: Optional[str]) -> None:
    # Handlers left by an earlier configuration would print every line twice.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = False
    _state.stream = logging.StreamHandler()
    _state.relay = _ViewerRelay()
    for handler in (_state.stream, _state.relay):
        handler.setFormatter(_formatter())
        logger.addHandler(handler)
    _replace_file_handler(logger, destination)


def configure_logging(
    *,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Set up the ``zapdeck`` logger and return it.

    The first call installs the stream, in-app and file handlers; the file
    defaults to ``ZAPDECK_LOG_FILE`` or ``~/.cache/zapdeck.log`` and an empty
    value disables it. Later calls only apply the overrides they are given.
    ``ZAPDECK_LOG_LEVEL`` is consulted whenever *level* is omitted.
    """

    logger = logging.getLogger(LOGGER_NAME)
    requested = level if level is not None else os.getenv(_ENV_LEVEL)

    if not _state.ready:
        destination = log_file
        if destination is None:
            destination = os.getenv(_ENV_FILE, str(_DEFAULT_LOG_PATH))
        _install(logger, destination)
        _state.level = _parse_level(requested or "INFO")
    else:
        if requested is not None:
            _state.level = _parse_level(requested)
        if log_file is not None:
            _replace_file_handler(logger, log_file)

    logger.setLevel(_state.level)
    for handler in (*logger.handlers, _state.stream):
        if handler is not None:
            handler.setLevel(_state.level)
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return the package logger or one of its children."""

    base = configure_logging()
    if not name or name == LOGGER_NAME:
        return base
    if name.startswith(LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def get_log_file_path() -> Optional[Path]:
    """Path of the active log file, or ``None`` when file logging is off."""

    return _state.log_path


def register_log_viewer(viewer: Optional["LogViewer"]) -> None:
    """Route log lines to *viewer*, or back to stderr when it is ``None``.

    stderr output is muted while a viewer is attached so log lines do not
    scribble over the Textual screen.
    """

    logger = configure_logging()
    relay = _state.relay
    if relay is None:  # pragma: no cover - configure_logging always installs it
        return
    stream = _state.stream
    if stream is not None:
        if viewer is not None:
            logger.removeHandler(stream)
        elif stream not in logger.handlers:
            logger.addHandler(stream)
    relay.attach(viewer)
