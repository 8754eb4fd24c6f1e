"""Themes bundled with zapdeck."""
from __future__ import annotations

from typing import Mapping

from textual.theme import Theme

__all__ = [
    "CUSTOM_THEMES",
    "DEFAULT_THEME_NAME",
]

_NIGHT = Theme(
    "zapdeck-night",
    primary="#4f9dde",
    secondary="#39b7a5",
    warning="#e0a526",
    error="#e0524a",
    success="#6cbf4a",
    accent="#c85dd3",
    foreground="#d7dde4",
    background="#10161d",
    surface="#18212b",
    panel="#1f2a36",
    dark=True,
)

_DAY = Theme(
    "zapdeck-day",
    primary="#1f6fb2",
    secondary="#1d8c7e",
    warning="#a86f00",
    error="#b3261e",
    success="#3c7d22",
    accent="#8e3aa0",
    foreground="#1d2329",
    background="#f6f4ef",
    surface="#ebe7de",
    panel="#e0dbd0",
    dark=False,
)

CUSTOM_THEMES: Mapping[str, Theme] = {
    _NIGHT.name: _NIGHT,
    _DAY.name: _DAY,
}
"""Themes bundled with the application keyed by their names."""

DEFAULT_THEME_NAME = _NIGHT.name
"""Theme applied when none is requested."""
