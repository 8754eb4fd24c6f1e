"""Configuration management for zapdeck."""
from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from .logging_utils import get_logger
from .regions import ALL_REGIONS, is_known_region, normalize_region

CONFIG_PATH = Path.home() / ".config" / "zapdeck" / "config.yaml"

DEFAULT_BASE_URL = "https://iptv-org.github.io/iptv"
DEFAULT_PLAYLIST_EXTENSION = "m3u"
DEFAULT_CONNECT_TIMEOUT = 15.0
DEFAULT_READ_TIMEOUT = 30.0
DEFAULT_BUFFERING_GRACE = 5.0
DEFAULT_ZAP_WINDOW = 2.0

log = get_logger(__name__)


@dataclass(slots=True)
class AppConfig:
    """Top level application configuration."""

    base_url: str = DEFAULT_BASE_URL
    playlist_extension: str = DEFAULT_PLAYLIST_EXTENSION
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    region: str = ALL_REGIONS
    subtitles_enabled: bool = True
    auto_skip_broken: bool = True
    buffering_grace: float = DEFAULT_BUFFERING_GRACE
    zap_window: float = DEFAULT_ZAP_WINDOW
    user_agent: Optional[str] = None
    preferred_player: Optional[str] = None
    theme: Optional[str] = None


def normalize_base_url(base_url: str) -> str:
    base = base_url.strip()
    if not base:
        raise ValueError("Playlist base URL cannot be empty")
    return base.rstrip("/")


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _clean_scalar(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return value


def _parse_bool(value: object, *, default: bool) -> bool:
    """Coerce *value* into a boolean flag."""

    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "yes", "on", "1"}:
            return True
        if normalized in {"false", "no", "off", "0"}:
            return False
    return default


def _parse_seconds(name: str, value: object, *, default: float) -> float:
    """Coerce *value* into a positive number of seconds."""

    if value is None or isinstance(value, bool):
        return default
    try:
        seconds = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        log.warning("Ignoring invalid %s value %r; using %.1f", name, value, default)
        return default
    if seconds <= 0:
        log.warning("%s must be positive (got %r); using %.1f", name, value, default)
        return default
    return seconds


def _parse_optional(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_config(raw: str) -> dict[str, object]:
    """Parse JSON or the flat ``key: value`` YAML subset written by :func:`save_config`."""

    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        pass
    else:
        return data if isinstance(data, dict) else {}

    result: dict[str, object] = {}
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, separator, value = stripped.partition(":")
        if not separator:
            log.debug("Skipping config line without a key: %s", stripped)
            continue
        result[key.strip()] = _clean_scalar(value)
    return result


def _dump_config(config: AppConfig) -> str:
    lines: list[str] = []
    for item in fields(config):
        value = getattr(config, item.name)
        if value is None:
            continue
        if isinstance(value, bool):
            rendered = "true" if value else "false"
        else:
            rendered = str(value)
        lines.append(f"{item.name}: {rendered}")
    lines.append("")
    return "\n".join(lines)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load configuration from *path* or return the defaults."""

    config_path = path or CONFIG_PATH
    if not config_path.exists():
        log.info("Configuration file missing at %s; using defaults", config_path)
        return AppConfig()
    log.debug("Loading configuration from %s", config_path)
    data = _parse_config(config_path.read_text(encoding="utf8"))
    defaults = AppConfig()

    base_url = defaults.base_url
    base_raw = data.get("base_url")
    if base_raw is not None:
        try:
            base_url = normalize_base_url(str(base_raw))
        except ValueError:
            log.warning("Empty base_url in %s; using %s", config_path, defaults.base_url)

    extension = (_parse_optional(data.get("playlist_extension")) or defaults.playlist_extension).lstrip(".")

    region = defaults.region
    region_raw = _parse_optional(data.get("region"))
    if region_raw is not None:
        if is_known_region(region_raw):
            region = normalize_region(region_raw)
        else:
            log.warning("Unknown region %r in configuration; using %s", region_raw, region)

    config = AppConfig(
        base_url=base_url,
        playlist_extension=extension,
        connect_timeout=_parse_seconds(
            "connect_timeout", data.get("connect_timeout"), default=defaults.connect_timeout
        ),
        read_timeout=_parse_seconds(
            "read_timeout", data.get("read_timeout"), default=defaults.read_timeout
        ),
        region=region,
        subtitles_enabled=_parse_bool(
            data.get("subtitles_enabled"), default=defaults.subtitles_enabled
        ),
        auto_skip_broken=_parse_bool(
            data.get("auto_skip_broken"), default=defaults.auto_skip_broken
        ),
        buffering_grace=_parse_seconds(
            "buffering_grace", data.get("buffering_grace"), default=defaults.buffering_grace
        ),
        zap_window=_parse_seconds(
            "zap_window", data.get("zap_window"), default=defaults.zap_window
        ),
        user_agent=_parse_optional(data.get("user_agent")),
        preferred_player=_parse_optional(data.get("preferred_player")),
        theme=_parse_optional(data.get("theme")),
    )
    log.info("Loaded configuration from %s (region=%s)", config_path, config.region)
    return config


def save_config(config: AppConfig, path: Optional[Path] = None) -> None:
    """Persist *config* to disk at *path*."""

    config_path = path or CONFIG_PATH
    _ensure_parent(config_path)
    config_path.write_text(_dump_config(config), encoding="utf8")
    log.info("Configuration saved to %s", config_path)


__all__ = [
    "AppConfig",
    "CONFIG_PATH",
    "DEFAULT_BASE_URL",
    "DEFAULT_CONNECT_TIMEOUT",
    "DEFAULT_PLAYLIST_EXTENSION",
    "DEFAULT_READ_TIMEOUT",
    "load_config",
    "normalize_base_url",
    "save_config",
]
