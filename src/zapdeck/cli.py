"""Command line entry point for zapdeck."""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Iterable

from . import __version__
from .app import ZapdeckApp
from .config import CONFIG_PATH, load_config
from .fetcher import CatalogFetcher
from .logging_utils import configure_logging, get_log_file_path, get_logger
from .player import DEFAULT_PLAYER_CANDIDATES
from .regions import REGIONS, is_known_region, normalize_region
from .themes import CUSTOM_THEMES

log = get_logger(__name__)


def _sorted_theme_names() -> list[str]:
    """Return the bundled theme catalog in a consistent order."""

    return sorted(CUSTOM_THEMES)


def _region_code(value: str) -> str:
    if not is_known_region(value):
        raise argparse.ArgumentTypeError(
            f"unknown region '{value}' (use --list-regions to see the choices)"
        )
    return normalize_region(value)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Zap through free live TV channels")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=Path,
        default=CONFIG_PATH,
        help="Path to configuration file (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override ZAPDECK_LOG_LEVEL for this invocation",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Write logs to this file instead of the default or ZAPDECK_LOG_FILE",
    )
    parser.add_argument(
        "--player",
        dest="preferred_player",
        default=None,
        help=(
            "Preferred media player executable to launch (default: auto-detect, trying "
            f"{', '.join(DEFAULT_PLAYER_CANDIDATES)} in that order)"
        ),
    )
    parser.add_argument(
        "--region",
        type=_region_code,
        default=None,
        help="Region to load on startup, overriding the configuration file.",
    )
    theme_names = ", ".join(_sorted_theme_names())
    parser.add_argument(
        "--theme",
        default=None,
        help=f"Select the application theme. Available options: {theme_names}.",
    )
    parser.add_argument(
        "--list-themes",
        action="store_true",
        help="List available themes and exit.",
    )
    parser.add_argument(
        "--list-regions",
        action="store_true",
        help="List selectable regions and exit.",
    )
    parser.add_argument(
        "--show-log-path",
        action="store_true",
        help="Print the log file the application writes to and exit.",
    )
    parser.add_argument(
        "--dump",
        action="store_true",
        help="Fetch the catalog for the region, print it as tab separated lines and exit.",
    )
    return parser.parse_args(argv)


def _dump_catalog(fetcher: CatalogFetcher, region: str) -> int:
    """Print the channels of *region* to stdout; return the number printed."""

    channels = asyncio.run(fetcher.load(region))
    for channel in channels:
        print(f"{channel.name}\t{channel.category}\t{channel.stream_url}")
    log.info("Dumped %d channels for region %s", len(channels), region)
    return len(channels)


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)
    if args.list_themes:
        for theme_name in _sorted_theme_names():
            print(theme_name)
        return
    if args.list_regions:
        for code, label in REGIONS.items():
            print(f"{code}\t{label}")
        return
    configure_logging(
        level=args.log_level,
        log_file=str(args.log_file) if args.log_file is not None else None,
    )
    if args.show_log_path:
        log_path = get_log_file_path()
        print(log_path if log_path is not None else "File logging is disabled")
        return
    log.info("CLI invoked with config=%s", args.config)
    config = load_config(args.config)
    if args.region is not None:
        config.region = args.region
    if args.dump:
        if _dump_catalog(CatalogFetcher.from_config(config), config.region) == 0:
            raise SystemExit(1)
        return
    app = ZapdeckApp(
        config,
        config_path=args.config,
        preferred_player=args.preferred_player,
        theme=args.theme,
    )
    log.info("Launching Textual application")
    try:
        app.run()
    except KeyboardInterrupt:
        log.info("Keyboard interrupt received; exiting application")
        if app.is_running:
            app.exit()
        raise SystemExit(130) from None


if __name__ == "__main__":  # pragma: no cover
    main()
