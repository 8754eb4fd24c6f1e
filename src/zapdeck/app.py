"""Textual application for browsing and zapping through live channels."""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Optional

try:
    from textual import on
    from textual.app import App, ComposeResult
    from textual.binding import Binding
    from textual.containers import Horizontal, Vertical
    from textual.reactive import reactive
    from textual.timer import Timer
    from textual.widgets import (
        Footer,
        Header,
        Input,
        Label,
        OptionList,
        Static,
        TabbedContent,
        TabPane,
    )
    from textual.widgets.option_list import Option
except ModuleNotFoundError as exc:  # pragma: no cover - dependency guard
    raise ModuleNotFoundError(
        "The 'textual' package is required to run zapdeck. "
        "Install dependencies with 'pip install -e .[test]' or 'pip install zapdeck'."
    ) from exc

from rich.text import Text

from .catalog import CatalogSnapshot, CatalogStore
from .config import CONFIG_PATH, AppConfig, save_config
from .fetcher import CatalogFetcher
from .health import BufferingWatchdog
from .log_viewer import LogViewer
from .logging_utils import get_logger
from .navigation import NavigationEngine, NavigationState
from .player import PlayerError, PlayerSession
from .playlist import Channel, filter_channels
from .regions import REGIONS, region_label
from .themes import CUSTOM_THEMES, DEFAULT_THEME_NAME

log = get_logger(__name__)

WATCHDOG_INTERVAL = 0.5


def channel_prompt(channel: Channel, *, broken: bool, selected: bool) -> Text:
    """Return the option-list label for ``channel``."""

    marker = ("▶ ", "bold green") if selected else ("  ", "")
    label = Text.assemble(marker, channel.name)
    if broken:
        label.append("  ✗ broken", style="red")
    label.append(f"  {channel.category}", style="dim")
    return label


class StatusBar(Static):
    """Single line showing the latest status message."""

    status: reactive[str] = reactive("Ready")

    def watch_status(self, status: str) -> None:
        self.update(status)


class NowPlaying(Static):
    """Describe the selected channel and the navigation state."""

    def show(
        self,
        state: NavigationState,
        *,
        playing: bool,
        auto_skip: bool,
        subtitles: bool,
    ) -> None:
        channel = state.selected
        lines: list[str] = []
        if channel is None:
            lines.append("No channel selected")
        else:
            lines.append(channel.name)
            lines.append(f"Category: {channel.category}")
            lines.append(f"Region: {region_label(channel.region)}")
            if channel.logo_url:
                lines.append(f"Logo: {channel.logo_url}")
            lines.append(f"Stream: {channel.stream_url}")
            if channel.stream_url in state.broken:
                lines.append("Marked as broken")
        lines.append("")
        lines.append(f"Playback: {'on' if playing else 'off'}")
        lines.append(f"Auto-skip broken: {'on' if auto_skip else 'off'}")
        lines.append(f"Subtitles: {'on' if subtitles else 'off'}")
        lines.append(f"Broken streams: {len(state.broken)}")
        self.update(Text("\n".join(lines)))


_INLINE_DEFAULT_CSS = """
#main-tabs {
    height: 1fr;
}

#browser {
    layout: horizontal;
    height: 1fr;
}

#filters {
    width: 28;
}

#region-list,
#category-list {
    height: 1fr;
    border: heavy $surface;
}

#channels-pane {
    width: 3fr;
}

#channel-list {
    height: 1fr;
    border: heavy $surface;
}

#now-playing {
    width: 2fr;
    min-width: 30;
    border: heavy $surface;
    padding: 1;
}

#log-viewer {
    height: 1fr;
    border: heavy $surface;
    padding: 0 1;
    overflow-y: auto;
}

StatusBar {
    padding: 0 1;
}
"""


class ZapdeckApp(App[None]):
    """Main Textual application."""

    CSS = _INLINE_DEFAULT_CSS
    TITLE = "zapdeck"
    BINDINGS = [
        Binding("ctrl+c", "quit", "Quit"),
        Binding("q", "quit", "Quit"),
        Binding("f1", "switch_tab('browse-tab')", "Browse"),
        Binding("f2", "switch_tab('logs-tab')", "Logs"),
        Binding("n,right_square_bracket", "next_channel", "Next"),
        Binding("p,left_square_bracket", "previous_channel", "Previous"),
        Binding("enter", "play", "Play", show=False),
        Binding("s", "stop_playback", "Stop"),
        Binding("x", "mark_broken", "Mark broken"),
        Binding("a", "toggle_auto_skip", "Auto-skip"),
        Binding("t", "toggle_subtitles", "Subtitles"),
        Binding("r", "reload", "Reload"),
        Binding("/", "focus_search", "Search"),
        Binding("escape", "clear_search", "Clear search", show=False),
    ]

    def __init__(
        self,
        config: AppConfig,
        *,
        config_path: Optional[Path] = None,
        preferred_player: Optional[str] = None,
        theme: Optional[str] = None,
        engine: Optional[NavigationEngine] = None,
        player: Optional[PlayerSession] = None,
    ) -> None:
        super().__init__()
        self._config = config
        self._config_path = config_path or CONFIG_PATH
        for custom in CUSTOM_THEMES.values():
            self.register_theme(custom)
        self._apply_requested_theme(theme or config.theme)
        self._engine = engine or NavigationEngine(
            CatalogStore(),
            CatalogFetcher.from_config(config),
            region=config.region,
        )
        self._player = player or PlayerSession(
            preferred=preferred_player or config.preferred_player,
            subtitles_enabled=config.subtitles_enabled,
            on_buffering=self._on_player_buffering,
            on_error=self._on_player_error,
            on_track_changed=self._on_player_track_changed,
        )
        self._watchdog = BufferingWatchdog(
            self._handle_stalled,
            grace=config.buffering_grace,
            zap_window=config.zap_window,
        )
        self._app_thread_id: int = threading.get_ident()
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._watchdog_timer: Optional[Timer] = None
        self._rendered_snapshot: Optional[CatalogSnapshot] = None
        self._rendered_broken: frozenset[str] = frozenset()
        self._displayed: list[Channel] = []
        self._last_selected: Optional[Channel] = None
        self._playing = False
        log.info("ZapdeckApp initialized (region=%s)", self._engine.region)

    @property
    def engine(self) -> NavigationEngine:
        return self._engine

    @property
    def displayed_channels(self) -> list[Channel]:
        return list(self._displayed)

    def _apply_requested_theme(self, requested: Optional[str]) -> None:
        name = requested if requested in CUSTOM_THEMES else DEFAULT_THEME_NAME
        if requested and requested != name:
            log.warning("Requested theme '%s' is unavailable; using %s", requested, name)
        self.theme = name

    def compose(self) -> ComposeResult:
        yield Header()
        with TabbedContent(id="main-tabs"):
            with TabPane("Browse", id="browse-tab"):
                with Horizontal(id="browser"):
                    with Vertical(id="filters"):
                        yield Label("Regions")
                        yield OptionList(id="region-list")
                        yield Label("Categories")
                        yield OptionList(id="category-list")
                    with Vertical(id="channels-pane"):
                        yield Input(placeholder="Search channels…", id="search")
                        yield OptionList(id="channel-list")
                    yield NowPlaying(id="now-playing")
            with TabPane("Logs", id="logs-tab"):
                yield LogViewer(id="log-viewer")
        yield StatusBar(id="status")
        yield Footer()

    def on_mount(self) -> None:
        self._app_thread_id = threading.get_ident()
        regions = self.query_one("#region-list", OptionList)
        regions.add_options(Option(label, id=code) for code, label in REGIONS.items())
        self._highlight_region()
        self._unsubscribe = self._engine.subscribe(self._on_state_changed)
        self._watchdog_timer = self.set_interval(WATCHDOG_INTERVAL, self._watchdog.poll)
        self._apply_state(self._engine.state())
        self._start_load(self._engine.region)
        self.query_one("#channel-list", OptionList).focus()

    def on_unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # Threading helpers ------------------------------------------------------

    def _call_on_app_thread(self, callback: Callable[..., None], *args) -> None:
        if threading.get_ident() == self._app_thread_id:
            callback(*args)
        else:
            self.call_from_thread(callback, *args)

    def _set_status(self, message: str) -> None:
        self.query_one(StatusBar).status = message

    # State rendering --------------------------------------------------------

    def _on_state_changed(self, state: NavigationState) -> None:
        self._call_on_app_thread(self._apply_state, state)

    def _apply_state(self, state: NavigationState) -> None:
        snapshot = self._engine.store.snapshot()
        if snapshot is not self._rendered_snapshot or state.broken != self._rendered_broken:
            self._render_categories(snapshot)
            self._render_channels()
            self._rendered_snapshot = snapshot
            self._rendered_broken = state.broken
            self._update_loading_status(state, snapshot)
        else:
            self._refresh_channel_markers()
        if state.selected != self._last_selected:
            self._last_selected = state.selected
            self._watchdog.channel_switched(state.selected)
            if self._playing and state.selected is not None:
                self._start_playback(follow=True)
        self.query_one(NowPlaying).show(
            state,
            playing=self._playing,
            auto_skip=self._config.auto_skip_broken,
            subtitles=self._config.subtitles_enabled,
        )

    def _update_loading_status(self, state: NavigationState, snapshot: CatalogSnapshot) -> None:
        label = region_label(state.region)
        if snapshot.loading:
            self._set_status(f"Loading channels for {label}…")
        elif snapshot.is_empty:
            self._set_status(f"No channels available for {label}")

    def _render_categories(self, snapshot: CatalogSnapshot) -> None:
        categories = self.query_one("#category-list", OptionList)
        categories.clear_options()
        categories.add_options(Option(Text(label), id=label) for label in snapshot.categories)
        if snapshot.category_filter in snapshot.categories:
            categories.highlighted = snapshot.categories.index(snapshot.category_filter)

    def _highlight_region(self) -> None:
        regions = self.query_one("#region-list", OptionList)
        codes = list(REGIONS)
        if self._engine.region in codes:
            regions.highlighted = codes.index(self._engine.region)

    def _render_channels(self) -> None:
        query = self.query_one("#search", Input).value
        visible = self._engine.store.visible_channels
        self._displayed = filter_channels(visible, query) if query.strip() else list(visible)
        self._refresh_channel_markers(rebuild=True)

    def _refresh_channel_markers(self, *, rebuild: bool = False) -> None:
        channel_list = self.query_one("#channel-list", OptionList)
        selected = self._engine.selected
        broken = self._engine.broken
        highlighted = channel_list.highlighted
        channel_list.clear_options()
        channel_list.add_options(
            Option(
                channel_prompt(
                    channel,
                    broken=channel.stream_url in broken,
                    selected=selected is not None and channel == selected,
                )
            )
            for channel in self._displayed
        )
        target: Optional[int] = highlighted if not rebuild else None
        if selected is not None and selected in self._displayed:
            target = self._displayed.index(selected)
        if target is not None and 0 <= target < len(self._displayed):
            channel_list.highlighted = target

    # Loading ----------------------------------------------------------------

    def _start_load(self, region: str) -> None:
        self._set_status(f"Loading channels for {region_label(region)}…")
        self.run_worker(self._load_region(region), name=f"load:{region}", group="load")

    async def _load_region(self, region: str) -> None:
        applied = await self._engine.select_region(region)
        if applied:
            count = len(self._engine.store.channels)
            self._call_on_app_thread(
                self._set_status,
                f"Loaded {count} channels for {region_label(region)}"
                if count
                else f"No channels available for {region_label(region)}",
            )

    # Playback ---------------------------------------------------------------

    def _start_playback(self, *, follow: bool = False) -> None:
        channel = self._engine.selected
        if channel is None:
            self._set_status("Select a channel first")
            return
        self._playing = True
        self.run_worker(
            self._play(channel, follow=follow), name="player", group="player", exclusive=True
        )

    async def _play(self, channel: Channel, *, follow: bool = False) -> None:
        target = self._engine.playback_target()
        try:
            if follow:
                await self._player.ensure_playing(channel, target)
            else:
                await self._player.play(channel, target)
        except PlayerError as exc:
            self._playing = False
            log.error("Failed to start playback: %s", exc)
            self._call_on_app_thread(self._set_status, f"Playback failed: {exc}")
            return
        except OSError as exc:
            self._playing = False
            log.error("Failed to launch player for %s: %s", channel.name, exc)
            self._call_on_app_thread(self._set_status, f"Playback failed: {exc}")
            return
        self._call_on_app_thread(self._set_status, f"Playing {channel.name}")

    def _on_player_buffering(self, buffering: bool) -> None:
        self._call_on_app_thread(self._watchdog.buffering_changed, buffering)

    def _on_player_error(self, message: str) -> None:
        self._call_on_app_thread(self._watchdog.error_occurred)

    def _on_player_track_changed(self, url: str) -> None:
        self._call_on_app_thread(self._follow_player, url)

    def _follow_player(self, url: str) -> None:
        """Move the selection to the channel mpv advanced to on its own."""

        previous = self._engine.selected
        if previous is not None and previous.stream_url == url:
            return
        channel = self._engine.store.find(url)
        if channel is None:
            log.debug("Player moved to %s, which is not in the catalog", url)
            return
        if previous is not None and self._watchdog.errored and self._config.auto_skip_broken:
            self._set_status(f"Skipping broken channel {previous.name}")
            self._engine.mark_broken(previous)
        else:
            self._engine.select(channel)

    def _handle_stalled(self, channel: Channel) -> None:
        if not self._config.auto_skip_broken:
            self._set_status(f"{channel.name} is not responding")
            return
        self._set_status(f"Skipping broken channel {channel.name}")
        self._engine.mark_broken(channel)

    # Events -----------------------------------------------------------------

    @on(OptionList.OptionSelected, "#region-list")
    def _on_region_selected(self, event: OptionList.OptionSelected) -> None:
        code = event.option.id
        if code:
            self._start_load(code)

    @on(OptionList.OptionSelected, "#category-list")
    def _on_category_selected(self, event: OptionList.OptionSelected) -> None:
        label = event.option.id
        if label:
            self._engine.select_category(label)

    @on(OptionList.OptionSelected, "#channel-list")
    def _on_channel_selected(self, event: OptionList.OptionSelected) -> None:
        index = event.option_index
        if not 0 <= index < len(self._displayed):
            return
        channel = self._displayed[index]
        if channel == self._engine.selected:
            self._start_playback()
        else:
            # Playback starts from the selection change.
            self._playing = True
            self._engine.select(channel)

    @on(Input.Changed, "#search")
    def _on_search_changed(self, _: Input.Changed) -> None:
        self._render_channels()

    # Actions ----------------------------------------------------------------

    def action_switch_tab(self, tab: str) -> None:
        self.query_one("#main-tabs", TabbedContent).active = tab
        # The tab follows focus, so focus has to move into the new pane.
        if tab == "logs-tab":
            self.query_one(LogViewer).focus()
        else:
            self.query_one("#channel-list", OptionList).focus()

    def action_next_channel(self) -> None:
        self._engine.next()

    def action_previous_channel(self) -> None:
        self._engine.previous()

    def action_play(self) -> None:
        self._start_playback()

    def action_stop_playback(self) -> None:
        self._playing = False
        self.run_worker(self._player.stop(), name="player", group="player", exclusive=True)
        self._set_status("Playback stopped")
        self._apply_state(self._engine.state())

    def action_mark_broken(self) -> None:
        channel = self._engine.selected
        if channel is None:
            return
        self._engine.mark_broken(channel)
        self._set_status(f"Marked {channel.name} as broken")

    def action_toggle_auto_skip(self) -> None:
        self._config.auto_skip_broken = not self._config.auto_skip_broken
        self._save_config()
        state = "enabled" if self._config.auto_skip_broken else "disabled"
        self._set_status(f"Auto-skip of broken channels {state}")
        self._apply_state(self._engine.state())

    def action_toggle_subtitles(self) -> None:
        self._config.subtitles_enabled = not self._config.subtitles_enabled
        self._save_config()
        self.run_worker(self._player.set_subtitles(self._config.subtitles_enabled), group="player")
        state = "enabled" if self._config.subtitles_enabled else "disabled"
        self._set_status(f"Subtitles {state}")
        self._apply_state(self._engine.state())

    def action_reload(self) -> None:
        self._start_load(self._engine.region)

    def action_focus_search(self) -> None:
        self.query_one("#search", Input).focus()

    def action_clear_search(self) -> None:
        search = self.query_one("#search", Input)
        if search.value:
            search.value = ""
        self.query_one("#channel-list", OptionList).focus()

    async def action_quit(self) -> None:
        await self._player.stop()
        self.exit()

    def _save_config(self) -> None:
        try:
            save_config(self._config, self._config_path)
        except OSError as exc:
            log.warning("Failed to save configuration to %s: %s", self._config_path, exc)


__all__ = ["NowPlaying", "StatusBar", "ZapdeckApp", "channel_prompt"]
