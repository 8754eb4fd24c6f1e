"""Channel cursor, zapping and region/category transitions."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .catalog import CatalogStore
from .fetcher import CatalogFetcher
from .logging_utils import get_logger
from .playlist import Channel
from .regions import ALL_CATEGORIES, ALL_REGIONS, normalize_region

log = get_logger(__name__)

NavigationListener = Callable[["NavigationState"], None]


@dataclass(frozen=True, slots=True)
class NavigationState:
    """Snapshot of the cursor published to observers."""

    selected: Optional[Channel]
    region: str
    category_filter: str
    broken: frozenset[str]
    loading: bool


@dataclass(frozen=True, slots=True)
class PlaybackTarget:
    """What the player needs: the stream to play and the likely next candidates."""

    stream_url: str
    next_url: Optional[str] = None
    previous_url: Optional[str] = None


def _index_of(channels: Sequence[Channel], channel: Optional[Channel]) -> int:
    if channel is None:
        return -1
    for index, candidate in enumerate(channels):
        if candidate.stream_url == channel.stream_url:
            return index
    return -1


def find_candidate(
    channels: Sequence[Channel],
    current: Optional[Channel],
    broken: frozenset[str] | set[str],
    step: int,
) -> Optional[Channel]:
    """Walk ``channels`` circularly from ``current`` in direction ``step``.

    Broken stream URLs are skipped. When every channel has been visited without
    finding a working one, the last visited channel is returned so zapping
    always makes progress. Returns ``None`` only for an empty list.
    """

    total = len(channels)
    if total == 0:
        return None
    index = _index_of(channels, current)
    if index < 0:
        # Absent: ``next`` starts at 0, ``previous`` at the last index.
        index = -1 if step > 0 else total
    candidate: Optional[Channel] = None
    for _ in range(total):
        index = (index + step) % total
        candidate = channels[index]
        if candidate.stream_url not in broken:
            return candidate
    return candidate


class NavigationEngine:
    """Maintain the selected channel and drive catalog loads.

    All state transitions are serialized through one lock. The only awaited
    work is the catalog fetch inside :meth:`select_region`; its result is
    applied only if no newer load started in the meantime.
    """

    def __init__(
        self,
        store: CatalogStore,
        fetcher: CatalogFetcher,
        *,
        region: str = ALL_REGIONS,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._lock = threading.RLock()
        self._selected: Optional[Channel] = None
        self._broken: set[str] = set()
        self._region = normalize_region(region)
        self._generation = 0
        self._listeners: list[NavigationListener] = []

    @property
    def store(self) -> CatalogStore:
        return self._store

    @property
    def selected(self) -> Optional[Channel]:
        return self._selected

    @property
    def region(self) -> str:
        return self._region

    @property
    def broken(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._broken)

    def is_broken(self, channel: Channel) -> bool:
        with self._lock:
            return channel.stream_url in self._broken

    def state(self) -> NavigationState:
        with self._lock:
            snapshot = self._store.snapshot()
            return NavigationState(
                selected=self._selected,
                region=self._region,
                category_filter=snapshot.category_filter,
                broken=frozenset(self._broken),
                loading=snapshot.loading,
            )

    # Cursor -----------------------------------------------------------------

    def select(self, channel: Optional[Channel]) -> None:
        """Select ``channel`` from any view; no membership check is made."""

        with self._lock:
            self._selected = channel
        log.debug("Selected %s", channel.name if channel else None)
        self._notify()

    def _step(self, step: int) -> Optional[Channel]:
        with self._lock:
            visible = self._store.visible_channels
            if not visible:
                return self._selected
            candidate = find_candidate(visible, self._selected, self._broken, step)
            self._selected = candidate
        log.info(
            "Zapped %s to %s",
            "forward" if step > 0 else "back",
            candidate.name if candidate else None,
        )
        self._notify()
        return candidate

    def next(self) -> Optional[Channel]:
        """Select the next working channel of the filtered view."""

        return self._step(1)

    def previous(self) -> Optional[Channel]:
        """Select the previous working channel of the filtered view."""

        return self._step(-1)

    def peek_next(self) -> Optional[Channel]:
        with self._lock:
            return find_candidate(
                self._store.visible_channels, self._selected, self._broken, 1
            )

    def peek_previous(self) -> Optional[Channel]:
        with self._lock:
            return find_candidate(
                self._store.visible_channels, self._selected, self._broken, -1
            )

    def playback_target(self) -> Optional[PlaybackTarget]:
        """Return the selected stream plus next/previous URLs for pre-buffering."""

        with self._lock:
            selected = self._selected
            if selected is None:
                return None
            upcoming = self.peek_next()
            previous = self.peek_previous()
        return PlaybackTarget(
            stream_url=selected.stream_url,
            next_url=upcoming.stream_url if upcoming and upcoming != selected else None,
            previous_url=previous.stream_url if previous and previous != selected else None,
        )

    def mark_broken(self, channel: Channel) -> None:
        """Remember ``channel`` as broken and move away from it if selected."""

        with self._lock:
            self._broken.add(channel.stream_url)
            is_current = (
                self._selected is not None
                and self._selected.stream_url == channel.stream_url
            )
        log.warning("Marked %s as broken (%s)", channel.name, channel.stream_url)
        if is_current:
            self.next()
        else:
            self._notify()

    # Filters and loads ------------------------------------------------------

    def select_category(self, label: str) -> None:
        """Filter the visible channels; the cursor and broken set are untouched."""

        with self._lock:
            self._store.set_category_filter(label)
        log.info("Category switched to %s", label)
        self._notify()

    async def select_region(self, code: str) -> bool:
        """Reload the catalog for region ``code``.

        Returns True when this load's result was applied, False when a newer
        load started before it finished.
        """

        region = normalize_region(code)
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._region = region
            self._store.set_loading(True)
        log.info("Region switched to %s (load #%d)", region, generation)
        self._notify()

        try:
            channels = await self._fetcher.load(region)
        except BaseException:
            with self._lock:
                if generation == self._generation:
                    self._store.set_loading(False)
            raise

        with self._lock:
            if generation != self._generation:
                log.info("Discarding stale load #%d for region %s", generation, region)
                return False
            snapshot = self._store.replace(channels, category_filter=ALL_CATEGORIES)
            self._broken.clear()
            self._selected = snapshot.channels[0] if snapshot.channels else None
        self._notify()
        return True

    async def load(self) -> bool:
        """Reload the current region."""

        return await self.select_region(self._region)

    # Observers --------------------------------------------------------------

    def subscribe(self, listener: NavigationListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        state = self.state()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                log.exception("Navigation listener %r failed", listener)


__all__ = [
    "NavigationEngine",
    "NavigationState",
    "PlaybackTarget",
    "find_candidate",
]
