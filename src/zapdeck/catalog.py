"""Catalog store holding the loaded channel set and its filtered view."""
from __future__ import annotations

import random
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .logging_utils import get_logger
from .playlist import Channel
from .regions import ALL_CATEGORIES

log = get_logger(__name__)

CatalogListener = Callable[["CatalogSnapshot"], None]


@dataclass(frozen=True, slots=True)
class CatalogSnapshot:
    """Immutable view of the catalog at one point in time."""

    channels: tuple[Channel, ...] = ()
    categories: tuple[str, ...] = (ALL_CATEGORIES,)
    category_filter: str = ALL_CATEGORIES
    visible: tuple[Channel, ...] = ()
    loading: bool = False

    @property
    def is_empty(self) -> bool:
        """True once loading finished without any channel."""

        return not self.loading and not self.channels


def derive_categories(channels: Iterable[Channel]) -> tuple[str, ...]:
    """Return ``"All"`` followed by the sorted distinct channel categories."""

    distinct = sorted({channel.category for channel in channels})
    return (ALL_CATEGORIES, *distinct)


def filter_by_category(
    channels: tuple[Channel, ...], label: str
) -> tuple[Channel, ...]:
    """Return the channels whose category equals ``label`` (case-insensitive).

    Only the exact sentinel ``"All"`` disables filtering.
    """

    if label == ALL_CATEGORIES:
        return channels
    wanted = label.casefold()
    return tuple(channel for channel in channels if channel.category.casefold() == wanted)


class CatalogStore:
    """Single-writer container for the channel catalog.

    Mutations swap in a new :class:`CatalogSnapshot` under a lock, so readers
    always see one consistent catalog and never a half-applied update.
    """

    def __init__(self, *, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()
        self._lock = threading.RLock()
        self._snapshot = CatalogSnapshot()
        self._listeners: list[CatalogListener] = []

    def snapshot(self) -> CatalogSnapshot:
        return self._snapshot

    @property
    def channels(self) -> tuple[Channel, ...]:
        return self._snapshot.channels

    @property
    def visible_channels(self) -> tuple[Channel, ...]:
        return self._snapshot.visible

    @property
    def categories(self) -> tuple[str, ...]:
        return self._snapshot.categories

    @property
    def category_filter(self) -> str:
        return self._snapshot.category_filter

    @property
    def loading(self) -> bool:
        return self._snapshot.loading

    def contains(self, stream_url: str) -> bool:
        return any(channel.stream_url == stream_url for channel in self._snapshot.channels)

    def find(self, stream_url: str) -> Optional[Channel]:
        """Return the loaded channel streaming from *stream_url*, if any."""

        for channel in self._snapshot.channels:
            if channel.stream_url == stream_url:
                return channel
        return None

    def replace(
        self,
        channels: Iterable[Channel],
        *,
        category_filter: Optional[str] = None,
    ) -> CatalogSnapshot:
        """Swap in a freshly loaded catalog.

        The channel order is shuffled once, the category list is derived from
        the new channels and the filtered view is rebuilt for ``category_filter``
        (or the current filter when omitted). Clears the loading flag.
        """

        shuffled = list(channels)
        self._rng.shuffle(shuffled)
        full = tuple(shuffled)
        with self._lock:
            label = self._snapshot.category_filter if category_filter is None else category_filter
            snapshot = CatalogSnapshot(
                channels=full,
                categories=derive_categories(full),
                category_filter=label,
                visible=filter_by_category(full, label),
                loading=False,
            )
            self._snapshot = snapshot
        log.info(
            "Catalog replaced: %d channel(s), %d categories, filter=%s (%d visible)",
            len(full),
            len(snapshot.categories) - 1,
            label,
            len(snapshot.visible),
        )
        self._notify(snapshot)
        return snapshot

    def set_category_filter(self, label: str) -> CatalogSnapshot:
        """Update the active filter and recompute the filtered view."""

        with self._lock:
            current = self._snapshot
            snapshot = CatalogSnapshot(
                channels=current.channels,
                categories=current.categories,
                category_filter=label,
                visible=filter_by_category(current.channels, label),
                loading=current.loading,
            )
            self._snapshot = snapshot
        log.debug("Category filter set to %s (%d visible)", label, len(snapshot.visible))
        self._notify(snapshot)
        return snapshot

    def set_loading(self, loading: bool) -> CatalogSnapshot:
        with self._lock:
            current = self._snapshot
            if current.loading == loading:
                return current
            snapshot = CatalogSnapshot(
                channels=current.channels,
                categories=current.categories,
                category_filter=current.category_filter,
                visible=current.visible,
                loading=loading,
            )
            self._snapshot = snapshot
        self._notify(snapshot)
        return snapshot

    def subscribe(self, listener: CatalogListener) -> Callable[[], None]:
        """Register ``listener`` for snapshot changes; returns an unsubscribe callable."""

        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, snapshot: CatalogSnapshot) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                log.exception("Catalog listener %r failed", listener)


__all__ = [
    "CatalogListener",
    "CatalogSnapshot",
    "CatalogStore",
    "derive_categories",
    "filter_by_category",
]
