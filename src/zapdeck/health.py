"""Turn player buffering/error signals into broken-channel reports."""
from __future__ import annotations

import time
from typing import Callable, Optional

from .config import DEFAULT_BUFFERING_GRACE, DEFAULT_ZAP_WINDOW
from .logging_utils import get_logger
from .playlist import Channel

log = get_logger(__name__)


class BufferingWatchdog:
    """Decide when a playing channel should be considered broken.

    The player reports buffering transitions and errors; :meth:`poll` is
    called periodically (the TUI uses a timer). A channel is reported through
    ``on_stalled`` once it has been buffering for ``grace`` seconds, counted
    from the later of the buffering start and the end of the zap window that
    follows every channel switch. Errors are reported on the first poll after
    the zap window. Each channel is reported at most once per switch.
    """

    def __init__(
        self,
        on_stalled: Callable[[Channel], None],
        *,
        grace: float = DEFAULT_BUFFERING_GRACE,
        zap_window: float = DEFAULT_ZAP_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._on_stalled = on_stalled
        self.grace = grace
        self.zap_window = zap_window
        self._clock = clock
        self._channel: Optional[Channel] = None
        self._switched_at: float = float("-inf")
        self._buffering_since: Optional[float] = None
        self._errored = False
        self._reported = False

    @property
    def channel(self) -> Optional[Channel]:
        return self._channel

    @property
    def buffering(self) -> bool:
        return self._buffering_since is not None

    @property
    def errored(self) -> bool:
        """True once the player reported an error for the current channel."""

        return self._errored

    def channel_switched(self, channel: Optional[Channel]) -> None:
        """Reset tracking for a newly selected channel."""

        self._channel = channel
        self._switched_at = self._clock()
        self._buffering_since = None
        self._errored = False
        self._reported = False

    def buffering_changed(self, buffering: bool) -> None:
        if buffering:
            if self._buffering_since is None:
                self._buffering_since = self._clock()
        else:
            self._buffering_since = None

    def error_occurred(self) -> None:
        self._errored = True

    def _zapping(self, now: float) -> bool:
        return now - self._switched_at < self.zap_window

    def poll(self) -> bool:
        """Report the current channel if it stalled; return True when reported."""

        channel = self._channel
        if channel is None or self._reported:
            return False
        now = self._clock()
        if self._zapping(now):
            return False
        if self._errored:
            reason = "playback error"
        elif self._buffering_since is not None:
            started = max(self._buffering_since, self._switched_at + self.zap_window)
            if now - started < self.grace:
                return False
            reason = f"buffering for more than {self.grace:.1f}s"
        else:
            return False
        self._reported = True
        log.info("Channel %s stalled (%s)", channel.name, reason)
        self._on_stalled(channel)
        return True


__all__ = ["BufferingWatchdog"]
