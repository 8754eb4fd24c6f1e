"""Terminal zapper for free live TV playlists."""

__version__ = "0.1.0"
