"""Utilities for parsing M3U channel playlists."""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from .logging_utils import get_logger

log = get_logger(__name__)

EXTINF_PREFIX = "#EXTINF:"
CATEGORY_SEPARATOR = ";"

_ATTRIBUTE_PATTERN = re.compile(r'([A-Za-z0-9-]+)="([^"]*)"')


@dataclass(frozen=True, slots=True)
class Channel:
    """A parsed live channel entry.

    Channels compare and hash by ``stream_url`` only; the URL is the identity
    used for de-duplication and broken-stream tracking.
    """

    name: str = field(compare=False)
    stream_url: str
    category: str = field(default="", compare=False)
    region: str = field(default="all", compare=False)
    logo_url: Optional[str] = field(default=None, compare=False)
    id: str = field(default="", compare=False)

    def matches_tokens(self, tokens: Sequence[str]) -> bool:
        """Return True if every token appears in the channel's search tokens."""

        if not tokens:
            return True
        haystack = set(normalize_tokens(self.name))
        haystack.update(normalize_tokens(self.category))
        haystack.update(normalize_tokens(self.id))
        return all(token in haystack for token in tokens)

    def matches(self, query: str) -> bool:
        """Return True if the channel matches the search query."""

        return self.matches_tokens(normalize_tokens(query))


@dataclass(frozen=True, slots=True)
class PendingEntry:
    """Metadata collected from an ``#EXTINF`` line, waiting for its URL line."""

    name: Optional[str]
    category: str
    logo_url: Optional[str] = None
    id: str = ""


def parse_attributes(payload: str) -> dict[str, str]:
    """Return every ``key="value"`` pair found in ``payload``.

    Later duplicates win. Anything that does not look like a quoted attribute
    is ignored, so malformed metadata simply yields fewer attributes.
    """

    return {match.group(1): match.group(2) for match in _ATTRIBUTE_PATTERN.finditer(payload)}


def normalize_category(value: Optional[str], default: str) -> str:
    """Return the first ``;`` segment of ``value``, trimmed and lower-cased.

    Empty or missing values fall back to ``default`` (normalized the same way).
    """

    if value:
        first = value.split(CATEGORY_SEPARATOR, 1)[0].strip()
        if first:
            return first.lower()
    return default.strip().lower()


def parse_extinf(line: str, partition_label: str) -> PendingEntry:
    """Parse an ``#EXTINF`` line into a :class:`PendingEntry`.

    The display name is the text after the final comma. A line without a comma
    carries no name; its entry is dropped once the URL line arrives.
    """

    payload = line[len(EXTINF_PREFIX) :]
    attributes = parse_attributes(payload)
    name: Optional[str] = None
    if "," in payload:
        name = payload.rsplit(",", 1)[1].strip() or None
    return PendingEntry(
        name=name,
        category=normalize_category(attributes.get("group-title"), partition_label),
        logo_url=attributes.get("tvg-logo") or None,
        id=attributes.get("tvg-id", "").strip(),
    )


def _scan_line(
    line: str,
    pending: Optional[PendingEntry],
    partition_label: str,
    region_code: str,
) -> tuple[Optional[Channel], Optional[PendingEntry]]:
    """Advance the parser by one trimmed line.

    Returns the channel emitted by this line (if any) and the pending entry to
    carry into the next line.
    """

    if not line:
        return None, pending
    if line.startswith(EXTINF_PREFIX):
        return None, parse_extinf(line, partition_label)
    if line.startswith("#"):
        return None, pending
    if pending is None:
        log.debug("Skipping stream URL without metadata: %s", line)
        return None, None
    if not pending.name:
        log.debug("Dropping unnamed entry for %s", line)
        return None, None
    channel = Channel(
        name=pending.name,
        stream_url=line,
        category=pending.category,
        region=region_code,
        logo_url=pending.logo_url,
        id=pending.id,
    )
    return channel, None


def parse_playlist(
    lines: Iterable[str] | str,
    partition_label: str,
    region_code: str = "all",
) -> List[Channel]:
    """Parse playlist text into :class:`Channel` objects.

    ``lines`` may be the full document or an iterable of lines. The header is
    treated like any other comment. Parsing never fails: malformed entries are
    skipped and the result simply contains fewer channels.
    """

    if isinstance(lines, str):
        lines = lines.splitlines()

    channels: List[Channel] = []
    pending: Optional[PendingEntry] = None
    for raw_line in lines:
        channel, pending = _scan_line(raw_line.strip(), pending, partition_label, region_code)
        if channel is not None:
            channels.append(channel)

    if pending is not None:
        log.debug("Ignoring trailing metadata without a stream URL (%s)", pending.name)
    log.debug(
        "Parsed %d channel(s) from partition %s (region %s)",
        len(channels),
        partition_label,
        region_code,
    )
    return channels


def load_playlist_text(
    payload: bytes, partition_label: str, region_code: str = "all"
) -> List[Channel]:
    """Decode a downloaded playlist body and parse it."""

    return parse_playlist(
        payload.decode("utf8", errors="replace"), partition_label, region_code
    )


def normalize_tokens(text: str) -> list[str]:
    """Normalize ``text`` into a list of unique, lowercase search tokens."""

    if not text:
        return []
    normalized = unicodedata.normalize("NFKD", text)
    without_diacritics = "".join(
        char for char in normalized if not unicodedata.combining(char)
    )
    raw_tokens = re.findall(r"\w+", without_diacritics.lower())
    seen: set[str] = set()
    tokens: list[str] = []
    for token in raw_tokens:
        if token and token not in seen:
            seen.add(token)
            tokens.append(token)
    return tokens


def filter_channels(channels: Sequence[Channel], query: str) -> List[Channel]:
    """Return channels matching the given search query, preserving order."""

    tokens = normalize_tokens(query.strip())
    if not tokens:
        return list(channels)
    results = [channel for channel in channels if channel.matches_tokens(tokens)]
    log.debug("Filter query '%s' matched %d channel(s)", query, len(results))
    return results


def dedupe_channels(channels: Iterable[Channel]) -> List[Channel]:
    """Drop repeated stream URLs, keeping the first occurrence."""

    seen: set[str] = set()
    unique: List[Channel] = []
    for channel in channels:
        if channel.stream_url in seen:
            continue
        seen.add(channel.stream_url)
        unique.append(channel)
    return unique


__all__ = [
    "CATEGORY_SEPARATOR",
    "Channel",
    "EXTINF_PREFIX",
    "PendingEntry",
    "dedupe_channels",
    "filter_channels",
    "load_playlist_text",
    "normalize_category",
    "normalize_tokens",
    "parse_attributes",
    "parse_extinf",
    "parse_playlist",
]
