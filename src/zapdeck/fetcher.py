"""Concurrent download of playlist partitions."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence
from urllib import request
from urllib.error import HTTPError, URLError
from urllib.parse import quote

from .config import (
    DEFAULT_BASE_URL,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_PLAYLIST_EXTENSION,
    DEFAULT_READ_TIMEOUT,
    AppConfig,
    normalize_base_url,
)
from .logging_utils import get_logger
from .playlist import Channel, dedupe_channels, load_playlist_text
from .regions import (
    ALL_REGIONS,
    CATEGORY_PARTITIONS,
    DEFAULT_COUNTRY_CATEGORY,
    normalize_region,
)

log = get_logger(__name__)

PartitionKind = Literal["categories", "countries"]


class FetchError(RuntimeError):
    """Raised by :func:`download` when a partition document is unavailable."""


@dataclass(frozen=True, slots=True)
class Partition:
    """One playlist document to fetch."""

    kind: PartitionKind
    key: str
    label: str
    region: str


def download(
    url: str,
    *,
    timeout: float,
    user_agent: Optional[str] = None,
) -> bytes:
    """Return the body of ``url``; raise :class:`FetchError` on non-2xx replies."""

    req = request.Request(url)
    if user_agent:
        req.add_header("User-Agent", user_agent)
    with request.urlopen(req, timeout=timeout) as response:  # type: ignore[call-arg]
        status = getattr(response, "status", 200)
        if not 200 <= status < 300:
            raise FetchError(f"HTTP {status} for {url}")
        return response.read()


class CatalogFetcher:
    """Fetch playlist partitions concurrently and merge them into one list."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        extension: str = DEFAULT_PLAYLIST_EXTENSION,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        user_agent: Optional[str] = None,
        categories: Sequence[str] = CATEGORY_PARTITIONS,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self.extension = extension.lstrip(".")
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.user_agent = user_agent
        self.categories = tuple(categories)

    @classmethod
    def from_config(cls, config: AppConfig) -> "CatalogFetcher":
        return cls(
            base_url=config.base_url,
            extension=config.playlist_extension,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            user_agent=config.user_agent,
        )

    def partitions_for(self, region_code: str) -> list[Partition]:
        """Return the partitions that make up the catalog for ``region_code``."""

        region = normalize_region(region_code)
        if region == ALL_REGIONS:
            return [
                Partition("categories", category, category, ALL_REGIONS)
                for category in self.categories
            ]
        return [Partition("countries", region, DEFAULT_COUNTRY_CATEGORY, region)]

    def partition_url(self, partition: Partition) -> str:
        key = quote(partition.key, safe="")
        return f"{self.base_url}/{partition.kind}/{key}.{self.extension}"

    async def fetch_partition(self, partition: Partition) -> List[Channel]:
        """Download and parse one partition; failures yield an empty list.

        urllib applies a single socket timeout to the connect and to every
        read, so it is set to the larger of ``connect_timeout`` and
        ``read_timeout``. The whole transfer is capped at their sum so a
        trickling server cannot stall the join.
        """

        url = self.partition_url(partition)
        log.debug("Fetching %s partition %s from %s", partition.kind, partition.key, url)
        try:
            payload = await asyncio.wait_for(
                asyncio.to_thread(
                    download,
                    url,
                    timeout=max(self.connect_timeout, self.read_timeout),
                    user_agent=self.user_agent,
                ),
                timeout=self.connect_timeout + self.read_timeout,
            )
        except asyncio.TimeoutError:
            log.warning("Timed out fetching %s", url)
            return []
        except HTTPError as exc:
            log.warning("HTTP %s fetching %s", exc.code, url)
            return []
        except (URLError, OSError, FetchError) as exc:
            log.warning("Failed to fetch %s: %s", url, exc)
            return []
        except Exception:
            log.exception("Unexpected error fetching %s", url)
            return []
        channels = load_playlist_text(payload, partition.label, partition.region)
        log.info(
            "Loaded %d channel(s) from %s/%s (%d bytes)",
            len(channels),
            partition.kind,
            partition.key,
            len(payload),
        )
        return channels

    async def load(self, region_code: str) -> List[Channel]:
        """Fetch every partition for ``region_code`` and merge the results.

        All fetches run concurrently and the call returns once each has
        finished. Results are concatenated in partition order; repeated stream
        URLs keep their first occurrence.
        """

        partitions = self.partitions_for(region_code)
        log.info(
            "Loading %d partition(s) for region %s", len(partitions), region_code
        )
        results: list[List[Channel]] = list(
            await asyncio.gather(
                *(self.fetch_partition(partition) for partition in partitions)
            )
        )
        merged = [channel for chunk in results for channel in chunk]
        unique = dedupe_channels(merged)
        if len(unique) != len(merged):
            log.debug("Dropped %d duplicate stream(s)", len(merged) - len(unique))
        empty = sum(1 for chunk in results if not chunk)
        log.info(
            "Region %s loaded: %d channel(s), %d empty partition(s)",
            region_code,
            len(unique),
            empty,
        )
        return unique


__all__ = ["CatalogFetcher", "FetchError", "Partition", "download"]
